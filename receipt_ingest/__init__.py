"""
Receipt Ingest

Turns photographed or scanned purchase receipts into structured records:
store, total, purchase time and categorized line items.
"""

__version__ = "1.0.0"
__author__ = "Receipt Ingest Contributors"

from receipt_ingest.core.models import LineItem, ParsedReceipt, ReceiptRecord
from receipt_ingest.core.ocr import ExtractionFailure, extract_text
from receipt_ingest.core.parsers import parse_receipt
from receipt_ingest.core.categorization import categorize_item
from receipt_ingest.core.utils import compute_dedup_fingerprint
from receipt_ingest.core.processor import ingest_document

__all__ = [
    "LineItem",
    "ParsedReceipt",
    "ReceiptRecord",
    "ExtractionFailure",
    "extract_text",
    "parse_receipt",
    "categorize_item",
    "compute_dedup_fingerprint",
    "ingest_document",
]
