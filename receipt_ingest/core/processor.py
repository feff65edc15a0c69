"""
Receipt ingestion orchestration.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple, Union

from .categorization import item_rules_from_config, load_rules
from .database import DuplicateReceiptError, init_receipts_db, save_receipt
from .models import DocumentKind, ExtractedText, RawDocument, ReceiptRecord
from .ocr import ExtractionFailure, extract_text, infer_document_kind
from .parsers import parse_receipt
from .utils import IMAGE_EXTS, PDF_EXTS, sha1_bytes

logger = logging.getLogger(__name__)

DEFAULT_EXTRACTION_TIMEOUT = 120.0
DEFAULT_MAX_ITEMS = 200


def ingest_document(data: bytes, kind: Union[DocumentKind, str],
                    lang: Optional[str] = None,
                    rules: Optional[Dict] = None) -> ReceiptRecord:
    """
    Run one document through extraction, parsing and categorization.

    Raises:
        ExtractionFailure: the document could not be turned into text
    """
    extracted = extract_text(data, kind, lang=lang)
    # extract_text rejects unknown kinds, so the conversion cannot fail here
    return record_from_text(extracted, DocumentKind(kind), rules=rules)


def record_from_text(extracted: ExtractedText, kind: DocumentKind,
                     rules: Optional[Dict] = None) -> ReceiptRecord:
    """Parse already extracted text into a record."""
    rules = rules or {}
    parsed = parse_receipt(
        extracted.text,
        merchant_tokens=rules.get("merchant_tokens"),
        category_rules=item_rules_from_config(rules),
    )
    return ReceiptRecord.from_parsed(parsed, extracted, kind)


class ReceiptProcessor:
    """Processes receipt files and optionally stores them."""

    def __init__(self, db_path: Optional[Path] = None,
                 rules_path: Optional[Path] = None,
                 lang: Optional[str] = None,
                 extraction_timeout: Optional[float] = DEFAULT_EXTRACTION_TIMEOUT,
                 max_items: int = DEFAULT_MAX_ITEMS,
                 store_identity: Optional[str] = None):
        """
        Initialize receipt processor.

        Args:
            db_path: SQLite receipt store; records are only parsed when None
            rules_path: Path to rules.json (item categories, merchant tokens)
            lang: Tesseract language (falls back to OCR_LANG env var)
            extraction_timeout: Seconds allowed for one extraction; None disables it
            max_items: Maximum number of line items stored per receipt
            store_identity: Store identifier used in the dedup fingerprint
        """
        self.db_path = db_path
        self.lang = lang
        self.extraction_timeout = extraction_timeout
        self.max_items = max_items
        self.store_identity = store_identity
        self.rules = load_rules(rules_path)

        if self.db_path is not None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            init_receipts_db(self.db_path)

    def discover_files(self, inputs: Iterable[Path]) -> List[Path]:
        """Expand files and directories into the receipt files they hold."""
        supported = IMAGE_EXTS.union(PDF_EXTS)
        files = []
        for p in inputs:
            if p.is_dir():
                files.extend(f for f in p.iterdir() if f.is_file() and f.suffix.lower() in supported)
            elif p.suffix.lower() in supported:
                files.append(p)
            else:
                logger.warning("Skipping %s (unsupported file type)", p)
        files = sorted(set(files), key=lambda f: (f.name, f.as_posix()))
        logger.info("Found %d receipt file(s)", len(files))
        return files

    def read_document(self, path: Path) -> RawDocument:
        kind = infer_document_kind(path.name)
        try:
            data = path.read_bytes()
        except OSError as e:
            raise ExtractionFailure(f"Cannot read {path}: {e}") from e
        return RawDocument(data=data, kind=kind, filename=path.name)

    def extract_with_timeout(self, data: bytes, kind: DocumentKind) -> ExtractedText:
        """Run extraction on a worker thread and give up after the timeout."""
        if not self.extraction_timeout:
            return extract_text(data, kind, lang=self.lang)

        executor = ThreadPoolExecutor(max_workers=1)
        future = executor.submit(extract_text, data, kind, self.lang)
        try:
            return future.result(timeout=self.extraction_timeout)
        except FutureTimeout as e:
            future.cancel()
            raise ExtractionFailure(
                f"Extraction timed out after {self.extraction_timeout:g}s"
            ) from e
        finally:
            # Do not block on an abandoned OCR call
            executor.shutdown(wait=False)

    def process_file(self, path: Path) -> Tuple[ReceiptRecord, Optional[int]]:
        """
        Process a single receipt file.

        Returns:
            Tuple of (record, receipt_id); receipt_id is None without a database

        Raises:
            ExtractionFailure: text extraction failed or timed out
            DuplicateReceiptError: the receipt is already stored
        """
        logger.info("Processing %s", path.name)
        doc = self.read_document(path)
        extracted = self.extract_with_timeout(doc.data, doc.kind)
        record = record_from_text(extracted, doc.kind, rules=self.rules)

        logger.debug("Store: %s", record.store_name or "(none)")
        logger.debug("Total: %s", record.total_amount if record.total_amount is not None else "(none)")
        logger.debug("Date: %s", record.purchase_datetime_iso or "(none)")
        logger.debug("Items: %d", len(record.items))
        if record.ocr_confidence is not None:
            logger.debug("OCR confidence: %.2f", record.ocr_confidence)
        if record.total_amount is None:
            logger.warning("Could not extract total from %s. Check OCR quality.", path.name)

        receipt_id = None
        if self.db_path is not None:
            receipt_id = save_receipt(
                self.db_path, record,
                source_file=doc.filename,
                store_identity=self.store_identity,
                file_hash=sha1_bytes(doc.data),
                max_items=self.max_items,
            )
        return record, receipt_id

    def process_all(self, inputs: Iterable[Path]) -> Tuple[List[ReceiptRecord], List[Tuple[Path, str]]]:
        """
        Process all receipts.

        Returns:
            Tuple of (records, failures) where failures are (path, reason)
        """
        files = self.discover_files(inputs)
        records = []
        failures = []
        for file_path in files:
            try:
                record, _ = self.process_file(file_path)
                records.append(record)
            except DuplicateReceiptError as e:
                logger.warning("Duplicate %s: %s", file_path.name, e)
                failures.append((file_path, str(e)))
            except ExtractionFailure as e:
                logger.error("Failed %s: %s", file_path.name, e)
                failures.append((file_path, str(e)))
        return records, failures
