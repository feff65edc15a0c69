"""
Utility functions and constants for receipt ingestion.
"""

import datetime as dt
import hashlib
from typing import Optional, Union

# File type constants
IMAGE_EXTS = {".png", ".jpg", ".jpeg", ".tif", ".tiff", ".bmp", ".webp", ".gif"}
PDF_EXTS = {".pdf"}
PDF_MEDIA_TYPE = "application/pdf"

# Amounts are printed with exactly two decimals, "," or "." as separator
AMOUNT_PATTERN = r"[0-9]+[.,][0-9]{2}"

FINGERPRINT_SEPARATOR = "|"


def normalize_amount(s: str) -> Optional[float]:
    """Normalize a receipt amount ("7,50" or "7.50") to float."""
    if not s:
        return None
    try:
        return float(s.strip().replace(",", "."))
    except ValueError:
        return None


def sha1_bytes(data: bytes) -> str:
    """Calculate SHA1 hash of raw document bytes."""
    return hashlib.sha1(data).hexdigest()


def compute_dedup_fingerprint(store_identity: Optional[str],
                              purchase_datetime: Optional[Union[dt.datetime, str]],
                              total_amount: Optional[float]) -> str:
    """
    Create the duplicate-detection fingerprint of a receipt.

    The canonical string joins store identity, purchase time and total with
    ``|``; an absent field contributes an empty string. Identical triples,
    including three absent fields, always give the same digest.
    """
    if isinstance(purchase_datetime, dt.datetime):
        when = purchase_datetime.isoformat()
    else:
        when = purchase_datetime or ""
    parts = [
        (store_identity or "").strip().lower(),
        when,
        f"{total_amount:.2f}" if total_amount is not None else "",
    ]
    fingerprint_str = FINGERPRINT_SEPARATOR.join(parts)
    return hashlib.sha256(fingerprint_str.encode("utf-8")).hexdigest()


def money_fmt(v: Optional[float]) -> str:
    """Format amount for reports."""
    return f"{v:,.2f}" if v is not None else ""
