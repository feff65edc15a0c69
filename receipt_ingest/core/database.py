"""
Database operations for receipt storage and duplicate rejection.
"""

import sqlite3
import datetime as dt
from pathlib import Path
from typing import List, Dict, Optional

from .models import ReceiptRecord
from .utils import compute_dedup_fingerprint

UNKNOWN_STORE = "(unknown)"


class DuplicateReceiptError(ValueError):
    """Raised when a receipt with the same fingerprint is already stored."""

    def __init__(self, fingerprint: str, existing_id: Optional[int] = None):
        self.fingerprint = fingerprint
        self.existing_id = existing_id
        where = f" as receipt #{existing_id}" if existing_id is not None else ""
        super().__init__(f"Duplicate receipt (already stored{where})")


def init_receipts_db(db_path: Path):
    """Initialize the receipt store."""
    with sqlite3.connect(db_path.as_posix()) as conn:
        cur = conn.cursor()
        cur.execute("""
        CREATE TABLE IF NOT EXISTS receipts (
            id INTEGER PRIMARY KEY,
            store_name TEXT,
            total_amount REAL,
            purchase_datetime TEXT,
            source_type TEXT,
            source_file TEXT,
            dedup_hash TEXT UNIQUE,
            ocr_confidence REAL,
            raw_text TEXT,
            file_hash TEXT,
            uploaded_at TEXT
        )
        """)
        cur.execute("""
        CREATE TABLE IF NOT EXISTS receipt_items (
            id INTEGER PRIMARY KEY,
            receipt_id INTEGER NOT NULL REFERENCES receipts(id) ON DELETE CASCADE,
            line_no INTEGER NOT NULL,
            product_name TEXT NOT NULL,
            store_name TEXT,
            qty REAL,
            unit_price REAL,
            total_price REAL,
            category TEXT NOT NULL
        )
        """)
        cur.execute("""
        CREATE INDEX IF NOT EXISTS idx_receipt_items_receipt
        ON receipt_items(receipt_id, line_no)
        """)
        conn.commit()


def receipt_fingerprint(record: ReceiptRecord, store_identity: Optional[str] = None,
                        file_hash: Optional[str] = None) -> str:
    """
    Fingerprint a record for duplicate rejection.

    Uses the given store identity, falling back to the parsed store name.
    When store, time and total are all unknown every such receipt would share
    one fingerprint, so the document's file hash stands in for the store.
    """
    store = store_identity if store_identity is not None else record.store_name
    if store is None and record.purchase_datetime is None and record.total_amount is None and file_hash:
        store = f"file:{file_hash}"
    return compute_dedup_fingerprint(store, record.purchase_datetime, record.total_amount)


def find_duplicate(db_path: Path, fingerprint: str) -> Optional[Dict]:
    """Return the stored receipt with this fingerprint, if any."""
    with sqlite3.connect(db_path.as_posix()) as conn:
        conn.row_factory = sqlite3.Row
        cur = conn.cursor()
        cur.execute("""
            SELECT id, store_name, total_amount, purchase_datetime, source_file, uploaded_at
            FROM receipts
            WHERE dedup_hash = ?
        """, (fingerprint,))
        row = cur.fetchone()
        return dict(row) if row else None


def save_receipt(db_path: Path, record: ReceiptRecord,
                 source_file: Optional[str] = None,
                 store_identity: Optional[str] = None,
                 file_hash: Optional[str] = None,
                 max_items: int = 200) -> int:
    """
    Store a receipt and its first ``max_items`` line items.

    Returns:
        The new receipt id

    Raises:
        DuplicateReceiptError: a receipt with the same fingerprint exists
    """
    fingerprint = receipt_fingerprint(record, store_identity, file_hash)
    existing = find_duplicate(db_path, fingerprint)
    if existing:
        raise DuplicateReceiptError(fingerprint, existing["id"])

    with sqlite3.connect(db_path.as_posix()) as conn:
        cur = conn.cursor()
        try:
            cur.execute("""
            INSERT INTO receipts
            (store_name, total_amount, purchase_datetime, source_type, source_file,
             dedup_hash, ocr_confidence, raw_text, file_hash, uploaded_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                record.store_name, record.total_amount, record.purchase_datetime_iso,
                record.source_type.value, source_file, fingerprint,
                record.ocr_confidence, record.raw_text, file_hash,
                dt.datetime.now().isoformat(timespec="seconds"),
            ))
        except sqlite3.IntegrityError as e:
            # Another writer stored the same receipt since the lookup above
            raise DuplicateReceiptError(fingerprint) from e
        receipt_id = cur.lastrowid

        data = [(receipt_id, it.line_no, it.product_name, record.store_name,
                 it.qty, it.unit_price, it.total_price, it.category)
                for it in record.items[:max_items]]
        cur.executemany("""
        INSERT INTO receipt_items
        (receipt_id, line_no, product_name, store_name, qty, unit_price, total_price, category)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """, data)

        conn.commit()

    return receipt_id


def list_receipts(db_path: Path, limit: int = 200) -> List[Dict]:
    """List stored receipts, newest first."""
    with sqlite3.connect(db_path.as_posix()) as conn:
        conn.row_factory = sqlite3.Row
        cur = conn.cursor()
        cur.execute("""
            SELECT id, store_name, total_amount, purchase_datetime, source_type,
                   source_file, ocr_confidence, uploaded_at
            FROM receipts
            ORDER BY uploaded_at DESC, id DESC
            LIMIT ?
        """, (limit,))
        return [dict(r) for r in cur.fetchall()]


def get_receipt_items(db_path: Path, receipt_id: int) -> List[Dict]:
    """Line items of one receipt in line order."""
    with sqlite3.connect(db_path.as_posix()) as conn:
        conn.row_factory = sqlite3.Row
        cur = conn.cursor()
        cur.execute("""
            SELECT line_no, product_name, qty, unit_price, total_price, category
            FROM receipt_items
            WHERE receipt_id = ?
            ORDER BY line_no
        """, (receipt_id,))
        return [dict(r) for r in cur.fetchall()]


def spending_overview(db_path: Path, limit: int = 20) -> Dict[str, List[Dict]]:
    """
    Aggregate personal spending.

    Returns:
        {"by_product": [{name, qty, sum}], ordered by quantity,
         "by_store": [{store, receipts, total}], ordered by total}
    """
    with sqlite3.connect(db_path.as_posix()) as conn:
        conn.row_factory = sqlite3.Row
        cur = conn.cursor()
        cur.execute("""
            SELECT LOWER(product_name) AS name, SUM(qty) AS qty, SUM(total_price) AS sum
            FROM receipt_items
            GROUP BY name
            ORDER BY qty DESC, name
            LIMIT ?
        """, (limit,))
        by_product = [dict(r) for r in cur.fetchall()]

        cur.execute("""
            SELECT COALESCE(store_name, ?) AS store, COUNT(*) AS receipts,
                   COALESCE(SUM(total_amount), 0) AS total
            FROM receipts
            GROUP BY store
            ORDER BY total DESC, store
            LIMIT ?
        """, (UNKNOWN_STORE, limit))
        by_store = [dict(r) for r in cur.fetchall()]

    return {"by_product": by_product, "by_store": by_store}
