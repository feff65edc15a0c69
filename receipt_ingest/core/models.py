"""
Data models for receipt ingestion.
"""

import datetime as dt
from dataclasses import dataclass, asdict, field
from enum import Enum
from typing import Optional, List


class DocumentKind(str, Enum):
    """Extraction path selected for a raw document."""
    IMAGE = "image"
    PDF = "pdf"


@dataclass(frozen=True)
class RawDocument:
    """Bytes of an uploaded receipt plus its declared kind."""
    data: bytes
    kind: DocumentKind
    filename: Optional[str] = None


@dataclass
class ExtractedText:
    """Text pulled out of a document; confidence is only set for OCR."""
    text: str
    confidence: Optional[float] = None


@dataclass
class LineItem:
    """One product line accepted by the parser."""
    line_no: int
    product_name: str
    qty: float
    unit_price: float
    total_price: float
    category: str

    def to_dict(self):
        """Convert to dictionary."""
        return asdict(self)


@dataclass
class ParsedReceipt:
    """Fields recovered from receipt text. Every field may be missing."""
    store_name: Optional[str] = None
    total_amount: Optional[float] = None
    purchase_datetime: Optional[dt.datetime] = None
    items: List[LineItem] = field(default_factory=list)


@dataclass
class ReceiptRecord:
    """Parsed receipt ready to be handed to storage."""
    store_name: Optional[str]
    total_amount: Optional[float]
    purchase_datetime: Optional[dt.datetime]
    items: List[LineItem]
    source_type: DocumentKind
    ocr_confidence: Optional[float] = None
    raw_text: str = ""

    @classmethod
    def from_parsed(cls, parsed: ParsedReceipt, extracted: ExtractedText,
                    kind: DocumentKind) -> "ReceiptRecord":
        return cls(
            store_name=parsed.store_name,
            total_amount=parsed.total_amount,
            purchase_datetime=parsed.purchase_datetime,
            items=list(parsed.items),
            source_type=kind,
            ocr_confidence=extracted.confidence,
            raw_text=extracted.text,
        )

    @property
    def purchase_datetime_iso(self) -> Optional[str]:
        if self.purchase_datetime is None:
            return None
        return self.purchase_datetime.isoformat(timespec="minutes")

    def to_dict(self):
        """Convert to the dictionary shape returned to callers."""
        return {
            "store_name": self.store_name,
            "total_amount": self.total_amount,
            "purchase_datetime": self.purchase_datetime_iso,
            "items": [item.to_dict() for item in self.items],
            "ocr_confidence": self.ocr_confidence,
        }
