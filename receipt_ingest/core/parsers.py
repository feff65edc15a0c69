"""
Parsers for extracting information from receipt text.

Every field is read by an ordered chain of rules. A rule takes a value (a
line or the whole text) and returns a result or None; the first rule that
returns something wins, so the order of each chain is its tie-break.
"""

import datetime as dt
import logging
import re
from typing import Callable, Iterable, List, NamedTuple, Optional, Sequence, TypeVar

from .categorization import ItemRules, categorize_item
from .models import LineItem, ParsedReceipt
from .utils import AMOUNT_PATTERN, normalize_amount

logger = logging.getLogger(__name__)

T = TypeVar("T")
V = TypeVar("V")
Rule = Callable[[V], Optional[T]]

STORE_NAME_MAX_LEN = 60

# Known merchants and legal-entity markers. Substring match, case-insensitive.
DEFAULT_MERCHANT_TOKENS = (
    "s.c.", "s.r.l.", "srl",
    "kaufland", "lidl", "profi", "carrefour", "mega", "penny", "dm",
    "hornbach", "dedeman", "starbucks", "5 to go", "tazz", "glovo", "cora",
)

TOTAL_LABELS = ("TOTAL", "SUMA")

TOTAL_RE = re.compile(
    r"(?:%s)\s*(%s)" % ("|".join(TOTAL_LABELS), AMOUNT_PATTERN), re.IGNORECASE
)
SUMMARY_LABEL_RE = re.compile(r"\b(?:SUB\s*)?TOTAL\b|\bSUMA\b", re.IGNORECASE)
DATETIME_RE = re.compile(
    r"(?<!\d)(\d{4})[-./](\d{2})[-./](\d{2})(?:\s*(\d{2}):(\d{2}))?"
)

# "ESPRESSO 2 x 7,50 15,00"
MULTIPLIED_ITEM_RE = re.compile(
    r"^(.+?)\s+(\d+(?:[.,]\d+)?)\s*[xX×]\s*(%s)\s+(%s)$" % (AMOUNT_PATTERN, AMOUNT_PATTERN)
)
# "CROISSANT 6,50"
PRICED_ITEM_RE = re.compile(r"^(.+?)\s+(%s)$" % AMOUNT_PATTERN)


class ItemCandidate(NamedTuple):
    """A product line before validation."""
    name: str
    qty: float
    unit_price: float
    total_price: float


def first_match(rules: Iterable[Rule], value: V) -> Optional[T]:
    """Evaluate rules in order and return the first non-None result."""
    for rule in rules:
        result = rule(value)
        if result is not None:
            return result
    return None


def split_lines(text: str) -> List[str]:
    """Split receipt text into trimmed, non-empty lines."""
    return [ln.strip() for ln in (text or "").splitlines() if ln.strip()]


def parse_store_name(lines: Sequence[str],
                     merchant_tokens: Optional[Sequence[str]] = None) -> Optional[str]:
    """Return the first line mentioning a known merchant, cut to 60 chars."""
    tokens = [t.lower() for t in (merchant_tokens or DEFAULT_MERCHANT_TOKENS) if t]
    for ln in lines:
        lowered = ln.lower()
        if any(tok in lowered for tok in tokens):
            return ln[:STORE_NAME_MAX_LEN]
    return None


def _labelled_total(text: str) -> Optional[float]:
    m = TOTAL_RE.search(text)
    return normalize_amount(m.group(1)) if m else None


TOTAL_RULES: Sequence[Rule] = (_labelled_total,)


def parse_total(text: str) -> Optional[float]:
    """
    Extract the total amount.

    Only the first labelled amount in document order is used, so a SUBTOTAL
    printed above the grand total wins.
    """
    return first_match(TOTAL_RULES, text or "")


def _iso_datetime(text: str) -> Optional[dt.datetime]:
    for m in DATETIME_RE.finditer(text):
        y, mo, d, hh, mm = m.groups()
        try:
            date = dt.datetime(int(y), int(mo), int(d))
        except ValueError:
            # Not a calendar date (e.g. 2024-13-45); try the next match
            continue
        if hh is None:
            return date
        try:
            return date.replace(hour=int(hh), minute=int(mm))
        except ValueError:
            # Garbled time (e.g. 25:00); the date alone still holds
            return date
    return None


DATETIME_RULES: Sequence[Rule] = (_iso_datetime,)


def parse_purchase_datetime(text: str) -> Optional[dt.datetime]:
    """Extract the first YYYY-MM-DD[ HH:MM] timestamp (separators - . /)."""
    return first_match(DATETIME_RULES, text or "")


def _multiplied_item(line: str) -> Optional[ItemCandidate]:
    m = MULTIPLIED_ITEM_RE.match(line)
    if not m:
        return None
    return ItemCandidate(
        name=m.group(1).strip(),
        qty=normalize_amount(m.group(2)),
        unit_price=normalize_amount(m.group(3)),
        total_price=normalize_amount(m.group(4)),
    )


def _priced_item(line: str) -> Optional[ItemCandidate]:
    m = PRICED_ITEM_RE.match(line)
    if not m:
        return None
    total = normalize_amount(m.group(2))
    return ItemCandidate(name=m.group(1).strip(), qty=1.0, unit_price=total, total_price=total)


ITEM_RULES: Sequence[Rule] = (_multiplied_item, _priced_item)


def is_acceptable_item(candidate: ItemCandidate) -> bool:
    """An item needs a name, a positive quantity and a positive total."""
    if not candidate.name:
        return False
    if candidate.total_price is None or candidate.total_price <= 0:
        return False
    if candidate.qty is None or candidate.qty <= 0:
        return False
    # Footer lines ("TOTAL 15,00", "SUBTOTAL 12,00") look like priced items
    return not SUMMARY_LABEL_RE.search(candidate.name)


def parse_items(lines: Sequence[str], category_rules: Optional[ItemRules] = None) -> List[LineItem]:
    """
    Extract line items.

    Each line yields at most one item. Line numbers count accepted items
    only, so they stay 1..N however many lines were skipped.
    """
    items: List[LineItem] = []
    for ln in lines:
        candidate = first_match(ITEM_RULES, ln)
        if candidate is None:
            continue
        if not is_acceptable_item(candidate):
            logger.debug("Dropped item candidate: %r", ln)
            continue
        items.append(LineItem(
            line_no=len(items) + 1,
            product_name=candidate.name,
            qty=candidate.qty,
            unit_price=candidate.unit_price,
            total_price=candidate.total_price,
            category=categorize_item(candidate.name, category_rules),
        ))
    return items


def parse_receipt(text: str,
                  merchant_tokens: Optional[Sequence[str]] = None,
                  category_rules: Optional[ItemRules] = None) -> ParsedReceipt:
    """
    Parse raw receipt text into store, total, purchase time and items.

    Never raises; a field that cannot be found is left as None and does not
    affect the others.
    """
    lines = split_lines(text)
    return ParsedReceipt(
        store_name=parse_store_name(lines, merchant_tokens),
        total_amount=parse_total(text),
        purchase_datetime=parse_purchase_datetime(text),
        items=parse_items(lines, category_rules),
    )
