"""
Categorization of receipt line items based on keyword rules.
"""

import json
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

FALLBACK_CATEGORY = "other"

# Ordered (category, keywords) table; the first rule with a keyword hit wins.
# Names can hit several rules, so the position in this table is the tie-break.
DEFAULT_ITEM_RULES: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("coffee", ("espresso", "cafea", "latte", "capp", "americano")),
    ("water", ("apa", "water", "plata", "carbog")),
    ("beverages", ("suc", "cola", "fanta", "juice")),
    ("snack", ("sandwich", "croissant", "patis", "snack")),
)

ItemRules = Sequence[Tuple[str, Sequence[str]]]


class InvalidRulesError(ValueError):
    """Raised when rules.json cannot be used."""


def load_rules(path: Optional[Path]) -> Dict:
    """
    Load categorization rules from JSON file.

    Expected format:
        {
          "item_categories": [
            {"category": "coffee", "keywords": ["espresso", "latte"]},
            {"category": "water", "keywords": ["apa", "water"]}
          ],
          "merchant_tokens": ["kaufland", "lidl"]
        }
    Missing files map to an empty dict so built-in defaults apply.

    Raises:
        InvalidRulesError: the file is not valid JSON or has the wrong shape
    """
    if path is None or not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        try:
            rules = json.load(f)
        except json.JSONDecodeError as e:
            raise InvalidRulesError(f"{path}: invalid JSON ({e})") from e
    if not isinstance(rules, dict):
        raise InvalidRulesError(f"{path}: expected a JSON object at the top level")
    tokens = rules.get("merchant_tokens")
    if tokens is not None and not isinstance(tokens, list):
        raise InvalidRulesError(f"{path}: merchant_tokens must be a list")
    try:
        item_rules_from_config(rules)
    except InvalidRulesError as e:
        raise InvalidRulesError(f"{path}: {e}") from e
    return rules


def item_rules_from_config(rules: Optional[Dict]) -> ItemRules:
    """Build the ordered item rule table from a loaded rules dict."""
    entries = (rules or {}).get("item_categories")
    if not entries:
        return DEFAULT_ITEM_RULES
    if not isinstance(entries, list):
        raise InvalidRulesError("item_categories must be a list")

    table: List[Tuple[str, Tuple[str, ...]]] = []
    for i, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise InvalidRulesError(f"item_categories[{i}] must be an object, got {entry!r}")
        category = str(entry.get("category") or "").strip()
        raw = entry.get("keywords", [])
        if isinstance(raw, str):
            raw = [raw]
        elif not isinstance(raw, list):
            raise InvalidRulesError(f"item_categories[{i}].keywords must be a list")
        keywords = tuple(str(k).strip().lower() for k in raw if str(k).strip())
        if category and keywords:
            table.append((category, keywords))
    return tuple(table) or DEFAULT_ITEM_RULES


def categorize_item(product_name: str, rules: Optional[ItemRules] = None) -> str:
    """
    Return the category of a product name.

    Args:
        product_name: Item name as printed on the receipt (e.g. "ESPRESSO DOPPIO")
        rules: Ordered (category, keywords) table; built-in table when omitted

    Returns:
        Category of the first matching rule, or "other"
    """
    name = (product_name or "").lower()
    for category, keywords in rules or DEFAULT_ITEM_RULES:
        if any(kw in name for kw in keywords):
            return category
    return FALLBACK_CATEGORY
