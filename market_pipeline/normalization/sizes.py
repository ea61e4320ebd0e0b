"""
Size Normalization

Reduces provider size labels to a comparable number and filters sizes that
fall outside the valid range for a product's category and gender. The numeric
form drops the size system ("UK 9" and "US 9" both become 9.0); callers keep
size_system alongside it.
"""

import re
from typing import Dict, Optional, Tuple, Union

_NON_NUMERIC = re.compile(r"[^0-9.]")
_LEADING_NUMBER = re.compile(r"^(\d+(?:\.\d+)?|\.\d+)")

SizeRange = Tuple[float, float]

# Inclusive ranges keyed by category, then gender. "unisex" is the fallback
# for a known category whose gender is missing or unrecognised.
VALID_SIZE_RANGES: Dict[str, Dict[str, SizeRange]] = {
    "sneakers": {
        "men": (3.5, 16.0),
        "women": (5.0, 13.0),
        "unisex": (3.5, 16.0),
        "youth": (3.5, 7.0),
        "gs": (3.5, 7.0),
        "preschool": (1.0, 13.0),
        "toddler": (1.0, 10.0),
    },
}

_GENDER_ALIASES = {
    "m": "men",
    "mens": "men",
    "male": "men",
    "w": "women",
    "womens": "women",
    "female": "women",
    "grade_school": "gs",
    "grade school": "gs",
    "kids": "youth",
    "child": "youth",
    "ps": "preschool",
    "td": "toddler",
    "infant": "toddler",
}

_CATEGORY_ALIASES = {
    "sneaker": "sneakers",
    "shoes": "sneakers",
    "footwear": "sneakers",
}


def parse_size_numeric(size_key: Union[str, int, float, None]) -> Optional[float]:
    """
    Extract a numeric size from a size label.

    Examples:
        parse_size_numeric("10.5") -> 10.5
        parse_size_numeric("UK 9") -> 9.0
        parse_size_numeric("M") -> None
    """
    if size_key is None or isinstance(size_key, bool):
        return None
    if isinstance(size_key, (int, float)):
        return float(size_key)

    cleaned = _NON_NUMERIC.sub("", str(size_key))
    if not cleaned:
        return None

    match = _LEADING_NUMBER.match(cleaned)
    if not match:
        return None
    return float(match.group(1))


def format_size_key(size: Union[str, int, float]) -> str:
    """Render a size the way providers print it: 10.0 -> "10", 10.5 -> "10.5" """
    if isinstance(size, str):
        return size.strip()
    if isinstance(size, float) and size.is_integer():
        return str(int(size))
    return str(size)


def normalize_size_system(size_unit: Optional[str], default: str = "US") -> str:
    """Turn provider unit labels such as "SIZE_UNIT_UK" into "UK" """
    if not size_unit:
        return default
    unit = str(size_unit).strip().upper()
    if unit.startswith("SIZE_UNIT_"):
        unit = unit[len("SIZE_UNIT_"):]
    return unit or default


def _normalize_key(value: Optional[str], aliases: Dict[str, str]) -> Optional[str]:
    if not value:
        return None
    key = str(value).strip().lower().replace("'", "")
    return aliases.get(key, key)


def valid_size_range(category: Optional[str], gender: Optional[str] = None) -> Optional[SizeRange]:
    """Return the valid range for a category/gender, or None when unconstrained"""
    category_key = _normalize_key(category, _CATEGORY_ALIASES)
    if category_key is None:
        return None

    ranges = VALID_SIZE_RANGES.get(category_key)
    if not ranges:
        return None

    gender_key = _normalize_key(gender, _GENDER_ALIASES)
    if gender_key in ranges:
        return ranges[gender_key]
    return ranges.get("unisex")


def is_valid_size(
    size_numeric: Optional[float],
    category: Optional[str],
    gender: Optional[str] = None,
) -> bool:
    """
    Check a numeric size against the valid range for its category and gender.

    Fails open: an unknown category, a category without ranges, or a size
    that is not numeric all pass.
    """
    if size_numeric is None:
        return True

    size_range = valid_size_range(category, gender)
    if size_range is None:
        return True

    low, high = size_range
    return low <= size_numeric <= high
