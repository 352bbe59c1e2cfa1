"""
Text processing utilities for rankscout.

Small parsers for the numbers and query strings that show up inside
listing markup.
"""

import re
from typing import Optional

NUMBER_PATTERN = re.compile(r"(\d+\.?\d*)")


def clean_text(text: Optional[str]) -> str:
    """Collapse runs of whitespace and strip."""
    if not text:
        return ""
    return " ".join(text.split())


def parse_price(text: Optional[str]) -> Optional[float]:
    """
    Parse a displayed price such as ``$1,299.99`` into a float.

    Everything except digits and dots is dropped, so thousands separators and
    currency symbols disappear.

    Returns:
        The price, or None when nothing numeric is left
    """
    if not text:
        return None
    cleaned = re.sub(r"[^\d.]", "", text)
    if not cleaned:
        return None
    try:
        return float(cleaned)
    except ValueError:
        # e.g. "1.2.3" from odd locale formatting
        match = NUMBER_PATTERN.search(cleaned)
        return float(match.group(1)) if match else None


def parse_rating(text: Optional[str]) -> Optional[float]:
    """``4.5 out of 5 stars`` -> 4.5. Only text mentioning stars or 'out of' counts."""
    if not text or not ("out of" in text or "stars" in text):
        return None
    match = NUMBER_PATTERN.search(text)
    return float(match.group(1)) if match else None


def parse_count(text: Optional[str]) -> Optional[int]:
    """``(1,478)`` -> 1478. Returns None when the text holds no digits."""
    if not text:
        return None
    match = re.search(r"\d+", text.replace(",", ""))
    return int(match.group(0)) if match else None


def query_param(url: str, name: str) -> str:
    """
    Raw value of ``name`` in a query-shaped string, or "" when absent.

    The value is returned undecoded so identifiers keep the exact form
    the page carried.
    """
    if not url:
        return ""
    match = re.search(rf"(?:^|[?&;]){re.escape(name)}=([^&]+)", url)
    return match.group(1) if match else ""
