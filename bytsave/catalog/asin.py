# bytsave/catalog/asin.py

"""ASIN extraction and validation."""

import re

_ASIN_RE = re.compile(r"^[A-Z0-9]{10}$", re.IGNORECASE)

# Ordered most to least specific
_URL_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"/dp/([A-Z0-9]{10})(?:[/?#]|$)", re.IGNORECASE),
    re.compile(r"/gp/product/([A-Z0-9]{10})(?:[/?#]|$)", re.IGNORECASE),
    re.compile(r"/gp/aw/d/([A-Z0-9]{10})(?:[/?#]|$)", re.IGNORECASE),
    re.compile(r"/product/([A-Z0-9]{10})(?:[/?#]|$)", re.IGNORECASE),
]


def is_valid_asin(text: str) -> bool:
    """True when *text* looks like a 10-character ASIN."""
    return bool(_ASIN_RE.match(text.strip()))


def extract_asin(url_or_asin: str) -> str | None:
    """Return the upper-cased ASIN in an Amazon URL (or a bare ASIN)."""
    candidate = url_or_asin.strip()
    if is_valid_asin(candidate):
        return candidate.upper()
    for pattern in _URL_PATTERNS:
        match = pattern.search(candidate)
        if match:
            return match.group(1).upper()
    return None
