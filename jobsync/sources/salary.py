from __future__ import annotations

import re

_SALARY_PATTERNS = (
    re.compile(r"\$(\d{2,3})k?\s*(?:-|to)\s*\$(\d{2,3})k", re.IGNORECASE),
    re.compile(r"\$(\d{2,3})k?\s*(?:-|to)\s*(\d{2,3})k", re.IGNORECASE),
    re.compile(r"\$(\d{1,3}(?:,\d{3})+)\s*(?:-|to|—|–)\s*\$(\d{1,3}(?:,\d{3})+)(?:\s*USD)?", re.IGNORECASE),
    re.compile(r"USD\s*(\d{1,3}(?:,\d{3})*|\d{2,3})k?\s*(?:-|to)\s*(\d{1,3}(?:,\d{3})*|\d{2,3})k?", re.IGNORECASE),
    re.compile(r"£(\d{2,3})k\s*(?:-|to)\s*£(\d{2,3})k", re.IGNORECASE),
    re.compile(r"€(\d{2,3})k\s*(?:-|to)\s*€(\d{2,3})k", re.IGNORECASE),
    re.compile(r"\b(\d{2,3})k\s*(?:-|to)\s*(\d{2,3})k\b", re.IGNORECASE),
    re.compile(r"\$(\d{2,3})\s*(?:-|to)\s*\$(\d{2,3})\s*per\s*hour", re.IGNORECASE),
    re.compile(r"\$(\d{1,3}(?:,\d{3})+)\+", re.IGNORECASE),
)


def extract_salary(text: str | None) -> str | None:
    """Return the first salary-looking range found in free text."""
    if not text:
        return None
    for pattern in _SALARY_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(0)
    return None


def format_salary_range(
    minimum: int | float | None,
    maximum: int | float | None,
    *,
    currency: str | None = None,
) -> str | None:
    if not maximum:
        return None
    low = f"{int(minimum):,}" if minimum else "?"
    high = f"{int(maximum):,}"
    if currency and currency.upper() != "USD":
        return f"{currency.upper()} {low} - {high}"
    return f"${low} - ${high}"
