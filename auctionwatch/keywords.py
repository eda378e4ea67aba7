"""Keyword expression matching for monitor filters.

Each monitor carries a list of expression lines plus a combination mode.
A line is one of:

* ``notebook+dell`` -- every term must appear;
* ``notebook~laptop`` -- at least one term must appear;
* ``notebook`` -- the term must appear.

Lines mixing ``+`` and ``~`` are rejected by :func:`validate_keywords` and
never match. With mode ``OR`` any line may match; with ``AND`` all must.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Sequence

from .models import Listing

logger = logging.getLogger(__name__)

AND_OPERATOR = "+"
OR_OPERATOR = "~"


def build_search_text(listing: Listing) -> str:
    """Return the case-folded text that keyword lines are matched against."""
    parts = [listing.title, listing.description, listing.offer_description]
    return " ".join(part or "" for part in parts).casefold()


def _terms(line: str, operator: str) -> List[str]:
    return [term.strip().casefold() for term in line.split(operator) if term.strip()]


def is_mixed_line(line: str) -> bool:
    return AND_OPERATOR in line and OR_OPERATOR in line


def line_matches(search_text: str, line: str) -> bool:
    """Evaluate a single expression line."""
    line = line.strip()
    if not line:
        return False
    if is_mixed_line(line):
        logger.warning("Ignoring keyword line mixing '+' and '~': %r", line)
        return False
    if AND_OPERATOR in line:
        terms = _terms(line, AND_OPERATOR)
        return bool(terms) and all(term in search_text for term in terms)
    if OR_OPERATOR in line:
        return any(term in search_text for term in _terms(line, OR_OPERATOR))
    return line.casefold() in search_text


def matches(search_text: str, lines: Sequence[str], mode: str = "OR") -> bool:
    """Return True when ``search_text`` satisfies the keyword expression."""
    active_lines = [line for line in lines if line and line.strip()]
    if not active_lines:
        return True
    if mode.upper() == "AND":
        return all(line_matches(search_text, line) for line in active_lines)
    return any(line_matches(search_text, line) for line in active_lines)


def filter_listings(
    listings: Iterable[Listing],
    lines: Sequence[str],
    mode: str = "OR",
) -> List[Listing]:
    """Keep the listings whose text satisfies the expression, in order."""
    return [
        listing
        for listing in listings
        if matches(build_search_text(listing), lines, mode)
    ]


def validate_keywords(lines: Sequence[str]) -> Optional[str]:
    """Return an error message for the first invalid line, or None."""
    for index, line in enumerate(lines, start=1):
        if is_mixed_line(line):
            return f"line {index} mixes '+' and '~': {line.strip()!r}"
    return None
