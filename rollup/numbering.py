"""
Document Numbering

Change orders and invoices are numbered per company as <PREFIX>-<year>-<seq>,
e.g. CO-2026-007. The sequence restarts at 001 each year.
"""

import re

CHANGE_ORDER_PREFIX = "CO"
INVOICE_PREFIX = "INV"


def parse_document_number(prefix: str, number: str | None) -> tuple[int, int] | None:
    """Return (year, seq) for a well-formed number, else None."""
    match = re.fullmatch(rf"{re.escape(prefix)}-(\d{{4}})-(\d+)", number or "")
    if not match:
        return None
    return int(match.group(1)), int(match.group(2))


def latest_document_number(prefix: str, current: str | None, candidate: str | None) -> str | None:
    """Keep whichever of two numbers comes later in the (year, seq) order."""
    candidate_key = parse_document_number(prefix, candidate)
    if candidate_key is None:
        return current
    current_key = parse_document_number(prefix, current)
    if current_key is None or candidate_key > current_key:
        return candidate
    return current


def next_document_number(prefix: str, last_number: str | None, year: int) -> str:
    """
    Return the number following last_number for the given year.

    A missing or unparseable last number, or one from an earlier year,
    starts the sequence over.
    """
    parsed = parse_document_number(prefix, last_number)
    if parsed is None or parsed[0] < year:
        return f"{prefix}-{year}-001"
    return f"{prefix}-{year}-{parsed[1] + 1:03d}"
