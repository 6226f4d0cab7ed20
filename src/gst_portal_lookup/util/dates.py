from __future__ import annotations

from datetime import date
from typing import Optional

from dateutil import parser as date_parser


def parse_portal_date(value: Optional[str]) -> Optional[date]:
    """
    Parse portal dates like:
    - "01/07/2017" (day first)
    - "15-03-2021"
    - "01 Jul 2017"

    Returns None instead of raising; a missing or odd date is not an extraction failure.
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None
    try:
        return date_parser.parse(s, dayfirst=True, yearfirst=False).date()
    except (ValueError, OverflowError):
        return None
