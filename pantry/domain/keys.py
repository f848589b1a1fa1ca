# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Pure key-derivation helpers for clients and visits.

Month/date/week keys are the indexed fields reports group by, and the
dedupe keys must stay byte-for-byte compatible with records created by
earlier versions of the intake form.
"""

import os
import re
from datetime import date, datetime
from typing import Callable, Optional, Union
from zoneinfo import ZoneInfo

from ..models.entities import MIN_HOUSEHOLD_SIZE, MAX_HOUSEHOLD_SIZE

_NON_DIGITS = re.compile(r'\D')
_NAME_WORD = re.compile(r"[^\W\d_]+(?:'[^\W\d_]+)?")


def pantry_now() -> datetime:
    """Current time in the pantry's local timezone (``PANTRY_TIMEZONE``, default UTC)."""
    return datetime.now(ZoneInfo(os.getenv('PANTRY_TIMEZONE', 'UTC')))


def month_key(d: Union[date, datetime]) -> str:
    """'YYYY-MM'"""
    return f"{d.year:04d}-{d.month:02d}"


def date_key(d: Union[date, datetime]) -> str:
    """'YYYY-MM-DD'"""
    return f"{d.year:04d}-{d.month:02d}-{d.day:02d}"


def iso_week_key(d: Union[date, datetime]) -> str:
    """
    ISO 8601 week key, 'YYYY-Www'.

    The week belongs to the year containing its Thursday, so 2024-12-30 is
    '2025-W01' and 2021-01-03 is '2020-W53'.
    """
    iso_year, iso_week, _ = d.isocalendar()
    return f"{iso_year:04d}-W{iso_week:02d}"


def weekday_index(d: Union[date, datetime]) -> int:
    """0=Sunday .. 6=Saturday."""
    return d.isoweekday() % 7


def visit_keys(visit_at: datetime) -> dict:
    """All temporal keys stored on a visit."""
    return {
        "month_key": month_key(visit_at),
        "date_key": date_key(visit_at),
        "week_key": iso_week_key(visit_at),
        "weekday": weekday_index(visit_at),
    }


def resolve_visit_time(visit_date: Optional[Union[str, date, datetime]],
                       clock: Callable[[], datetime]) -> datetime:
    """
    Turn a caller-supplied visit date into a timestamp.

    Missing or malformed input means "now". A supplied calendar date keeps
    the current time-of-day so backdated visits still carry a plausible
    timestamp; a full datetime is used as given.
    """
    now = clock()
    if visit_date is None or visit_date == "":
        return now
    if isinstance(visit_date, datetime):
        return visit_date
    if isinstance(visit_date, date):
        day = visit_date
    else:
        try:
            day = date.fromisoformat(str(visit_date).strip()[:10])
        except ValueError:
            return now
    return now.replace(year=day.year, month=day.month, day=day.day)


def clamp_household_size(value) -> int:
    """Clamp to [1, 20]; anything non-numeric becomes 1."""
    try:
        size = int(value)
    except (TypeError, ValueError):
        return MIN_HOUSEHOLD_SIZE
    return max(MIN_HOUSEHOLD_SIZE, min(MAX_HOUSEHOLD_SIZE, size))


def phone_digits(raw: Optional[str]) -> str:
    """Digits-only phone; empty when no digits were entered."""
    return _NON_DIGITS.sub('', raw or '')


def title_case_name(raw: Optional[str]) -> str:
    """'mary-ann o'neil' -> "Mary-Ann O'neil"."""
    lowered = (raw or '').strip().lower()
    return _NAME_WORD.sub(lambda m: m.group(0)[0].upper() + m.group(0)[1:], lowered)


def full_name_lower(first_name: str, last_name: str) -> str:
    return f"{first_name} {last_name}".strip().lower()


def djb2_hash(value: str) -> str:
    """32-bit DJB2, rendered as 'h' + lowercase hex."""
    h = 5381
    for ch in value:
        h = ((h << 5) + h + ord(ch)) & 0xFFFFFFFF
    return f"h{h:x}"


def name_dob_hash(first_name: str, last_name: str, dob: Optional[str]) -> str:
    """
    Stable dedupe hash of lowercased 'first last|dob'.

    Names are title-cased first, matching how they are stored, so the hash
    does not depend on how staff typed the name.
    """
    full_name = full_name_lower(title_case_name(first_name), title_case_name(last_name))
    return djb2_hash(f"{full_name}|{(dob or '').strip()}")
