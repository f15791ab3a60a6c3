"""Shared date normalization helpers."""
from __future__ import annotations

import re
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any

_DATE_ONLY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_ISO_DATE_SEARCH_RE = re.compile(r"(\d{4}-\d{2}-\d{2})")


def _format_datetime_utc(value: datetime) -> str:
    dt = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt.isoformat().replace("+00:00", "Z")


def utc_now_iso() -> str:
    return _format_datetime_utc(datetime.now(timezone.utc))


def is_date_key(value: str) -> bool:
    """Return True for a valid ``YYYY-MM-DD`` calendar date."""
    token = (value or "").strip()
    if not _DATE_ONLY_RE.match(token):
        return False
    try:
        date.fromisoformat(token)
    except ValueError:
        return False
    return True


def find_date_key(value: Any) -> str:
    """Return the first ``YYYY-MM-DD`` token inside ``value``, or ``""``."""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if not isinstance(value, str):
        return ""
    match = _ISO_DATE_SEARCH_RE.search(value)
    if not match or not is_date_key(match.group(1)):
        return ""
    return match.group(1)


def midnight_timestamp(date_key: str) -> str:
    return f"{date_key}T00:00:00Z"


def _file_created_datetime(stats: Any) -> datetime | None:
    for attr in ("st_birthtime",):
        value = getattr(stats, attr, None)
        if isinstance(value, (int, float)) and value > 0:
            return datetime.fromtimestamp(float(value), timezone.utc)
    ctime = getattr(stats, "st_ctime", None)
    if isinstance(ctime, (int, float)) and ctime > 0:
        return datetime.fromtimestamp(float(ctime), timezone.utc)
    return None


def file_created_date(path: Path) -> str:
    """Return the file's creation date (UTC) as ``YYYY-MM-DD``.

    Falls back to the modification time where the platform reports no
    creation time, and to ``""`` when the file cannot be stat'ed.
    """
    try:
        stats = path.stat()
    except OSError:
        return ""
    created = _file_created_datetime(stats)
    if created is None:
        created = datetime.fromtimestamp(float(stats.st_mtime), timezone.utc)
    return created.date().isoformat()
