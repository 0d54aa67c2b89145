"""Metadata field parsing utilities."""

import re
from datetime import datetime
from typing import Any

_TZ_SUFFIX = re.compile(r"([+-]\d{2}:\d{2}|Z)$")

DATE_FORMATS = [
    "%Y:%m:%d %H:%M:%S",
    "%Y:%m:%d %H:%M:%S.%f",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%dT%H:%M:%S",
]


def parse_exif_date(date_str: Any) -> datetime | None:
    """Parse an EXIF date string as naive local time. Timezone suffixes are dropped."""
    if not date_str or not isinstance(date_str, str):
        return None

    date_str = date_str.strip()
    if not date_str or date_str.startswith("0000:00:00"):
        return None

    date_str_clean = _TZ_SUFFIX.sub("", date_str)

    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(date_str_clean, fmt)
        except ValueError:
            continue

    return None


def get_first_value(metadata: dict, *keys: str) -> Any:
    """Get first non-None value from metadata by keys."""
    for key in keys:
        if key in metadata and metadata[key] is not None:
            return metadata[key]
    return None


def to_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def to_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def clean_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None
