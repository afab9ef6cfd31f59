"""Timestamp helpers for filenames and --since-time filters."""

import re
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from cherrypicker.errors import ValidationError


_RELATIVE_PATTERN = re.compile(r'^(\d+)([hdwMy])$')

_RELATIVE_UNITS = {
    'h': timedelta(hours=1),
    'd': timedelta(days=1),
    'w': timedelta(weeks=1),
    'M': timedelta(days=30),
    'y': timedelta(days=365),
}


def formatted_timestamp(moment: datetime) -> Dict[str, str]:
    """
    Render the date/time pieces used by filename templates.

    Returns:
        Dict with 'date' (DD-MM-YYYY), 'time' (HH-MM) and
        'datetime' (YYYY-MM-DD_HH-MM-SS)
    """
    return {
        'date': moment.strftime('%d-%m-%Y'),
        'time': moment.strftime('%H-%M'),
        'datetime': moment.strftime('%Y-%m-%d_%H-%M-%S'),
    }


def object_id_from_timestamp(moment: datetime) -> str:
    """
    Smallest ObjectId hex string generated at or after ``moment``.

    The first four bytes of an ObjectId are the big-endian creation time in
    seconds; the remaining eight are zeroed.
    """
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    seconds = int(moment.timestamp())
    if seconds < 0 or seconds > 0xFFFFFFFF:
        raise ValidationError(f"Timestamp out of ObjectId range: {moment.isoformat()}")
    return f"{seconds:08x}" + '0' * 16


def parse_since_time(value: str, now: Optional[datetime] = None) -> datetime:
    """
    Parse a --since-time argument.

    Accepts ISO-8601 ("2024-01-15T10:00:00") or a relative duration such as
    "3h", "1d", "2w", "1M" or "1y". Months and years are 30 and 365 days.

    Raises:
        ValidationError: If the value matches neither form
    """
    match = _RELATIVE_PATTERN.match(value.strip())
    if match:
        amount, unit = int(match.group(1)), match.group(2)
        now = now or datetime.now(timezone.utc)
        return now - amount * _RELATIVE_UNITS[unit]

    try:
        parsed = datetime.fromisoformat(value.strip())
    except ValueError:
        raise ValidationError(
            f"Invalid --since-time value: \"{value}\". "
            "Use ISO 8601 or a relative duration (e.g. 1d, 3h, 2w, 1M)."
        )

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
