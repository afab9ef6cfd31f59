"""
Unit tests for timestamp helpers (cherrypicker/utils/timestamps.py).
"""

from datetime import datetime, timedelta, timezone

import pytest

from cherrypicker.errors import ValidationError
from cherrypicker.utils.timestamps import formatted_timestamp, object_id_from_timestamp, parse_since_time


def test_formatted_timestamp():
    stamp = formatted_timestamp(datetime(2024, 1, 5, 9, 7, 3))

    assert stamp == {
        'date': '05-01-2024',
        'time': '09-07',
        'datetime': '2024-01-05_09-07-03'
    }


def test_object_id_from_timestamp():
    object_id = object_id_from_timestamp(datetime(2024, 1, 1, tzinfo=timezone.utc))

    assert object_id == '659200800000000000000000'
    assert len(object_id) == 24


def test_object_id_naive_datetime_is_utc():
    assert object_id_from_timestamp(datetime(1970, 1, 1)) == '0' * 24


@pytest.mark.parametrize('value,delta', [
    ('3h', timedelta(hours=3)),
    ('1d', timedelta(days=1)),
    ('2w', timedelta(weeks=2)),
    ('1M', timedelta(days=30)),
    ('1y', timedelta(days=365)),
])
def test_parse_relative_since_time(value, delta):
    now = datetime(2024, 6, 1, tzinfo=timezone.utc)

    assert parse_since_time(value, now=now) == now - delta


def test_parse_iso_since_time():
    parsed = parse_since_time('2024-01-15T10:00:00')

    assert parsed == datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)


def test_parse_invalid_since_time():
    with pytest.raises(ValidationError, match='Invalid --since-time'):
        parse_since_time('yesterday')
