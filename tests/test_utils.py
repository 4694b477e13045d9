from datetime import datetime, timedelta, timezone

import pytest

from cronq.config import DEFAULT_CONFIG, busy_timeout, load_config
from cronq.utils import (
    check_identifier, cron_values, parse_delay_to_seconds, parse_iso, tick_stamp, to_iso,
)


@pytest.mark.parametrize("text,seconds", [
    ("20s", 20),
    ("5m", 300),
    ("1h30m", 5400),
    ("2d3h", 183600),
    ("  2h  ", 7200),
])
def test_parse_delay(text, seconds):
    assert parse_delay_to_seconds(text) == seconds


@pytest.mark.parametrize("text", ["", "0s", "soon", "5x"])
def test_parse_delay_rejects_bad_input(text):
    with pytest.raises(ValueError):
        parse_delay_to_seconds(text)


def test_to_iso_is_fixed_width_utc():
    whole = datetime(2025, 11, 6, 9, 0, 0, tzinfo=timezone.utc)
    assert to_iso(whole) == "2025-11-06T09:00:00.000000Z"
    assert to_iso(whole.replace(tzinfo=None)) == "2025-11-06T09:00:00.000000Z"

    ist = timezone(timedelta(hours=5, minutes=30))
    assert to_iso(datetime(2025, 11, 6, 14, 30, tzinfo=ist)) == "2025-11-06T09:00:00.000000Z"

    later = whole + timedelta(microseconds=500000)
    assert to_iso(whole) < to_iso(later)


def test_parse_iso():
    assert parse_iso("2025-11-06T09:00:00Z") == datetime(2025, 11, 6, 9, tzinfo=timezone.utc)
    assert parse_iso("2025-11-06T09:00:00") == datetime(2025, 11, 6, 9, tzinfo=timezone.utc)
    with pytest.raises(ValueError):
        parse_iso("yesterday")


def test_parse_iso_local_keeps_wall_fields():
    local = parse_iso("2025-11-06T09:30:00", assume_local=True)
    assert local.tzinfo is not None
    assert (local.hour, local.minute) == (9, 30)
    assert parse_iso("2025-11-06T09:30:00Z", assume_local=True) == datetime(2025, 11, 6, 9, 30, tzinfo=timezone.utc)


def test_tick_stamp_is_one_key_per_instant():
    utc = datetime(2025, 11, 6, 9, 30, 15, tzinfo=timezone.utc)
    ist = utc.astimezone(timezone(timedelta(hours=5, minutes=30)))
    assert tick_stamp(utc) == tick_stamp(ist) == "2025-11-06T09:30:00.000000Z"


def test_cron_values_and_tick_stamp():
    sunday = datetime(2025, 11, 9, 23, 59, 59, 999999)
    assert cron_values(sunday) == {"minute": 59, "hour": 23, "monthday": 9, "month": 11, "weekday": 0}
    assert cron_values(datetime(2025, 11, 8))["weekday"] == 6
    assert tick_stamp(sunday) == "2025-11-09T23:59:00.000000Z"


def test_check_identifier():
    assert check_identifier("cronq_jobs") == "cronq_jobs"
    for bad in ("", "1jobs", "jobs-x", "jobs;drop", None):
        with pytest.raises(ValueError):
            check_identifier(bad)


def test_load_config_overlays_environment():
    cfg = load_config({"CRONQ_DB": "/tmp/q.db", "CRONQ_LOG_FORMAT": " json ", "CRONQ_JOBS_TABLE": "", "OTHER": "x"})
    assert cfg["db"] == "/tmp/q.db"
    assert cfg["log_format"] == "json"
    assert cfg["jobs_table"] == DEFAULT_CONFIG["jobs_table"]
    assert set(cfg) == set(DEFAULT_CONFIG)


def test_busy_timeout():
    assert busy_timeout(DEFAULT_CONFIG) == 30.0
    with pytest.raises(ValueError):
        busy_timeout({"busy_timeout": "forever"})
