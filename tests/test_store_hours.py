from datetime import datetime

import pytest

from stockfront.checkout import store_hours
from stockfront.model import config as cfg

# 2030-01-07 is a Monday
MONDAY_NOON = datetime(2030, 1, 7, 12, 0)
MONDAY_LATE = datetime(2030, 1, 7, 23, 30)
SUNDAY_NOON = datetime(2030, 1, 6, 12, 0)


def _settings(**overrides):
    s = dict(cfg.DEFAULTS)
    s.update(overrides)
    return s


def test_open_by_default():
    st = store_hours.evaluate(_settings(), MONDAY_LATE)
    assert st.open and st.mode == "open"


@pytest.mark.parametrize("mode", ["closed", "maintenance", "restocking"])
def test_non_open_modes_close_the_store(mode):
    st = store_hours.evaluate(_settings(store_mode=mode), MONDAY_NOON)
    assert not st.open
    assert mode in st.reason


def test_operating_hours():
    s = _settings(store_hours_enabled="true", store_days="1,2,3,4,5")
    assert store_hours.evaluate(s, MONDAY_NOON).open
    assert not store_hours.evaluate(s, MONDAY_LATE).open
    assert not store_hours.evaluate(s, SUNDAY_NOON).open


def test_overnight_window():
    s = _settings(store_hours_enabled="true",
                  store_open_time="22:00", store_close_time="2:00")
    assert store_hours.evaluate(s, MONDAY_LATE).open
    assert not store_hours.evaluate(s, MONDAY_NOON).open


def test_unknown_mode_falls_back_to_open():
    assert store_hours.evaluate(_settings(store_mode="party"), MONDAY_NOON).open


@pytest.mark.parametrize("bad", ["garbage", "25:00", "9"])
def test_malformed_stored_time_uses_defaults(bad):
    s = _settings(store_hours_enabled="true", store_open_time=bad,
                  store_close_time=bad)
    assert store_hours.evaluate(s, MONDAY_NOON).open
    assert not store_hours.evaluate(s, MONDAY_LATE).open
