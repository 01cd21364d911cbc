# tests/unit/test_settings_cache.py
from datetime import timedelta
from decimal import Decimal

from pharmorder.data.database import SessionLocal
from pharmorder.data.models import SystemSettingModel
from pharmorder.utils.settings_cache import SettingsCache
from tests.helpers import FIXED_NOW


class FakeClock:
    def __init__(self):
        self.now = FIXED_NOW

    def __call__(self):
        return self.now


def _set(db, key, value):
    row = db.get(SystemSettingModel, key)
    if row is None:
        db.add(SystemSettingModel(key=key, value=value))
    else:
        row.value = value
    db.commit()


def test_values_are_cached_until_ttl(db):
    clock = FakeClock()
    cache = SettingsCache(SessionLocal, ttl_seconds=300, clock=clock)
    _set(db, "default_shipping_charge", "350")

    assert cache.get("default_shipping_charge") == "350"

    _set(db, "default_shipping_charge", "500")
    clock.now += timedelta(seconds=299)
    assert cache.get("default_shipping_charge") == "350"

    clock.now += timedelta(seconds=1)
    assert cache.get("default_shipping_charge") == "500"


def test_invalidate_forces_reload(db):
    cache = SettingsCache(SessionLocal, ttl_seconds=300, clock=FakeClock())
    _set(db, "credit_payment_terms_days", "30")
    assert cache.get_int("credit_payment_terms_days", 14) == 30

    _set(db, "credit_payment_terms_days", "45")
    cache.invalidate("credit_payment_terms_days")

    assert cache.get_int("credit_payment_terms_days", 14) == 45


def test_defaults_for_missing_and_malformed_values(db):
    cache = SettingsCache(SessionLocal, ttl_seconds=300, clock=FakeClock())
    _set(db, "free_shipping_threshold", "")
    _set(db, "credit_payment_terms_days", "thirty")
    _set(db, "default_shipping_charge", "abc")

    assert cache.get("free_shipping_threshold") is None
    assert cache.get("missing", "fallback") == "fallback"
    assert cache.get_int("credit_payment_terms_days", 30) == 30
    assert cache.get_decimal("default_shipping_charge", "0") == Decimal("0.00")
