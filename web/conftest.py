from datetime import datetime, timedelta, timezone as dt_timezone
from decimal import Decimal

import pytest
from django.core.cache import cache

from apps.orders import http_adapters, providers
from apps.orders.adapters import InMemorySessionStore
from apps.orders.domain import ContactInfo
from apps.orders.models import MerchantModel, ProductModel


class Clock:
    """Controllable clock for services that take a ``clock`` callable."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class RecordingSink:
    def __init__(self, fail: bool = False):
        self.events = []
        self.fail = fail

    def notify(self, event, payload):
        if self.fail:
            raise RuntimeError("notification service down")
        self.events.append((event, payload))

    def names(self):
        return [e for e, _ in self.events]


@pytest.fixture(autouse=True)
def use_stubs_for_tests(settings):
    settings.USE_HTTP_ADAPTERS = False
    # retries run back to back
    settings.HTTP_RETRY_BACKOFF_BASE = 0.0
    settings.HTTP_RETRY_MAX_SLEEP = 0.0


@pytest.fixture(autouse=True)
def fresh_process_state(monkeypatch):
    # throttle counters live in the cache; the memory store and breaker are module singletons
    cache.clear()
    monkeypatch.setattr(providers, "_memory_store", InMemorySessionStore())
    http_adapters._notifications_cb.reset()
    yield
    http_adapters._notifications_cb.reset()


@pytest.fixture
def clock():
    return Clock(datetime(2025, 3, 1, 12, 0, tzinfo=dt_timezone.utc))


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def failing_sink():
    return RecordingSink(fail=True)


@pytest.fixture
def contact():
    return ContactInfo(name="Tan Wei Ling", email="weiling@example.com", phone="91234567")


@pytest.fixture
def make_merchant(db):
    def _make(**overrides):
        fields = {
            "owner_id": "owner-1",
            "business_name": "Kopi Corner",
            "delivery_enabled": True,
            "pickup_enabled": True,
            "delivery_fee": Decimal("5.00"),
            "minimum_order": Decimal("0"),
            "postal_code": "520123",
            "preparation_time": 20,
            "paynow_number": "91112222",
        }
        fields.update(overrides)
        return MerchantModel.objects.create(**fields)

    return _make


@pytest.fixture
def make_product(db):
    def _make(merchant, **overrides):
        fields = {
            "merchant": merchant,
            "name": "Kaya Toast",
            "price": Decimal("5.00"),
            "inventory": 10,
            "track_inventory": True,
        }
        fields.update(overrides)
        return ProductModel.objects.create(**fields)

    return _make


@pytest.fixture
def merchant(make_merchant):
    return make_merchant()


@pytest.fixture
def product(make_product, merchant):
    return make_product(merchant)


@pytest.fixture
def merchant_headers(merchant):
    return {"HTTP_X_USER_ID": "staff-1", "HTTP_X_MERCHANT_ID": str(merchant.id)}
