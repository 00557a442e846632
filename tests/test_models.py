import json
from datetime import datetime, timedelta, timezone

import pytest

from paygate.models import (
    Gateway,
    Payment,
    PaymentSummaryFilters,
    get_default_payment_url,
    get_fallback_payment_url,
)


@pytest.fixture(autouse=True)
def _clear_url_caches():
    get_default_payment_url.cache_clear()
    get_fallback_payment_url.cache_clear()
    yield
    get_default_payment_url.cache_clear()
    get_fallback_payment_url.cache_clear()


def test_to_json_pins_wire_format():
    payment = Payment(
        amount=19.9,
        correlation_id="abc",
        requested_at=datetime(2025, 7, 1, 12, 0, 0, tzinfo=timezone.utc),
    )
    assert payment.to_json() == {
        "amount": 19.9,
        "correlationId": "abc",
        "requestedAt": "2025-07-01T12:00:00Z",
    }


def test_round_trip_through_bytes():
    original = Payment(
        amount=42.5,
        correlation_id="4a7901b8-7d26-4d9d-aa19-4dc1c7cf60b3",
        requested_at=datetime(2025, 1, 2, 3, 4, 5, 123456, tzinfo=timezone.utc),
    )
    encoded = json.dumps(original.to_json()).encode()
    assert Payment.from_json(encoded) == original


def test_round_trip_with_millisecond_precision():
    original = Payment(
        amount=1.0,
        correlation_id="x",
        requested_at=datetime(2025, 1, 2, 3, 4, 5, 250000, tzinfo=timezone.utc),
    )
    assert Payment.from_json(original.to_json()) == original


def test_from_json_accepts_str_and_offsets():
    payment = Payment.from_json(
        '{"amount": 10, "correlationId": "c1", "requestedAt": "2025-07-01T14:00:00+02:00"}'
    )
    assert payment.amount == 10.0
    assert isinstance(payment.amount, float)
    assert payment.correlation_id == "c1"
    assert payment.requested_at == datetime(2025, 7, 1, 12, 0, tzinfo=timezone.utc)
    assert payment.requested_at.utcoffset() == timedelta(0)


def test_from_json_defaults_requested_at_to_now():
    before = datetime.now(timezone.utc)
    payment = Payment.from_json({"amount": 3.5, "correlationId": "c2"})
    after = datetime.now(timezone.utc)
    assert before <= payment.requested_at <= after


@pytest.mark.parametrize(
    "document",
    [
        {"correlationId": "c"},
        {"amount": 1.0},
        {"amount": "1.0", "correlationId": "c"},
        {"amount": True, "correlationId": "c"},
        {"amount": 1.0, "correlationId": 7},
        {"amount": 1.0, "correlationId": "c", "requestedAt": "not a date"},
        {"amount": 1.0, "correlationId": "c", "requestedAt": "2025-07-01T12:00:00"},
        [1, 2, 3],
    ],
)
def test_from_json_rejects_invalid_documents(document):
    with pytest.raises(ValueError):
        Payment.from_json(document)


def test_from_json_rejects_malformed_json():
    with pytest.raises(ValueError):
        Payment.from_json(b"{not json")


def test_gateway_names():
    assert Gateway.DEFAULT.value == "default"
    assert Gateway.FALLBACK.value == "fallback"
    assert str(Gateway.FALLBACK) == "fallback"
    assert Gateway("default") is Gateway.DEFAULT


def test_summary_filters_default_to_open_window():
    filters = PaymentSummaryFilters()
    assert filters.from_ is None
    assert filters.to is None


def test_default_urls_without_environment(monkeypatch):
    monkeypatch.delenv("DEFAULT_PAYMENT_URL", raising=False)
    monkeypatch.delenv("FALLBACK_PAYMENT_URL", raising=False)
    assert get_default_payment_url() == "http://localhost:8001"
    assert get_fallback_payment_url() == "http://localhost:8002"


def test_urls_read_from_environment_once(monkeypatch):
    monkeypatch.setenv("DEFAULT_PAYMENT_URL", "http://processor-a.example.com")
    monkeypatch.setenv("FALLBACK_PAYMENT_URL", "http://processor-b.example.com")
    assert get_default_payment_url() == "http://processor-a.example.com"
    assert get_fallback_payment_url() == "http://processor-b.example.com"

    monkeypatch.setenv("DEFAULT_PAYMENT_URL", "http://changed.example.com")
    assert get_default_payment_url() == "http://processor-a.example.com"