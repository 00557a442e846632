"""Payment records, gateway names and processor endpoint settings."""

from __future__ import annotations

import enum
import json
import os
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import cache
from typing import Any

_DEFAULT_URL_FALLBACK = "http://localhost:8001"
_FALLBACK_URL_FALLBACK = "http://localhost:8002"

_FRACTION = re.compile(r"\.(\d+)")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(text: str) -> datetime:
    """Parse an RFC 3339 timestamp into an aware UTC datetime."""
    if not isinstance(text, str):
        raise ValueError(f"timestamp must be a string, got {type(text).__name__}")
    normalized = text.strip()
    if normalized.endswith(("Z", "z")):
        normalized = normalized[:-1] + "+00:00"
    # Older interpreters only accept 3 or 6 fractional digits.
    normalized = _FRACTION.sub(
        lambda m: "." + m.group(1)[:6].ljust(6, "0"), normalized, count=1
    )
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError as exc:
        raise ValueError(f"invalid timestamp: {text!r}") from exc
    if parsed.tzinfo is None:
        raise ValueError(f"timestamp has no UTC offset: {text!r}")
    return parsed.astimezone(timezone.utc)


def _format_timestamp(moment: datetime) -> str:
    """Format a datetime as RFC 3339 in UTC with a trailing ``Z``."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    text = moment.strftime("%Y-%m-%dT%H:%M:%S")
    micros = moment.microsecond
    if micros:
        if micros % 1000 == 0:
            text += f".{micros // 1000:03d}"
        else:
            text += f".{micros:06d}"
    return text + "Z"


class Gateway(str, enum.Enum):
    """The payment processor a payment was settled with."""

    DEFAULT = "default"
    FALLBACK = "fallback"

    def __str__(self) -> str:
        return self.value


@dataclass
class Payment:
    """A payment request as received from clients and sent to processors."""

    amount: float
    correlation_id: str
    requested_at: datetime = field(default_factory=_utc_now)

    @classmethod
    def from_json(cls, data: bytes | str | Mapping[str, Any]) -> Payment:
        """Build a payment from a JSON document or an already decoded mapping."""
        if isinstance(data, (bytes, bytearray, memoryview)):
            data = bytes(data).decode("utf-8")
        if isinstance(data, str):
            data = json.loads(data)
        if not isinstance(data, Mapping):
            raise ValueError("payment must be a JSON object")

        try:
            amount = data["amount"]
            correlation_id = data["correlationId"]
        except KeyError as exc:
            raise ValueError(f"missing field {exc.args[0]!r}") from None

        if isinstance(amount, bool) or not isinstance(amount, (int, float)):
            raise ValueError("amount must be a number")
        if not isinstance(correlation_id, str):
            raise ValueError("correlationId must be a string")

        raw_requested = data.get("requestedAt")
        requested_at = _utc_now() if raw_requested is None else _parse_timestamp(raw_requested)
        return cls(amount=float(amount), correlation_id=correlation_id, requested_at=requested_at)

    def to_json(self) -> dict[str, Any]:
        """Return the wire representation as a JSON-ready dictionary."""
        return {
            "amount": self.amount,
            "correlationId": self.correlation_id,
            "requestedAt": _format_timestamp(self.requested_at),
        }


@dataclass(frozen=True)
class PaymentSummaryFilters:
    """Optional time window for a payment summary."""

    from_: datetime | None = None
    to: datetime | None = None


@cache
def get_default_payment_url() -> str:
    """Base URL of the default payment processor, read once from the environment."""
    return os.environ.get("DEFAULT_PAYMENT_URL", _DEFAULT_URL_FALLBACK)


@cache
def get_fallback_payment_url() -> str:
    """Base URL of the fallback payment processor, read once from the environment."""
    return os.environ.get("FALLBACK_PAYMENT_URL", _FALLBACK_URL_FALLBACK)