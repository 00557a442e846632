"""Request handlers: enqueue payments, summarise and purge them."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timedelta, timezone
from typing import Any

from paygate.models import Gateway, PaymentSummaryFilters

log = logging.getLogger(__name__)

_SUBJECT = "payments"
_STREAM = "payments"
_DEFAULT_WINDOW = timedelta(days=30)

_SUMMARY_SQL = """
    SELECT correlation_id, amount, requested_at, gateway
    FROM payments
    WHERE payments.requested_at >= $1 AND payments.requested_at <= $2
"""
_PURGE_SQL = "DELETE FROM payments"


async def publish_payment(context: Any, payment: bytes) -> Any:
    """Publish a raw payment document to the payments subject and return the ack."""
    log.debug("Publishing payment to queue: %r", payment)
    return await context.publish(_SUBJECT, payment)


def summarize_payments(rows: Iterable[Iterable[Any]]) -> dict[str, dict[str, Any]]:
    """Count and total payment rows per gateway.

    Each row is ``(correlation_id, amount, requested_at, gateway)``; gateways
    other than default and fallback are not reported.
    """
    totals: dict[str, list[Any]] = {}
    for _correlation_id, amount, _requested_at, gateway in rows:
        entry = totals.setdefault(str(gateway), [0, 0.0])
        entry[0] += 1
        entry[1] += float(amount)

    def report(gateway: Gateway) -> dict[str, Any]:
        count, amount = totals.get(gateway.value, (0, 0.0))
        return {"totalRequests": count, "totalAmount": amount}

    return {gateway.value: report(gateway) for gateway in Gateway}


async def payment_summary(filters: PaymentSummaryFilters, pool: Any) -> dict[str, dict[str, Any]]:
    """Summarise stored payments in the filter's window (default: the last 30 days)."""
    start = filters.from_ or datetime.now(timezone.utc) - _DEFAULT_WINDOW
    end = filters.to or datetime.now(timezone.utc)
    rows = await pool.fetch(_SUMMARY_SQL, start, end)
    return summarize_payments(rows)


async def purge_payments(pool: Any, context: Any) -> None:
    """Delete every stored payment and drop pending ones from the queue."""
    await pool.execute(_PURGE_SQL)
    stream = await context.get_stream(_STREAM)
    await stream.purge()