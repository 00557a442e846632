"""Consume queued payments, settle them with a processor and record the result."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Any

import httpx

from paygate.models import (
    Gateway,
    Payment,
    get_default_payment_url,
    get_fallback_payment_url,
)
from paygate.recloser import Recloser, RejectedError

log = logging.getLogger(__name__)

_STREAM_NAME = "payments"
_CONSUMER_NAME = "payment-processor"
_MAX_DELIVER = 3
_NAK_DELAY = 5.0
_HTTP_TIMEOUT = 10.0
_CONCURRENCY = 1000

_INSERT_SQL = """
    INSERT INTO payments (correlation_id, amount, requested_at, gateway)
    VALUES ($1, $2, $3, $4)
"""


class PaymentFailedError(Exception):
    """Raised when a payment processor does not accept a payment."""


async def pay(client: httpx.AsyncClient, payment: Payment, url: str) -> None:
    """POST the payment to ``{url}/payments``; raise if the processor refuses it."""
    body = payment.to_json()
    log.debug("Sending payment to %s: %r", url, body)
    response = await client.post(f"{url}/payments", json=body)
    if response.is_success:
        log.debug("Payment processed successfully: %r", payment)
        return
    log.error("Failed on payment: %r", response)
    raise PaymentFailedError(
        f"Failed to POST to /payments: {payment!r}, response: {response.text}"
    )


class GatewayBreakers:
    """One circuit breaker per payment processor."""

    def __init__(self, default: Recloser | None = None, fallback: Recloser | None = None) -> None:
        self.default = default if default is not None else Recloser()
        self.fallback = fallback if fallback is not None else Recloser()

    async def handle_payment_request(
        self, gateway: Gateway, client: httpx.AsyncClient, payment: Payment
    ) -> None:
        """Send the payment to the given gateway through its breaker.

        Raises :class:`RejectedError` when the breaker is open, or whatever the
        request itself raised.
        """
        if gateway is Gateway.DEFAULT:
            await self.default.call(pay, client, payment, get_default_payment_url())
        else:
            await self.fallback.call(pay, client, payment, get_fallback_payment_url())


async def save_payment_to_db(pool: Any, payment: Payment, gateway: Gateway) -> None:
    """Store a settled payment; a database error is logged, not raised."""
    try:
        await pool.execute(
            _INSERT_SQL,
            payment.correlation_id,
            payment.amount,
            payment.requested_at,
            gateway.value,
        )
    except Exception:
        log.exception("Error saving payment to db")


async def process_payment(
    breakers: GatewayBreakers, pool: Any, client: httpx.AsyncClient, payment: Payment
) -> None:
    """Settle with the default processor, falling back to the other one.

    Raises :class:`PaymentFailedError` when neither processor took the payment.
    """
    for gateway in (Gateway.DEFAULT, Gateway.FALLBACK):
        try:
            await breakers.handle_payment_request(gateway, client, payment)
        except RejectedError:
            log.warning(
                "Circuit breaker rejected payment on %s gateway. correlation_id: %s",
                gateway.value,
                payment.correlation_id,
            )
        except Exception as exc:
            log.error(
                "Failed to process payment on %s gateway. correlation_id: %s, error: %r",
                gateway.value,
                payment.correlation_id,
                exc,
            )
        else:
            log.debug("Payment processed successfully with %s gateway.", gateway.value)
            await save_payment_to_db(pool, payment, gateway)
            return

    raise PaymentFailedError(
        "Failed to process payment with both default and fallback URLs."
    )


async def get_stream(context: Any) -> AsyncIterator[Any]:
    """Ensure the payments stream and its durable consumer exist; return its messages."""
    stream = await context.create_stream(
        name=_STREAM_NAME,
        subjects=[_STREAM_NAME],
        retention="interest",
    )
    consumer = await stream.get_or_create_consumer(
        _CONSUMER_NAME,
        durable_name=_CONSUMER_NAME,
        max_deliver=_MAX_DELIVER,
        ack_policy="explicit",
        replay_policy="instant",
    )
    return await consumer.messages()


async def _handle_message(
    message: Any, breakers: GatewayBreakers, pool: Any, client: httpx.AsyncClient
) -> None:
    payment = Payment.from_json(message.payload)
    try:
        await process_payment(breakers, pool, client, payment)
    except PaymentFailedError:
        await message.nak(delay=_NAK_DELAY)
        log.error("Failed to process payment, message will be retried.")
    else:
        await message.ack()


async def dequeue_payment(context: Any, pool: Any) -> None:
    """Process queued payments concurrently until the stream ends or a message breaks."""
    breakers = GatewayBreakers()
    limit = asyncio.Semaphore(_CONCURRENCY)
    pending: set[asyncio.Task[None]] = set()
    failures: list[BaseException] = []

    def finished(task: asyncio.Task[None]) -> None:
        pending.discard(task)
        limit.release()
        if not task.cancelled() and task.exception() is not None:
            failures.append(task.exception())

    async with httpx.AsyncClient(timeout=_HTTP_TIMEOUT) as client:
        messages = await get_stream(context)
        try:
            async for message in messages:
                await limit.acquire()
                if failures:
                    limit.release()
                    raise failures[0]
                task = asyncio.create_task(_handle_message(message, breakers, pool, client))
                pending.add(task)
                task.add_done_callback(finished)
            if pending:
                await asyncio.wait(set(pending))
            if failures:
                raise failures[0]
        finally:
            for task in list(pending):
                task.cancel()