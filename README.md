# paygate

paygate takes payments off a message stream and forwards each one to a
payment processor over HTTP. It tries the default processor first. If that
fails, it tries the fallback. Each processor has its own circuit breaker, so
a processor that keeps failing is skipped for a while and not called. A
payment that goes through is stored with the name of the gateway that
handled it. You can then get totals per gateway over a time window.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Configuration

The processor base URLs are read from the environment the first time they
are needed. After that they are cached:

| Variable               | Default                 |
|------------------------|-------------------------|
| `DEFAULT_PAYMENT_URL`  | `http://localhost:8001` |
| `FALLBACK_PAYMENT_URL` | `http://localhost:8002` |

`paygate.models.get_default_payment_url()` and
`get_fallback_payment_url()` return these values. A payment is sent as a
JSON `POST` to `<url>/payments`. Any 2xx response counts as success.

## Payments (`paygate.models`)

```python
from paygate.models import Payment

payment = Payment.from_json(b'{"amount": 19.9, "correlationId": "abc-123"}')
payment.to_json()
# {"amount": 19.9, "correlationId": "abc-123", "requestedAt": "...Z"}
```

`Payment.from_json` accepts bytes, a string or an already decoded mapping.

- It raises `ValueError` when a field is missing or has the wrong type.
- `requestedAt` is parsed as an RFC 3339 timestamp with an offset. If the
  field is absent, the current UTC time is used.
- `to_json` returns a dictionary and writes the timestamp in UTC with a
  trailing `Z`.

`Gateway` is a string enum with the members `DEFAULT` (`"default"`) and
`FALLBACK` (`"fallback"`).

`PaymentSummaryFilters(from_=None, to=None)` holds an optional time window.

## Circuit breakers (`paygate.recloser`)

`Recloser` wraps async calls:

- `await breaker.call(func, *args)` awaits `func(*args)` and records whether
  it raised.
- While the breaker is open, `call` raises `RejectedError` and does not call
  `func`.
- `breaker.state()` returns `"closed"`, `"open"` or `"half_open"`.

The keyword-only settings are:

- `threshold`: default 0.5.
- `closed_len`: default 100.
- `half_open_len`: default 10.
- `open_wait`: in seconds, default 30.
- `clock`: default `time.monotonic`.

The breaker behaves as follows:

- While closed, it opens once a full window of `closed_len` outcomes has a
  failure rate above `threshold`.
- After `open_wait` seconds it lets calls through again in the half-open
  state.
- In the half-open state, a full window of `half_open_len` outcomes either
  closes the breaker or opens it again.

## Processing the queue (`paygate.processor`)

- `pay(client, payment, url)` posts the payment with an
  `httpx.AsyncClient`. It raises `PaymentFailedError` on a non-success
  response.
- `GatewayBreakers` holds one `Recloser` per gateway.
  `handle_payment_request(gateway, client, payment)` sends through the
  matching breaker.
- `process_payment(breakers, pool, client, payment)` tries the default
  gateway and then the fallback. On the first success it stores the payment
  with `save_payment_to_db` and returns. If both fail, it raises
  `PaymentFailedError`. `save_payment_to_db` logs a database error and does
  not raise it.
- `get_stream(context)` creates the `payments` stream and the durable
  `payment-processor` consumer, and returns the consumer's messages. The
  stream uses interest retention. The consumer uses explicit acks, instant
  replay and `max_deliver=3`.
- `dequeue_payment(context, pool)` handles up to 1000 messages at once with
  an HTTP timeout of 10 seconds. For each message:
  - If either gateway takes the payment, the message is acked.
  - Otherwise the message is nak'ed with `delay=5.0`.
  - Any other error stops the loop and is raised.

## Handlers (`paygate.handlers`)

```python
from paygate.handlers import summarize_payments

summarize_payments([("id-1", 10.0, requested_at, "default")])
# {"default": {"totalRequests": 1, "totalAmount": 10.0},
#  "fallback": {"totalRequests": 0, "totalAmount": 0.0}}
```

- `payment_summary(filters, pool)` fetches stored payments between
  `filters.from_` and `filters.to` and summarises them. A missing `from_`
  defaults to 30 days ago. A missing `to` defaults to now.
- `publish_payment(context, payment)` publishes raw payment bytes to the
  `payments` subject and returns the acknowledgement.
- `purge_payments(pool, context)` deletes every row from the `payments`
  table and purges the `payments` stream.

## What you provide

paygate does not connect to a message broker or a database itself. The
caller passes both in as objects:

- `context` must provide the following async methods:
  - `publish(subject, data)`
  - `get_stream(name)`, returning an object with `purge()`
  - `create_stream(name=..., subjects=..., retention=...)`, returning an
    object with `get_or_create_consumer(name, **config)`, whose result has
    `messages()`
- Messages must have a `payload`, `ack()` and `nak(delay=...)`.
- `pool` must offer async `fetch(sql, *args)` and `execute(sql, *args)`,
  with `$1`-style placeholders.

The package does not include:

- an HTTP server that exposes the handlers
- a command-line entry point
- the SQL schema for the `payments` table
- the broker or database client