# bucketlimit

Token-bucket rate limiting for Python programs and WSGI applications.

Each key (an IP address, an API token digest, a user id) gets its own
bucket that holds a fixed number of tokens per interval. Every request takes
one token. Once the bucket is empty, requests are refused until the next
interval tick refills it to its maximum.

## Installation

```
pip install bucketlimit
```

The package has no runtime dependencies.

## Stores

A store keeps the buckets. Every store, a subclass of `bucketlimit.store.Store`,
offers the same methods:

- `take(key)` removes a token. It returns a `TakeResult` with `tokens` (the
  limit), `remaining`, `reset` (nanoseconds since the Unix epoch at which new
  tokens arrive), `interval` (a `timedelta`) and `ok` (whether the take
  succeeded). An empty bucket is reported through `ok`, not an exception.
- `get(key)` returns a `LimitInfo` with `tokens`, `remaining` and `interval`,
  changing nothing.
- `set(key, tokens, interval)` gives one key its own limit and a full bucket.
- `burst(key, tokens)` adds extra tokens to a key's bucket until the next tick.
- `close()` stops the store.

Stores are context managers: leaving a `with` block calls `close()`.

### In-memory store

```python
from datetime import timedelta

from bucketlimit.memorystore import Config, MemoryStore

# 15 requests per minute for each key
with MemoryStore(Config(tokens=15, interval=timedelta(minutes=1))) as store:
    result = store.take("my-key")
    if not result.ok:
        print("rate limited until", result.reset)
```

`Config` fields and their defaults:

| field            | default            |
|------------------|--------------------|
| `tokens`         | 1                  |
| `interval`       | `timedelta(seconds=1)` |
| `sweep_interval` | `timedelta(hours=6)`   |
| `sweep_min_ttl`  | `timedelta(hours=12)`  |

Values that are zero or negative fall back to the default. `MemoryStore()`
with no argument uses all defaults.

A background thread runs every `sweep_interval` and removes keys whose bucket
has been idle for longer than `sweep_min_ttl`. Keep `sweep_min_ttl` at least as
long as your interval, or buckets may be dropped before their limit applies.

`get` on an unknown key returns zeros. `burst` on an unknown key creates a
default bucket enlarged by the given number of tokens. After `close()`, the
store is emptied, sweeping stops, and `take` and `get` raise
`bucketlimit.store.StoreStopped`; calling `close()` again does nothing.

`bucketlimit.memorystore.tick(start, curr, interval)` returns how many whole
intervals lie between two nanosecond timestamps.

### No-op store

`NoopStore` allows every request and records nothing, which suits tests and
local development:

```python
from bucketlimit.noopstore import NoopStore

store = NoopStore()
assert store.take("anything").ok
```

## WSGI middleware

`bucketlimit.httplimit.RateLimitMiddleware(store, key_func)` wraps WSGI
applications. Passing `None` for either argument raises `ValueError`.
`handle(app)` returns a new application that, for every request, calls the
key function, takes a token from the store and adds these headers:

- `X-RateLimit-Limit`
- `X-RateLimit-Remaining`
- `X-RateLimit-Reset` (an RFC 1123 date in UTC)

When the bucket is empty it answers `429 Too Many Requests` with a
`Retry-After` header and does not call the wrapped application. If the key
function or the store raises, it answers `500 Internal Server Error`.

```python
from datetime import timedelta

from bucketlimit.httplimit import RateLimitMiddleware, ip_key_func
from bucketlimit.memorystore import Config, MemoryStore


def hello(environ, start_response):
    start_response("200 OK", [("Content-Type", "text/plain")])
    return [b"hello world"]


store = MemoryStore(Config(tokens=30, interval=timedelta(minutes=1)))
middleware = RateLimitMiddleware(store, ip_key_func())
app = middleware.handle(hello)
```

`ip_key_func()` keys requests by `REMOTE_ADDR`, and raises `ValueError` (giving
a 500) for a request without one. Pass header names to check them first, case
insensitively, for use behind a proxy:

```python
key_func = ip_key_func("X-Forwarded-For")
```

Any callable that takes the WSGI environ and returns a string can be a key
function. Stores keep keys as given, so hash sensitive values first:

```python
import base64
import hashlib


def token_key(environ):
    digest = hashlib.sha512(environ.get("HTTP_X_TOKEN", "").encode()).digest()
    return base64.b64encode(digest).decode()
```

The header names are available as `HEADER_RATE_LIMIT_LIMIT`,
`HEADER_RATE_LIMIT_REMAINING`, `HEADER_RATE_LIMIT_RESET` and
`HEADER_RETRY_AFTER` in `bucketlimit.httplimit`.

## What it does not do

Limits live in the memory of one process only; there is no shared store
for several processes or machines. The middleware speaks WSGI only, not
ASGI.

## Running the tests

```
pip install -e ".[test]"
pytest
```