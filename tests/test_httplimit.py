import base64
import hashlib
from datetime import datetime, timedelta, timezone

import pytest

from bucketlimit.httplimit import (
    HEADER_RATE_LIMIT_LIMIT,
    HEADER_RATE_LIMIT_REMAINING,
    HEADER_RATE_LIMIT_RESET,
    HEADER_RETRY_AFTER,
    RateLimitMiddleware,
    ip_key_func,
)
from bucketlimit.memorystore import Config, MemoryStore
from bucketlimit.noopstore import NoopStore


def hello_app(environ, start_response):
    start_response("200 OK", [("Content-Type", "text/plain")])
    return [b"hello world"]


def call(app, environ=None):
    environ = environ or {"REQUEST_METHOD": "GET", "PATH_INFO": "/", "REMOTE_ADDR": "127.0.0.1"}
    captured = {}

    def start_response(status, headers, exc_info=None):
        captured["status"] = status
        captured["headers"] = {name.lower(): value for name, value in headers}

    body = b"".join(app(environ, start_response))
    return captured["status"], captured["headers"], body


def parse_reset(value):
    return datetime.strptime(value, "%a, %d %b %Y %H:%M:%S UTC").replace(tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "tokens,interval",
    [(5, timedelta(milliseconds=500)), (3, timedelta(seconds=1))],
    ids=["millisecond", "second"],
)
def test_new_middleware(tokens, interval):
    store = MemoryStore(Config(tokens=tokens, interval=interval))
    try:
        middleware = RateLimitMiddleware(store, ip_key_func())
        app = middleware.handle(hello_app)

        for i in range(tokens):
            status, headers, body = call(app)
            assert status == "200 OK"
            assert body == b"hello world"
            assert int(headers[HEADER_RATE_LIMIT_LIMIT.lower()]) == tokens
            reset = parse_reset(headers[HEADER_RATE_LIMIT_RESET.lower()])
            assert reset - datetime.now(timezone.utc) <= interval
            assert int(headers[HEADER_RATE_LIMIT_REMAINING.lower()]) == tokens - i - 1

        status, headers, body = call(app)
        assert status == "429 Too Many Requests"
        assert body == b"Too Many Requests\n"
        assert int(headers[HEADER_RATE_LIMIT_LIMIT.lower()]) == tokens
        reset = parse_reset(headers[HEADER_RATE_LIMIT_RESET.lower()])
        assert reset - datetime.now(timezone.utc) <= interval
        assert int(headers[HEADER_RATE_LIMIT_REMAINING.lower()]) == 0
        assert headers[HEADER_RETRY_AFTER.lower()] == headers[HEADER_RATE_LIMIT_RESET.lower()]
    finally:
        store.close()


def test_noop_store_headers_pin_epoch():
    app = RateLimitMiddleware(NoopStore(), ip_key_func()).handle(hello_app)
    status, headers, body = call(app)
    assert status == "200 OK"
    assert headers[HEADER_RATE_LIMIT_LIMIT.lower()] == "0"
    assert headers[HEADER_RATE_LIMIT_REMAINING.lower()] == "0"
    assert headers[HEADER_RATE_LIMIT_RESET.lower()] == "Thu, 01 Jan 1970 00:00:00 UTC"
    assert HEADER_RETRY_AFTER.lower() not in headers


def test_ip_key_func_uses_remote_addr():
    key_func = ip_key_func()
    assert key_func({"REMOTE_ADDR": "10.0.0.7"}) == "10.0.0.7"


def test_ip_key_func_prefers_headers():
    key_func = ip_key_func("X-Forwarded-For")
    environ = {"REMOTE_ADDR": "10.0.0.7", "HTTP_X_FORWARDED_FOR": "192.0.2.1"}
    assert key_func(environ) == "192.0.2.1"


def test_ip_key_func_header_is_case_insensitive():
    key_func = ip_key_func("x-real-ip", "X-Forwarded-For")
    environ = {"REMOTE_ADDR": "10.0.0.7", "HTTP_X_REAL_IP": "", "HTTP_X_FORWARDED_FOR": "192.0.2.9"}
    assert key_func(environ) == "192.0.2.9"


def test_ip_key_func_missing_address_raises():
    with pytest.raises(ValueError):
        ip_key_func()({})


def test_key_func_failure_gives_500_and_no_take():
    store = MemoryStore(Config(tokens=1, interval=timedelta(minutes=1)))
    try:
        app = RateLimitMiddleware(store, ip_key_func()).handle(hello_app)
        status, headers, body = call(app, {"REQUEST_METHOD": "GET"})
        assert status == "500 Internal Server Error"
        assert body == b"Internal Server Error\n"
        assert HEADER_RATE_LIMIT_LIMIT.lower() not in headers
        assert store.get("127.0.0.1").tokens == 0
    finally:
        store.close()


def test_store_failure_gives_500():
    store = MemoryStore(Config(tokens=1))
    store.close()
    app = RateLimitMiddleware(store, ip_key_func()).handle(hello_app)
    status, headers, _ = call(app)
    assert status == "500 Internal Server Error"
    assert HEADER_RATE_LIMIT_REMAINING.lower() not in headers


def test_custom_key_func_hashes_token_header():
    def key_func(environ):
        digest = hashlib.sha512(environ.get("HTTP_X_TOKEN", "").encode()).digest()
        return base64.b64encode(digest).decode()

    store = MemoryStore(Config(tokens=30, interval=timedelta(minutes=1)))
    try:
        app = RateLimitMiddleware(store, key_func).handle(hello_app)
        environ = {"REQUEST_METHOD": "GET", "HTTP_X_TOKEN": "token"}
        status, headers, _ = call(app, environ)
        assert status == "200 OK"
        assert headers[HEADER_RATE_LIMIT_REMAINING.lower()] == "29"
        expected_key = base64.b64encode(hashlib.sha512(b"token").digest()).decode()
        assert store.get(expected_key).remaining == 29
    finally:
        store.close()


def test_keys_are_limited_separately():
    store = MemoryStore(Config(tokens=1, interval=timedelta(minutes=1)))
    try:
        app = RateLimitMiddleware(store, ip_key_func()).handle(hello_app)
        assert call(app, {"REMOTE_ADDR": "10.0.0.1"})[0] == "200 OK"
        assert call(app, {"REMOTE_ADDR": "10.0.0.1"})[0] == "429 Too Many Requests"
        assert call(app, {"REMOTE_ADDR": "10.0.0.2"})[0] == "200 OK"
    finally:
        store.close()


def test_app_headers_override_rate_headers():
    def app_with_header(environ, start_response):
        start_response("200 OK", [(HEADER_RATE_LIMIT_LIMIT, "custom")])
        return [b""]

    app = RateLimitMiddleware(NoopStore(), ip_key_func()).handle(app_with_header)
    _, headers, _ = call(app)
    assert headers[HEADER_RATE_LIMIT_LIMIT.lower()] == "custom"
    assert headers[HEADER_RATE_LIMIT_REMAINING.lower()] == "0"


def test_constructor_rejects_missing_store():
    with pytest.raises(ValueError, match="store"):
        RateLimitMiddleware(None, ip_key_func())


def test_constructor_rejects_missing_key_func():
    with pytest.raises(ValueError, match="key function"):
        RateLimitMiddleware(NoopStore(), None)