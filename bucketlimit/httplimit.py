"""WSGI middleware that rate limits requests through a store."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Iterable

from .store import Store

HEADER_RATE_LIMIT_LIMIT = "X-RateLimit-Limit"
HEADER_RATE_LIMIT_REMAINING = "X-RateLimit-Remaining"
HEADER_RATE_LIMIT_RESET = "X-RateLimit-Reset"
HEADER_RETRY_AFTER = "Retry-After"

KeyFunc = Callable[[dict], str]
WSGIApp = Callable[[dict, Callable], Iterable[bytes]]

_DAYS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")
_MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun",
           "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")
_UNPREFIXED = {"CONTENT_TYPE", "CONTENT_LENGTH"}


def _environ_key(header: str) -> str:
    name = header.upper().replace("-", "_")
    return name if name in _UNPREFIXED else f"HTTP_{name}"


def _format_reset(reset_ns: int) -> str:
    """Format nanoseconds since the epoch as an RFC 1123 date in UTC."""
    dt = datetime.fromtimestamp(reset_ns // 1_000_000_000, tz=timezone.utc)
    return (
        f"{_DAYS[dt.weekday()]}, {dt.day:02d} {_MONTHS[dt.month - 1]} {dt.year:04d} "
        f"{dt.hour:02d}:{dt.minute:02d}:{dt.second:02d} UTC"
    )


def ip_key_func(*args: str) -> KeyFunc:
    """Return a key function that keys requests by client IP address.

    Each header named in ``args`` is checked first, case-insensitively; the
    first non-empty value is used. Otherwise ``REMOTE_ADDR`` is used, and a
    request without one raises ``ValueError``.
    """
    headers = tuple(args)

    def key_func(environ: dict) -> str:
        for header in headers:
            value = environ.get(_environ_key(header), "")
            if value:
                return value
        remote = environ.get("REMOTE_ADDR", "")
        if not remote:
            raise ValueError("request has no remote address")
        return remote

    return key_func


def _error_response(start_response: Callable, status: str, extra=()) -> list[bytes]:
    body = f"{status.split(' ', 1)[1]}\n".encode()
    headers = list(extra) + [
        ("Content-Type", "text/plain; charset=utf-8"),
        ("X-Content-Type-Options", "nosniff"),
        ("Content-Length", str(len(body))),
    ]
    start_response(status, headers)
    return [body]


class RateLimitMiddleware:
    """Rate limits WSGI applications by a key derived from each request."""

    def __init__(self, store: Store, key_func: KeyFunc) -> None:
        if store is None:
            raise ValueError("store cannot be None")
        if key_func is None:
            raise ValueError("key function cannot be None")
        self.store = store
        self.key_func = key_func

    def handle(self, app: WSGIApp) -> WSGIApp:
        """Wrap ``app`` so that each request takes a token from the store.

        Rate limit headers are added to every response. When no token is
        available the request is answered with 429 and ``app`` is not called;
        failures of the key function or the store give 500.
        """

        def limited(environ: dict, start_response: Callable) -> Iterable[bytes]:
            try:
                key = self.key_func(environ)
                result = self.store.take(key)
            except Exception:
                return _error_response(start_response, "500 Internal Server Error")

            reset = _format_reset(result.reset)
            rate_headers = [
                (HEADER_RATE_LIMIT_LIMIT, str(result.tokens)),
                (HEADER_RATE_LIMIT_REMAINING, str(result.remaining)),
                (HEADER_RATE_LIMIT_RESET, reset),
            ]

            if not result.ok:
                rate_headers.append((HEADER_RETRY_AFTER, reset))
                return _error_response(start_response, "429 Too Many Requests", rate_headers)

            def wrapped_start(status, headers, exc_info=None):
                names = {name.lower() for name, _ in headers}
                merged = [h for h in rate_headers if h[0].lower() not in names]
                merged.extend(headers)
                if exc_info is None:
                    return start_response(status, merged)
                return start_response(status, merged, exc_info)

            return app(environ, wrapped_start)

        return limited