"""Rate limiting storage interface and its result types."""

from __future__ import annotations

import abc
from dataclasses import dataclass
from datetime import timedelta


class StoreStopped(Exception):
    """Raised when an operation is attempted on a closed store."""

    def __init__(self, message: str = "store is stopped") -> None:
        super().__init__(message)


@dataclass(frozen=True)
class TakeResult:
    """Outcome of taking a token.

    ``reset`` is the time, in nanoseconds since the Unix epoch, at which new
    tokens become available. When ``ok`` is false the caller should not serve
    the request.
    """

    tokens: int
    remaining: int
    reset: int
    interval: timedelta
    ok: bool


@dataclass(frozen=True)
class LimitInfo:
    """Current limit and remaining tokens for a key."""

    tokens: int
    remaining: int
    interval: timedelta


class Store(abc.ABC):
    """Storage backend for rate limits.

    Keys are stored as given; hash or HMAC identifying data such as IP
    addresses before handing them to a store that may be exposed.
    """

    @abc.abstractmethod
    def take(self, key: str) -> TakeResult:
        """Take a token for ``key`` if one is available.

        Backend failures raise; an empty bucket is reported through
        ``TakeResult.ok`` rather than an exception.
        """

    @abc.abstractmethod
    def get(self, key: str) -> LimitInfo:
        """Return the current limit for ``key`` without changing it."""

    @abc.abstractmethod
    def set(self, key: str, tokens: int, interval: timedelta) -> None:
        """Configure the limit for ``key``, refilling its bucket."""

    @abc.abstractmethod
    def burst(self, key: str, tokens: int) -> None:
        """Add extra tokens to the current bucket of ``key`` until the next tick."""

    @abc.abstractmethod
    def close(self) -> None:
        """Stop the store and release its resources."""

    def __enter__(self) -> Store:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()