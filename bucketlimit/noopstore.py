"""A store that always allows requests, for testing and development."""

from __future__ import annotations

from datetime import timedelta

from .store import LimitInfo, Store, TakeResult

_INTERVAL = timedelta(seconds=1)


class NoopStore(Store):
    """Store that permits every request and records nothing."""

    def take(self, key: str) -> TakeResult:
        """Always allow the request."""
        return TakeResult(tokens=0, remaining=0, reset=0, interval=_INTERVAL, ok=True)

    def get(self, key: str) -> LimitInfo:
        """Report an empty limit."""
        return LimitInfo(tokens=0, remaining=0, interval=_INTERVAL)

    def set(self, key: str, tokens: int, interval: timedelta) -> None:
        """Ignore the configuration."""

    def burst(self, key: str, tokens: int) -> None:
        """Ignore the burst."""

    def close(self) -> None:
        """Nothing to release."""