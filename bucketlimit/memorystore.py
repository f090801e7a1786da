"""In-memory token bucket store."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import timedelta

from . import fasttime
from .store import LimitInfo, Store, StoreStopped, TakeResult


def _nanoseconds(duration: timedelta) -> int:
    return ((duration.days * 86_400 + duration.seconds) * 1_000_000 + duration.microseconds) * 1_000


def tick(start: int, curr: int, interval: timedelta) -> int:
    """Return how many whole intervals have passed between ``start`` and ``curr``.

    Both times are in nanoseconds.
    """
    return (curr - start) // _nanoseconds(interval)


@dataclass(frozen=True)
class Config:
    """Settings for :class:`MemoryStore`; non-positive values fall back to defaults.

    ``sweep_interval`` is how often stale entries are collected and
    ``sweep_min_ttl`` how long an entry must be idle before it is dropped.
    """

    tokens: int = 1
    interval: timedelta = timedelta(seconds=1)
    sweep_interval: timedelta = timedelta(hours=6)
    sweep_min_ttl: timedelta = timedelta(hours=12)


def _positive(value, default):
    return value if value > type(value)() else default


class _Bucket:
    """Token bucket that refills to its maximum on every interval tick."""

    __slots__ = ("start_time", "max_tokens", "available", "interval", "last_tick", "_lock")

    def __init__(self, tokens: int, interval: timedelta) -> None:
        self.start_time = fasttime.now()
        self.max_tokens = tokens
        self.available = tokens
        self.interval = interval
        self.last_tick = 0
        self._lock = threading.Lock()

    def get(self) -> LimitInfo:
        with self._lock:
            return LimitInfo(self.max_tokens, self.available, self.interval)

    def take(self) -> TakeResult:
        now = fasttime.now()
        with self._lock:
            # The clock went backwards: rebase the bucket on the new time.
            if now < self.start_time:
                self.start_time = now
                self.last_tick = 0

            current = tick(self.start_time, now, self.interval)
            reset = self.start_time + (current + 1) * _nanoseconds(self.interval)

            if self.last_tick < current:
                self.available = self.max_tokens
                self.last_tick = current

            ok = self.available > 0
            if ok:
                self.available -= 1
            remaining = self.available if ok else 0
            return TakeResult(self.max_tokens, remaining, reset, self.interval, ok)

    def burst(self, tokens: int) -> None:
        with self._lock:
            self.available += tokens

    def last_active(self) -> int:
        with self._lock:
            return self.start_time + self.last_tick * _nanoseconds(self.interval)


class MemoryStore(Store):
    """Thread-safe in-memory store limiting events per interval for each key."""

    def __init__(self, config: Config | None = None) -> None:
        config = config or Config()
        self._tokens = _positive(config.tokens, 1)
        self._interval = _positive(config.interval, timedelta(seconds=1))
        self._sweep_interval = _positive(config.sweep_interval, timedelta(hours=6))
        self._sweep_min_ttl = _nanoseconds(_positive(config.sweep_min_ttl, timedelta(hours=12)))

        self._data: dict[str, _Bucket] = {}
        self._lock = threading.Lock()
        self._stopped = threading.Event()
        self._sweeper = threading.Thread(
            target=self._purge_loop, name="memorystore-sweeper", daemon=True
        )
        self._sweeper.start()

    def take(self, key: str) -> TakeResult:
        """Take a token for ``key``, creating a default bucket on first use."""
        if self._stopped.is_set():
            raise StoreStopped()
        with self._lock:
            bucket = self._data.get(key)
            if bucket is None:
                bucket = self._data[key] = _Bucket(self._tokens, self._interval)
        return bucket.take()

    def get(self, key: str) -> LimitInfo:
        """Return the limit for ``key``; zeros if the key is unknown."""
        if self._stopped.is_set():
            raise StoreStopped()
        with self._lock:
            bucket = self._data.get(key)
        if bucket is None:
            return LimitInfo(0, 0, timedelta(0))
        return bucket.get()

    def set(self, key: str, tokens: int, interval: timedelta) -> None:
        """Replace the bucket of ``key`` with a full one of the given size."""
        with self._lock:
            self._data[key] = _Bucket(tokens, interval)

    def burst(self, key: str, tokens: int) -> None:
        """Add ``tokens`` to the current bucket of ``key``.

        An unknown key gets a fresh default bucket enlarged by ``tokens``.
        """
        with self._lock:
            bucket = self._data.get(key)
            if bucket is None:
                self._data[key] = _Bucket(self._tokens + tokens, self._interval)
                return
        bucket.burst(tokens)

    def close(self) -> None:
        """Stop sweeping and drop all entries. Calling it again does nothing."""
        with self._lock:
            if self._stopped.is_set():
                return
            self._stopped.set()
            self._data.clear()

    def _purge_loop(self) -> None:
        seconds = self._sweep_interval.total_seconds()
        while not self._stopped.wait(seconds):
            self._sweep()

    def _sweep(self) -> None:
        now = fasttime.now()
        with self._lock:
            buckets = list(self._data.items())
        stale = [
            (key, bucket)
            for key, bucket in buckets
            if now - bucket.last_active() > self._sweep_min_ttl
        ]
        with self._lock:
            for key, bucket in stale:
                if self._data.get(key) is bucket:
                    del self._data[key]