"""
Client-side refresh coordination.

A RefreshCoordinator owns one shared ticker thread and broadcasts a
"revalidate" signal to every subscribed handler, however many there are.
RefreshingReader sits on top: it caches loader results per key for a short
freshness window and revalidates in the background on ticks or stale reads,
handing back the previous value while a refresh is in flight.
"""
from __future__ import annotations

import itertools
import threading
import time
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Generic, Hashable, Optional, TypeVar

from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="refresh_coordinator")

RefreshHandler = Callable[[], None]
K = TypeVar("K", bound=Hashable)
T = TypeVar("T")

REVALIDATION_WORKERS = 4


@dataclass
class Subscription:
    """Handle returned by subscribe(); unsubscribing twice is harmless."""
    coordinator: "RefreshCoordinator"
    token: int

    def unsubscribe(self) -> bool:
        return self.coordinator.unsubscribe(self.token)


class _Ticker(threading.Thread):
    def __init__(self, interval: float, callback: Callable[[], Any], name: str) -> None:
        super().__init__(name=name, daemon=True)
        self.interval = interval
        self._callback = callback
        self.stopped = threading.Event()

    def run(self) -> None:
        while not self.stopped.wait(self.interval):
            self._callback()

    def cancel(self) -> None:
        # No join: cancel may be called from inside a tick.
        self.stopped.set()


class RefreshCoordinator:
    """
    One timer, many subscribers.

    The ticker starts with the first subscriber and stops when the subscriber
    count drops back to zero. The counter and the ticker are only touched
    under one lock, so concurrent subscribe/unsubscribe calls cannot leave a
    second timer running or a timer with nobody listening.

    The coordinator also owns the small pool readers revalidate on. It is
    created on first use and shut down with the ticker.
    """

    def __init__(self, interval_seconds: float = 60.0, *, max_workers: int = REVALIDATION_WORKERS) -> None:
        if interval_seconds <= 0:
            raise ValueError("Interval must be greater than zero")
        self._interval = float(interval_seconds)
        self._lock = threading.Lock()
        self._handlers: Dict[int, RefreshHandler] = {}
        self._subscriber_count = 0
        self._tokens = itertools.count(1)
        self._ticker: Optional[_Ticker] = None
        self._max_workers = max_workers
        self._executor: Optional[ThreadPoolExecutor] = None
        self.timers_created = 0

    @property
    def interval_seconds(self) -> float:
        return self._interval

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return self._subscriber_count

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._ticker is not None

    @property
    def revalidation_executor(self) -> Optional[ThreadPoolExecutor]:
        with self._lock:
            return self._executor

    def _ensure_ticker_locked(self) -> None:
        if self._ticker is not None or self._subscriber_count == 0:
            return
        self.timers_created += 1
        self._ticker = _Ticker(self._interval, self.notify, name=f"refresh-ticker-{self.timers_created}")
        self._ticker.start()
        logger.debug("Refresh ticker started", extra={"interval_seconds": self._interval})

    def _stop_ticker_locked(self) -> None:
        if self._ticker is None:
            return
        self._ticker.cancel()
        self._ticker = None
        logger.debug("Refresh ticker stopped")

    def _shutdown_executor_locked(self) -> None:
        if self._executor is None:
            return
        # Pending revalidations are not awaited.
        self._executor.shutdown(wait=False)
        self._executor = None

    def subscribe(self, handler: RefreshHandler, *, interval_seconds: Optional[float] = None) -> Subscription:
        """Register a handler; a differing `interval_seconds` retimes the shared ticker."""
        if interval_seconds is not None and interval_seconds != self._interval:
            self.set_interval(interval_seconds)
        with self._lock:
            token = next(self._tokens)
            self._handlers[token] = handler
            self._subscriber_count += 1
            self._ensure_ticker_locked()
        return Subscription(self, token)

    def unsubscribe(self, token: int) -> bool:
        with self._lock:
            if self._handlers.pop(token, None) is None:
                return False
            self._subscriber_count = max(0, self._subscriber_count - 1)
            if self._subscriber_count == 0:
                self._stop_ticker_locked()
                self._shutdown_executor_locked()
        return True

    def submit(self, fn: Callable[..., Any], *args: Any) -> Optional[Future]:
        """Run `fn` on the revalidation pool; returns None once nobody is subscribed."""
        with self._lock:
            if self._subscriber_count == 0:
                return None
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self._max_workers, thread_name_prefix="revalidate"
                )
            return self._executor.submit(fn, *args)

    def notify(self) -> int:
        """Call every handler once; returns how many were called."""
        with self._lock:
            handlers = list(self._handlers.values())
        for handler in handlers:
            try:
                handler()
            except Exception:
                logger.exception("Refresh handler failed")
        return len(handlers)

    def set_interval(self, seconds: float) -> None:
        if seconds <= 0:
            raise ValueError("Interval must be greater than zero")
        with self._lock:
            if seconds == self._interval:
                return
            self._interval = float(seconds)
            if self._ticker is not None:
                self._stop_ticker_locked()
                self._ensure_ticker_locked()

    def start(self) -> bool:
        """Resume ticking after stop(); does nothing without subscribers."""
        with self._lock:
            self._ensure_ticker_locked()
            return self._ticker is not None

    def stop(self) -> None:
        """
        Stop automatic ticks and release the revalidation pool.

        Subscribers stay registered; notify() still works and a later
        revalidation starts a fresh pool.
        """
        with self._lock:
            self._stop_ticker_locked()
            self._shutdown_executor_locked()


@dataclass
class ReadResult(Generic[T]):
    data: Optional[T]
    error: Optional[BaseException]
    is_validating: bool
    fetched_at: Optional[float]


@dataclass
class _Entry:
    value: Any = None
    error: Optional[BaseException] = None
    fetched_at: Optional[float] = None  # last success
    checked_at: Optional[float] = None  # last attempt, success or not
    validating: bool = True
    loaded: threading.Event = field(default_factory=threading.Event)


class RefreshingReader(Generic[K, T]):
    """
    Per-key cache that revalidates on coordinator ticks.

    The first read of a key blocks on the loader (other threads asking for the
    same key wait for that single call). Later reads return immediately. If
    the value is older than `freshness_seconds`, or a tick arrives, one
    background reload per key is started; failures keep the previous value
    and surface through `ReadResult.error`.

    Reloads run on the coordinator's pool unless an `executor` is given.
    """

    def __init__(
        self,
        coordinator: RefreshCoordinator,
        loader: Callable[[K], T],
        *,
        freshness_seconds: float = 2.0,
        executor: Optional[Executor] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.loader = loader
        self.freshness_seconds = freshness_seconds
        self._coordinator = coordinator
        self._executor = executor
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[K, _Entry] = {}
        self._closed = False
        self._subscription = coordinator.subscribe(self.revalidate_all)

    def _load(self, key: K, entry: _Entry) -> None:
        try:
            value = self.loader(key)
        except Exception as exc:
            logger.warning("Revalidation failed; keeping previous value",
                           extra={"key": str(key), "error": str(exc)})
            with self._lock:
                entry.error = exc
                entry.checked_at = self._clock()
                entry.validating = False
        else:
            with self._lock:
                entry.value = value
                entry.error = None
                entry.fetched_at = entry.checked_at = self._clock()
                entry.validating = False
        finally:
            entry.loaded.set()

    def _is_stale(self, entry: _Entry) -> bool:
        return entry.checked_at is None or self._clock() - entry.checked_at >= self.freshness_seconds

    def revalidate(self, key: K) -> bool:
        """Start a background reload of `key` unless one is already running."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.validating or self._closed:
                return False
            entry.validating = True
        if self._executor is not None:
            self._executor.submit(self._load, key, entry)
            return True
        if self._coordinator.submit(self._load, key, entry) is None:
            with self._lock:
                entry.validating = False
            return False
        return True

    def revalidate_all(self) -> int:
        with self._lock:
            keys = list(self._entries)
        return sum(1 for key in keys if self.revalidate(key))

    def read(self, key: K) -> ReadResult[T]:
        with self._lock:
            entry = self._entries.get(key)
            first = entry is None
            if first:
                entry = self._entries[key] = _Entry()

        if first:
            self._load(key, entry)
        else:
            entry.loaded.wait()
            with self._lock:
                stale = not entry.validating and self._is_stale(entry)
            if stale:
                self.revalidate(key)

        with self._lock:
            return ReadResult(
                data=entry.value,
                error=entry.error,
                is_validating=entry.validating,
                fetched_at=entry.fetched_at,
            )

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._subscription.unsubscribe()

    def __enter__(self) -> "RefreshingReader[K, T]":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
