"""
Process-local scheduling state owned by one service instance: the clock, "last run"
throttle markers, short-TTL in-memory caches and the in-flight fetch registry.
Everything here lives for the lifetime of the process and is not shared across replicas.
"""
import logging
import threading
from concurrent.futures import Future
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Generic, Hashable, Optional, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def utc_now() -> datetime:
    """UTC now as naive datetime, matching the DateTime(timezone=False) columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def local_now() -> datetime:
    """Naive local wall-clock time (range bounds are local calendar days)."""
    return datetime.now()


class TtlCache(Generic[T]):
    """Small dict cache whose entries expire ttl_seconds after they were set."""

    def __init__(self, ttl_seconds: float, clock: Callable[[], datetime]):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[Hashable, Tuple[T, datetime]] = {}
        self._lock = threading.Lock()

    def get(self, key: Hashable) -> Optional[T]:
        entry = self.get_entry(key)
        if entry is None:
            return None
        value, stored_at = entry
        if (self._clock() - stored_at).total_seconds() >= self.ttl_seconds:
            return None
        return value

    def get_entry(self, key: Hashable) -> Optional[Tuple[T, datetime]]:
        """Return (value, stored_at) regardless of age; used to serve an expired copy on upstream failure."""
        with self._lock:
            return self._entries.get(key)

    def set(self, key: Hashable, value: T) -> None:
        with self._lock:
            self._entries[key] = (value, self._clock())

    def invalidate(self, key: Hashable) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


class InFlightRegistry:
    """
    Per-key registry of in-progress fetches. The first caller for a key runs the work;
    concurrent callers for the same key wait on its future and share the result (or error).
    """

    def __init__(self):
        self._futures: Dict[Hashable, Future] = {}
        self._waiting: Dict[Hashable, int] = {}
        self._lock = threading.Lock()

    def run(self, key: Hashable, work: Callable[[], T]) -> T:
        with self._lock:
            future = self._futures.get(key)
            leader = future is None
            if leader:
                future = Future()
                self._futures[key] = future
            else:
                self._waiting[key] = self._waiting.get(key, 0) + 1
        if not leader:
            logger.debug(f"Joining in-flight fetch for {key}")
            try:
                return future.result()
            finally:
                with self._lock:
                    remaining = self._waiting.get(key, 1) - 1
                    if remaining > 0:
                        self._waiting[key] = remaining
                    else:
                        self._waiting.pop(key, None)
        try:
            result = work()
        except BaseException as e:
            future.set_exception(e)
            raise
        else:
            future.set_result(result)
            return result
        finally:
            with self._lock:
                self._futures.pop(key, None)

    def pending(self) -> int:
        with self._lock:
            return len(self._futures)

    def waiting(self) -> int:
        """Number of callers currently blocked on another caller's fetch."""
        with self._lock:
            return sum(self._waiting.values())


class SchedulerContext:
    """
    Explicitly owned scheduling state passed to the orchestrator at construction.
    clock: returns naive UTC, used for record timestamps, TTLs and throttles.
    local_clock: returns naive local time, used to derive "today" and "this week".
    Tests inject frozen, advanceable clocks.
    """

    def __init__(
        self,
        clock: Optional[Callable[[], datetime]] = None,
        local_clock: Optional[Callable[[], datetime]] = None,
        class_list_ttl_seconds: float = 30 * 60,
        all_classes_ttl_seconds: float = 60 * 60,
        holidays_ttl_seconds: float = 6 * 60 * 60,
    ):
        self.clock = clock or utc_now
        self.local_clock = local_clock or local_now
        self._last_run: Dict[str, datetime] = {}
        self._lock = threading.Lock()
        self.own_classes: TtlCache[Any] = TtlCache(class_list_ttl_seconds, self.clock)
        self.all_classes: TtlCache[Any] = TtlCache(all_classes_ttl_seconds, self.clock)
        self.holidays: TtlCache[Any] = TtlCache(holidays_ttl_seconds, self.clock)
        self.in_flight = InFlightRegistry()

    def now(self) -> datetime:
        return self.clock()

    def local_now(self) -> datetime:
        return self.local_clock()

    def should_run(self, marker: str, interval_seconds: float) -> bool:
        """
        Throttle check for `marker`: True (and the marker is stamped) when the last stamped
        run is at least interval_seconds ago or there was none.
        """
        now = self.clock()
        with self._lock:
            last = self._last_run.get(marker)
            if last is not None and (now - last).total_seconds() < interval_seconds:
                return False
            self._last_run[marker] = now
            return True

    def last_run(self, marker: str) -> Optional[datetime]:
        with self._lock:
            return self._last_run.get(marker)
