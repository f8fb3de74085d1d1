"""In-memory TTL cache of guild events with single-flight upstream fetches."""
import logging
import math
import threading
import time
from dataclasses import dataclass, asdict
from typing import Callable, Dict, Hashable, Optional, Sequence, Tuple

from cachetools import TTLCache

from processor.exceptions import CancellationError, UpstreamError
from processor.models import Event

logger = logging.getLogger(__name__)

FetchFunc = Callable[[Hashable], Sequence[Event]]


@dataclass
class CacheStats:
    """Counters describing cache activity."""
    hits: int = 0
    misses: int = 0
    fetches: int = 0
    fetch_failures: int = 0
    joined: int = 0
    swept: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


class PendingFetch:
    """
    Result cell shared by every caller waiting on one upstream fetch.

    The cell is written exactly once, by the thread running the fetch, and
    then released to all waiters at the same time.
    """

    def __init__(self, key: Hashable):
        self.key = key
        self.waiters = 0
        self._done = threading.Event()
        self._value: Optional[Tuple[Event, ...]] = None
        self._error: Optional[UpstreamError] = None

    def resolve(self, value: Tuple[Event, ...]) -> None:
        self._value = value
        self._done.set()

    def fail(self, error: UpstreamError) -> None:
        self._error = error
        self._done.set()

    def done(self) -> bool:
        return self._done.is_set()

    def wait(
        self,
        timeout: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
        poll_interval: float = 0.05
    ) -> Tuple[Event, ...]:
        """
        Block until the fetch completes and return its result.

        Args:
            timeout: Seconds to wait before giving up (default: no limit)
            cancel: Event that, once set, makes this caller stop waiting
            poll_interval: How often the cancel event is checked

        Returns:
            The fetched events

        Raises:
            UpstreamError: If the fetch failed
            CancellationError: If the wait timed out or was cancelled
        """
        deadline = None if timeout is None else time.monotonic() + timeout

        while True:
            if cancel is not None and cancel.is_set():
                raise CancellationError(self.key)

            wait_for = poll_interval if cancel is not None else None
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise CancellationError(self.key)
                wait_for = remaining if wait_for is None else min(wait_for, remaining)

            if self._done.wait(wait_for):
                break

        if self._error is not None:
            raise self._error
        return self._value


class EventCache:
    """
    Thread-safe cache of event lists keyed by guild ID.

    A cache miss starts one upstream fetch per key on a worker thread; every
    caller asking for that key while the fetch runs waits on the same
    PendingFetch and gets the same events or the same UpstreamError. Only
    successful fetches are cached, for ``ttl`` seconds. Expired entries are
    dropped on read and by ``delete_expired``.
    """

    def __init__(
        self,
        fetch: FetchFunc,
        ttl: float = 300,
        maxsize: float = math.inf,
        timer: Callable[[], float] = time.monotonic
    ):
        """
        Initialize the cache.

        Args:
            fetch: Upstream collaborator returning the events for a key
            ttl: Seconds a fetched result stays valid (must be positive)
            maxsize: Maximum number of cached keys (default: unbounded)
            timer: Clock used for expiry, injectable for tests
        """
        if ttl <= 0:
            raise ValueError(f"cache TTL must be positive, got {ttl}")

        self.fetch = fetch
        self.ttl = ttl
        self.stats = CacheStats()
        self._lock = threading.Lock()
        self._entries = TTLCache(maxsize=maxsize, ttl=ttl, timer=timer)
        self._pending: Dict[Hashable, PendingFetch] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(
        self,
        key: Hashable,
        timeout: Optional[float] = None,
        cancel: Optional[threading.Event] = None
    ) -> Tuple[Event, ...]:
        """
        Return the events for a key, fetching them upstream on a miss.

        Args:
            key: Guild ID
            timeout: Seconds this caller is willing to wait for a fetch
            cancel: Event that makes this caller stop waiting once set

        Returns:
            Tuple of events

        Raises:
            UpstreamError: If the upstream fetch failed
            CancellationError: If this caller's wait was cancelled or timed out
        """
        with self._lock:
            events = self._entries.get(key)
            if events is not None:
                self.stats.hits += 1
                return events

            self.stats.misses += 1
            pending = self._pending.get(key)
            if pending is None:
                pending = PendingFetch(key)
                self._pending[key] = pending
                try:
                    self._start_fetch(pending)
                except BaseException:
                    del self._pending[key]
                    raise
            else:
                self.stats.joined += 1
            pending.waiters += 1

        try:
            return pending.wait(timeout=timeout, cancel=cancel)
        finally:
            with self._lock:
                pending.waiters -= 1

    def peek(self, key: Hashable) -> Optional[Tuple[Event, ...]]:
        """Return the cached events for a key without fetching."""
        with self._lock:
            return self._entries.get(key)

    def invalidate(self, key: Hashable) -> bool:
        """
        Drop the cached events for a key.

        Returns:
            True if an entry was removed
        """
        with self._lock:
            return self._entries.pop(key, None) is not None

    def delete_expired(self) -> int:
        """
        Remove every expired entry.

        Returns:
            Number of entries removed
        """
        with self._lock:
            removed = len(self._entries.expire())
            self.stats.swept += removed

        if removed:
            logger.info(f"Swept {removed} expired cache entries")
        return removed

    def _start_fetch(self, pending: PendingFetch) -> None:
        thread = threading.Thread(
            target=self._run_fetch,
            args=(pending,),
            name=f"event-fetch-{pending.key}",
            daemon=True
        )
        thread.start()

    def _run_fetch(self, pending: PendingFetch) -> None:
        key = pending.key
        start_time = time.monotonic()
        with self._lock:
            self.stats.fetches += 1

        # Any exit, including SystemExit or KeyboardInterrupt raised by the
        # fetch, must remove the cell and release its waiters.
        try:
            events = tuple(self.fetch(key))
            with self._lock:
                self._entries[key] = events
                self._pending.pop(key, None)
        except BaseException as e:
            error = UpstreamError(key, e)
            error.__cause__ = e
            with self._lock:
                self.stats.fetch_failures += 1
                self._pending.pop(key, None)
            logger.warning(
                f"Upstream fetch failed for guild {key}: {e!r}",
                extra={'error_type': type(e).__name__, 'waiters': pending.waiters}
            )
            pending.fail(error)
            return

        logger.info(
            f"Cached {len(events)} events for guild {key}",
            extra={
                'duration_seconds': round(time.monotonic() - start_time, 2),
                'waiters': pending.waiters
            }
        )
        pending.resolve(events)


class CacheSweeper:
    """Background thread that periodically deletes expired cache entries."""

    def __init__(self, cache: EventCache, interval: float):
        """
        Args:
            cache: Cache to sweep
            interval: Seconds between sweeps; zero or less disables sweeping
        """
        self.cache = cache
        self.interval = interval
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def enabled(self) -> bool:
        return self.interval > 0

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> bool:
        """
        Start the sweep loop.

        Returns:
            True if a sweep thread is running afterwards
        """
        if not self.enabled:
            logger.info("Cache sweep disabled")
            return False
        if self.is_running():
            return True

        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run, name="event-cache-sweeper", daemon=True
        )
        self._thread.start()
        logger.info(f"Cache sweep running every {self.interval} seconds")
        return True

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self.cache.delete_expired()
            except Exception:
                logger.error("Cache sweep failed", exc_info=True)
