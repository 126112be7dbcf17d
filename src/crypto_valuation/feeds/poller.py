"""
Polling primitives for the upstream sources.

A SnapshotPoller owns the last good snapshot of one source for one
account. It guarantees at most one outstanding fetch, a minimum interval
between fetches, capped exponential backoff after failures, and keeps the
previous snapshot (marked stale) when a fetch fails.
"""

import asyncio
import time
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Generic, Hashable, Optional, TypeVar

from loguru import logger

T = TypeVar("T")


@dataclass(frozen=True)
class PolledSnapshot(Generic[T]):
    """Last successfully fetched value of a source."""

    value: T
    fetched_at: datetime
    is_stale: bool = False
    error: Optional[str] = None

    def age_seconds(self, now: Optional[datetime] = None) -> float:
        now = now or datetime.now(timezone.utc)
        return max(0.0, (now - self.fetched_at).total_seconds())


class SnapshotPoller(Generic[T]):
    """Rate-limited, single-flight poller for one source."""

    def __init__(
        self,
        name: str,
        fetch: Callable[[], Awaitable[T]],
        min_interval_s: float = 10.0,
        backoff_base_s: float = 2.0,
        max_backoff_s: float = 120.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the poller.

        Args:
            name: Label used in log lines, e.g. "wallet:acct-1"
            fetch: Coroutine function returning a fresh value
            min_interval_s: Minimum seconds between two fetches
            backoff_base_s: Delay after the first consecutive failure
            max_backoff_s: Upper bound of the failure backoff
            clock: Monotonic clock, injectable for tests
        """
        self.name = name
        self._fetch = fetch
        self.min_interval_s = min_interval_s
        self.backoff_base_s = backoff_base_s
        self.max_backoff_s = max(max_backoff_s, min_interval_s)
        self._clock = clock

        self._last: Optional[PolledSnapshot[T]] = None
        self._last_attempt: Optional[float] = None
        self._last_error: Optional[str] = None
        self._failures = 0
        self._refresh_requested = False
        self._in_flight: Optional[asyncio.Task] = None
        self._task: Optional[asyncio.Task] = None
        self._wakeup: Optional[asyncio.Event] = None
        self._cancelled = False

    @property
    def last_snapshot(self) -> Optional[PolledSnapshot[T]]:
        return self._last

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    @property
    def failures(self) -> int:
        return self._failures

    @property
    def in_flight(self) -> bool:
        return self._in_flight is not None and not self._in_flight.done()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def current_interval(self) -> float:
        """Seconds to wait after the last attempt before the next regular fetch."""
        if self._failures == 0:
            return self.min_interval_s
        backoff = self.backoff_base_s * (2 ** (self._failures - 1))
        return min(self.max_backoff_s, max(self.min_interval_s, backoff))

    def seconds_until_due(self) -> float:
        if self._last_attempt is None:
            return 0.0
        return max(0.0, self._last_attempt + self.current_interval - self._clock())

    def request_refresh(self) -> None:
        """Let the next poll bypass the interval once."""
        self._refresh_requested = True
        if self._wakeup is not None:
            self._wakeup.set()

    async def poll(self, force: bool = False) -> Optional[PolledSnapshot[T]]:
        """Fetch when due, otherwise serve the last snapshot.

        A poll arriving while a fetch is outstanding is not queued: it is
        served the last snapshot, or joins the outstanding fetch when there
        is none yet.

        Args:
            force: Bypass the interval for this call (manual refresh)

        Returns:
            Last good snapshot (possibly stale), None if nothing was ever fetched
        """
        if self._cancelled:
            return self._last

        if self.in_flight:
            if self._last is not None:
                logger.debug(f"POLL_SKIPPED: source={self.name} reason=in_flight")
                return self._last
            return await asyncio.shield(self._in_flight)

        bypass = force or self._refresh_requested
        if not bypass and self.seconds_until_due() > 0:
            return self._last

        self._refresh_requested = False
        self._in_flight = asyncio.ensure_future(self._fetch_once())
        return await asyncio.shield(self._in_flight)

    async def _fetch_once(self) -> Optional[PolledSnapshot[T]]:
        self._last_attempt = self._clock()
        try:
            value = await self._fetch()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._failures += 1
            self._last_error = f"{type(e).__name__}: {e}"
            logger.warning(
                f"POLL_FAILED: source={self.name} failures={self._failures} "
                f"retry_in={self.current_interval:.1f}s error={self._last_error}"
            )
            if self._last is not None:
                self._last = replace(self._last, is_stale=True, error=self._last_error)
            return self._last
        finally:
            self._in_flight = None

        if self._failures:
            logger.info(f"POLL_RECOVERED: source={self.name} after_failures={self._failures}")
        self._failures = 0
        self._last_error = None
        self._last = PolledSnapshot(value=value, fetched_at=datetime.now(timezone.utc))
        logger.debug(f"POLL_OK: source={self.name}")
        return self._last

    async def run(self) -> None:
        """Poll forever on the current interval until cancelled."""
        self._wakeup = asyncio.Event()
        while not self._cancelled:
            await self.poll()
            self._wakeup.clear()
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=max(self.seconds_until_due(), 0.01))
            except asyncio.TimeoutError:
                pass

    def start(self) -> asyncio.Task:
        """Schedule the background loop on the running event loop."""
        if self._task is None or self._task.done():
            self._cancelled = False
            self._task = asyncio.get_running_loop().create_task(self.run())
        return self._task

    def cancel(self) -> None:
        """Stop scheduled polling and abandon any outstanding fetch."""
        self._cancelled = True
        for task in (self._task, self._in_flight):
            if task is not None and not task.done():
                task.cancel()
        self._task = None
        self._in_flight = None
        logger.debug(f"POLL_CANCELLED: source={self.name}")


class PollerRegistry:
    """Pollers keyed by (source, account_id, mode)."""

    def __init__(self):
        self._pollers: dict[tuple[str, str, Optional[str]], SnapshotPoller] = {}

    def get_or_create(
        self,
        source: str,
        account_id: str,
        mode: Optional[str],
        factory: Callable[[], SnapshotPoller],
    ) -> SnapshotPoller:
        key = (source, account_id, mode)
        poller = self._pollers.get(key)
        if poller is None or poller.cancelled:
            poller = factory()
            self._pollers[key] = poller
        return poller

    def get(self, source: str, account_id: str, mode: Optional[str] = None) -> Optional[SnapshotPoller]:
        return self._pollers.get((source, account_id, mode))

    def close_account(self, account_id: str) -> int:
        """Cancel and forget every poller of an account. Returns how many were closed."""
        keys = [key for key in self._pollers if key[1] == account_id]
        for key in keys:
            self._pollers.pop(key).cancel()
        if keys:
            logger.info(f"ACCOUNT_CLOSED: account={account_id} pollers={len(keys)}")
        return len(keys)

    def close_all(self) -> None:
        for poller in self._pollers.values():
            poller.cancel()
        self._pollers.clear()

    def __len__(self) -> int:
        return len(self._pollers)


class SingleFlight:
    """Collapses concurrent calls with the same key into one outstanding call."""

    def __init__(self):
        self._calls: dict[Hashable, asyncio.Task] = {}

    def pending(self, key: Hashable) -> bool:
        task = self._calls.get(key)
        return task is not None and not task.done()

    async def do(self, key: Hashable, fn: Callable[[], Awaitable[Any]]) -> Any:
        task = self._calls.get(key)
        if task is None or task.done():
            task = asyncio.ensure_future(fn())
            self._calls[key] = task

            def _forget(done: asyncio.Task, key: Hashable = key) -> None:
                if self._calls.get(key) is done:
                    del self._calls[key]

            task.add_done_callback(_forget)
        return await asyncio.shield(task)
