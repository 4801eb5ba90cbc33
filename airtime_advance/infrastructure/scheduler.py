"""Timer scheduling with keyed, synchronously cancellable handles"""

import asyncio
import heapq
import itertools
import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Callable, Dict, List, NamedTuple, Optional, Protocol, Tuple

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler as JobScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from airtime_advance.utils.date_utils import add_seconds, utcnow

logger = logging.getLogger(__name__)

Callback = Callable[[], None]


class Clock(Protocol):
    def now(self) -> datetime: ...


class TimerKey(NamedTuple):
    """Identifies a timer; residual timers of one session never collide with another's"""

    msisdn: str
    scope_id: str  # Session id for depletion ticks, offer id for offer timers
    purpose: str = "depletion"

    def __str__(self) -> str:
        return ":".join(self)


class TimerHandle:
    """Cancellation handle returned by every scheduling call"""

    def __init__(self, key: TimerKey, callback: Callback, interval: Optional[float], scheduler: "Scheduler"):
        self.key = key
        self.callback = callback
        self.interval = interval
        self._scheduler = scheduler
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def repeating(self) -> bool:
        return self.interval is not None

    def cancel(self) -> None:
        """Idempotent; once this returns the callback will not run again"""
        if self._cancelled:
            return
        self._cancelled = True
        self._scheduler._release(self)


class Scheduler(ABC):
    """Clock plus timer registry; one live timer per key"""

    def __init__(self) -> None:
        self._handles: Dict[TimerKey, TimerHandle] = {}
        self._registry_lock = threading.RLock()

    @abstractmethod
    def now(self) -> datetime:
        """Current time as seen by every component"""

    @abstractmethod
    def _arm(self, handle: TimerHandle, delay: float) -> None:
        """Arrange for _fire(handle) after delay seconds"""

    def _rearm(self, handle: TimerHandle) -> None:
        """Schedule the next tick of a repeating handle that just fired"""
        self._arm(handle, handle.interval)

    def _disarm(self, handle: TimerHandle) -> None:
        """Drop whatever _arm set up for a live handle being cancelled"""

    def call_later(self, delay: float, key: TimerKey, callback: Callback) -> TimerHandle:
        return self._register(TimerHandle(key, callback, None, self), delay)

    def call_every(self, interval: float, key: TimerKey, callback: Callback) -> TimerHandle:
        if interval <= 0:
            raise ValueError("interval must be positive")
        return self._register(TimerHandle(key, callback, interval, self), interval)

    def cancel(self, key: TimerKey) -> bool:
        """Cancel the timer registered under key; False when none is pending"""
        with self._registry_lock:
            handle = self._handles.get(key)
        if handle is None:
            return False
        handle.cancel()
        return True

    def cancel_all(self) -> None:
        with self._registry_lock:
            handles = list(self._handles.values())
        for handle in handles:
            handle.cancel()

    def shutdown(self) -> None:
        self.cancel_all()

    def pending_keys(self) -> List[TimerKey]:
        with self._registry_lock:
            return list(self._handles)

    def _register(self, handle: TimerHandle, delay: float) -> TimerHandle:
        with self._registry_lock:
            previous = self._handles.get(handle.key)
            self._handles[handle.key] = handle
        if previous is not None:
            previous.cancel()
        self._arm(handle, delay)
        return handle

    def _forget(self, handle: TimerHandle) -> bool:
        with self._registry_lock:
            if self._handles.get(handle.key) is handle:
                del self._handles[handle.key]
                return True
        return False

    def _release(self, handle: TimerHandle) -> None:
        # A handle replaced under its key, or a one-shot that already fired, owns nothing to disarm
        if self._forget(handle):
            self._disarm(handle)

    def _fire(self, handle: TimerHandle) -> None:
        """Run a due callback; a failing callback is logged and a repeating timer keeps ticking"""
        if handle.cancelled:
            return
        if not handle.repeating:
            self._forget(handle)
        try:
            handle.callback()
        except Exception:
            logger.exception(
                "Timer callback failed",
                extra={"msisdn": handle.key.msisdn, "scope_id": handle.key.scope_id, "purpose": handle.key.purpose},
            )
        finally:
            if handle.repeating and not handle.cancelled:
                self._rearm(handle)


class ManualScheduler(Scheduler):
    """
    Simulated clock advanced explicitly by the caller.

    Due timers run in due-time order, ties broken by scheduling order, so a
    run is fully reproducible.
    """

    def __init__(self, start: Optional[datetime] = None):
        super().__init__()
        self._now = start or utcnow()
        self._queue: List[Tuple[datetime, int, TimerHandle]] = []
        self._sequence = itertools.count()

    def now(self) -> datetime:
        return self._now

    def _arm(self, handle: TimerHandle, delay: float) -> None:
        heapq.heappush(self._queue, (add_seconds(self._now, delay), next(self._sequence), handle))

    def advance(self, seconds: float) -> int:
        """Move the clock forward, running every timer that falls due; returns callbacks run"""
        target = add_seconds(self._now, seconds)
        fired = 0
        while self._queue and self._queue[0][0] <= target:
            due, _, handle = heapq.heappop(self._queue)
            self._now = max(self._now, due)
            if handle.cancelled:
                continue
            self._fire(handle)
            fired += 1
        self._now = target
        return fired


class AsyncioScheduler(Scheduler):
    """
    Wall-clock scheduler backed by APScheduler on an asyncio event loop.

    Every timer is one job whose id is its key: an interval job for repeating
    timers and a date job for one-shots. Jobs are coroutines, so callbacks run
    on the loop thread; schedule from that thread as well.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop):
        super().__init__()
        self._jobs = JobScheduler(event_loop=loop, timezone=timezone.utc)
        self._jobs.start()

    def now(self) -> datetime:
        return utcnow()

    def _arm(self, handle: TimerHandle, delay: float) -> None:
        if handle.repeating:
            trigger = IntervalTrigger(
                seconds=handle.interval,
                start_date=add_seconds(utcnow(), delay),
                timezone=timezone.utc,
            )
        else:
            trigger = DateTrigger(run_date=add_seconds(utcnow(), delay), timezone=timezone.utc)
        self._jobs.add_job(
            self._run,
            trigger,
            args=[handle],
            id=str(handle.key),
            replace_existing=True,
            max_instances=1,
            misfire_grace_time=None,
        )

    def _rearm(self, handle: TimerHandle) -> None:
        """The interval job stays scheduled until removed"""

    def _disarm(self, handle: TimerHandle) -> None:
        try:
            self._jobs.remove_job(str(handle.key))
        except JobLookupError:
            logger.debug("Timer job already finished", extra={"job_id": str(handle.key)})

    async def _run(self, handle: TimerHandle) -> None:
        self._fire(handle)

    def shutdown(self) -> None:
        super().shutdown()
        if self._jobs.running:
            self._jobs.shutdown(wait=False)
