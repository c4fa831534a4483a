"""
Recurring schedule computation and one-shot timer bookkeeping.

Schedules are re-armed one fire at a time rather than on a fixed interval:
every fire computes its own next wall-clock instant, so drift does not
accumulate and local time-of-day stays correct across DST changes. Instants
are compared and subtracted in UTC because aware datetimes sharing a tzinfo
compare by wall time.
"""

from __future__ import annotations

import calendar
import logging
import threading
from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, Dict, Optional, Protocol

from ..schemas.rule import Frequency, Schedule


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


TimerFactory = Callable[[float, Callable[[], None]], TimerHandle]


def thread_timer(delay_seconds: float, callback: Callable[[], None]) -> threading.Timer:
    """Default timer factory: a daemon ``threading.Timer`` already started."""
    timer = threading.Timer(max(0.0, delay_seconds), callback)
    timer.daemon = True
    timer.start()
    return timer


def _utc(value: datetime) -> datetime:
    return value.astimezone(timezone.utc)


def _sunday_based_weekday(day: date) -> int:
    return (day.weekday() + 1) % 7


def _at(day: date, at: time, tz) -> datetime:
    return datetime.combine(day, at, tzinfo=tz)


def seconds_until(target: datetime, now: datetime) -> float:
    return max(0.0, (_utc(target) - _utc(now)).total_seconds())


def next_fire_time(schedule: Schedule, after: datetime) -> datetime:
    """Return the first scheduled instant strictly later than ``after``.

    The result is expressed in ``after``'s timezone, which must be set.
    """
    if after.tzinfo is None:
        raise ValueError("next_fire_time requires a timezone-aware datetime")
    tz = after.tzinfo
    after_utc = _utc(after)
    at = schedule.time_of_day()
    start = after.date()

    if schedule.frequency in (Frequency.DAILY, Frequency.WEEKLY):
        days = set(schedule.days_of_week or range(7))
        for offset in range(8):
            day = start + timedelta(days=offset)
            if _sunday_based_weekday(day) not in days:
                continue
            candidate = _at(day, at, tz)
            if _utc(candidate) > after_utc:
                return candidate
    else:
        day_of_month = schedule.day_of_month or 1
        year, month = start.year, start.month
        for _ in range(13):
            last_day = calendar.monthrange(year, month)[1]
            candidate = _at(date(year, month, min(day_of_month, last_day)), at, tz)
            if _utc(candidate) > after_utc:
                return candidate
            month += 1
            if month > 12:
                month = 1
                year += 1
    raise ValueError(f"Schedule {schedule!r} has no upcoming fire time")


class RecurringScheduler:
    """Keeps at most one pending one-shot timer per key (rule id)."""

    def __init__(
        self,
        clock: Callable[[], datetime],
        timer_factory: Optional[TimerFactory] = None,
    ) -> None:
        self.logger = logging.getLogger("scheduler")
        self._clock = clock
        self._timer_factory = timer_factory or thread_timer
        self._timers: Dict[str, TimerHandle] = {}
        self._next_fire: Dict[str, datetime] = {}
        self._lock = threading.Lock()

    def arm(
        self,
        key: str,
        schedule: Schedule,
        callback: Callable[[datetime], None],
        *,
        after: Optional[datetime] = None,
    ) -> datetime:
        """Arm the next fire for ``key``, replacing any pending timer.

        ``after`` is the instant the previous fire was due; computing from it
        keeps a timer that wakes slightly early from firing twice.
        """
        now = self._clock()
        reference = after if after is not None and _utc(after) > _utc(now) else now
        fire_at = next_fire_time(schedule, reference)
        timer = self._timer_factory(seconds_until(fire_at, now), lambda: callback(fire_at))
        with self._lock:
            previous = self._timers.pop(key, None)
            self._timers[key] = timer
            self._next_fire[key] = fire_at
        if previous is not None:
            previous.cancel()
        self.logger.debug("Armed schedule key=%s fire_at=%s", key, fire_at.isoformat())
        return fire_at

    def cancel(self, key: str) -> bool:
        with self._lock:
            timer = self._timers.pop(key, None)
            self._next_fire.pop(key, None)
        if timer is None:
            return False
        timer.cancel()
        return True

    def cancel_all(self) -> int:
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
            self._next_fire.clear()
        for timer in timers:
            timer.cancel()
        return len(timers)

    def next_fire(self, key: str) -> Optional[datetime]:
        with self._lock:
            return self._next_fire.get(key)

    def armed(self) -> Dict[str, datetime]:
        with self._lock:
            return dict(self._next_fire)
