from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest
from pydantic import ValidationError

from shiftwise.schemas.rule import Schedule
from shiftwise.services.scheduler import RecurringScheduler, next_fire_time

from fakes import FakeClock, ManualTimers

UTC = timezone.utc


def test_daily_fires_same_day_when_time_is_ahead():
    schedule = Schedule(frequency="daily", time="09:00")
    start = datetime(2026, 3, 2, 8, 0, tzinfo=UTC)

    first = next_fire_time(schedule, start)
    assert first == datetime(2026, 3, 2, 9, 0, tzinfo=UTC)
    assert next_fire_time(schedule, first) == datetime(2026, 3, 3, 9, 0, tzinfo=UTC)


def test_weekly_uses_sunday_based_days():
    # 2026-03-02 is a Monday; 5 is Friday.
    schedule = Schedule(frequency="weekly", time="17:00", days_of_week=[5])
    after = datetime(2026, 3, 2, 12, 0, tzinfo=UTC)
    assert next_fire_time(schedule, after) == datetime(2026, 3, 6, 17, 0, tzinfo=UTC)

    friday_evening = datetime(2026, 3, 6, 17, 0, tzinfo=UTC)
    assert next_fire_time(schedule, friday_evening) == datetime(2026, 3, 13, 17, 0, tzinfo=UTC)


def test_daily_days_filter_skips_weekend():
    schedule = Schedule(frequency="daily", time="08:00", days_of_week=[1, 2, 3, 4, 5])
    saturday = datetime(2026, 3, 7, 9, 0, tzinfo=UTC)
    assert next_fire_time(schedule, saturday) == datetime(2026, 3, 9, 8, 0, tzinfo=UTC)


def test_monthly_clamps_to_month_length():
    schedule = Schedule(frequency="monthly", time="06:30", day_of_month=31)
    after = datetime(2026, 2, 1, 0, 0, tzinfo=UTC)
    assert next_fire_time(schedule, after) == datetime(2026, 2, 28, 6, 30, tzinfo=UTC)
    assert next_fire_time(schedule, datetime(2026, 2, 28, 6, 30, tzinfo=UTC)) == datetime(2026, 3, 31, 6, 30, tzinfo=UTC)


def test_monthly_defaults_to_first_day():
    schedule = Schedule(frequency="monthly", time="00:00")
    after = datetime(2026, 12, 15, 0, 0, tzinfo=UTC)
    assert next_fire_time(schedule, after) == datetime(2027, 1, 1, 0, 0, tzinfo=UTC)


def test_local_time_is_kept_across_dst_change():
    tz = ZoneInfo("America/New_York")
    schedule = Schedule(frequency="daily", time="09:00")
    # DST starts 2026-03-08 in New York.
    before = datetime(2026, 3, 7, 9, 0, tzinfo=tz)
    fire = next_fire_time(schedule, before)

    assert (fire.hour, fire.minute, fire.day) == (9, 0, 8)
    assert (fire.astimezone(UTC) - before.astimezone(UTC)).total_seconds() == 23 * 3600


def test_next_fire_time_requires_aware_datetime():
    with pytest.raises(ValueError):
        next_fire_time(Schedule(frequency="daily", time="09:00"), datetime(2026, 3, 2, 8, 0))


def test_schedule_validation():
    with pytest.raises(ValidationError):
        Schedule(frequency="weekly", time="09:00")
    with pytest.raises(ValidationError):
        Schedule(frequency="daily", time="25:00")
    with pytest.raises(ValidationError):
        Schedule(frequency="daily", time="09:00", day_of_month=3)
    with pytest.raises(ValidationError):
        Schedule(frequency="weekly", time="09:00", days_of_week=[7])
    assert Schedule(frequency="weekly", time="9:05", days_of_week=[5, 1, 5]).days_of_week == [1, 5]


def test_recurring_scheduler_arms_and_replaces_timers():
    clock = FakeClock(datetime(2026, 3, 2, 8, 0, tzinfo=UTC))
    timers = ManualTimers()
    scheduler = RecurringScheduler(clock, timers)
    schedule = Schedule(frequency="daily", time="09:00")
    fired = []

    fire_at = scheduler.arm("rule-1", schedule, fired.append)
    assert fire_at == datetime(2026, 3, 2, 9, 0, tzinfo=UTC)
    assert timers.timers[0].delay == 3600

    scheduler.arm("rule-1", schedule, fired.append)
    assert timers.timers[0].cancelled is True
    assert len(timers.pending()) == 1

    timers.pending()[0].fire()
    assert fired == [fire_at]

    assert scheduler.cancel("rule-1") is True
    assert scheduler.cancel("rule-1") is False
    assert scheduler.armed() == {}


def test_arm_after_early_wakeup_does_not_repeat_fire():
    clock = FakeClock(datetime(2026, 3, 2, 8, 59, 59, tzinfo=UTC))
    scheduler = RecurringScheduler(clock, ManualTimers())
    due = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)

    fire_at = scheduler.arm("rule-1", Schedule(frequency="daily", time="09:00"), lambda _: None, after=due)
    assert fire_at == datetime(2026, 3, 3, 9, 0, tzinfo=UTC)


def test_cancel_all_cancels_every_timer():
    clock = FakeClock(datetime(2026, 3, 2, 8, 0, tzinfo=UTC))
    timers = ManualTimers()
    scheduler = RecurringScheduler(clock, timers)
    scheduler.arm("a", Schedule(frequency="daily", time="09:00"), lambda _: None)
    scheduler.arm("b", Schedule(frequency="daily", time="10:00"), lambda _: None)

    assert scheduler.cancel_all() == 2
    assert timers.pending() == []
    assert scheduler.next_fire("a") is None
