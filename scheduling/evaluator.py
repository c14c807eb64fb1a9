"""
Due-schedule evaluation

Decides whether a schedule should fire at a given instant and, for
recurring schedules, which local calendar day that firing satisfies.
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Optional

from utils.time_utils import (
    clamp_day_of_month, days_between, js_weekday, local_date, localize, start_of_local_day,
    to_patient_timezone, to_utc
)

from .models import RecurrenceType, Schedule, ScheduleType

logger = logging.getLogger("schedule-evaluator")

# How far ahead next_execution_time searches for a matching recurring day
MAX_LOOKAHEAD_DAYS = 400


@dataclass(frozen=True)
class DueEvaluation:
    """Outcome of evaluating one schedule"""
    due: bool
    period: Optional[date] = None
    reason: str = ""


def _not_due(reason: str) -> DueEvaluation:
    return DueEvaluation(due=False, reason=reason)


def _time_of_day(schedule: Schedule, timezone_name: Optional[str], default_timezone: str) -> Optional[time]:
    if not schedule.scheduled_time:
        return None
    return to_patient_timezone(schedule.scheduled_time, timezone_name, default_timezone).time().replace(
        second=0, microsecond=0
    )


def matches_recurrence_day(schedule: Schedule, day: date) -> bool:
    """Check whether a recurring schedule's rule selects the given local day"""
    recurrence = schedule.recurrence_type
    if recurrence == RecurrenceType.DAILY:
        return True
    if recurrence == RecurrenceType.WEEKLY:
        return schedule.day_of_week is not None and js_weekday(day) == schedule.day_of_week
    if recurrence == RecurrenceType.MONTHLY:
        if schedule.day_of_month is None:
            return False
        return day.day == clamp_day_of_month(day.year, day.month, schedule.day_of_month)
    return False


def _recurrence_problem(schedule: Schedule) -> Optional[str]:
    recurrence = schedule.recurrence_type
    if recurrence is None or recurrence == RecurrenceType.NONE:
        return "recurring schedule has no recurrence rule"
    if recurrence == RecurrenceType.WEEKLY and schedule.day_of_week is None:
        return "weekly schedule has no day of week"
    if recurrence == RecurrenceType.MONTHLY and schedule.day_of_month is None:
        return "monthly schedule has no day of month"
    return None


def evaluate_schedule(
    schedule: Schedule,
    now: datetime,
    timezone_name: Optional[str] = None,
    default_timezone: str = 'UTC'
) -> DueEvaluation:
    """
    Evaluate whether a schedule is due at the given instant

    Args:
        schedule: Schedule to evaluate
        now: Current instant
        timezone_name: Patient timezone used for calendar-day and time-of-day checks
        default_timezone: Timezone used when the patient has none

    Returns:
        DueEvaluation with the local date the firing satisfies when due
    """
    now = to_utc(now)

    if not schedule.is_active:
        return _not_due("schedule is inactive")

    if schedule.type == ScheduleType.NOW:
        return _not_due("immediate schedules are executed at creation")

    today = local_date(now, timezone_name, default_timezone)

    if schedule.type == ScheduleType.ONE_TIME:
        if schedule.scheduled_time is None:
            return _not_due("one-time schedule has no scheduled time")
        if schedule.last_executed_at is not None:
            return _not_due("one-time schedule already executed")
        if to_utc(schedule.scheduled_time) > now:
            return _not_due("scheduled time not reached")
        return DueEvaluation(due=True, period=today, reason="scheduled time reached")

    problem = _recurrence_problem(schedule)
    if problem:
        return _not_due(problem)

    if schedule.last_executed_at is not None:
        if local_date(schedule.last_executed_at, timezone_name, default_timezone) == today:
            return _not_due("already executed today")

    if schedule.recurrence_end_date is not None:
        if today > local_date(schedule.recurrence_end_date, timezone_name, default_timezone):
            return _not_due("recurrence has ended")

    if not matches_recurrence_day(schedule, today):
        return _not_due(f"{schedule.recurrence_type.value} rule does not select {today.isoformat()}")

    time_of_day = _time_of_day(schedule, timezone_name, default_timezone)
    if time_of_day is not None:
        local_now = to_patient_timezone(now, timezone_name, default_timezone)
        if local_now.time() < time_of_day:
            return _not_due("time of day not reached")

    return DueEvaluation(due=True, period=today, reason=f"{schedule.recurrence_type.value} recurrence due")


def period_start(period: date, timezone_name: Optional[str] = None, default_timezone: str = 'UTC') -> datetime:
    """UTC instant of local midnight for a period; the claim boundary for recurring schedules"""
    return start_of_local_day(period, timezone_name, default_timezone)


def next_execution_time(
    schedule: Schedule,
    now: datetime,
    timezone_name: Optional[str] = None,
    default_timezone: str = 'UTC'
) -> Optional[datetime]:
    """
    Compute the next instant at which the schedule becomes due

    Returns now when the schedule is already due, None when it will never fire again.
    """
    now = to_utc(now)
    if not schedule.is_active or schedule.type == ScheduleType.NOW:
        return None

    if schedule.type == ScheduleType.ONE_TIME:
        if schedule.scheduled_time is None or schedule.last_executed_at is not None:
            return None
        return max(to_utc(schedule.scheduled_time), now)

    if _recurrence_problem(schedule):
        return None

    today = local_date(now, timezone_name, default_timezone)
    end_day = None
    if schedule.recurrence_end_date is not None:
        end_day = local_date(schedule.recurrence_end_date, timezone_name, default_timezone)
    executed_day = None
    if schedule.last_executed_at is not None:
        executed_day = local_date(schedule.last_executed_at, timezone_name, default_timezone)
    time_of_day = _time_of_day(schedule, timezone_name, default_timezone) or time(0, 0)

    for day in days_between(today, today + timedelta(days=MAX_LOOKAHEAD_DAYS - 1)):
        if end_day is not None and day > end_day:
            return None
        if day == executed_day or not matches_recurrence_day(schedule, day):
            continue
        candidate = localize(day, time_of_day, timezone_name, default_timezone)
        return max(candidate, now)

    logger.warning(f"No execution day found for schedule {schedule.id} within {MAX_LOOKAHEAD_DAYS} days")
    return None
