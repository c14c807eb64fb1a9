"""
Tests for the CallScheduler service
"""
import pytest
from dataclasses import replace
from datetime import date, datetime, timezone
from unittest.mock import Mock, patch

from scheduling.errors import (
    NotFoundError, ProviderRequestError, ReferentialIntegrityError, ScheduleValidationError,
    SlotUnavailableError
)
from scheduling.models import CallStatus, Prompt, RecurrenceType, Schedule, ScheduleType
from scheduling.scheduler import CallScheduler, build_scheduler, is_slot_occupied, round_to_slot
from scheduling.redis_store import RedisScheduleStore
from voice.provider import MockVoiceCallProvider


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


NOW = utc(2024, 5, 20, 12, 0)


class TestCreateSchedule:
    """Tests for schedule creation and validation"""

    def test_create_one_time(self, call_scheduler, schedule_store):
        schedule = call_scheduler.create_schedule(
            "patient-1", "prompt-1", "one-time", scheduled_time=utc(2024, 6, 1, 9, 0), now=NOW
        )

        assert schedule.type == ScheduleType.ONE_TIME
        assert schedule.is_active is True
        assert schedule.recurrence_type is None
        assert schedule.created_at == NOW
        assert schedule_store.get_schedule(schedule.id) == schedule

    def test_create_weekly(self, call_scheduler):
        schedule = call_scheduler.create_schedule(
            "patient-1", "prompt-1", ScheduleType.RECURRING,
            scheduled_time=utc(2024, 6, 3, 9, 0),
            recurrence_type="weekly",
            day_of_week=1,
            now=NOW,
        )

        assert schedule.recurrence_type == RecurrenceType.WEEKLY
        assert schedule.day_of_week == 1

    @pytest.mark.parametrize("kwargs,message", [
        ({"type": "one-time"}, "require a scheduled time"),
        ({"type": "one-time", "scheduled_time": utc(2024, 6, 1, 9, 0), "recurrence_type": "daily"},
         "cannot have a recurrence"),
        ({"type": "recurring"}, "require daily, weekly or monthly"),
        ({"type": "recurring", "recurrence_type": "none"}, "require daily, weekly or monthly"),
        ({"type": "recurring", "recurrence_type": "weekly"}, "require day_of_week"),
        ({"type": "recurring", "recurrence_type": "monthly"}, "require day_of_month"),
        ({"type": "recurring", "recurrence_type": "weekly", "day_of_week": 7}, "between 0 (Sunday) and 6"),
        ({"type": "recurring", "recurrence_type": "monthly", "day_of_month": 0}, "between 1 and 31"),
        ({"type": "recurring", "recurrence_type": "daily", "scheduled_time": utc(2024, 6, 1, 9, 0),
          "recurrence_end_date": utc(2024, 5, 1, 0, 0)}, "end date is before"),
        ({"type": "hourly"}, "Invalid schedule type 'hourly'"),
        ({"type": "recurring", "recurrence_type": "yearly"}, "Invalid recurrence type 'yearly'"),
    ])
    def test_validation_errors(self, call_scheduler, schedule_store, kwargs, message):
        """Test inconsistent payloads are rejected before anything is stored"""
        with pytest.raises(ScheduleValidationError) as exc_info:
            call_scheduler.create_schedule("patient-1", "prompt-1", now=NOW, **kwargs)

        assert message in str(exc_info.value)
        assert schedule_store.list_patient_schedules("patient-1") == []

    def test_unknown_patient(self, call_scheduler):
        with pytest.raises(ReferentialIntegrityError):
            call_scheduler.create_schedule("ghost", "prompt-1", "one-time", scheduled_time=utc(2024, 6, 1, 9, 0))

    def test_unknown_prompt(self, call_scheduler):
        with pytest.raises(ReferentialIntegrityError):
            call_scheduler.create_schedule("patient-1", "gone", "one-time", scheduled_time=utc(2024, 6, 1, 9, 0))

    def test_prompt_of_another_patient(self, call_scheduler, directory):
        """Test a prompt can only be scheduled for the patient it belongs to"""
        directory.save_prompt(Prompt(id="prompt-other", patient_id="patient-2", name="Other", prompt="Hi"))

        with pytest.raises(ReferentialIntegrityError):
            call_scheduler.create_schedule(
                "patient-1", "prompt-other", "one-time", scheduled_time=utc(2024, 6, 1, 9, 0)
            )


class TestSlotConflicts:
    """Tests for the 30-minute block double-booking guard"""

    def test_same_block_rejected(self, call_scheduler):
        call_scheduler.create_schedule("patient-1", "prompt-1", "one-time", scheduled_time=utc(2024, 6, 1, 9, 0), now=NOW)

        with pytest.raises(SlotUnavailableError) as exc_info:
            call_scheduler.create_schedule(
                "patient-1", "prompt-1", "one-time", scheduled_time=utc(2024, 6, 1, 9, 20), now=NOW
            )

        assert str(exc_info.value) == "A call is already scheduled for Ada Lovelace at 9:00 AM on Jun 1, 2024"

    def test_adjacent_block_allowed(self, call_scheduler):
        call_scheduler.create_schedule("patient-1", "prompt-1", "one-time", scheduled_time=utc(2024, 6, 1, 9, 0), now=NOW)

        schedule = call_scheduler.create_schedule(
            "patient-1", "prompt-1", "one-time", scheduled_time=utc(2024, 6, 1, 9, 30), now=NOW
        )
        assert schedule.is_active

    def test_cancelled_schedule_frees_block(self, call_scheduler):
        first = call_scheduler.create_schedule(
            "patient-1", "prompt-1", "one-time", scheduled_time=utc(2024, 6, 1, 9, 0), now=NOW
        )
        call_scheduler.cancel_schedule(first.id)

        call_scheduler.create_schedule("patient-1", "prompt-1", "one-time", scheduled_time=utc(2024, 6, 1, 9, 10), now=NOW)

    def test_recurring_schedules_do_not_occupy_blocks(self, daily_schedule):
        assert is_slot_occupied(utc(2024, 6, 1, 9, 0), [daily_schedule]) is False

    def test_blocks_follow_patient_timezone(self, one_time_schedule):
        """Test blocks are compared on the patient's wall clock"""
        # 9:00 UTC is 5:00 AM Eastern, same block as 5:15 AM Eastern
        assert is_slot_occupied(utc(2024, 6, 1, 9, 15), [one_time_schedule], "US/Eastern") is True
        assert is_slot_occupied(utc(2024, 6, 1, 9, 30), [one_time_schedule], "US/Eastern") is False

    def test_exclude_id(self, one_time_schedule):
        assert is_slot_occupied(utc(2024, 6, 1, 9, 0), [one_time_schedule], exclude_id="sched-once") is False

    def test_round_to_slot(self):
        assert round_to_slot(utc(2024, 6, 1, 9, 44, 13)) == utc(2024, 6, 1, 9, 30)


class TestImmediateCalls:
    """Tests for "now" schedules and call_now"""

    def test_now_schedule_places_call(self, call_scheduler, call_store, mock_provider):
        schedule = call_scheduler.create_schedule("patient-1", "prompt-1", "now", now=NOW)

        assert schedule.is_active is False
        assert schedule.last_executed_at == NOW
        calls = call_store.list_patient_calls("patient-1")
        assert len(calls) == 1
        assert calls[0].schedule_id == schedule.id
        assert len(mock_provider.requests) == 1

    def test_now_schedule_is_never_picked_up_again(self, call_scheduler, mock_provider):
        call_scheduler.create_schedule("patient-1", "prompt-1", "now", now=NOW)

        summary = call_scheduler.run_due_schedules(NOW)

        assert summary.executed == 0
        assert len(mock_provider.requests) == 1

    def test_failed_now_schedule(self, call_scheduler, schedule_store, call_store, mock_provider):
        """Test a rejected immediate call is recorded and the schedule never marked executed"""
        mock_provider.should_fail = True

        with pytest.raises(ProviderRequestError):
            call_scheduler.create_schedule("patient-1", "prompt-1", "now", now=NOW)

        schedule = schedule_store.list_patient_schedules("patient-1")[0]
        assert schedule.last_executed_at is None
        assert schedule.is_active is False
        assert call_store.list_patient_calls("patient-1")[0].status == CallStatus.FAILED

    def test_call_now(self, call_scheduler):
        call = call_scheduler.call_now("patient-1", "prompt-1")

        assert call.schedule_id is None
        assert call.provider_call_id == "mock-call-1"


class TestScheduleManagement:

    def test_cancel_schedule(self, call_scheduler, schedule_store, daily_schedule):
        schedule_store.create_schedule(daily_schedule)

        cancelled = call_scheduler.cancel_schedule("sched-daily")

        assert cancelled.is_active is False
        assert schedule_store.list_active_schedules() == []

    def test_cancel_unknown_schedule(self, call_scheduler):
        with pytest.raises(NotFoundError):
            call_scheduler.cancel_schedule("missing")

    def test_list_schedules_newest_first(self, call_scheduler, schedule_store, one_time_schedule, daily_schedule):
        schedule_store.create_schedule(one_time_schedule)
        schedule_store.create_schedule(daily_schedule.copy_with(created_at=utc(2024, 5, 10, 0, 0)))

        assert [s.id for s in call_scheduler.list_schedules("patient-1")] == ["sched-daily", "sched-once"]

    def test_refresh_call_delegates_to_reconciler(self, call_scheduler):
        call_scheduler.reconciler = Mock()
        call_scheduler.refresh_call("call-1")

        call_scheduler.reconciler.refresh.assert_called_once_with("call-1")

    def test_next_execution(self, call_scheduler, weekly_monday_schedule):
        assert call_scheduler.next_execution(weekly_monday_schedule, utc(2024, 6, 4, 12, 0)) == utc(2024, 6, 10, 9, 0)


class TestTimeBlocks:

    def test_blocks_cover_business_day(self, call_scheduler):
        blocks = call_scheduler.time_blocks("patient-1", date(2024, 6, 1))

        assert len(blocks) == 25
        assert blocks[0].start == utc(2024, 6, 1, 8, 0)
        assert blocks[-1].start == utc(2024, 6, 1, 20, 0)
        assert blocks[0].label == "8:00 AM"
        assert blocks[-1].label == "8:00 PM"

    def test_occupied_block(self, call_scheduler, schedule_store, one_time_schedule):
        schedule_store.create_schedule(one_time_schedule)

        blocks = call_scheduler.time_blocks("patient-1", date(2024, 6, 1))

        assert [b.label for b in blocks if b.occupied] == ["9:00 AM"]

    def test_blocks_in_patient_timezone(self, call_scheduler, directory, sample_patient):
        directory.save_patient(replace(sample_patient, time_zone="America/Chicago"))

        blocks = call_scheduler.time_blocks("patient-1", date(2024, 6, 1))

        # 8:00 AM Central daylight time
        assert blocks[0].start == utc(2024, 6, 1, 13, 0)


class TestDescribeSchedule:
    """Tests for human-readable schedule summaries"""

    def test_one_time(self, call_scheduler, one_time_schedule):
        assert call_scheduler.describe_schedule(one_time_schedule) == "Scheduled for Jun 1, 2024 at 9:00 AM"

    def test_daily(self, call_scheduler, daily_schedule):
        assert call_scheduler.describe_schedule(daily_schedule) == "Daily at 9:00 AM"

    def test_weekly(self, call_scheduler, weekly_monday_schedule):
        assert call_scheduler.describe_schedule(weekly_monday_schedule) == "Monday at 9:00 AM"

    def test_monthly_with_end_date(self, call_scheduler, daily_schedule):
        schedule = daily_schedule.copy_with(
            recurrence_type=RecurrenceType.MONTHLY,
            day_of_month=15,
            recurrence_end_date=utc(2024, 12, 31, 0, 0),
        )
        assert call_scheduler.describe_schedule(schedule) == "Monthly on day 15 at 9:00 AM until Dec 31, 2024"

    def test_now(self, call_scheduler):
        assert call_scheduler.describe_schedule(Schedule(patient_id="patient-1", type=ScheduleType.NOW)) == "Immediate call"


class TestBuildScheduler:

    @patch('scheduling.scheduler.get_key_prefix', return_value="test")
    def test_build_scheduler_wires_redis_stores(self, mock_prefix, mock_redis):
        scheduler = build_scheduler(mock_redis, provider=MockVoiceCallProvider())

        assert isinstance(scheduler, CallScheduler)
        assert isinstance(scheduler.schedule_store, RedisScheduleStore)
        assert scheduler.schedule_store.schedules_key == "test:schedules"
