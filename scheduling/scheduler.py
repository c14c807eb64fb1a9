"""
Call scheduler service for the care-line system

Creates and cancels schedules, guards 30-minute slots against double booking,
places immediate calls and refreshes call reports. Used by the CLI and RQ jobs.
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Callable, List, Optional, Union

import redis

from config.redis import create_redis_connection, get_key_prefix
from config.settings import SchedulerSettings, VapiConfig
from utils.time_utils import local_date, localize, now_utc, to_patient_timezone, to_utc
from voice.provider import VoiceCallProvider, create_voice_provider

from .call_logic import RetryPolicy
from .errors import NotFoundError, ReferentialIntegrityError, ScheduleValidationError, SlotUnavailableError
from .evaluator import next_execution_time
from .executor import ScheduleExecutor
from .models import Call, RecurrenceType, Schedule, ScheduleType
from .reconciler import CallStatusReconciler
from .redis_store import RedisCallStore, RedisDirectoryStore, RedisScheduleStore
from .store import CallStore, DirectoryStore, ScheduleStore

logger = logging.getLogger("call-scheduler")

SLOT_MINUTES = 30
DAY_START = time(8, 0)
DAY_END = time(20, 0)

DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]


@dataclass(frozen=True)
class TimeBlock:
    """A bookable 30-minute block on a patient's local calendar day"""
    start: datetime
    occupied: bool

    @property
    def label(self) -> str:
        return _clock_label(self.start)


def _clock_label(dt: datetime) -> str:
    return dt.strftime("%I:%M %p").lstrip("0")


def _date_label(dt: datetime) -> str:
    return f"{dt:%b} {dt.day}, {dt.year}"


def round_to_slot(dt: datetime) -> datetime:
    """Round a local datetime down to the start of its 30-minute block"""
    return dt.replace(minute=(dt.minute // SLOT_MINUTES) * SLOT_MINUTES, second=0, microsecond=0)


def is_slot_occupied(
    slot_start: datetime,
    schedules: List[Schedule],
    timezone_name: Optional[str] = None,
    default_timezone: str = 'UTC',
    exclude_id: Optional[str] = None
) -> bool:
    """
    Check whether an active one-time schedule already falls in the block

    Args:
        slot_start: Any instant inside the block
        schedules: Schedules of the patient
        timezone_name: Patient timezone the blocks are laid out in
        default_timezone: Timezone used when the patient has none
        exclude_id: Schedule id to ignore
    """
    block = round_to_slot(to_patient_timezone(slot_start, timezone_name, default_timezone))
    for schedule in schedules:
        if schedule.id == exclude_id or not schedule.is_active or not schedule.is_one_time:
            continue
        if schedule.scheduled_time is None:
            continue
        existing = round_to_slot(to_patient_timezone(schedule.scheduled_time, timezone_name, default_timezone))
        if existing.date() == block.date() and (existing.hour, existing.minute) == (block.hour, block.minute):
            return True
    return False


def _coerce_enum(enum_cls, value, label: str):
    if value is None or isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ScheduleValidationError(f"Invalid {label} '{value}' (expected one of: {allowed})")


def validate_schedule_fields(
    schedule_type: ScheduleType,
    scheduled_time: Optional[datetime],
    recurrence_type: Optional[RecurrenceType],
    recurrence_end_date: Optional[datetime],
    day_of_week: Optional[int],
    day_of_month: Optional[int]
):
    """Raise ScheduleValidationError when the fields do not fit the schedule type"""
    if day_of_week is not None and not 0 <= day_of_week <= 6:
        raise ScheduleValidationError("day_of_week must be between 0 (Sunday) and 6 (Saturday)")
    if day_of_month is not None and not 1 <= day_of_month <= 31:
        raise ScheduleValidationError("day_of_month must be between 1 and 31")

    if schedule_type == ScheduleType.ONE_TIME:
        if scheduled_time is None:
            raise ScheduleValidationError("One-time schedules require a scheduled time")
        if recurrence_type not in (None, RecurrenceType.NONE):
            raise ScheduleValidationError("One-time schedules cannot have a recurrence")

    elif schedule_type == ScheduleType.RECURRING:
        if recurrence_type in (None, RecurrenceType.NONE):
            raise ScheduleValidationError("Recurring schedules require daily, weekly or monthly recurrence")
        if recurrence_type == RecurrenceType.WEEKLY and day_of_week is None:
            raise ScheduleValidationError("Weekly schedules require day_of_week")
        if recurrence_type == RecurrenceType.MONTHLY and day_of_month is None:
            raise ScheduleValidationError("Monthly schedules require day_of_month")
        if recurrence_end_date and scheduled_time and to_utc(recurrence_end_date) < to_utc(scheduled_time):
            raise ScheduleValidationError("Recurrence end date is before the scheduled time")


class CallScheduler:
    """
    Manages call schedules and on-demand calls for patients
    """

    def __init__(
        self,
        schedule_store: ScheduleStore,
        call_store: CallStore,
        directory: DirectoryStore,
        provider: VoiceCallProvider,
        default_timezone: str = 'UTC',
        retry_policy: Optional[RetryPolicy] = None,
        clock: Callable[[], datetime] = now_utc
    ):
        self.schedule_store = schedule_store
        self.call_store = call_store
        self.directory = directory
        self.default_timezone = default_timezone
        self.clock = clock
        self.executor = ScheduleExecutor(
            schedule_store, call_store, directory, provider,
            default_timezone=default_timezone, retry_policy=retry_policy, clock=clock
        )
        self.reconciler = CallStatusReconciler(call_store, provider)

    def _patient_timezone(self, patient_id: str) -> Optional[str]:
        patient = self.directory.get_patient(patient_id)
        return patient.time_zone if patient else None

    def create_schedule(
        self,
        patient_id: str,
        prompt_id: str,
        type: Union[ScheduleType, str],
        scheduled_time: Optional[datetime] = None,
        recurrence_type: Union[RecurrenceType, str, None] = None,
        recurrence_end_date: Optional[datetime] = None,
        day_of_week: Optional[int] = None,
        day_of_month: Optional[int] = None,
        now: Optional[datetime] = None
    ) -> Schedule:
        """
        Create a schedule for a patient prompt

        "now" schedules are stored inactive and the call is placed immediately.

        Raises:
            ScheduleValidationError: Fields do not fit the schedule type
            ReferentialIntegrityError: Patient or prompt missing, or prompt belongs to another patient
            SlotUnavailableError: A one-time call is already booked in the 30-minute block
            ProviderRequestError: An immediate call was not accepted
        """
        now = to_utc(now or self.clock())
        schedule_type = _coerce_enum(ScheduleType, type, "schedule type")
        recurrence = _coerce_enum(RecurrenceType, recurrence_type, "recurrence type")
        if schedule_type != ScheduleType.RECURRING and recurrence == RecurrenceType.NONE:
            recurrence = None

        validate_schedule_fields(
            schedule_type, scheduled_time, recurrence, recurrence_end_date, day_of_week, day_of_month
        )

        patient = self.directory.get_patient(patient_id)
        if patient is None:
            raise ReferentialIntegrityError(f"Patient {patient_id} not found")
        prompt = self.directory.get_prompt(prompt_id)
        if prompt is None or prompt.patient_id != patient_id:
            raise ReferentialIntegrityError(f"Prompt {prompt_id} not found for patient {patient_id}")

        if schedule_type == ScheduleType.ONE_TIME:
            existing = self.schedule_store.list_patient_schedules(patient_id)
            if is_slot_occupied(scheduled_time, existing, patient.time_zone, self.default_timezone):
                local = to_patient_timezone(scheduled_time, patient.time_zone, self.default_timezone)
                raise SlotUnavailableError(
                    f"A call is already scheduled for {patient.full_name} at "
                    f"{_clock_label(round_to_slot(local))} on {_date_label(local)}"
                )

        schedule = Schedule(
            patient_id=patient_id,
            prompt_id=prompt_id,
            type=schedule_type,
            scheduled_time=to_utc(scheduled_time) if scheduled_time else None,
            recurrence_type=recurrence,
            recurrence_end_date=to_utc(recurrence_end_date) if recurrence_end_date else None,
            day_of_week=day_of_week,
            day_of_month=day_of_month,
            is_active=schedule_type != ScheduleType.NOW,
            created_at=now,
        )
        self.schedule_store.create_schedule(schedule)
        logger.info(f"Created {schedule_type.value} schedule {schedule.id} for patient {patient_id}")

        if schedule_type == ScheduleType.NOW:
            self.executor.execute_now(patient_id, prompt_id, schedule_id=schedule.id, now=now)
            schedule = self.schedule_store.update_schedule(schedule.id, last_executed_at=now)

        return schedule

    def cancel_schedule(self, schedule_id: str) -> Schedule:
        """Deactivate a schedule; raises NotFoundError"""
        if self.schedule_store.get_schedule(schedule_id) is None:
            raise NotFoundError("Schedule", schedule_id)
        schedule = self.schedule_store.update_schedule(schedule_id, is_active=False)
        logger.info(f"Cancelled schedule {schedule_id}")
        return schedule

    def call_now(self, patient_id: str, prompt_id: str) -> Call:
        """Place a call immediately without creating a schedule"""
        return self.executor.execute_now(patient_id, prompt_id)

    def refresh_call(self, call_id: str) -> Call:
        """Pull the latest transcript and report for a call"""
        return self.reconciler.refresh(call_id)

    def run_due_schedules(self, now: Optional[datetime] = None):
        return self.executor.run_due_schedules(now)

    def list_schedules(self, patient_id: str) -> List[Schedule]:
        return self.schedule_store.list_patient_schedules(patient_id)

    def list_calls(self, patient_id: str) -> List[Call]:
        return self.call_store.list_patient_calls(patient_id)

    def time_blocks(self, patient_id: str, day: date) -> List[TimeBlock]:
        """
        30-minute blocks from 8:00 AM to 8:00 PM on the patient's local day

        Args:
            patient_id: Patient whose one-time schedules mark blocks occupied
            day: Local calendar day

        Returns:
            TimeBlocks with start as UTC instants
        """
        timezone_name = self._patient_timezone(patient_id)
        schedules = self.schedule_store.list_patient_schedules(patient_id)

        blocks = []
        current = datetime.combine(day, DAY_START)
        end = datetime.combine(day, DAY_END)
        while current <= end:
            start = localize(day, current.time(), timezone_name, self.default_timezone)
            occupied = is_slot_occupied(start, schedules, timezone_name, self.default_timezone)
            blocks.append(TimeBlock(start=start, occupied=occupied))
            current += timedelta(minutes=SLOT_MINUTES)
        return blocks

    def next_execution(self, schedule: Schedule, now: Optional[datetime] = None) -> Optional[datetime]:
        """Next instant the schedule fires, None if never"""
        now = to_utc(now or self.clock())
        return next_execution_time(schedule, now, self._patient_timezone(schedule.patient_id), self.default_timezone)

    def describe_schedule(self, schedule: Schedule) -> str:
        """Human-readable summary, e.g. "Daily at 9:00 AM until Jun 30, 2024" """
        timezone_name = self._patient_timezone(schedule.patient_id)

        def local(dt: datetime) -> datetime:
            return to_patient_timezone(dt, timezone_name, self.default_timezone)

        if schedule.type == ScheduleType.ONE_TIME and schedule.scheduled_time:
            when = local(schedule.scheduled_time)
            return f"Scheduled for {_date_label(when)} at {_clock_label(when)}"

        if schedule.type != ScheduleType.RECURRING:
            return "Immediate call"

        at = f" at {_clock_label(local(schedule.scheduled_time))}" if schedule.scheduled_time else ""
        recurrence = schedule.recurrence_type

        if recurrence == RecurrenceType.DAILY:
            info = f"Daily{at}"
        elif recurrence == RecurrenceType.WEEKLY:
            if schedule.day_of_week is not None and 0 <= schedule.day_of_week <= 6:
                info = f"{DAY_NAMES[schedule.day_of_week]}{at}"
            else:
                info = f"Weekly{at}"
        elif recurrence == RecurrenceType.MONTHLY and schedule.day_of_month is not None:
            info = f"Monthly on day {schedule.day_of_month}{at}"
        else:
            info = f"Recurring {recurrence.value if recurrence else 'unscheduled'} calls"

        if schedule.recurrence_end_date:
            info += f" until {_date_label(local(schedule.recurrence_end_date))}"
        return info


def build_scheduler(
    redis_client: Optional[redis.Redis] = None,
    settings: Optional[SchedulerSettings] = None,
    provider: Optional[VoiceCallProvider] = None,
    vapi_config: Optional[VapiConfig] = None
) -> CallScheduler:
    """
    Wire a CallScheduler to Redis stores and the VAPI provider

    Args:
        redis_client: Redis connection (defaults to environment settings)
        settings: Scheduler settings (defaults to environment)
        provider: Voice provider (defaults to VAPI from environment)
        vapi_config: VAPI settings used when no provider is given
    """
    redis_client = redis_client or create_redis_connection()
    settings = settings or SchedulerSettings.from_env()
    provider = provider or create_voice_provider(config=vapi_config)
    prefix = get_key_prefix()

    return CallScheduler(
        RedisScheduleStore(redis_client, prefix),
        RedisCallStore(redis_client, prefix),
        RedisDirectoryStore(redis_client, prefix),
        provider,
        default_timezone=settings.timezone,
        retry_policy=RetryPolicy(max_attempts=settings.max_attempts),
    )
