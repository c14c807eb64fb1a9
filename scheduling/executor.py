"""
Schedule executor - places calls for due schedules through the voice provider

Uses dependency injection for stores and provider to improve testability.
Due evaluation, retry rules and status mapping live in pure functions.
"""
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

from shared.prompt_manager import render_prompt
from utils.time_utils import local_date, now_utc, to_utc
from voice.provider import InitiateCallRequest, VoiceCallProvider

from .call_logic import RetryPolicy, format_phone_e164, map_provider_status
from .errors import (
    InvalidPhoneNumberError, ProviderRequestError, ReferentialIntegrityError, SchedulingError
)
from .evaluator import evaluate_schedule, period_start
from .models import Call, CallStatus, Patient, Prompt, Schedule
from .store import CallStore, DirectoryStore, ScheduleStore

logger = logging.getLogger("schedule-executor")

EXECUTED = "executed"
FAILED = "failed"
SKIPPED = "skipped"
NOT_DUE = "not-due"


@dataclass
class ExecutionSummary:
    """Aggregate outcome of one pass over the active schedules"""
    executed: int = 0
    failed: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)

    def record(self, outcome: str):
        if outcome == EXECUTED:
            self.executed += 1
        elif outcome == FAILED:
            self.failed += 1
        elif outcome == SKIPPED:
            self.skipped += 1

    def to_dict(self):
        return {
            "executed": self.executed,
            "failed": self.failed,
            "skipped": self.skipped,
            "errors": list(self.errors),
        }


class ScheduleExecutor:
    """
    Executes due schedules: evaluate, claim, initiate, record, update
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
        """
        Initialize the schedule executor

        Args:
            schedule_store: Schedule persistence
            call_store: Call persistence
            directory: Patient and prompt lookup
            provider: Voice-call provider used to place calls
            default_timezone: Timezone for patients without one
            retry_policy: Backoff rules for failed initiations
            clock: Source of the current instant
        """
        self.schedule_store = schedule_store
        self.call_store = call_store
        self.directory = directory
        self.provider = provider
        self.default_timezone = default_timezone
        self.retry_policy = retry_policy or RetryPolicy()
        self.clock = clock

    def run_due_schedules(self, now: Optional[datetime] = None) -> ExecutionSummary:
        """
        Place calls for every schedule that is due

        Per-schedule failures are logged and counted, never raised.

        Args:
            now: Evaluation instant (defaults to the clock)

        Returns:
            ExecutionSummary with executed/failed/skipped counts
        """
        now = to_utc(now or self.clock())
        summary = ExecutionSummary()

        schedules = self.schedule_store.list_active_schedules()
        logger.debug(f"Evaluating {len(schedules)} active schedules at {now.isoformat()}")

        for schedule in schedules:
            try:
                outcome = self.execute_schedule(schedule, now)
            except ProviderRequestError as e:
                outcome = FAILED
                summary.errors.append(f"Schedule {schedule.id}: {e.message}")
            except SchedulingError as e:
                logger.error(f"Schedule {schedule.id} failed: {e}")
                outcome = FAILED
                summary.errors.append(f"Schedule {schedule.id}: {e}")
            except Exception as e:
                logger.error(f"Unexpected error executing schedule {schedule.id}: {e}", exc_info=True)
                outcome = FAILED
                summary.errors.append(f"Schedule {schedule.id}: {e}")
            summary.record(outcome)

        if summary.executed or summary.failed or summary.skipped:
            logger.info(
                f"Due run complete: {summary.executed} executed, {summary.failed} failed, "
                f"{summary.skipped} skipped"
            )
        return summary

    def execute_schedule(self, schedule: Schedule, now: datetime) -> str:
        """
        Run one schedule if it is due

        Returns:
            Outcome string: executed, skipped or not-due

        Raises:
            ReferentialIntegrityError: Patient or prompt is missing
            InvalidPhoneNumberError: Patient has no dialable number
            ProviderRequestError: Provider did not accept the call (after recording it)
        """
        patient = self.directory.get_patient(schedule.patient_id)
        timezone_name = patient.time_zone if patient else None

        evaluation = evaluate_schedule(schedule, now, timezone_name, self.default_timezone)
        if not evaluation.due:
            logger.debug(f"Schedule {schedule.id} not due: {evaluation.reason}")
            return NOT_DUE

        same_period = True
        if schedule.is_recurring and schedule.last_attempt_at is not None:
            attempt_day = local_date(schedule.last_attempt_at, timezone_name, self.default_timezone)
            same_period = attempt_day == evaluation.period

        allowed, reason = self.retry_policy.check(schedule, now, same_period)
        if not allowed:
            logger.info(f"Skipping schedule {schedule.id}: {reason}")
            if schedule.is_one_time and self.retry_policy.attempts_exhausted(schedule.attempt_count):
                self.schedule_store.update_schedule(schedule.id, is_active=False)
                logger.warning(f"Deactivated one-time schedule {schedule.id} after {schedule.attempt_count} failed attempts")
            return SKIPPED

        try:
            if patient is None:
                raise ReferentialIntegrityError(f"Schedule {schedule.id} references missing patient {schedule.patient_id}")
            prompt = self._resolve_prompt(schedule.prompt_id, f"Schedule {schedule.id}")
            phone_number = self._dial_number(patient)
        except (ReferentialIntegrityError, InvalidPhoneNumberError):
            self._record_failed_attempt(schedule, now, same_period)
            raise

        claim_before = None
        if schedule.is_recurring:
            claim_before = period_start(evaluation.period, timezone_name, self.default_timezone)

        if not self.schedule_store.claim_schedule(schedule.id, now, claim_before):
            logger.info(f"Schedule {schedule.id} already claimed for {evaluation.period}, skipping")
            return SKIPPED

        logger.info(f"Executing schedule {schedule.id} for patient {patient.id} ({evaluation.reason})")

        try:
            self._place_call(patient, prompt, phone_number, schedule.id, now)
        except ProviderRequestError:
            self.schedule_store.release_schedule_claim(schedule.id, now, schedule.last_executed_at)
            self._record_failed_attempt(schedule, now, same_period)
            raise

        self._finalize_success(schedule, now, timezone_name)
        return EXECUTED

    def _record_failed_attempt(self, schedule: Schedule, now: datetime, same_period: bool):
        attempts = schedule.attempt_count + 1 if same_period else 1
        self.schedule_store.update_schedule(schedule.id, last_attempt_at=now, attempt_count=attempts)
        logger.warning(f"Schedule {schedule.id} attempt {attempts}/{self.retry_policy.max_attempts} failed")

    def _finalize_success(self, schedule: Schedule, now: datetime, timezone_name: Optional[str]):
        updates = {"last_executed_at": now, "last_attempt_at": now, "attempt_count": 0}

        if schedule.is_one_time:
            updates["is_active"] = False
        elif schedule.is_recurring and schedule.recurrence_end_date is not None:
            today = local_date(now, timezone_name, self.default_timezone)
            if today > local_date(schedule.recurrence_end_date, timezone_name, self.default_timezone):
                updates["is_active"] = False

        self.schedule_store.update_schedule(schedule.id, **updates)
        if updates.get("is_active") is False:
            logger.info(f"Schedule {schedule.id} deactivated after execution")

    def execute_now(
        self,
        patient_id: str,
        prompt_id: str,
        schedule_id: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Call:
        """
        Place a call immediately, bypassing due evaluation

        Returns:
            The created Call

        Raises:
            ReferentialIntegrityError: Patient or prompt is missing
            InvalidPhoneNumberError: Patient has no dialable number
            ProviderRequestError: Provider did not accept the call; a failed Call is still recorded
        """
        now = to_utc(now or self.clock())

        patient = self.directory.get_patient(patient_id)
        if patient is None:
            raise ReferentialIntegrityError(f"Patient {patient_id} not found")
        prompt = self._resolve_prompt(prompt_id, f"Patient {patient_id}")
        phone_number = self._dial_number(patient)

        logger.info(f"Placing immediate call for patient {patient_id} with prompt {prompt_id}")
        return self._place_call(patient, prompt, phone_number, schedule_id, now)

    def _resolve_prompt(self, prompt_id: str, owner: str) -> Prompt:
        prompt = self.directory.get_prompt(prompt_id)
        if prompt is None:
            raise ReferentialIntegrityError(f"{owner} references missing prompt {prompt_id}")
        return prompt

    def _dial_number(self, patient: Patient) -> str:
        if not patient.phone:
            raise InvalidPhoneNumberError(f"Patient {patient.id} has no phone number")
        phone_number = format_phone_e164(patient.phone)
        digits = re.sub(r"\D", "", phone_number)
        if not 11 <= len(digits) <= 15:
            raise InvalidPhoneNumberError(f"Patient {patient.id} phone number '{patient.phone}' cannot be dialed")
        return phone_number

    def _place_call(
        self,
        patient: Patient,
        prompt: Prompt,
        phone_number: str,
        schedule_id: Optional[str],
        now: datetime
    ) -> Call:
        """Initiate the call and record it; failed initiations are recorded before re-raising"""
        today = local_date(now, patient.time_zone, self.default_timezone)
        request = InitiateCallRequest(
            customer_number=phone_number,
            prompt_text=render_prompt(prompt.prompt, patient, today),
        )

        try:
            provider_call = self.provider.initiate_call(request)
        except ProviderRequestError as e:
            call = Call(
                patient_id=patient.id,
                prompt_id=prompt.id,
                schedule_id=schedule_id,
                phone_number=phone_number,
                status=CallStatus.FAILED,
                error_message=e.message,
                created_at=now,
            )
            self.call_store.create_call(call)
            logger.error(f"Call to {phone_number} for patient {patient.id} failed: {e.message}")
            raise

        status = map_provider_status(provider_call.status)
        call = Call(
            patient_id=patient.id,
            prompt_id=prompt.id,
            schedule_id=schedule_id,
            phone_number=phone_number,
            provider_call_id=provider_call.id,
            status=status,
            started_at=now if status == CallStatus.IN_PROGRESS else None,
            created_at=now,
        )
        self.call_store.create_call(call)
        logger.info(f"Call {call.id} placed (provider id {provider_call.id}, status {status.value})")
        return call
