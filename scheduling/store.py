"""
Store contracts for schedules, calls and the patient/prompt directory

The executor, reconciler and scheduler depend only on these interfaces.
In-memory implementations back tests and single-process demos; the Redis
implementations live in scheduling.redis_store.
"""
import threading
from abc import ABC, abstractmethod
from dataclasses import fields, replace
from datetime import datetime
from typing import Dict, List, Optional

from utils.time_utils import to_utc

from .errors import NotFoundError
from .models import Call, Patient, Prompt, Schedule

SCHEDULE_UPDATABLE_FIELDS = frozenset(
    {"is_active", "last_executed_at", "last_attempt_at", "attempt_count", "scheduled_time", "recurrence_end_date"}
)
CALL_UPDATABLE_FIELDS = frozenset(
    f.name for f in fields(Call) if f.name not in ("id", "patient_id", "prompt_id", "created_at")
)


def _check_fields(updates: Dict, allowed: frozenset, entity: str):
    unknown = set(updates) - allowed
    if unknown:
        raise ValueError(f"Cannot update {entity} fields: {', '.join(sorted(unknown))}")


class ScheduleStore(ABC):
    """Persistence contract for schedule records"""

    @abstractmethod
    def list_active_schedules(self) -> List[Schedule]:
        """All schedules with is_active set"""

    @abstractmethod
    def list_patient_schedules(self, patient_id: str) -> List[Schedule]:
        """All schedules of a patient, newest first"""

    @abstractmethod
    def get_schedule(self, schedule_id: str) -> Optional[Schedule]:
        """Fetch a schedule or None"""

    @abstractmethod
    def create_schedule(self, schedule: Schedule) -> Schedule:
        """Persist a new schedule"""

    @abstractmethod
    def update_schedule(self, schedule_id: str, **updates) -> Schedule:
        """Apply a partial update; raises NotFoundError"""

    @abstractmethod
    def claim_schedule(self, schedule_id: str, claimed_at: datetime, claim_before: Optional[datetime]) -> bool:
        """
        Atomically take firing rights for a period

        Sets last_executed_at to claimed_at only if the schedule is active and
        last_executed_at is unset, or earlier than claim_before when given.

        Returns:
            True if this caller now owns the firing
        """

    @abstractmethod
    def release_schedule_claim(self, schedule_id: str, claimed_at: datetime, previous: Optional[datetime]) -> bool:
        """
        Undo a claim after a definite initiation failure

        Restores last_executed_at to previous only if it still equals claimed_at.
        """


class CallStore(ABC):
    """Persistence contract for call records"""

    @abstractmethod
    def create_call(self, call: Call) -> Call:
        """Persist a new call"""

    @abstractmethod
    def update_call(self, call_id: str, **updates) -> Call:
        """Apply a partial update; raises NotFoundError"""

    @abstractmethod
    def get_call(self, call_id: str) -> Optional[Call]:
        """Fetch a call or None"""

    @abstractmethod
    def list_patient_calls(self, patient_id: str) -> List[Call]:
        """All calls of a patient, newest first"""


class DirectoryStore(ABC):
    """Read access to patients and prompts, owned by the enrollment workflow"""

    @abstractmethod
    def get_patient(self, patient_id: str) -> Optional[Patient]:
        pass

    @abstractmethod
    def get_prompt(self, prompt_id: str) -> Optional[Prompt]:
        pass

    @abstractmethod
    def list_patient_prompts(self, patient_id: str) -> List[Prompt]:
        pass

    @abstractmethod
    def save_patient(self, patient: Patient) -> Patient:
        pass

    @abstractmethod
    def save_prompt(self, prompt: Prompt) -> Prompt:
        pass


class InMemoryScheduleStore(ScheduleStore):
    """Thread-safe in-memory schedule store"""

    def __init__(self, schedules: Optional[List[Schedule]] = None):
        self._schedules: Dict[str, Schedule] = {}
        self._lock = threading.Lock()
        for schedule in schedules or []:
            self._schedules[schedule.id] = schedule

    def list_active_schedules(self) -> List[Schedule]:
        with self._lock:
            return [s for s in self._schedules.values() if s.is_active]

    def list_patient_schedules(self, patient_id: str) -> List[Schedule]:
        with self._lock:
            schedules = [s for s in self._schedules.values() if s.patient_id == patient_id]
        return sorted(schedules, key=lambda s: s.created_at, reverse=True)

    def get_schedule(self, schedule_id: str) -> Optional[Schedule]:
        with self._lock:
            return self._schedules.get(schedule_id)

    def create_schedule(self, schedule: Schedule) -> Schedule:
        with self._lock:
            self._schedules[schedule.id] = schedule
        return schedule

    def update_schedule(self, schedule_id: str, **updates) -> Schedule:
        _check_fields(updates, SCHEDULE_UPDATABLE_FIELDS, "schedule")
        with self._lock:
            current = self._schedules.get(schedule_id)
            if current is None:
                raise NotFoundError("Schedule", schedule_id)
            updated = replace(current, **updates)
            self._schedules[schedule_id] = updated
            return updated

    def claim_schedule(self, schedule_id: str, claimed_at: datetime, claim_before: Optional[datetime]) -> bool:
        with self._lock:
            current = self._schedules.get(schedule_id)
            if current is None:
                raise NotFoundError("Schedule", schedule_id)
            if not current.is_active:
                return False
            last = current.last_executed_at
            if last is not None and (claim_before is None or to_utc(last) >= to_utc(claim_before)):
                return False
            self._schedules[schedule_id] = replace(current, last_executed_at=claimed_at)
            return True

    def release_schedule_claim(self, schedule_id: str, claimed_at: datetime, previous: Optional[datetime]) -> bool:
        with self._lock:
            current = self._schedules.get(schedule_id)
            if current is None or current.last_executed_at != claimed_at:
                return False
            self._schedules[schedule_id] = replace(current, last_executed_at=previous)
            return True


class InMemoryCallStore(CallStore):
    """Thread-safe in-memory call store"""

    def __init__(self):
        self._calls: Dict[str, Call] = {}
        self._lock = threading.Lock()

    def create_call(self, call: Call) -> Call:
        with self._lock:
            self._calls[call.id] = call
        return call

    def update_call(self, call_id: str, **updates) -> Call:
        _check_fields(updates, CALL_UPDATABLE_FIELDS, "call")
        with self._lock:
            current = self._calls.get(call_id)
            if current is None:
                raise NotFoundError("Call", call_id)
            updated = replace(current, **updates)
            self._calls[call_id] = updated
            return updated

    def get_call(self, call_id: str) -> Optional[Call]:
        with self._lock:
            return self._calls.get(call_id)

    def list_patient_calls(self, patient_id: str) -> List[Call]:
        with self._lock:
            calls = [c for c in self._calls.values() if c.patient_id == patient_id]
        return sorted(calls, key=lambda c: c.created_at, reverse=True)

    def all_calls(self) -> List[Call]:
        with self._lock:
            return list(self._calls.values())


class InMemoryDirectoryStore(DirectoryStore):
    """In-memory patient/prompt directory"""

    def __init__(self, patients: Optional[List[Patient]] = None, prompts: Optional[List[Prompt]] = None):
        self._patients = {p.id: p for p in patients or []}
        self._prompts = {p.id: p for p in prompts or []}

    def get_patient(self, patient_id: str) -> Optional[Patient]:
        return self._patients.get(patient_id)

    def get_prompt(self, prompt_id: str) -> Optional[Prompt]:
        return self._prompts.get(prompt_id)

    def list_patient_prompts(self, patient_id: str) -> List[Prompt]:
        prompts = [p for p in self._prompts.values() if p.patient_id == patient_id]
        return sorted(prompts, key=lambda p: p.created_at, reverse=True)

    def save_patient(self, patient: Patient) -> Patient:
        self._patients[patient.id] = patient
        return patient

    def save_prompt(self, prompt: Prompt) -> Prompt:
        self._prompts[prompt.id] = prompt
        return prompt
