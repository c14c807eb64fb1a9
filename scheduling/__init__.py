"""
Scheduling module for the care-line call system

Contains components for turning call schedules into placed calls:
- models: Patient, Prompt, Schedule and Call records
- evaluator: decides when a schedule is due
- executor: places due calls through the voice provider
- reconciler: merges provider call state into stored calls
- scheduler: CallScheduler service used by the CLI and jobs
- worker / tasks: the poller loop and RQ jobs

Only the models and errors are imported here; import the service modules
directly so the voice package can depend on scheduling.errors.
"""

from .errors import (
    InvalidPhoneNumberError, MissingProviderReferenceError, NotFoundError, ProviderError,
    ProviderRequestError, ProviderSyncError, ReferentialIntegrityError, ScheduleValidationError,
    SchedulingError, SlotUnavailableError
)
from .models import Call, CallStatus, Patient, Prompt, RecurrenceType, Schedule, ScheduleType

__all__ = [
    "Call",
    "CallStatus",
    "Patient",
    "Prompt",
    "RecurrenceType",
    "Schedule",
    "ScheduleType",
    "SchedulingError",
    "NotFoundError",
    "ReferentialIntegrityError",
    "ScheduleValidationError",
    "InvalidPhoneNumberError",
    "SlotUnavailableError",
    "MissingProviderReferenceError",
    "ProviderError",
    "ProviderRequestError",
    "ProviderSyncError",
]
