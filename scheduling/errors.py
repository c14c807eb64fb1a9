"""
Error taxonomy for call scheduling and execution
"""
from typing import Optional


class SchedulingError(Exception):
    """Base class for every error raised by the scheduling core"""


class NotFoundError(SchedulingError):
    """A schedule, call, patient or prompt id does not exist"""

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class ReferentialIntegrityError(SchedulingError):
    """A schedule references a patient or prompt that no longer exists"""


class ScheduleValidationError(SchedulingError, ValueError):
    """Schedule payload is inconsistent with its type"""


class InvalidPhoneNumberError(SchedulingError, ValueError):
    """Patient phone number cannot be dialed"""


class SlotUnavailableError(SchedulingError):
    """The requested 30-minute block already holds a one-time call"""


class MissingProviderReferenceError(SchedulingError):
    """Refresh requested for a call the provider never accepted"""

    def __init__(self, call_id: str):
        self.call_id = call_id
        super().__init__(f"Call {call_id} has no provider call id")


class ProviderError(SchedulingError):
    """Failure talking to the voice-call provider"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class ProviderRequestError(ProviderError):
    """Call initiation was rejected or never reached the provider"""


class ProviderSyncError(ProviderError):
    """Fetching call details from the provider failed"""
