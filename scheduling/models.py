"""
Data models for the care-line call scheduling system
"""
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from enum import Enum
from typing import Optional, Dict, Any, List
import uuid

from utils.time_utils import now_utc, parse_optional_datetime, format_optional_datetime


def _new_id() -> str:
    return str(uuid.uuid4())


def _empty_to_none(value):
    """Handle Redis empty strings as None"""
    return None if value == "" else value


def _optional_int(value) -> Optional[int]:
    value = _empty_to_none(value)
    return int(value) if value is not None else None


def _as_bool(value) -> bool:
    if isinstance(value, str):
        return value.lower() == "true"
    return bool(value)


class PrimaryCondition(Enum):
    """Chronic condition the patient is enrolled for"""
    CHF = "CHF"
    COPD = "COPD"


class ScheduleType(Enum):
    """How a schedule fires"""
    ONE_TIME = "one-time"
    RECURRING = "recurring"
    NOW = "now"


class RecurrenceType(Enum):
    """Recurrence rule of a recurring schedule"""
    NONE = "none"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"

    @classmethod
    def from_value(cls, value: Optional[str]) -> Optional["RecurrenceType"]:
        value = _empty_to_none(value)
        return cls(value) if value is not None else None


class CallStatus(Enum):
    """Status of a call attempt"""
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (CallStatus.COMPLETED, CallStatus.FAILED)


@dataclass
class Patient:
    """Enrolled patient; owned by the enrollment workflow"""
    id: str = field(default_factory=_new_id)
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    phone: Optional[str] = None
    date_of_birth: Optional[date] = None
    time_zone: Optional[str] = None
    primary_condition: PrimaryCondition = PrimaryCondition.CHF
    created_at: datetime = field(default_factory=now_utc)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def age_on(self, day: date) -> Optional[int]:
        """Age in whole years on the given day"""
        if not self.date_of_birth:
            return None
        had_birthday = (day.month, day.day) >= (self.date_of_birth.month, self.date_of_birth.day)
        return day.year - self.date_of_birth.year - (0 if had_birthday else 1)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
            "phone": self.phone,
            "date_of_birth": self.date_of_birth.isoformat() if self.date_of_birth else None,
            "time_zone": self.time_zone,
            "primary_condition": self.primary_condition.value,
            "created_at": format_optional_datetime(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Patient":
        dob = _empty_to_none(data.get("date_of_birth"))
        return cls(
            id=data["id"],
            first_name=data.get("first_name", ""),
            last_name=data.get("last_name", ""),
            email=data.get("email", ""),
            phone=_empty_to_none(data.get("phone")),
            date_of_birth=date.fromisoformat(dob[:10]) if dob else None,
            time_zone=_empty_to_none(data.get("time_zone")),
            primary_condition=PrimaryCondition(data.get("primary_condition", "CHF")),
            created_at=parse_optional_datetime(data.get("created_at")) or now_utc(),
        )


@dataclass
class Prompt:
    """Named call prompt template bound to one patient"""
    id: str = field(default_factory=_new_id)
    patient_id: str = ""
    name: str = ""
    prompt: str = ""
    is_active: bool = True
    created_at: datetime = field(default_factory=now_utc)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "patient_id": self.patient_id,
            "name": self.name,
            "prompt": self.prompt,
            "is_active": self.is_active,
            "created_at": format_optional_datetime(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Prompt":
        return cls(
            id=data["id"],
            patient_id=data["patient_id"],
            name=data.get("name", ""),
            prompt=data.get("prompt", ""),
            is_active=_as_bool(data.get("is_active", True)),
            created_at=parse_optional_datetime(data.get("created_at")) or now_utc(),
        )


@dataclass
class Schedule:
    """
    Declarative rule describing when a prompt should trigger a call.

    For one-time schedules scheduled_time is the absolute due instant; for
    recurring schedules only its time-of-day (in the patient's timezone) is used.
    day_of_week follows the Sunday=0 convention.
    """
    id: str = field(default_factory=_new_id)
    patient_id: str = ""
    prompt_id: str = ""
    type: ScheduleType = ScheduleType.ONE_TIME
    scheduled_time: Optional[datetime] = None
    recurrence_type: Optional[RecurrenceType] = None
    recurrence_end_date: Optional[datetime] = None
    day_of_week: Optional[int] = None
    day_of_month: Optional[int] = None
    is_active: bool = True
    last_executed_at: Optional[datetime] = None

    # Retry bookkeeping, reset after every successful initiation
    last_attempt_at: Optional[datetime] = None
    attempt_count: int = 0

    created_at: datetime = field(default_factory=now_utc)

    @property
    def is_one_time(self) -> bool:
        return self.type == ScheduleType.ONE_TIME

    @property
    def is_recurring(self) -> bool:
        return self.type == ScheduleType.RECURRING

    def copy_with(self, **changes) -> "Schedule":
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization"""
        return {
            "id": self.id,
            "patient_id": self.patient_id,
            "prompt_id": self.prompt_id,
            "type": self.type.value,
            "scheduled_time": format_optional_datetime(self.scheduled_time),
            "recurrence_type": self.recurrence_type.value if self.recurrence_type else None,
            "recurrence_end_date": format_optional_datetime(self.recurrence_end_date),
            "day_of_week": self.day_of_week,
            "day_of_month": self.day_of_month,
            "is_active": self.is_active,
            "last_executed_at": format_optional_datetime(self.last_executed_at),
            "last_attempt_at": format_optional_datetime(self.last_attempt_at),
            "attempt_count": self.attempt_count,
            "created_at": format_optional_datetime(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Schedule":
        """Create from dictionary"""
        return cls(
            id=data["id"],
            patient_id=data["patient_id"],
            prompt_id=data["prompt_id"],
            type=ScheduleType(data["type"]),
            scheduled_time=parse_optional_datetime(data.get("scheduled_time")),
            recurrence_type=RecurrenceType.from_value(data.get("recurrence_type")),
            recurrence_end_date=parse_optional_datetime(data.get("recurrence_end_date")),
            day_of_week=_optional_int(data.get("day_of_week")),
            day_of_month=_optional_int(data.get("day_of_month")),
            is_active=_as_bool(data.get("is_active", True)),
            last_executed_at=parse_optional_datetime(data.get("last_executed_at")),
            last_attempt_at=parse_optional_datetime(data.get("last_attempt_at")),
            attempt_count=_optional_int(data.get("attempt_count")) or 0,
            created_at=parse_optional_datetime(data.get("created_at")) or now_utc(),
        )


@dataclass(frozen=True)
class TranscriptEntry:
    """One normalized transcript turn"""
    role: str
    message: str
    time: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {"role": self.role, "message": self.message}
        if self.time is not None:
            data["time"] = self.time
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TranscriptEntry":
        return cls(role=data["role"], message=data["message"], time=data.get("time"))


@dataclass
class CallArtifacts:
    """Links to recording and logs; each independently nullable"""
    recording: Optional[str] = None
    log_url: Optional[str] = None
    transcript_url: Optional[str] = None

    def is_empty(self) -> bool:
        return not (self.recording or self.log_url or self.transcript_url)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "recording": self.recording,
            "log_url": self.log_url,
            "transcript_url": self.transcript_url,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "CallArtifacts":
        data = data or {}
        return cls(
            recording=data.get("recording"),
            log_url=data.get("log_url"),
            transcript_url=data.get("transcript_url"),
        )


@dataclass
class CallAnalysis:
    """Post-call analysis; sub-fields merged independently"""
    summary: Optional[str] = None
    structured_data: Optional[Dict[str, Any]] = None
    success_evaluation: Optional[Any] = None

    def is_empty(self) -> bool:
        return self.summary is None and self.structured_data is None and self.success_evaluation is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": self.summary,
            "structured_data": self.structured_data,
            "success_evaluation": self.success_evaluation,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "CallAnalysis":
        data = data or {}
        return cls(
            summary=data.get("summary"),
            structured_data=data.get("structured_data"),
            success_evaluation=data.get("success_evaluation"),
        )


@dataclass
class Call:
    """
    A single phone-call attempt and everything learned about it
    """
    id: str = field(default_factory=_new_id)
    patient_id: str = ""
    prompt_id: str = ""
    schedule_id: Optional[str] = None
    phone_number: str = ""

    # Assigned once the provider accepts the request, never changed afterwards
    provider_call_id: Optional[str] = None

    status: CallStatus = CallStatus.PENDING
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration: Optional[int] = None

    transcript: Optional[str] = None
    transcript_entries: List[TranscriptEntry] = field(default_factory=list)
    artifacts: CallArtifacts = field(default_factory=CallArtifacts)
    analysis: CallAnalysis = field(default_factory=CallAnalysis)

    error_message: Optional[str] = None
    created_at: datetime = field(default_factory=now_utc)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization"""
        return {
            "id": self.id,
            "patient_id": self.patient_id,
            "prompt_id": self.prompt_id,
            "schedule_id": self.schedule_id,
            "phone_number": self.phone_number,
            "provider_call_id": self.provider_call_id,
            "status": self.status.value,
            "started_at": format_optional_datetime(self.started_at),
            "completed_at": format_optional_datetime(self.completed_at),
            "duration": self.duration,
            "transcript": self.transcript,
            "transcript_entries": [entry.to_dict() for entry in self.transcript_entries],
            "artifacts": self.artifacts.to_dict(),
            "analysis": self.analysis.to_dict(),
            "error_message": self.error_message,
            "created_at": format_optional_datetime(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Call":
        """Create from dictionary"""
        return cls(
            id=data["id"],
            patient_id=data["patient_id"],
            prompt_id=data["prompt_id"],
            schedule_id=_empty_to_none(data.get("schedule_id")),
            phone_number=data.get("phone_number", ""),
            provider_call_id=_empty_to_none(data.get("provider_call_id")),
            status=CallStatus(data.get("status", "pending")),
            started_at=parse_optional_datetime(data.get("started_at")),
            completed_at=parse_optional_datetime(data.get("completed_at")),
            duration=_optional_int(data.get("duration")),
            transcript=_empty_to_none(data.get("transcript")),
            transcript_entries=[
                TranscriptEntry.from_dict(entry) for entry in (data.get("transcript_entries") or [])
            ],
            artifacts=CallArtifacts.from_dict(data.get("artifacts")),
            analysis=CallAnalysis.from_dict(data.get("analysis")),
            error_message=_empty_to_none(data.get("error_message")),
            created_at=parse_optional_datetime(data.get("created_at")) or now_utc(),
        )
