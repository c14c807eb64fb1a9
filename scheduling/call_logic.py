"""
Business logic for call execution - pure functions with no external dependencies

These functions contain the rules for building, classifying and merging call
records, separated from store and provider concerns for easier testing.
"""
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Tuple

from .models import CallStatus, Schedule

logger = logging.getLogger("call-business-logic")

# Provider call states mapped to local call status; anything else is pending
PROVIDER_STATUS_MAP = {
    "scheduled": CallStatus.PENDING,
    "queued": CallStatus.PENDING,
    "ringing": CallStatus.IN_PROGRESS,
    "in-progress": CallStatus.IN_PROGRESS,
    "forwarding": CallStatus.IN_PROGRESS,
    "ended": CallStatus.COMPLETED,
    "completed": CallStatus.COMPLETED,
    "failed": CallStatus.FAILED,
    "busy": CallStatus.FAILED,
    "no-answer": CallStatus.FAILED,
    "canceled": CallStatus.FAILED,
    "cancelled": CallStatus.FAILED,
}

_STATUS_RANK = {
    CallStatus.PENDING: 0,
    CallStatus.IN_PROGRESS: 1,
    CallStatus.COMPLETED: 2,
    CallStatus.FAILED: 2,
}


def map_provider_status(provider_status: Optional[str]) -> CallStatus:
    """
    Map a provider call state to a local call status

    Args:
        provider_status: Raw state reported by the provider

    Returns:
        Local CallStatus, PENDING for unrecognized states
    """
    if not provider_status:
        return CallStatus.PENDING
    status = PROVIDER_STATUS_MAP.get(provider_status.strip().lower())
    if status is None:
        logger.warning(f"Unrecognized provider status '{provider_status}', treating as pending")
        return CallStatus.PENDING
    return status


def advance_status(current: CallStatus, incoming: CallStatus) -> CallStatus:
    """
    Apply an incoming status without moving backwards

    Terminal statuses never change; otherwise the further-along status wins.
    """
    if current.is_terminal:
        return current
    if _STATUS_RANK[incoming] >= _STATUS_RANK[current]:
        return incoming
    return current


def format_phone_e164(phone: str) -> str:
    """
    Normalize a US phone number to E.164

    Args:
        phone: Phone number as entered, e.g. "(555) 123-4567"

    Returns:
        E.164 formatted number, e.g. "+15551234567"
    """
    digits = re.sub(r"\D", "", phone or "")

    if len(digits) == 10:
        return f"+1{digits}"
    if len(digits) == 11 and digits.startswith("1"):
        return f"+{digits}"
    if phone and phone.strip().startswith("+") and 11 <= len(digits) <= 15:
        return f"+{digits}"

    # Assume a US number
    return f"+1{digits}"


def calculate_duration_seconds(started_at: Optional[datetime], completed_at: Optional[datetime]) -> Optional[int]:
    """Whole seconds between start and completion, None unless completion is after start"""
    if not started_at or not completed_at:
        return None
    delta = completed_at - started_at
    if delta.total_seconds() <= 0:
        return None
    return int(delta.total_seconds())


def format_duration_label(seconds: Optional[float]) -> Optional[str]:
    """
    Format a duration as "1h 2m 3s"

    Zero components are omitted, except that "0s" is used for an empty duration.
    """
    if seconds is None:
        return None
    safe_seconds = max(0, int(seconds))
    hours, remainder = divmod(safe_seconds, 3600)
    minutes, remaining_seconds = divmod(remainder, 60)

    parts = []
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    if remaining_seconds or not parts:
        parts.append(f"{remaining_seconds}s")
    return " ".join(parts)


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded retry for failed call initiations

    A failed schedule waits an increasing delay before it may be attempted again,
    and gives up for the period after max_attempts failures.
    """
    max_attempts: int = 5
    delays: Tuple[int, ...] = (60, 300, 900, 1800)

    def calculate_delay(self, attempt_count: int) -> int:
        """Seconds to wait after the given number of failed attempts"""
        if attempt_count <= 0:
            return 0
        return self.delays[min(attempt_count - 1, len(self.delays) - 1)]

    def attempts_exhausted(self, attempt_count: int) -> bool:
        return attempt_count >= self.max_attempts

    def check(self, schedule: Schedule, now: datetime, same_period: bool = True) -> Tuple[bool, str]:
        """
        Decide whether a due schedule may be attempted now

        Args:
            schedule: Due schedule
            now: Current instant
            same_period: Whether the last failed attempt belongs to the current period

        Returns:
            Tuple of (may_attempt, reason)
        """
        if schedule.attempt_count <= 0 or schedule.last_attempt_at is None or not same_period:
            return True, "no failed attempts in this period"

        if self.attempts_exhausted(schedule.attempt_count):
            return False, f"retry limit of {self.max_attempts} attempts reached"

        retry_at = schedule.last_attempt_at + timedelta(seconds=self.calculate_delay(schedule.attempt_count))
        if now < retry_at:
            return False, f"backing off until {retry_at.isoformat()}"
        return True, f"retry {schedule.attempt_count + 1}/{self.max_attempts}"
