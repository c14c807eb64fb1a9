"""
Tests for call business logic - pure functions with no external dependencies
"""
import pytest
from datetime import datetime, timedelta, timezone

from scheduling.call_logic import (
    RetryPolicy, advance_status, calculate_duration_seconds, format_duration_label,
    format_phone_e164, map_provider_status
)
from scheduling.models import CallStatus


NOW = datetime(2024, 6, 1, 9, 0, tzinfo=timezone.utc)


class TestStatusMapping:
    """Tests for provider status mapping"""

    @pytest.mark.parametrize("provider_status,expected", [
        ("queued", CallStatus.PENDING),
        ("scheduled", CallStatus.PENDING),
        ("ringing", CallStatus.IN_PROGRESS),
        ("in-progress", CallStatus.IN_PROGRESS),
        ("ended", CallStatus.COMPLETED),
        ("failed", CallStatus.FAILED),
        ("no-answer", CallStatus.FAILED),
        ("ENDED", CallStatus.COMPLETED),
    ])
    def test_known_statuses(self, provider_status, expected):
        assert map_provider_status(provider_status) == expected

    def test_unknown_status_is_pending(self):
        """Test unrecognized provider states fall back to pending"""
        assert map_provider_status("teleporting") == CallStatus.PENDING
        assert map_provider_status(None) == CallStatus.PENDING
        assert map_provider_status("") == CallStatus.PENDING


class TestAdvanceStatus:
    """Tests for forward-only status transitions"""

    def test_moves_forward(self):
        assert advance_status(CallStatus.PENDING, CallStatus.IN_PROGRESS) == CallStatus.IN_PROGRESS
        assert advance_status(CallStatus.IN_PROGRESS, CallStatus.COMPLETED) == CallStatus.COMPLETED
        assert advance_status(CallStatus.PENDING, CallStatus.FAILED) == CallStatus.FAILED

    def test_never_moves_backwards(self):
        assert advance_status(CallStatus.IN_PROGRESS, CallStatus.PENDING) == CallStatus.IN_PROGRESS

    @pytest.mark.parametrize("terminal", [CallStatus.COMPLETED, CallStatus.FAILED])
    @pytest.mark.parametrize("incoming", list(CallStatus))
    def test_terminal_status_is_final(self, terminal, incoming):
        """Test a completed or failed call never changes status"""
        assert advance_status(terminal, incoming) == terminal


class TestPhoneFormatting:

    @pytest.mark.parametrize("phone,expected", [
        ("(555) 123-4567", "+15551234567"),
        ("555.123.4567", "+15551234567"),
        ("1-555-123-4567", "+15551234567"),
        ("+15551234567", "+15551234567"),
        ("+44 20 7946 0958", "+442079460958"),
    ])
    def test_format_phone_e164(self, phone, expected):
        assert format_phone_e164(phone) == expected


class TestDurations:

    def test_calculate_duration_seconds(self):
        assert calculate_duration_seconds(NOW, NOW + timedelta(seconds=95.7)) == 95

    def test_duration_requires_both_ends_in_order(self):
        """Test missing or reversed timestamps give no duration"""
        assert calculate_duration_seconds(None, NOW) is None
        assert calculate_duration_seconds(NOW, None) is None
        assert calculate_duration_seconds(NOW, NOW - timedelta(seconds=5)) is None
        assert calculate_duration_seconds(NOW, NOW) is None

    @pytest.mark.parametrize("seconds,label", [
        (None, None),
        (0, "0s"),
        (45, "45s"),
        (60, "1m"),
        (95, "1m 35s"),
        (3723, "1h 2m 3s"),
        (7200, "2h"),
        (-5, "0s"),
    ])
    def test_format_duration_label(self, seconds, label):
        assert format_duration_label(seconds) == label


class TestRetryPolicy:
    """Tests for bounded retry of failed initiations"""

    def test_calculate_delay(self):
        """Test retry delay calculation"""
        policy = RetryPolicy()

        assert policy.calculate_delay(0) == 0
        assert policy.calculate_delay(1) == 60
        assert policy.calculate_delay(2) == 300
        assert policy.calculate_delay(3) == 900
        assert policy.calculate_delay(4) == 1800
        assert policy.calculate_delay(9) == 1800  # Caps at 30 minutes

    def test_first_attempt_allowed(self, daily_schedule):
        allowed, _ = RetryPolicy().check(daily_schedule, NOW)
        assert allowed is True

    def test_backs_off_after_failure(self, daily_schedule):
        """Test a failed schedule waits out its delay"""
        schedule = daily_schedule.copy_with(attempt_count=1, last_attempt_at=NOW)
        policy = RetryPolicy()

        allowed, reason = policy.check(schedule, NOW + timedelta(seconds=30))
        assert allowed is False
        assert reason.startswith("backing off until")

        allowed, _ = policy.check(schedule, NOW + timedelta(seconds=60))
        assert allowed is True

    def test_gives_up_after_max_attempts(self, daily_schedule):
        schedule = daily_schedule.copy_with(attempt_count=3, last_attempt_at=NOW)

        allowed, reason = RetryPolicy(max_attempts=3).check(schedule, NOW + timedelta(days=1))
        assert allowed is False
        assert reason == "retry limit of 3 attempts reached"

    def test_failures_from_earlier_period_are_ignored(self, daily_schedule):
        """Test a new period starts with a clean slate"""
        schedule = daily_schedule.copy_with(attempt_count=5, last_attempt_at=NOW)

        allowed, _ = RetryPolicy().check(schedule, NOW + timedelta(days=1), same_period=False)
        assert allowed is True
