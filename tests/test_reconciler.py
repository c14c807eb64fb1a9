"""
Tests for merging provider call reports into stored calls
"""
import pytest
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from scheduling.errors import MissingProviderReferenceError, NotFoundError, ProviderSyncError
from scheduling.models import Call, CallAnalysis, CallArtifacts, CallStatus, TranscriptEntry
from scheduling.reconciler import CallStatusReconciler, changed_fields, merge_call_details
from voice.provider import ProviderCallDetails


STARTED = datetime(2024, 6, 1, 9, 5, tzinfo=timezone.utc)
ENDED = STARTED + timedelta(minutes=3, seconds=20)


@pytest.fixture
def placed_call(call_store):
    """A call the provider has accepted but not yet reported on"""
    return call_store.create_call(Call(
        id="call-1",
        patient_id="patient-1",
        prompt_id="prompt-1",
        schedule_id="sched-once",
        phone_number="+15551234567",
        provider_call_id="vapi-123",
        created_at=STARTED,
    ))


@pytest.fixture
def reconciler(call_store, mock_provider):
    return CallStatusReconciler(call_store, mock_provider)


@pytest.fixture
def ended_report():
    """Complete end-of-call report"""
    return ProviderCallDetails(
        status="ended",
        started_at=STARTED,
        ended_at=ENDED,
        duration=199.6,
        messages=[
            {"role": "system", "message": "You are a care-line nurse."},
            {"role": "bot", "message": "Hi Ada, how are you feeling today?", "secondsFromStart": 0.42},
            {"role": "user", "message": "A little short of breath.", "secondsFromStart": 4.1},
        ],
        recording_url="https://storage.example.com/rec.wav",
        log_url="https://storage.example.com/log.txt",
        summary="Patient reports mild shortness of breath.",
        structured_data={"riskLevel": "moderate", "escalationNeeded": False},
        success_evaluation="true",
    )


class TestRefresh:
    """Tests for CallStatusReconciler.refresh"""

    def test_refresh_applies_report(self, reconciler, call_store, mock_provider, placed_call, ended_report):
        mock_provider.set_call_details("vapi-123", ended_report)

        call = reconciler.refresh("call-1")

        assert call.status == CallStatus.COMPLETED
        assert call.started_at == STARTED
        assert call.completed_at == ENDED
        assert call.duration == 200
        assert call.transcript == (
            "[0.4s] ASSISTANT: Hi Ada, how are you feeling today?\n"
            "[4.1s] USER: A little short of breath."
        )
        assert len(call.transcript_entries) == 2
        assert call.artifacts.recording == "https://storage.example.com/rec.wav"
        assert call.analysis.summary == "Patient reports mild shortness of breath."
        assert call.analysis.structured_data["riskLevel"] == "moderate"
        assert call.analysis.success_evaluation == "true"
        assert call_store.get_call("call-1") == call

    def test_refresh_is_idempotent(self, reconciler, call_store, mock_provider, placed_call, ended_report):
        """Test refreshing twice against the same report writes nothing the second time"""
        mock_provider.set_call_details("vapi-123", ended_report)
        first = reconciler.refresh("call-1")

        with patch.object(call_store, "update_call", wraps=call_store.update_call) as update:
            second = reconciler.refresh("call-1")

        update.assert_not_called()
        assert second == first

    def test_unknown_call(self, reconciler):
        with pytest.raises(NotFoundError) as exc_info:
            reconciler.refresh("missing")

        assert str(exc_info.value) == "Call missing not found"

    def test_call_without_provider_id(self, reconciler, call_store, mock_provider):
        call_store.create_call(Call(id="call-failed", patient_id="patient-1", prompt_id="prompt-1",
                                    status=CallStatus.FAILED))

        with pytest.raises(MissingProviderReferenceError):
            reconciler.refresh("call-failed")

        assert mock_provider.detail_requests == []

    def test_provider_error_leaves_call_untouched(self, reconciler, call_store, mock_provider, placed_call):
        mock_provider.sync_error = "Service unavailable"

        with pytest.raises(ProviderSyncError):
            reconciler.refresh("call-1")

        assert call_store.get_call("call-1") == placed_call


class TestMergeCallDetails:
    """Tests for the pure merge rules"""

    def test_missing_fields_never_erase_captured_data(self, placed_call, ended_report):
        """Test a sparse follow-up report keeps everything captured earlier"""
        complete = merge_call_details(placed_call, ended_report)

        merged = merge_call_details(complete, ProviderCallDetails(status="ended"))

        assert merged == complete

    def test_analysis_fields_merge_independently(self, placed_call):
        call = merge_call_details(placed_call, ProviderCallDetails(summary="First summary"))
        call = merge_call_details(call, ProviderCallDetails(structured_data={"riskLevel": "low"}))

        assert call.analysis == CallAnalysis(summary="First summary", structured_data={"riskLevel": "low"})

    def test_artifacts_merge_independently(self, placed_call):
        call = merge_call_details(placed_call, ProviderCallDetails(recording_url="https://r"))
        call = merge_call_details(call, ProviderCallDetails(log_url="https://l"))

        assert call.artifacts == CallArtifacts(recording="https://r", log_url="https://l")

    def test_terminal_status_never_changes(self, placed_call):
        completed = merge_call_details(placed_call, ProviderCallDetails(status="ended"))

        assert merge_call_details(completed, ProviderCallDetails(status="in-progress")).status == CallStatus.COMPLETED
        assert merge_call_details(completed, ProviderCallDetails(status="failed")).status == CallStatus.COMPLETED

    def test_status_moves_forward(self, placed_call):
        assert merge_call_details(placed_call, ProviderCallDetails(status="ringing")).status == CallStatus.IN_PROGRESS

    def test_duration_computed_from_timestamps(self, placed_call):
        call = merge_call_details(placed_call, ProviderCallDetails(started_at=STARTED, ended_at=ENDED))

        assert call.duration == 200

    def test_duration_kept_without_new_information(self, placed_call):
        call = merge_call_details(replace(placed_call, duration=42), ProviderCallDetails(status="ended"))

        assert call.duration == 42

    def test_flat_transcript_used_without_messages(self, placed_call):
        details = ProviderCallDetails(transcript="AI: Hello Ada\nUser: Hello\n\n")

        call = merge_call_details(placed_call, details)

        assert call.transcript_entries == [
            TranscriptEntry("assistant", "Hello Ada"),
            TranscriptEntry("user", "Hello"),
        ]
        assert call.transcript == "ASSISTANT: Hello Ada\nUSER: Hello"

    def test_empty_transcript_keeps_previous(self, placed_call, ended_report):
        complete = merge_call_details(placed_call, ended_report)

        merged = merge_call_details(complete, ProviderCallDetails(messages=[{"role": "system", "message": "x"}]))

        assert merged.transcript == complete.transcript
        assert merged.transcript_entries == complete.transcript_entries


def test_changed_fields(placed_call, ended_report):
    merged = merge_call_details(placed_call, ended_report)

    changes = changed_fields(placed_call, merged)

    assert set(changes) == {
        "status", "started_at", "completed_at", "duration", "transcript",
        "transcript_entries", "artifacts", "analysis",
    }
    assert changed_fields(merged, merged) == {}
