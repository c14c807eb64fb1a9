"""
Call status reconciler - merges the provider's view of a call into the stored record

Every optional field follows "incoming overrides only if present", so a
snapshot missing a field never erases what was captured earlier. Refreshing
twice against the same snapshot yields the same stored values.
"""
import logging
from dataclasses import replace
from typing import Any, Dict

from voice.provider import ProviderCallDetails, VoiceCallProvider
from voice.transcript import (
    PlainTextItem, format_transcript, normalize_item, normalize_transcript, split_transcript_text
)

from .call_logic import advance_status, calculate_duration_seconds, map_provider_status
from .errors import MissingProviderReferenceError, NotFoundError
from .models import Call, CallAnalysis, CallArtifacts
from .store import CallStore

logger = logging.getLogger("call-reconciler")


def _prefer(incoming, current):
    return incoming if incoming is not None else current


def _extract_entries(details: ProviderCallDetails):
    if details.messages:
        entries = normalize_transcript(details.messages)
        if entries:
            return entries
    lines = split_transcript_text(details.transcript)
    return [entry for entry in (normalize_item(PlainTextItem(line)) for line in lines) if entry is not None]


def merge_call_details(call: Call, details: ProviderCallDetails) -> Call:
    """
    Merge a provider snapshot into a call without losing captured data

    Args:
        call: Stored call
        details: Provider snapshot

    Returns:
        New Call value with merged fields
    """
    status = call.status
    if details.status:
        status = advance_status(call.status, map_provider_status(details.status))

    started_at = _prefer(details.started_at, call.started_at)
    completed_at = _prefer(details.ended_at, call.completed_at)

    if details.duration is not None:
        duration = int(round(details.duration))
    else:
        duration = _prefer(calculate_duration_seconds(started_at, completed_at), call.duration)

    transcript = call.transcript
    transcript_entries = call.transcript_entries
    entries = _extract_entries(details)
    if entries:
        transcript_entries = entries
        transcript = format_transcript(entries)

    artifacts = CallArtifacts(
        recording=_prefer(details.recording_url, call.artifacts.recording),
        log_url=_prefer(details.log_url, call.artifacts.log_url),
        transcript_url=_prefer(details.transcript_url, call.artifacts.transcript_url),
    )
    analysis = CallAnalysis(
        summary=_prefer(details.summary, call.analysis.summary),
        structured_data=_prefer(details.structured_data, call.analysis.structured_data),
        success_evaluation=_prefer(details.success_evaluation, call.analysis.success_evaluation),
    )

    return replace(
        call,
        status=status,
        started_at=started_at,
        completed_at=completed_at,
        duration=duration,
        transcript=transcript,
        transcript_entries=list(transcript_entries),
        artifacts=artifacts,
        analysis=analysis,
    )


def changed_fields(before: Call, after: Call) -> Dict[str, Any]:
    """Fields whose values differ between two versions of a call"""
    names = (
        "status", "started_at", "completed_at", "duration", "transcript",
        "transcript_entries", "artifacts", "analysis",
    )
    return {
        name: getattr(after, name)
        for name in names
        if getattr(before, name) != getattr(after, name)
    }


class CallStatusReconciler:
    """
    Pulls call details from the provider and merges them into the call store
    """

    def __init__(self, call_store: CallStore, provider: VoiceCallProvider):
        self.call_store = call_store
        self.provider = provider

    def refresh(self, call_id: str) -> Call:
        """
        Refresh a call from the provider

        Raises:
            NotFoundError: Call does not exist
            MissingProviderReferenceError: Call was never accepted by the provider
            ProviderSyncError: Provider lookup failed
        """
        call = self.call_store.get_call(call_id)
        if call is None:
            raise NotFoundError("Call", call_id)
        if not call.provider_call_id:
            raise MissingProviderReferenceError(call_id)

        details = self.provider.get_call_details(call.provider_call_id)
        merged = merge_call_details(call, details)

        updates = changed_fields(call, merged)
        if not updates:
            logger.info(f"Call {call_id} unchanged after refresh")
            return call

        logger.info(f"Call {call_id} refreshed: updated {', '.join(sorted(updates))}")
        return self.call_store.update_call(call_id, **updates)
