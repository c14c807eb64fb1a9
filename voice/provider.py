"""
Voice-call provider adapter - abstracts the hosted voice-AI API for easier testing

The executor and reconciler depend only on VoiceCallProvider. VapiProvider talks
to VAPI over HTTP; MockVoiceCallProvider records requests and serves canned
call details in tests.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

import requests

from config.settings import VapiConfig
from scheduling.errors import ProviderRequestError, ProviderSyncError
from utils.time_utils import parse_optional_datetime

logger = logging.getLogger("voice-provider")

FALLBACK_MODEL_PROVIDER = "openai"
FALLBACK_MODEL = "gpt-4o-mini"

# End-of-call report the assistant fills in after every check-in
END_OF_CALL_REPORT_SCHEMA = {
    "type": "object",
    "properties": {
        "patientId": {"type": "string"},
        "patientName": {"type": "string"},
        "callPurpose": {"type": "string"},
        "conversationOutcome": {
            "type": "string",
            "enum": ["completed", "voicemail", "no-answer", "rescheduled", "unknown"],
        },
        "summary": {"type": "string"},
        "riskLevel": {"type": "string", "enum": ["low", "moderate", "high"]},
        "symptomsDiscussed": {"type": "array", "items": {"type": "string"}},
        "medicationAdherence": {
            "type": "string",
            "enum": ["on-track", "missed-dose", "not-discussed", "stopped"],
        },
        "escalationNeeded": {"type": "boolean"},
        "followUpType": {"type": "string", "enum": ["none", "call", "visit", "escalate"]},
        "recommendedActions": {"type": "array", "items": {"type": "object"}},
        "notes": {"type": "string"},
    },
    "required": ["conversationOutcome", "summary", "riskLevel", "escalationNeeded"],
}

DEFAULT_ANALYSIS_PLAN = {
    "summaryPlan": {"enabled": True},
    "structuredDataPlan": {"enabled": True, "schema": END_OF_CALL_REPORT_SCHEMA},
    "successEvaluationPlan": {"enabled": True, "rubric": "PassFail"},
}

DEFAULT_ARTIFACT_PLAN = {
    "recordingEnabled": True,
    "transcriptPlan": {"enabled": True},
}


@dataclass
class InitiateCallRequest:
    """Request to place an outbound call"""
    customer_number: str
    prompt_text: str
    analysis_plan: Dict[str, Any] = field(default_factory=lambda: dict(DEFAULT_ANALYSIS_PLAN))
    artifact_plan: Dict[str, Any] = field(default_factory=lambda: dict(DEFAULT_ARTIFACT_PLAN))


@dataclass(frozen=True)
class ProviderCall:
    """Provider acknowledgement of an accepted call"""
    id: str
    status: str


@dataclass
class ProviderCallDetails:
    """Snapshot of a call as reported by the provider; every field optional"""
    status: Optional[str] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    duration: Optional[float] = None
    messages: Optional[List[Any]] = None
    transcript: Optional[str] = None
    recording_url: Optional[str] = None
    log_url: Optional[str] = None
    transcript_url: Optional[str] = None
    summary: Optional[str] = None
    structured_data: Optional[Dict[str, Any]] = None
    success_evaluation: Optional[Any] = None

    @classmethod
    def from_response(cls, data: Dict[str, Any]) -> "ProviderCallDetails":
        """Build details from a GET /call/{id} response body"""
        artifact = data.get("artifact") or {}
        analysis = data.get("analysis") or {}

        duration = data.get("duration")
        if isinstance(duration, bool) or not isinstance(duration, (int, float)):
            duration = None

        messages = artifact.get("messages")
        transcript = artifact.get("transcript")

        return cls(
            status=data.get("status"),
            started_at=parse_optional_datetime(data.get("startedAt")),
            ended_at=parse_optional_datetime(data.get("endedAt")),
            duration=duration,
            messages=messages if isinstance(messages, list) else None,
            transcript=transcript if isinstance(transcript, str) else None,
            recording_url=_recording_url(artifact),
            log_url=artifact.get("logUrl") or None,
            transcript_url=artifact.get("transcriptUrl") or None,
            summary=analysis.get("summary") or None,
            structured_data=analysis.get("structuredData") or None,
            success_evaluation=analysis.get("successEvaluation"),
        )


def _recording_url(artifact: Dict[str, Any]) -> Optional[str]:
    if artifact.get("recordingUrl"):
        return artifact["recordingUrl"]
    recording = artifact.get("recording")
    if isinstance(recording, str) and recording:
        return recording
    if isinstance(recording, dict):
        return recording.get("url") or recording.get("stereoUrl") or None
    return None


def _error_message(response: requests.Response, fallback: str) -> str:
    """Provider error text: the body's message when present"""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("message"):
        message = body["message"]
        # Validation errors arrive as a list of messages
        if isinstance(message, list):
            return "; ".join(str(m) for m in message)
        return str(message)
    return fallback


class VoiceCallProvider(ABC):
    """Abstract interface for voice-call provider operations"""

    @abstractmethod
    def initiate_call(self, request: InitiateCallRequest) -> ProviderCall:
        """Place a call; raises ProviderRequestError when it is not accepted"""
        pass

    @abstractmethod
    def get_call_details(self, provider_call_id: str) -> ProviderCallDetails:
        """Fetch a call snapshot; raises ProviderSyncError on failure"""
        pass


class VapiProvider(VoiceCallProvider):
    """Real implementation using the VAPI HTTP API"""

    def __init__(self, config: VapiConfig, session: Optional[requests.Session] = None):
        self.config = config
        self.session = session or requests.Session()
        self.session.headers.update({
            "Authorization": f"Bearer {config.api_key}",
            "Content-Type": "application/json",
        })
        self._assistant_model = None

        missing = config.missing_fields()
        if missing:
            logger.warning(f"VAPI configuration incomplete - missing: {', '.join(missing)}")

    def _url(self, path: str) -> str:
        return f"{self.config.base_url}{path}"

    def _assistant_model_settings(self) -> Dict[str, str]:
        """Model provider and name used for the prompt override"""
        if self.config.model_provider and self.config.model:
            return {"provider": self.config.model_provider, "model": self.config.model}

        if self._assistant_model is None:
            try:
                response = self.session.get(
                    self._url(f"/assistant/{self.config.assistant_id}"),
                    timeout=self.config.timeout_seconds,
                )
            except requests.RequestException as e:
                logger.error(f"Failed to fetch assistant {self.config.assistant_id}: {e}")
                raise ProviderRequestError("Failed to fetch assistant configuration") from e

            if not response.ok:
                logger.error(f"Assistant lookup failed with status {response.status_code}")
                raise ProviderRequestError("Failed to fetch assistant configuration", response.status_code)

            model = (response.json() or {}).get("model")
            if not model:
                raise ProviderRequestError("Failed to fetch assistant configuration")

            self._assistant_model = {
                "provider": model.get("provider") or FALLBACK_MODEL_PROVIDER,
                "model": model.get("model") or FALLBACK_MODEL,
            }
            logger.info(
                f"Using assistant model {self._assistant_model['provider']}/{self._assistant_model['model']}"
            )

        return dict(self._assistant_model)

    def build_call_payload(self, request: InitiateCallRequest) -> Dict[str, Any]:
        """Body of POST /call with the rendered prompt as a per-call override"""
        model = self._assistant_model_settings()
        model["messages"] = [{"role": "system", "content": request.prompt_text}]
        return {
            "assistantId": self.config.assistant_id,
            "phoneNumberId": self.config.phone_number_id,
            "customer": {"number": request.customer_number},
            "assistantOverrides": {
                "model": model,
                "analysisPlan": request.analysis_plan,
                "artifactPlan": request.artifact_plan,
            },
        }

    def initiate_call(self, request: InitiateCallRequest) -> ProviderCall:
        payload = self.build_call_payload(request)

        try:
            response = self.session.post(self._url("/call"), json=payload, timeout=self.config.timeout_seconds)
        except requests.Timeout as e:
            logger.error(f"Call to {request.customer_number} timed out after {self.config.timeout_seconds}s")
            raise ProviderRequestError(f"Request timed out after {self.config.timeout_seconds}s") from e
        except requests.RequestException as e:
            logger.error(f"Call to {request.customer_number} failed: {e}")
            raise ProviderRequestError(str(e)) from e

        if not response.ok:
            message = _error_message(response, f"API call failed with status {response.status_code}")
            logger.error(f"VAPI rejected call to {request.customer_number}: {response.status_code} - {message}")
            raise ProviderRequestError(message, response.status_code)

        try:
            data = response.json()
        except ValueError:
            data = None
        if not isinstance(data, dict) or not data.get("id"):
            logger.error(f"VAPI accepted call to {request.customer_number} without a call id")
            raise ProviderRequestError("Provider accepted call without an id", response.status_code)

        call = ProviderCall(id=data["id"], status=data.get("status") or "queued")
        logger.info(f"VAPI accepted call {call.id} to {request.customer_number} (status: {call.status})")
        return call

    def get_call_details(self, provider_call_id: str) -> ProviderCallDetails:
        try:
            response = self.session.get(self._url(f"/call/{provider_call_id}"), timeout=self.config.timeout_seconds)
        except requests.RequestException as e:
            logger.error(f"Failed to fetch call {provider_call_id}: {e}")
            raise ProviderSyncError(str(e)) from e

        if not response.ok:
            message = _error_message(response, f"API call failed with status {response.status_code}")
            logger.error(f"Fetching call {provider_call_id} failed: {response.status_code} - {message}")
            raise ProviderSyncError(message, response.status_code)

        return ProviderCallDetails.from_response(response.json())


class MockVoiceCallProvider(VoiceCallProvider):
    """Mock implementation for testing"""

    def __init__(self, initial_status: str = "queued"):
        self.initial_status = initial_status
        self.requests: List[InitiateCallRequest] = []
        self.details: Dict[str, ProviderCallDetails] = {}
        self.detail_requests: List[str] = []
        self.should_fail = False
        self.failure_error = None
        self.failure_status_code = None
        self.sync_error = None

    def initiate_call(self, request: InitiateCallRequest) -> ProviderCall:
        if self.should_fail:
            raise ProviderRequestError(self.failure_error or "Mock initiation failure", self.failure_status_code)

        self.requests.append(request)
        return ProviderCall(id=f"mock-call-{len(self.requests)}", status=self.initial_status)

    def get_call_details(self, provider_call_id: str) -> ProviderCallDetails:
        self.detail_requests.append(provider_call_id)
        if self.sync_error:
            raise ProviderSyncError(self.sync_error)
        if provider_call_id not in self.details:
            raise ProviderSyncError("Call not found", 404)
        return self.details[provider_call_id]

    def set_call_details(self, provider_call_id: str, details: ProviderCallDetails):
        self.details[provider_call_id] = details


def create_voice_provider(mock: bool = False, config: Optional[VapiConfig] = None) -> VoiceCallProvider:
    """
    Factory function to create the appropriate provider

    Args:
        mock: Whether to create a mock provider for testing
        config: VAPI settings (defaults to environment)

    Returns:
        VoiceCallProvider instance
    """
    if mock:
        return MockVoiceCallProvider()
    return VapiProvider(config or VapiConfig.from_env())
