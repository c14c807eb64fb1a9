"""
Runtime settings for the care-line scheduling system

Values come from environment variables; entry points call load_dotenv()
before building settings so a local .env file is honoured.
"""
import logging
import os
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger("careline-config")

DEFAULT_VAPI_BASE_URL = "https://api.vapi.ai"


def int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Invalid integer for {name}: '{raw}', using {default}")
        return default


@dataclass(frozen=True)
class VapiConfig:
    """Credentials and call defaults for the VAPI voice provider"""
    api_key: str = ""
    assistant_id: str = ""
    phone_number_id: str = ""
    base_url: str = DEFAULT_VAPI_BASE_URL
    model_provider: Optional[str] = None
    model: Optional[str] = None
    timeout_seconds: int = 15

    @classmethod
    def from_env(cls) -> "VapiConfig":
        return cls(
            api_key=os.getenv("VAPI_API_KEY", ""),
            assistant_id=os.getenv("VAPI_ASSISTANT_ID", ""),
            phone_number_id=os.getenv("VAPI_PHONE_NUMBER_ID", ""),
            base_url=os.getenv("VAPI_BASE_URL", DEFAULT_VAPI_BASE_URL).rstrip("/"),
            model_provider=os.getenv("VAPI_MODEL_PROVIDER") or None,
            model=os.getenv("VAPI_MODEL") or None,
            timeout_seconds=int_env("VAPI_TIMEOUT_SECONDS", 15),
        )

    def missing_fields(self):
        """Names of required settings that are not configured"""
        required = {
            "VAPI_API_KEY": self.api_key,
            "VAPI_ASSISTANT_ID": self.assistant_id,
            "VAPI_PHONE_NUMBER_ID": self.phone_number_id,
        }
        return [name for name, value in required.items() if not value]


@dataclass(frozen=True)
class SchedulerSettings:
    """Poller and executor settings"""
    timezone: str = "UTC"
    poll_interval: int = 30
    max_attempts: int = 5
    queue_name: str = "careline_calls"

    @classmethod
    def from_env(cls) -> "SchedulerSettings":
        return cls(
            timezone=os.getenv("SCHEDULER_TIMEZONE", "UTC"),
            poll_interval=int_env("SCHEDULER_POLL_INTERVAL", 30),
            max_attempts=int_env("SCHEDULER_MAX_ATTEMPTS", 5),
            queue_name=os.getenv("SCHEDULER_QUEUE", "careline_calls"),
        )
