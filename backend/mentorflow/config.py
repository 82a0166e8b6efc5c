"""MentorFlow configuration.

Values come from environment variables (backend/.env is loaded via python-dotenv).
Defaults match production behaviour: 2 second polling, 5 minute local ceiling.
"""
import os
import logging
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

ROOT_DIR = Path(__file__).parent.parent
load_dotenv(ROOT_DIR / '.env')

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 2.0
DEFAULT_TIMEOUT_SECONDS = 300.0
DEFAULT_WARNING_THRESHOLD = 0.8
DEFAULT_ESTIMATED_TOKENS = 2000
DEFAULT_SESSION_MINUTES = 30
DEFAULT_MAX_RETAINED_REQUESTS = 1000


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Invalid value for {name}: {raw!r}, using default {default}")
        return default


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Invalid value for {name}: {raw!r}, using default {default}")
        return default


class TrackingSettings(BaseModel):
    """Runtime settings for admission control and job tracking."""
    poll_interval_seconds: float = Field(DEFAULT_POLL_INTERVAL_SECONDS, gt=0)
    timeout_seconds: float = Field(DEFAULT_TIMEOUT_SECONDS, gt=0)
    warning_threshold: float = Field(DEFAULT_WARNING_THRESHOLD, gt=0, le=1)
    default_estimated_tokens: int = Field(DEFAULT_ESTIMATED_TOKENS, ge=0)
    default_session_minutes: int = Field(DEFAULT_SESSION_MINUTES, ge=0)
    max_retained_requests: int = Field(DEFAULT_MAX_RETAINED_REQUESTS, ge=0)  # finished requests kept readable

    # Remote generation service (optional; Mongo-backed gateway is used when unset)
    generation_service_url: Optional[str] = None
    generation_service_api_key: Optional[str] = None
    generation_service_timeout_seconds: float = 10.0

    # Shared secret for push notifications (X-Webhook-Signature)
    webhook_secret: Optional[str] = None

    model_config = {"extra": "ignore", "frozen": True}

    @classmethod
    def from_env(cls) -> "TrackingSettings":
        return cls(
            poll_interval_seconds=_env_float("GENERATION_POLL_INTERVAL_SECONDS", DEFAULT_POLL_INTERVAL_SECONDS),
            timeout_seconds=_env_float("GENERATION_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS),
            warning_threshold=_env_float("USAGE_WARNING_THRESHOLD", DEFAULT_WARNING_THRESHOLD),
            default_estimated_tokens=_env_int("DEFAULT_ESTIMATED_TOKENS", DEFAULT_ESTIMATED_TOKENS),
            default_session_minutes=_env_int("DEFAULT_SESSION_MINUTES", DEFAULT_SESSION_MINUTES),
            max_retained_requests=_env_int("GENERATION_MAX_RETAINED_REQUESTS", DEFAULT_MAX_RETAINED_REQUESTS),
            generation_service_url=(os.getenv("GENERATION_SERVICE_URL") or "").strip() or None,
            generation_service_api_key=(os.getenv("GENERATION_SERVICE_API_KEY") or "").strip() or None,
            webhook_secret=(os.getenv("GENERATION_WEBHOOK_SECRET") or "").strip() or None,
        )
