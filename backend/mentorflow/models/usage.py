"""MentorFlow Usage Models

Quota snapshot captured per validation call, the action being admitted,
and the derived (never persisted) validation result.
"""

from pydantic import BaseModel, Field
from typing import Optional, Dict, List
from datetime import datetime, timezone
from enum import Enum


# Limit value meaning "no cap" (same sentinel the subscription_limits table uses)
UNLIMITED = -1


class QuotaDimension(str, Enum):
    """Countable resources metered per billing period"""
    SESSIONS = "sessions"
    MINUTES = "minutes"
    DOCUMENTS = "documents"
    TOKENS = "tokens"


class ActionKind(str, Enum):
    """Metered actions a user can request"""
    CONVERSATION = "conversation"
    DOCUMENT_GENERATION = "document_generation"


class UsageCounters(BaseModel):
    """Usage consumed in the current billing period.

    None means the value was missing from the source record.
    """
    sessions_used: Optional[int] = None
    minutes_used: Optional[int] = None
    documents_generated: Optional[int] = None
    tokens_consumed: Optional[int] = None

    model_config = {"extra": "ignore", "frozen": True}

    def used(self, dimension: QuotaDimension) -> Optional[int]:
        return {
            QuotaDimension.SESSIONS: self.sessions_used,
            QuotaDimension.MINUTES: self.minutes_used,
            QuotaDimension.DOCUMENTS: self.documents_generated,
            QuotaDimension.TOKENS: self.tokens_consumed,
        }[dimension]


class QuotaLimits(BaseModel):
    """Per-period limits for a tier. UNLIMITED (-1) lifts the cap."""
    max_sessions: Optional[int] = None
    max_minutes: Optional[int] = None
    max_documents: Optional[int] = None
    max_tokens: Optional[int] = None
    minutes_per_session: Optional[int] = None  # Default estimate for a session

    model_config = {"extra": "ignore", "frozen": True}

    def limit(self, dimension: QuotaDimension) -> Optional[int]:
        return {
            QuotaDimension.SESSIONS: self.max_sessions,
            QuotaDimension.MINUTES: self.max_minutes,
            QuotaDimension.DOCUMENTS: self.max_documents,
            QuotaDimension.TOKENS: self.max_tokens,
        }[dimension]


class UsageSnapshot(BaseModel):
    """Immutable quota state captured for a single validation call."""
    user_id: str
    tier: str = "none"
    subscription_status: str = "active"
    current_usage: UsageCounters = Field(default_factory=UsageCounters)
    limits: QuotaLimits = Field(default_factory=QuotaLimits)
    features: Dict[str, bool] = Field(default_factory=dict)
    trial_ends_at: Optional[datetime] = None
    captured_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = {"extra": "ignore", "frozen": True}


class UsageAction(BaseModel):
    """An action awaiting admission."""
    kind: ActionKind
    estimated_minutes: Optional[int] = Field(None, ge=0)
    estimated_tokens: Optional[int] = Field(None, ge=0)
    document_type: Optional[str] = None
    probe: bool = False  # Read-only usage summary; never consumes quota

    model_config = {"extra": "ignore", "frozen": True}

    @classmethod
    def conversation(cls, estimated_minutes: Optional[int] = None) -> "UsageAction":
        return cls(kind=ActionKind.CONVERSATION, estimated_minutes=estimated_minutes)

    @classmethod
    def document_generation(
        cls,
        document_type: Optional[str] = None,
        estimated_tokens: Optional[int] = None,
    ) -> "UsageAction":
        return cls(
            kind=ActionKind.DOCUMENT_GENERATION,
            document_type=document_type,
            estimated_tokens=estimated_tokens,
        )

    @classmethod
    def usage_probe(cls) -> "UsageAction":
        """Zero-cost conversation check used purely to read the usage summary."""
        return cls(kind=ActionKind.CONVERSATION, estimated_minutes=0, probe=True)


class UpgradeSuggestion(BaseModel):
    """Remediation hint attached to a denied action."""
    should_upgrade: bool
    recommended_tier: Optional[str] = None
    recommended_tier_name: Optional[str] = None
    benefits: List[str] = Field(default_factory=list)


class ValidationResult(BaseModel):
    """Admission decision. Derived per call, never persisted."""
    allowed: bool
    remaining: Dict[QuotaDimension, float] = Field(default_factory=dict)  # inf when unlimited, absent when unknown
    warnings: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    upgrade_required: bool = False
    upgrade_suggestion: Optional[UpgradeSuggestion] = None

    # Echo of the snapshot for the presentation layer
    tier: str = "none"
    subscription_status: str = "unknown"
    current_usage: UsageCounters = Field(default_factory=UsageCounters)
    limits: QuotaLimits = Field(default_factory=QuotaLimits)
    probe: bool = False

    model_config = {"ser_json_inf_nan": "constants"}
