"""Tier Registry - quota limits, feature flags and upgrade paths per subscription tier.

Tier Structure:
- founder_essential: 2 sessions / 40 min, 10 documents, 25K tokens
- founder_companion: 3 sessions / 75 min, 20 documents, 50K tokens, custom personas
- growth_partner: 5 sessions / 150 min, 40 documents, 100K tokens, team access
- expert_advisor: 8 sessions / 240 min, unlimited documents and tokens

Limits of UNLIMITED (-1) lift the cap for that dimension.
"""
from enum import Enum
from typing import Dict, List, Optional, Any
import logging

from mentorflow.models.usage import UNLIMITED, QuotaLimits, UpgradeSuggestion

logger = logging.getLogger(__name__)


class TierCode(str, Enum):
    """Subscription tiers."""
    FOUNDER_ESSENTIAL = "founder_essential"
    FOUNDER_COMPANION = "founder_companion"
    GROWTH_PARTNER = "growth_partner"
    EXPERT_ADVISOR = "expert_advisor"


# Subscription statuses that allow metered actions
ACTIVE_SUBSCRIPTION_STATUSES = frozenset({"active", "trialing"})


TIER_DEFINITIONS: Dict[TierCode, Dict[str, Any]] = {
    TierCode.FOUNDER_ESSENTIAL: {
        "name": "Founder Essential",
        "max_sessions": 2,
        "max_minutes": 40,
        "minutes_per_session": 20,
        "max_documents": 10,
        "max_tokens": 25000,
        "features": {
            "document_generation": True,
            "team_access": False,
            "custom_personas": False,
            "unlimited_tokens": False,
        },
    },
    TierCode.FOUNDER_COMPANION: {
        "name": "Founder Companion",
        "max_sessions": 3,
        "max_minutes": 75,
        "minutes_per_session": 25,
        "max_documents": 20,
        "max_tokens": 50000,
        "features": {
            "document_generation": True,
            "team_access": False,
            "custom_personas": True,
            "unlimited_tokens": False,
        },
    },
    TierCode.GROWTH_PARTNER: {
        "name": "Growth Partner",
        "max_sessions": 5,
        "max_minutes": 150,
        "minutes_per_session": 30,
        "max_documents": 40,
        "max_tokens": 100000,
        "features": {
            "document_generation": True,
            "team_access": True,
            "custom_personas": True,
            "unlimited_tokens": False,
        },
    },
    TierCode.EXPERT_ADVISOR: {
        "name": "Expert Advisor",
        "max_sessions": 8,
        "max_minutes": 240,
        "minutes_per_session": 30,
        "max_documents": UNLIMITED,
        "max_tokens": UNLIMITED,
        "features": {
            "document_generation": True,
            "team_access": True,
            "custom_personas": True,
            "unlimited_tokens": True,
        },
    },
}

# Next tier and what the user gains by moving to it
UPGRADE_PATHS: Dict[TierCode, Dict[str, Any]] = {
    TierCode.FOUNDER_ESSENTIAL: {
        "to": TierCode.FOUNDER_COMPANION,
        "benefits": [
            "3 × 25-minute video sessions (75 minutes total)",
            "50,000 tokens for document generation",
            "Priority AI responses (<30 seconds)",
            "Session recordings with insights",
        ],
    },
    TierCode.FOUNDER_COMPANION: {
        "to": TierCode.GROWTH_PARTNER,
        "benefits": [
            "5 × 30-minute video sessions (150 minutes total)",
            "100,000 tokens for document generation",
            "Team access for up to 3 members",
            "Industry-specific AI mentors",
        ],
    },
    TierCode.GROWTH_PARTNER: {
        "to": TierCode.EXPERT_ADVISOR,
        "benefits": [
            "8 × 30-minute video sessions (240 minutes total)",
            "Unlimited document generation",
            "Unlimited team access",
            "Specialized AI advisors (legal, finance, product)",
        ],
    },
}


class TierRegistryService:
    """Lookups over the tier catalog."""

    def resolve_tier(self, tier: Optional[str]) -> Optional[TierCode]:
        if not tier:
            return None
        try:
            return TierCode(tier.strip().lower())
        except ValueError:
            logger.warning(f"Unknown subscription tier: {tier}")
            return None

    def get_tier_name(self, tier: Optional[str]) -> str:
        tier_code = self.resolve_tier(tier)
        if tier_code is None:
            return tier or "none"
        return TIER_DEFINITIONS[tier_code]["name"]

    def get_limits(self, tier_code: TierCode) -> QuotaLimits:
        definition = TIER_DEFINITIONS[tier_code]
        return QuotaLimits(
            max_sessions=definition["max_sessions"],
            max_minutes=definition["max_minutes"],
            max_documents=definition["max_documents"],
            max_tokens=definition["max_tokens"],
            minutes_per_session=definition["minutes_per_session"],
        )

    def get_features(self, tier_code: TierCode) -> Dict[str, bool]:
        return dict(TIER_DEFINITIONS[tier_code]["features"])

    def get_upgrade_suggestion(self, tier: Optional[str]) -> UpgradeSuggestion:
        """Next tier for a denied action. Users without a known tier start at the entry upgrade."""
        tier_code = self.resolve_tier(tier) or TierCode.FOUNDER_ESSENTIAL
        path = UPGRADE_PATHS.get(tier_code)
        if not path:
            # Top tier: nothing to upgrade to, the limit resets next period
            return UpgradeSuggestion(should_upgrade=False)
        target: TierCode = path["to"]
        return UpgradeSuggestion(
            should_upgrade=True,
            recommended_tier=target.value,
            recommended_tier_name=TIER_DEFINITIONS[target]["name"],
            benefits=list(path["benefits"]),
        )

    def list_tiers(self) -> List[Dict[str, Any]]:
        return [
            {"code": code.value, **definition}
            for code, definition in TIER_DEFINITIONS.items()
        ]


tier_registry = TierRegistryService()
