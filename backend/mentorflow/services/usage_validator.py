"""Usage Validator - admission control over a quota snapshot.

validate(snapshot, action) is pure and deterministic: it never mutates state,
never performs I/O and never raises on well-formed input.

Relevant dimensions per action:
- conversation: sessions (count) + minutes (estimated cost)
- document_generation: documents (count) + tokens (estimated cost)

An action is allowed only when every relevant cost dimension covers the estimate
and every relevant count dimension has at least one unit left. Each known dimension
is checked on its own; missing quota data adds "quota data unavailable" and denies
instead of silently allowing. Unknown dimensions are left out of `remaining`.
"""
import math
import logging
from typing import Dict, List, Optional, Tuple

from mentorflow.config import (
    DEFAULT_ESTIMATED_TOKENS,
    DEFAULT_SESSION_MINUTES,
    DEFAULT_WARNING_THRESHOLD,
)
from mentorflow.models.usage import (
    UNLIMITED,
    ActionKind,
    QuotaDimension,
    QuotaLimits,
    UsageAction,
    UsageCounters,
    UsageSnapshot,
    ValidationResult,
)
from mentorflow.services.tier_registry import ACTIVE_SUBSCRIPTION_STATUSES, tier_registry

logger = logging.getLogger(__name__)

QUOTA_UNAVAILABLE = "quota data unavailable"

# (count dimension, cost dimension) per action kind
RELEVANT_DIMENSIONS: Dict[ActionKind, Tuple[QuotaDimension, QuotaDimension]] = {
    ActionKind.CONVERSATION: (QuotaDimension.SESSIONS, QuotaDimension.MINUTES),
    ActionKind.DOCUMENT_GENERATION: (QuotaDimension.DOCUMENTS, QuotaDimension.TOKENS),
}

DIMENSION_LABELS = {
    QuotaDimension.SESSIONS: "video sessions",
    QuotaDimension.MINUTES: "video minutes",
    QuotaDimension.DOCUMENTS: "document generations",
    QuotaDimension.TOKENS: "tokens",
}


def compute_remaining(limit: Optional[int], used: Optional[int]) -> Optional[float]:
    """remaining = inf if limit is UNLIMITED else max(0, limit - used); None if unknown."""
    if limit is None:
        return None
    if limit == UNLIMITED:
        return math.inf
    if limit < 0 or used is None or used < 0:
        return None
    return float(max(0, limit - used))


def estimated_cost(
    action: UsageAction,
    limits: QuotaLimits,
    default_estimated_tokens: int = DEFAULT_ESTIMATED_TOKENS,
    default_session_minutes: int = DEFAULT_SESSION_MINUTES,
) -> int:
    """Cost of the action along its cost dimension. Probes always cost 0."""
    if action.probe:
        return 0
    if action.kind == ActionKind.CONVERSATION:
        if action.estimated_minutes is not None:
            return action.estimated_minutes
        return limits.minutes_per_session or default_session_minutes
    if action.estimated_tokens is not None:
        return action.estimated_tokens
    return default_estimated_tokens


def _format_amount(value: float) -> str:
    return "unlimited" if math.isinf(value) else str(int(value))


def _unavailable_result(action: UsageAction, snapshot: Optional[UsageSnapshot] = None) -> ValidationResult:
    return ValidationResult(
        allowed=False,
        remaining={},
        errors=[QUOTA_UNAVAILABLE],
        upgrade_required=True,
        tier=snapshot.tier if snapshot else "none",
        subscription_status=snapshot.subscription_status if snapshot else "unknown",
        current_usage=snapshot.current_usage if snapshot else UsageCounters(),
        limits=snapshot.limits if snapshot else QuotaLimits(),
        probe=action.probe,
    )


def _subscription_errors(snapshot: UsageSnapshot) -> List[str]:
    status = (snapshot.subscription_status or "").strip().lower()
    if status not in ACTIVE_SUBSCRIPTION_STATUSES:
        if status in ("", "none"):
            return ["No active subscription found"]
        return [
            f"Subscription is {status}. Please update your payment method or reactivate your subscription."
        ]
    if status == "trialing" and snapshot.trial_ends_at and snapshot.trial_ends_at < snapshot.captured_at:
        return ["Your free trial has ended. Please upgrade to continue using the service."]
    return []


def validate(
    snapshot: Optional[UsageSnapshot],
    action: UsageAction,
    warning_threshold: float = DEFAULT_WARNING_THRESHOLD,
    default_estimated_tokens: int = DEFAULT_ESTIMATED_TOKENS,
    default_session_minutes: int = DEFAULT_SESSION_MINUTES,
) -> ValidationResult:
    """Decide whether action may proceed given snapshot.

    A None snapshot (provider failure) denies with QUOTA_UNAVAILABLE.
    """
    if snapshot is None:
        return _unavailable_result(action)

    usage = snapshot.current_usage
    limits = snapshot.limits
    errors: List[str] = []
    warnings: List[str] = []

    remaining_known: Dict[QuotaDimension, Optional[float]] = {
        dimension: compute_remaining(limits.limit(dimension), usage.used(dimension))
        for dimension in QuotaDimension
    }
    if snapshot.features.get("unlimited_tokens"):
        remaining_known[QuotaDimension.TOKENS] = math.inf

    errors.extend(_subscription_errors(snapshot))

    if (
        action.kind == ActionKind.DOCUMENT_GENERATION
        and snapshot.features.get("document_generation") is False
    ):
        errors.append(
            f"Document generation is not available on the {tier_registry.get_tier_name(snapshot.tier)} plan."
        )

    count_dimension, cost_dimension = RELEVANT_DIMENSIONS[action.kind]
    cost = estimated_cost(action, limits, default_estimated_tokens, default_session_minutes)

    count_remaining = remaining_known[count_dimension]
    if count_remaining is not None and count_remaining <= 0:
        errors.append(
            f"You have used all {limits.limit(count_dimension)} {DIMENSION_LABELS[count_dimension]} "
            f"for this billing period."
        )

    cost_remaining = remaining_known[cost_dimension]
    if cost_remaining is not None and cost_remaining < cost:
        errors.append(
            f"Not enough {DIMENSION_LABELS[cost_dimension]}: {_format_amount(cost_remaining)} remaining, "
            f"{cost} required."
        )

    # One unavailable error covers every unknown dimension
    missing = [d.value for d in (count_dimension, cost_dimension) if remaining_known[d] is None]
    if missing:
        logger.warning(f"Quota data unavailable for user {snapshot.user_id}: missing {missing}")
        errors.append(QUOTA_UNAVAILABLE)

    allowed = not errors

    if allowed:
        for dimension in (count_dimension, cost_dimension):
            limit = limits.limit(dimension)
            used = usage.used(dimension)
            if math.isinf(remaining_known[dimension]) or not limit:
                continue
            fraction = used / limit
            if fraction >= warning_threshold:
                warnings.append(
                    f"You have used {int(fraction * 100)}% of your {DIMENSION_LABELS[dimension]} "
                    f"this period ({_format_amount(remaining_known[dimension])} remaining)."
                )

    upgrade_suggestion = None
    if not allowed and errors != [QUOTA_UNAVAILABLE]:
        upgrade_suggestion = tier_registry.get_upgrade_suggestion(snapshot.tier)

    return ValidationResult(
        allowed=allowed,
        remaining={d: r for d, r in remaining_known.items() if r is not None},
        warnings=warnings,
        errors=errors,
        upgrade_required=not allowed,
        upgrade_suggestion=upgrade_suggestion,
        tier=snapshot.tier,
        subscription_status=snapshot.subscription_status,
        current_usage=usage,
        limits=limits,
        probe=action.probe,
    )


def format_validation_messages(result: ValidationResult) -> Dict[str, object]:
    """Split a result into display-ready errors and warnings."""
    return {
        "errors": list(result.errors),
        "warnings": list(result.warnings),
        "has_errors": bool(result.errors),
        "has_warnings": bool(result.warnings),
    }
