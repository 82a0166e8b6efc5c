"""MentorFlow Usage Routes

Endpoints:
- POST /api/mentorflow/usage/validate - Check whether an action is allowed
- GET /api/mentorflow/usage/tiers - Plan catalogue with limits and features
- GET /api/mentorflow/usage/{user_id}/summary - Remaining quota (read-only)
"""

from fastapi import APIRouter, HTTPException, Depends, Request
from pydantic import BaseModel, Field
from typing import Optional, Dict, Any
import math
import logging

from mentorflow.models.usage import UNLIMITED, ActionKind, UsageAction, ValidationResult
from mentorflow.services.generation_tracker import GenerationTracker
from mentorflow.services.tier_registry import tier_registry
from mentorflow.services.usage_validator import format_validation_messages

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/mentorflow/usage", tags=["MentorFlow Usage"])


def get_generation_tracker(request: Request) -> GenerationTracker:
    """Tracker owned by the application lifespan."""
    tracker = getattr(request.app.state, "generation_tracker", None)
    if tracker is None:
        raise HTTPException(status_code=503, detail="Generation tracking is not available")
    return tracker


def serialize_validation_result(result: ValidationResult) -> Dict[str, Any]:
    """JSON-safe result. Unlimited remaining quota is reported as -1, like limits."""
    data = result.model_dump(mode="json", exclude={"remaining"})
    data["remaining"] = {
        dimension.value: (UNLIMITED if math.isinf(value) else int(value))
        for dimension, value in result.remaining.items()
    }
    data["messages"] = format_validation_messages(result)
    return data


class ValidateActionRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    action: ActionKind
    estimated_minutes: Optional[int] = Field(None, ge=0)
    estimated_tokens: Optional[int] = Field(None, ge=0)
    document_type: Optional[str] = None


@router.post("/validate")
async def validate_action(
    body: ValidateActionRequest,
    tracker: GenerationTracker = Depends(get_generation_tracker),
):
    """Check an action against the user's plan without performing it."""
    if body.action == ActionKind.CONVERSATION:
        action = UsageAction.conversation(body.estimated_minutes)
    else:
        action = UsageAction.document_generation(body.document_type, body.estimated_tokens)

    result = await tracker.check_action(body.user_id, action)
    return serialize_validation_result(result)


@router.get("/tiers")
async def list_tiers():
    return {"tiers": tier_registry.list_tiers()}


@router.get("/{user_id}/summary")
async def get_usage_summary(
    user_id: str,
    tracker: GenerationTracker = Depends(get_generation_tracker),
):
    """Usage, limits and remaining quota for the current billing period."""
    result = await tracker.get_usage_summary(user_id)
    return serialize_validation_result(result)
