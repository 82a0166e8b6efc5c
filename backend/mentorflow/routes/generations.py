"""MentorFlow Generation Routes

Endpoints:
- POST /api/mentorflow/generations - Validate quota and submit a document generation
- GET /api/mentorflow/generations/{id} - Current status (and document once ready)
- GET /api/mentorflow/generations/{id}/history - Audit trail of status observations
- POST /api/mentorflow/generations/{id}/retry - Resubmit a failed generation (new id)
- POST /api/mentorflow/generations/{id}/materialize - Retry the document fetch
- POST /api/mentorflow/webhooks/generation-status - Push status from the generation service
"""

from fastapi import APIRouter, HTTPException, Depends, Header, Request
from pydantic import BaseModel, Field, ValidationError
from typing import Optional, Dict, Any
import hashlib
import hmac
import json
import logging

from mentorflow.exceptions import (
    InvalidRetryError,
    MaterializationError,
    RequestNotFoundError,
    UsageValidationError,
)
from mentorflow.models.documents import parse_document_parameters
from mentorflow.models.generation import GenerationRequest, parse_status_message
from mentorflow.services.collaborators import InProcessBroadcastChannel
from mentorflow.services.generation_tracker import GenerationTracker
from mentorflow.routes.usage import get_generation_tracker, serialize_validation_result

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/mentorflow", tags=["MentorFlow Generations"])


class GenerationSubmitRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    scope_id: str = Field(..., min_length=1)  # Consultation id
    document_type: str
    parameters: Dict[str, Any] = Field(default_factory=dict)
    estimated_tokens: Optional[int] = Field(None, ge=0)


def serialize_request(request: GenerationRequest) -> Dict[str, Any]:
    return request.model_dump(mode="json")


def _denied(e: UsageValidationError) -> HTTPException:
    return HTTPException(
        status_code=403,
        detail={
            "message": e.message,
            **serialize_validation_result(e.result),
        },
    )


@router.post("/generations", status_code=202)
async def submit_generation(
    body: GenerationSubmitRequest,
    tracker: GenerationTracker = Depends(get_generation_tracker),
):
    """Submit a document generation.

    Returns 202 with the PENDING request; poll GET /generations/{id} or watch
    the consultation for the result. 403 when the plan does not allow it.
    """
    try:
        parameters = parse_document_parameters(body.document_type, body.parameters)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))

    try:
        request = await tracker.submit(
            body.user_id,
            body.scope_id,
            parameters,
            estimated_tokens=body.estimated_tokens,
        )
    except UsageValidationError as e:
        raise _denied(e)
    except Exception as e:
        logger.error(f"Generation submission failed: {e}")
        raise HTTPException(status_code=502, detail="Generation service unavailable")

    return serialize_request(request)


@router.get("/generations/{request_id}")
async def get_generation(
    request_id: str,
    tracker: GenerationTracker = Depends(get_generation_tracker),
):
    try:
        request = tracker.get_request(request_id)
    except RequestNotFoundError:
        raise HTTPException(status_code=404, detail="Generation request not found")

    document = await tracker.get_document(request_id)
    return {
        "request": serialize_request(request),
        "document": document.model_dump(mode="json") if document else None,
        "active": tracker.registry.is_active(request_id),
    }


@router.get("/generations/{request_id}/history")
async def get_generation_history(
    request_id: str,
    tracker: GenerationTracker = Depends(get_generation_tracker),
):
    try:
        return tracker.history(request_id).model_dump(mode="json")
    except RequestNotFoundError:
        raise HTTPException(status_code=404, detail="Generation request not found")


@router.post("/generations/{request_id}/retry", status_code=202)
async def retry_generation(
    request_id: str,
    tracker: GenerationTracker = Depends(get_generation_tracker),
):
    """Resubmit a failed generation. Quota is checked again; the new request gets a new id."""
    try:
        request = await tracker.resubmit(request_id)
    except RequestNotFoundError:
        raise HTTPException(status_code=404, detail="Generation request not found")
    except InvalidRetryError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except UsageValidationError as e:
        raise _denied(e)
    except Exception as e:
        logger.error(f"Generation resubmission failed for {request_id}: {e}")
        raise HTTPException(status_code=502, detail="Generation service unavailable")

    return {"previous_request_id": request_id, "request": serialize_request(request)}


@router.post("/generations/{request_id}/materialize")
async def retry_materialization(
    request_id: str,
    tracker: GenerationTracker = Depends(get_generation_tracker),
):
    """Fetch the document again for a completed generation whose fetch failed."""
    try:
        document = await tracker.retry_materialization(request_id)
    except RequestNotFoundError:
        raise HTTPException(status_code=404, detail="Generation request not found")
    except InvalidRetryError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except MaterializationError as e:
        raise HTTPException(status_code=502, detail=f"Document fetch failed: {e.reason}")

    return document.model_dump(mode="json")


# ============================================================================
# Push ingestion
# ============================================================================

def verify_signature(secret: str, body: bytes, signature_header: Optional[str]) -> bool:
    """Check an X-Webhook-Signature header of the form sha256=<hex>."""
    if not signature_header or not signature_header.startswith("sha256="):
        return False
    expected = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature_header[len("sha256="):])


@router.post("/webhooks/generation-status", status_code=202)
async def receive_generation_status(
    request: Request,
    x_webhook_signature: Optional[str] = Header(None, alias="X-Webhook-Signature"),
    tracker: GenerationTracker = Depends(get_generation_tracker),
):
    """Status notification from the generation service.

    Body: {"requestId": ..., "status": ..., "result_document_id"?, "error"?, "scope_id"?}
    Signed with HMAC-SHA256 when GENERATION_WEBHOOK_SECRET is configured.
    """
    body = await request.body()

    secret = tracker.settings.webhook_secret
    if secret and not verify_signature(secret, body, x_webhook_signature):
        logger.warning("Rejected generation status webhook: invalid signature")
        raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        payload = json.loads(body)
        update = parse_status_message(payload)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Invalid status message: {e}")

    scope_id = payload.get("scope_id") or payload.get("scopeId")
    if not scope_id:
        tracked = tracker.registry.get(update.request_id)
        scope_id = tracked.scope_id if tracked else None
    if not scope_id:
        logger.info(f"Ignoring status for untracked request {update.request_id}")
        return {"status": "ignored", "reason": "unknown_request"}

    channel = tracker.channel
    if not isinstance(channel, InProcessBroadcastChannel):
        raise HTTPException(status_code=501, detail="Push ingestion is not enabled")

    delivered = await channel.publish(scope_id, payload)
    return {"status": "accepted", "request_id": update.request_id, "delivered": delivered}
