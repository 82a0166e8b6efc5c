"""MentorFlow Generation Tracking Models

Generation request state machine record, status update messages (tagged
variants validated at the channel boundary) and presentation events.
"""

from pydantic import BaseModel, Field, TypeAdapter, AliasChoices, model_validator
from typing import Annotated, Optional, Dict, Any, List, Literal, Union
from datetime import datetime, timezone
from enum import Enum
import uuid

from mentorflow.models.documents import DocumentType, DocumentParameters, GeneratedDocument


class GenerationStatus(str, Enum):
    """Generation request lifecycle"""
    PENDING = "pending"          # Submitted, not yet acknowledged by the service
    PROCESSING = "processing"    # Acknowledged, work in progress
    COMPLETED = "completed"      # Terminal, carries result_document_id
    FAILED = "failed"            # Terminal, carries an error reason


TERMINAL_STATUSES = frozenset({GenerationStatus.COMPLETED, GenerationStatus.FAILED})

# rank(PENDING) < rank(PROCESSING) < rank(COMPLETED) == rank(FAILED)
STATUS_RANK = {
    GenerationStatus.PENDING: 0,
    GenerationStatus.PROCESSING: 1,
    GenerationStatus.COMPLETED: 2,
    GenerationStatus.FAILED: 2,
}

TIMEOUT_REASON = "timeout"


class UpdateSource(str, Enum):
    """Where a status observation came from"""
    SUBMIT = "submit"
    POLL = "poll"
    PUSH = "push"


class GenerationRequest(BaseModel):
    """Tracked generation job. Mutated only through the job registry."""
    request_id: str = Field(default_factory=lambda: f"GEN-{uuid.uuid4().hex[:12].upper()}")
    scope_id: str  # Consultation / session id
    user_id: Optional[str] = None
    document_type: DocumentType
    parameters: DocumentParameters
    status: GenerationStatus = GenerationStatus.PENDING

    # Outcome (result_document_id only on COMPLETED, error only on FAILED)
    result_document_id: Optional[str] = None
    error: Optional[str] = None
    materialization_error: Optional[str] = None

    # Timestamps
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    terminal_at: Optional[datetime] = None

    model_config = {"extra": "ignore"}

    @model_validator(mode="after")
    def _document_type_matches_parameters(self):
        if self.parameters.document_type != DocumentType(self.document_type).value:
            raise ValueError(
                f"parameters are for {self.parameters.document_type}, request is {self.document_type}"
            )
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


# ----------------------------------------------------------------------------
# Status update messages
# ----------------------------------------------------------------------------

class PendingUpdate(BaseModel):
    kind: Literal["pending"] = "pending"
    request_id: str = Field(..., min_length=1, validation_alias=AliasChoices("request_id", "requestId"))

    model_config = {"frozen": True, "extra": "ignore", "populate_by_name": True}

    @property
    def status(self) -> GenerationStatus:
        return GenerationStatus.PENDING


class ProcessingUpdate(BaseModel):
    kind: Literal["processing"] = "processing"
    request_id: str = Field(..., min_length=1, validation_alias=AliasChoices("request_id", "requestId"))

    model_config = {"frozen": True, "extra": "ignore", "populate_by_name": True}

    @property
    def status(self) -> GenerationStatus:
        return GenerationStatus.PROCESSING


class CompletedUpdate(BaseModel):
    kind: Literal["completed"] = "completed"
    request_id: str = Field(..., min_length=1, validation_alias=AliasChoices("request_id", "requestId"))
    result_document_id: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("result_document_id", "resultDocumentId"),
    )

    model_config = {"frozen": True, "extra": "ignore", "populate_by_name": True}

    @property
    def status(self) -> GenerationStatus:
        return GenerationStatus.COMPLETED


class FailedUpdate(BaseModel):
    kind: Literal["failed"] = "failed"
    request_id: str = Field(..., min_length=1, validation_alias=AliasChoices("request_id", "requestId"))
    error: str = "generation failed"

    model_config = {"frozen": True, "extra": "ignore", "populate_by_name": True}

    @property
    def status(self) -> GenerationStatus:
        return GenerationStatus.FAILED


StatusUpdate = Annotated[
    Union[PendingUpdate, ProcessingUpdate, CompletedUpdate, FailedUpdate],
    Field(discriminator="kind"),
]

_status_update_adapter = TypeAdapter(StatusUpdate)


def parse_status_message(raw: Dict[str, Any]) -> StatusUpdate:
    """Validate a raw {requestId, status, result_document_id?, error?} message.

    Status values are matched case-insensitively. Raises pydantic.ValidationError
    (or ValueError for non-mapping input) when the message is malformed.
    """
    if not isinstance(raw, dict):
        raise ValueError(f"Status message must be an object, got {type(raw).__name__}")
    payload = dict(raw)
    kind = payload.pop("kind", None) or payload.pop("status", None)
    if isinstance(kind, GenerationStatus):
        kind = kind.value
    payload["kind"] = str(kind).strip().lower() if kind is not None else None
    if payload["kind"] == "failed" and not payload.get("error"):
        payload.pop("error", None)
    return _status_update_adapter.validate_python(payload)


def timeout_update(request_id: str) -> FailedUpdate:
    return FailedUpdate(request_id=request_id, error=TIMEOUT_REASON)


# ----------------------------------------------------------------------------
# Registry audit trail
# ----------------------------------------------------------------------------

class RegistryEventType(str, Enum):
    CREATED = "CREATED"
    TRANSITION = "TRANSITION"
    CONFLICT_IGNORED = "CONFLICT_IGNORED"
    MATERIALIZATION_FAILED = "MATERIALIZATION_FAILED"
    MATERIALIZED = "MATERIALIZED"
    RETIRED = "RETIRED"


class RegistryEvent(BaseModel):
    """Audit entry for one observation applied to (or ignored by) the registry."""
    request_id: str
    event_type: RegistryEventType
    source: Optional[UpdateSource] = None
    status_from: Optional[GenerationStatus] = None
    status_to: Optional[GenerationStatus] = None
    details: Dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class Transition(BaseModel):
    """An applied status change."""
    request: GenerationRequest
    status_from: GenerationStatus
    status_to: GenerationStatus
    source: UpdateSource

    @property
    def is_terminal(self) -> bool:
        return self.status_to in TERMINAL_STATUSES


# ----------------------------------------------------------------------------
# Presentation notifications
# ----------------------------------------------------------------------------

class TrackingEventType(str, Enum):
    STATUS_CHANGED = "status_changed"
    DOCUMENT_READY = "document_ready"
    GENERATION_FAILED = "generation_failed"
    MATERIALIZATION_FAILED = "materialization_failed"


class TrackingEvent(BaseModel):
    """Notification delivered to whoever is watching a request."""
    request_id: str
    event_type: TrackingEventType
    status: GenerationStatus
    document: Optional[GeneratedDocument] = None
    error: Optional[str] = None
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class GenerationOutcome(BaseModel):
    """Final observable state of a generation request."""
    request: GenerationRequest
    document: Optional[GeneratedDocument] = None
    error: Optional[str] = None
    materialization_error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.request.status == GenerationStatus.COMPLETED and self.document is not None

    @property
    def timed_out(self) -> bool:
        return self.request.status == GenerationStatus.FAILED and self.error == TIMEOUT_REASON

    def raise_for_error(self) -> None:
        from mentorflow.exceptions import (
            GenerationTimeoutError,
            MaterializationError,
            TerminalGenerationError,
        )

        request_id = self.request.request_id
        if self.request.status == GenerationStatus.FAILED:
            if self.timed_out:
                raise GenerationTimeoutError(request_id, TIMEOUT_REASON)
            raise TerminalGenerationError(request_id, self.error or "generation failed")
        if self.materialization_error:
            raise MaterializationError(
                request_id, self.request.result_document_id, self.materialization_error
            )


class GenerationHistory(BaseModel):
    request: GenerationRequest
    events: List[RegistryEvent]
