"""MentorFlow Data Models"""

from .usage import (
    UNLIMITED,
    ActionKind,
    QuotaDimension,
    QuotaLimits,
    UpgradeSuggestion,
    UsageAction,
    UsageCounters,
    UsageSnapshot,
    ValidationResult,
)
from .documents import (
    DocumentType,
    DocumentParameters,
    GeneratedDocument,
    PitchDeckParameters,
    BusinessPlanParameters,
    MarketAnalysisParameters,
    ConsultationSummaryParameters,
    parse_document_parameters,
)
from .generation import (
    GenerationStatus,
    GenerationRequest,
    GenerationOutcome,
    GenerationHistory,
    StatusUpdate,
    PendingUpdate,
    ProcessingUpdate,
    CompletedUpdate,
    FailedUpdate,
    UpdateSource,
    Transition,
    TrackingEvent,
    TrackingEventType,
    RegistryEvent,
    RegistryEventType,
    parse_status_message,
)

__all__ = [
    # Usage
    "UNLIMITED",
    "ActionKind",
    "QuotaDimension",
    "QuotaLimits",
    "UpgradeSuggestion",
    "UsageAction",
    "UsageCounters",
    "UsageSnapshot",
    "ValidationResult",
    # Documents
    "DocumentType",
    "DocumentParameters",
    "GeneratedDocument",
    "PitchDeckParameters",
    "BusinessPlanParameters",
    "MarketAnalysisParameters",
    "ConsultationSummaryParameters",
    "parse_document_parameters",
    # Generation tracking
    "GenerationStatus",
    "GenerationRequest",
    "GenerationOutcome",
    "GenerationHistory",
    "StatusUpdate",
    "PendingUpdate",
    "ProcessingUpdate",
    "CompletedUpdate",
    "FailedUpdate",
    "UpdateSource",
    "Transition",
    "TrackingEvent",
    "TrackingEventType",
    "RegistryEvent",
    "RegistryEventType",
    "parse_status_message",
]
