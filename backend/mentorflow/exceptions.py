"""MentorFlow error taxonomy.

- UsageValidationError: admission denied before any request exists
- TransientFetchError: network/storage hiccup, retried within the timeout window
- TerminalGenerationError: generation service reported FAILED
- MaterializationError: generation COMPLETED but the artifact fetch failed
- GenerationTimeoutError: local ceiling reached without a terminal update
"""
from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from mentorflow.models.usage import ValidationResult


class GenerationTrackingError(Exception):
    """Base exception for MentorFlow."""
    pass


class UsageValidationError(GenerationTrackingError):
    """Admission denied. Carries the full ValidationResult and the upgrade hint."""

    def __init__(self, result: "ValidationResult"):
        self.result = result
        self.errors = list(result.errors)
        self.upgrade_suggestion = result.upgrade_suggestion
        self.message = "; ".join(self.errors) or "Action not allowed on current plan"
        super().__init__(self.message)


class TransientFetchError(GenerationTrackingError):
    """Network or storage failure while polling or fetching. Never surfaced per attempt."""
    pass


class TerminalGenerationError(GenerationTrackingError):
    """Generation service reported FAILED. Resubmit to try again (new request id)."""

    def __init__(self, request_id: str, reason: str):
        self.request_id = request_id
        self.reason = reason
        super().__init__(f"Generation {request_id} failed: {reason}")


class GenerationTimeoutError(TerminalGenerationError):
    """No terminal update before the local ceiling; tracked as FAILED locally."""
    pass


class MaterializationError(GenerationTrackingError):
    """Generated document could not be fetched. Retryable without resubmitting."""

    def __init__(self, request_id: str, document_id: Optional[str], reason: str):
        self.request_id = request_id
        self.document_id = document_id
        self.reason = reason
        super().__init__(f"Could not fetch document {document_id} for {request_id}: {reason}")


class RequestNotFoundError(GenerationTrackingError):
    """Unknown generation request id."""

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Generation request not found: {request_id}")


class InvalidRetryError(GenerationTrackingError):
    """Retry requested for a request in the wrong state."""
    pass
