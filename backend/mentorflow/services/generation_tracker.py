"""Generation Tracker - owning scope for admission control and job tracking.

Holds the job registry, poll driver, event listener, reconciler and result
materializer for one application (or one consultation). Nothing here is a
module-level global: create a tracker, use it, close it.

    async with GenerationTracker(...) as tracker:
        request = await tracker.submit(user_id, consultation_id, parameters)
        outcome = await tracker.wait_for_outcome(request.request_id)
"""
import asyncio
import inspect
import logging
from typing import Any, Callable, Dict, List, Optional, Union

from mentorflow.config import TrackingSettings
from mentorflow.exceptions import InvalidRetryError, UsageValidationError
from mentorflow.models.documents import (
    DocumentParameters,
    GeneratedDocument,
    parse_document_parameters,
)
from mentorflow.models.generation import (
    GenerationHistory,
    GenerationOutcome,
    GenerationRequest,
    GenerationStatus,
    TrackingEvent,
    TrackingEventType,
)
from mentorflow.models.usage import UsageAction, UsageSnapshot, ValidationResult
from mentorflow.services.collaborators import (
    BroadcastChannel,
    DocumentFetchService,
    DocumentStore,
    GenerationSubmissionService,
    InMemoryDocumentStore,
    QuotaSnapshotProvider,
    StatusQueryService,
)
from mentorflow.services.event_listener import EventListener
from mentorflow.services.job_registry import JobRegistry
from mentorflow.services.poll_driver import PollDriver
from mentorflow.services.reconciler import Reconciler
from mentorflow.services.result_materializer import ResultMaterializer
from mentorflow.services.usage_validator import validate

logger = logging.getLogger(__name__)

TrackingCallback = Callable[[TrackingEvent], Any]


class GenerationTracker:
    def __init__(
        self,
        quota_provider: QuotaSnapshotProvider,
        submission_service: GenerationSubmissionService,
        status_service: StatusQueryService,
        document_service: DocumentFetchService,
        channel: BroadcastChannel,
        document_store: Optional[DocumentStore] = None,
        settings: Optional[TrackingSettings] = None,
    ):
        self.settings = settings or TrackingSettings()
        self.quota_provider = quota_provider
        self.submission_service = submission_service
        self.channel = channel

        self.registry = JobRegistry(max_retained=self.settings.max_retained_requests)
        self.materializer = ResultMaterializer(
            document_service,
            document_store or InMemoryDocumentStore(),
            self.registry,
        )
        self.reconciler = Reconciler(
            self.registry,
            self.materializer,
            release_scope=self._release_scope,
            notify=self._notify,
        )
        self.listener = EventListener(channel, self.reconciler.handle)
        self.poll_driver = PollDriver(
            self.registry,
            status_service,
            self.reconciler.handle,
            interval_seconds=self.settings.poll_interval_seconds,
            timeout_seconds=self.settings.timeout_seconds,
        )
        self._observers: Dict[str, List[TrackingCallback]] = {}
        self._closed = False

    async def __aenter__(self) -> "GenerationTracker":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Admission control
    # ------------------------------------------------------------------

    async def _capture_snapshot(self, user_id: str) -> Optional[UsageSnapshot]:
        try:
            return await self.quota_provider.get_usage_snapshot(user_id)
        except Exception as e:
            logger.error(f"Quota snapshot unavailable for user {user_id}: {e}")
            return None

    async def check_action(self, user_id: str, action: UsageAction) -> ValidationResult:
        snapshot = await self._capture_snapshot(user_id)
        return validate(
            snapshot,
            action,
            warning_threshold=self.settings.warning_threshold,
            default_estimated_tokens=self.settings.default_estimated_tokens,
            default_session_minutes=self.settings.default_session_minutes,
        )

    async def check_conversation(self, user_id: str, estimated_minutes: Optional[int] = None) -> ValidationResult:
        return await self.check_action(user_id, UsageAction.conversation(estimated_minutes))

    async def check_document_generation(
        self,
        user_id: str,
        document_type: Optional[str] = None,
        estimated_tokens: Optional[int] = None,
    ) -> ValidationResult:
        return await self.check_action(
            user_id, UsageAction.document_generation(document_type, estimated_tokens)
        )

    async def get_usage_summary(self, user_id: str) -> ValidationResult:
        """Read-only view of remaining quota. Never consumes quota or creates a request."""
        return await self.check_action(user_id, UsageAction.usage_probe())

    # ------------------------------------------------------------------
    # Submission and tracking
    # ------------------------------------------------------------------

    async def submit(
        self,
        user_id: str,
        scope_id: str,
        parameters: Union[DocumentParameters, Dict[str, Any]],
        estimated_tokens: Optional[int] = None,
    ) -> GenerationRequest:
        """Validate, submit and start tracking a document generation.

        Raises UsageValidationError (and creates nothing) when the action is denied,
        including when quota data cannot be read.
        """
        if self._closed:
            raise RuntimeError("GenerationTracker is closed")
        if isinstance(parameters, dict):
            parameters = parse_document_parameters(parameters.get("document_type"), parameters)

        result = await self.check_document_generation(user_id, parameters.document_type, estimated_tokens)
        if not result.allowed:
            logger.info(f"Generation denied for user {user_id}: {result.errors}")
            raise UsageValidationError(result)

        # Subscribe before submitting so an immediate push is not missed
        await self.listener.acquire(scope_id)
        try:
            request = await self.submission_service.submit(scope_id, user_id, parameters)
            await self.registry.create(request)
        except BaseException:
            await self.listener.release(scope_id)
            raise

        if request.scope_id != scope_id:
            await self.listener.acquire(request.scope_id)
            await self.listener.release(scope_id)

        self.poll_driver.track(request.request_id)
        return request

    async def resubmit(self, request_id: str) -> GenerationRequest:
        """Submit a FAILED request again under a fresh request id."""
        request = self.registry.require(request_id)
        if request.status != GenerationStatus.FAILED:
            raise InvalidRetryError(
                f"Only failed generations can be resubmitted; {request_id} is {request.status.value}"
            )
        new_request = await self.submit(request.user_id, request.scope_id, request.parameters)
        logger.info(f"Resubmitted {request_id} as {new_request.request_id}")
        return new_request

    async def retry_materialization(self, request_id: str) -> GeneratedDocument:
        """Fetch the document again for a COMPLETED request. Raises MaterializationError."""
        request = self.registry.require(request_id)
        if request.status != GenerationStatus.COMPLETED:
            raise InvalidRetryError(
                f"Only completed generations have a document to fetch; {request_id} is {request.status.value}"
            )
        return await self.reconciler.rematerialize(request_id)

    def get_request(self, request_id: str) -> GenerationRequest:
        return self.registry.require(request_id)

    async def get_document(self, request_id: str) -> Optional[GeneratedDocument]:
        request = self.registry.require(request_id)
        return await self.materializer.get_document(request.result_document_id)

    def history(self, request_id: str) -> GenerationHistory:
        return self.registry.history(request_id)

    def get_outcome(self, request_id: str) -> Optional[GenerationOutcome]:
        self.registry.require(request_id)
        return self.reconciler.get_outcome(request_id)

    async def wait_for_outcome(self, request_id: str, timeout: Optional[float] = None) -> GenerationOutcome:
        """Wait until the request is terminal (and materialized, when COMPLETED).

        Raises asyncio.TimeoutError if timeout elapses first; tracking continues.
        """
        self.registry.require(request_id)
        future = self.reconciler.outcome_future(request_id)
        return await asyncio.wait_for(asyncio.shield(future), timeout)

    # ------------------------------------------------------------------
    # Presentation
    # ------------------------------------------------------------------

    def observe(self, request_id: str, callback: TrackingCallback) -> None:
        """Deliver TrackingEvents for request_id to callback (sync or async)."""
        self.registry.require(request_id)
        self._observers.setdefault(request_id, []).append(callback)

    def detach(self, request_id: str) -> int:
        """Remove observers for request_id. Tracking itself keeps running."""
        removed = self._observers.pop(request_id, [])
        return len(removed)

    async def _notify(self, event: TrackingEvent) -> None:
        for callback in list(self._observers.get(event.request_id, [])):
            try:
                result = callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(f"Observer callback failed for {event.request_id}")
        if event.event_type in (TrackingEventType.DOCUMENT_READY, TrackingEventType.GENERATION_FAILED):
            self._observers.pop(event.request_id, None)

    async def _release_scope(self, scope_id: str) -> None:
        await self.listener.release(scope_id)

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def active_count(self) -> int:
        return len(self.registry.active_ids())

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self.poll_driver.close()
        await self.listener.close()
        await self.materializer.close()
        self.reconciler.close()
        self._observers.clear()
        logger.info("Generation tracker closed")
