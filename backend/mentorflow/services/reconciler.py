"""Reconciler - single entry point for status updates from polling and push.

Both channels call handle(update, source). The registry decides whether the
update advances the request; only the update that produces the terminal
transition goes on to materialize the document (or surface the failure),
resolve the outcome, retire the request and release its scope.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional

from mentorflow.exceptions import MaterializationError
from mentorflow.models.documents import GeneratedDocument
from mentorflow.models.generation import (
    GenerationOutcome,
    GenerationRequest,
    GenerationStatus,
    StatusUpdate,
    TrackingEvent,
    TrackingEventType,
    Transition,
    UpdateSource,
)
from mentorflow.services.job_registry import JobRegistry
from mentorflow.services.result_materializer import ResultMaterializer

logger = logging.getLogger(__name__)

Notifier = Callable[[TrackingEvent], Awaitable[None]]
ScopeReleaser = Callable[[str], Awaitable[None]]


async def _no_notify(event: TrackingEvent) -> None:
    return None


async def _no_release(scope_id: str) -> None:
    return None


class Reconciler:
    def __init__(
        self,
        registry: JobRegistry,
        materializer: ResultMaterializer,
        release_scope: ScopeReleaser = _no_release,
        notify: Notifier = _no_notify,
    ):
        self.registry = registry
        self.materializer = materializer
        self.release_scope = release_scope
        self.notify = notify
        self._outcomes: Dict[str, asyncio.Future] = {}

    def outcome_future(self, request_id: str) -> asyncio.Future:
        future = self._outcomes.get(request_id)
        if future is None:
            future = asyncio.get_running_loop().create_future()
            self._outcomes[request_id] = future
        return future

    def get_outcome(self, request_id: str) -> Optional[GenerationOutcome]:
        future = self._outcomes.get(request_id)
        if future is None or not future.done() or future.cancelled():
            return None
        return future.result()

    def _resolve(self, outcome: GenerationOutcome) -> None:
        request_id = outcome.request.request_id
        future = self._outcomes.get(request_id)
        if future is None or future.done():
            future = asyncio.get_running_loop().create_future()
            self._outcomes[request_id] = future
        future.set_result(outcome)

    async def handle(self, update: StatusUpdate, source: UpdateSource) -> Optional[Transition]:
        """Apply one observation. Returns the transition it caused, if any."""
        transition = await self.registry.apply(update.request_id, update, source)
        if transition is None:
            return None

        if not transition.is_terminal:
            await self.notify(
                TrackingEvent(
                    request_id=transition.request.request_id,
                    event_type=TrackingEventType.STATUS_CHANGED,
                    status=transition.status_to,
                )
            )
            return transition

        await self._finish(transition.request)
        return transition

    async def _finish(self, request: GenerationRequest) -> None:
        request_id = request.request_id
        document: Optional[GeneratedDocument] = None
        materialization_error: Optional[str] = None

        if request.status == GenerationStatus.COMPLETED:
            try:
                document = await self.materializer.materialize(request)
            except MaterializationError as e:
                materialization_error = e.reason
                await self.notify(
                    TrackingEvent(
                        request_id=request_id,
                        event_type=TrackingEventType.MATERIALIZATION_FAILED,
                        status=request.status,
                        error=e.reason,
                    )
                )
            else:
                await self.notify(
                    TrackingEvent(
                        request_id=request_id,
                        event_type=TrackingEventType.DOCUMENT_READY,
                        status=request.status,
                        document=document,
                    )
                )
        else:
            error = self.materializer.surface_failure(request)
            logger.warning(str(error))
            await self.notify(
                TrackingEvent(
                    request_id=request_id,
                    event_type=TrackingEventType.GENERATION_FAILED,
                    status=request.status,
                    error=request.error,
                )
            )

        self._resolve(
            GenerationOutcome(
                request=self.registry.get(request_id),
                document=document,
                error=request.error,
                materialization_error=materialization_error,
            )
        )

        if self.registry.retire(request_id):
            self._prune_outcomes()
            await self.release_scope(request.scope_id)

    def _prune_outcomes(self) -> None:
        """Forget resolved outcomes of requests the registry has evicted."""
        evicted = [
            request_id for request_id, future in self._outcomes.items()
            if future.done() and self.registry.get(request_id) is None
        ]
        for request_id in evicted:
            del self._outcomes[request_id]

    async def rematerialize(self, request_id: str) -> GeneratedDocument:
        """Retry the document fetch for a COMPLETED request. Raises MaterializationError."""
        request = self.registry.require(request_id)
        document = await self.materializer.materialize(request)
        self._resolve(GenerationOutcome(request=self.registry.get(request_id), document=document))
        await self.notify(
            TrackingEvent(
                request_id=request_id,
                event_type=TrackingEventType.DOCUMENT_READY,
                status=request.status,
                document=document,
            )
        )
        return document

    def close(self) -> None:
        for future in self._outcomes.values():
            if not future.done():
                future.cancel()
