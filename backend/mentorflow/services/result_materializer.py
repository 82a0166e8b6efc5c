"""Result Materializer - turns a COMPLETED generation into a stored document.

Each document id is fetched at most once: the in-flight fetch is cached by
document id, so duplicate completions (poll and push racing) share one call.
A failed fetch is evicted from the cache so a later retry fetches again; it
never changes the generation's COMPLETED status.
"""
import asyncio
import logging
from typing import Dict, Optional

from mentorflow.exceptions import (
    GenerationTimeoutError,
    MaterializationError,
    TerminalGenerationError,
)
from mentorflow.models.documents import GeneratedDocument
from mentorflow.models.generation import TIMEOUT_REASON, GenerationRequest, GenerationStatus
from mentorflow.services.collaborators import DocumentFetchService, DocumentStore
from mentorflow.services.job_registry import JobRegistry

logger = logging.getLogger(__name__)


class ResultMaterializer:
    """Sole writer of the document store."""

    def __init__(
        self,
        fetch_service: DocumentFetchService,
        document_store: DocumentStore,
        registry: JobRegistry,
    ):
        self.fetch_service = fetch_service
        self.document_store = document_store
        self.registry = registry
        self._fetches: Dict[str, "asyncio.Task[GeneratedDocument]"] = {}

    def is_cached(self, document_id: str) -> bool:
        task = self._fetches.get(document_id)
        return task is not None and task.done() and not task.cancelled() and task.exception() is None

    async def _fetch_and_store(self, document_id: str) -> GeneratedDocument:
        existing = await self.document_store.get(document_id)
        if existing is not None:
            return existing
        document = await self.fetch_service.get_document(document_id)
        await self.document_store.put(document)
        logger.info(f"Materialized document {document_id}")
        return document

    def _evict_failed(self, document_id: str, task: asyncio.Task) -> None:
        if task.cancelled() or task.exception() is not None:
            if self._fetches.get(document_id) is task:
                del self._fetches[document_id]

    async def materialize(self, request: GenerationRequest) -> GeneratedDocument:
        """Fetch (once) and store the document for a COMPLETED request.

        Raises MaterializationError when the fetch fails; the request is left
        COMPLETED with materialization_error set.
        """
        request_id = request.request_id
        document_id = request.result_document_id
        if request.status != GenerationStatus.COMPLETED or not document_id:
            raise MaterializationError(request_id, document_id, "request has no completed document")

        task = self._fetches.get(document_id)
        if task is None:
            task = asyncio.ensure_future(self._fetch_and_store(document_id))
            task.add_done_callback(lambda t, doc_id=document_id: self._evict_failed(doc_id, t))
            self._fetches[document_id] = task

        try:
            document = await asyncio.shield(task)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._evict_failed(document_id, task)
            reason = str(e) or type(e).__name__
            logger.error(f"Failed to materialize document {document_id} for {request_id}: {reason}")
            await self.registry.record_materialization_error(request_id, reason)
            raise MaterializationError(request_id, document_id, reason) from e

        await self.registry.clear_materialization_error(request_id)
        return document

    def surface_failure(self, request: GenerationRequest) -> TerminalGenerationError:
        """Error describing a FAILED request. No fetch is attempted."""
        if request.error == TIMEOUT_REASON:
            return GenerationTimeoutError(request.request_id, TIMEOUT_REASON)
        return TerminalGenerationError(request.request_id, request.error or "generation failed")

    async def get_document(self, document_id: Optional[str]) -> Optional[GeneratedDocument]:
        if not document_id:
            return None
        return await self.document_store.get(document_id)

    async def close(self) -> None:
        pending = [task for task in self._fetches.values() if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._fetches.clear()
