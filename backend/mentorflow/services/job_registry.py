"""Job Registry - authoritative record of generation requests.

State machine:
    PENDING -> PROCESSING | COMPLETED | FAILED
    PROCESSING -> COMPLETED | FAILED
    COMPLETED, FAILED -> (nothing)

An update is applied only when it strictly advances the status rank.
Anything else (duplicates, regressions, a second terminal report) is a
no-op that gets logged and kept in the request's audit trail.

Updates for one request id are serialized by a per-id asyncio.Lock; distinct
ids never contend. The lock is dropped when the request is retired, and only the
most recent max_retained retired requests (with their audit trails) are kept.
Stored records are replaced, never mutated, so a reader holding a
GenerationRequest always sees a consistent snapshot.
"""
import asyncio
import logging
from datetime import datetime, timezone
from collections import deque
from typing import Deque, Dict, List, Optional, Set

from mentorflow.config import DEFAULT_MAX_RETAINED_REQUESTS
from mentorflow.exceptions import RequestNotFoundError
from mentorflow.models.generation import (
    STATUS_RANK,
    GenerationHistory,
    GenerationRequest,
    GenerationStatus,
    RegistryEvent,
    RegistryEventType,
    StatusUpdate,
    Transition,
    UpdateSource,
)

logger = logging.getLogger(__name__)


def is_advancing(current: GenerationStatus, new: GenerationStatus) -> bool:
    return STATUS_RANK[new] > STATUS_RANK[current]


class JobRegistry:
    """In-memory registry of generation requests, keyed by request id."""

    def __init__(self, max_retained: int = DEFAULT_MAX_RETAINED_REQUESTS):
        self.max_retained = max_retained
        self._requests: Dict[str, GenerationRequest] = {}
        self._active: Set[str] = set()
        self._locks: Dict[str, asyncio.Lock] = {}
        self._events: Dict[str, List[RegistryEvent]] = {}
        self._retired: Deque[str] = deque()  # oldest first

    def _lock_for(self, request_id: str) -> asyncio.Lock:
        lock = self._locks.get(request_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[request_id] = lock
        return lock

    def _record(
        self,
        request_id: str,
        event_type: RegistryEventType,
        source: Optional[UpdateSource] = None,
        status_from: Optional[GenerationStatus] = None,
        status_to: Optional[GenerationStatus] = None,
        **details,
    ) -> None:
        self._events.setdefault(request_id, []).append(
            RegistryEvent(
                request_id=request_id,
                event_type=event_type,
                source=source,
                status_from=status_from,
                status_to=status_to,
                details=details,
            )
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, request_id: str) -> Optional[GenerationRequest]:
        return self._requests.get(request_id)

    def require(self, request_id: str) -> GenerationRequest:
        request = self._requests.get(request_id)
        if request is None:
            raise RequestNotFoundError(request_id)
        return request

    def is_terminal(self, request_id: str) -> bool:
        request = self._requests.get(request_id)
        return request is not None and request.is_terminal

    def is_active(self, request_id: str) -> bool:
        return request_id in self._active

    def active_ids(self) -> List[str]:
        return sorted(self._active)

    def active_count_for_scope(self, scope_id: str) -> int:
        return sum(1 for rid in self._active if self._requests[rid].scope_id == scope_id)

    def history(self, request_id: str) -> GenerationHistory:
        request = self.require(request_id)
        return GenerationHistory(request=request, events=list(self._events.get(request_id, [])))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create(self, request: GenerationRequest) -> GenerationRequest:
        """Register a freshly submitted request as active."""
        request_id = request.request_id
        async with self._lock_for(request_id):
            if request_id in self._requests:
                raise ValueError(f"Generation request already registered: {request_id}")
            self._requests[request_id] = request
            self._active.add(request_id)
            self._record(
                request_id,
                RegistryEventType.CREATED,
                source=UpdateSource.SUBMIT,
                status_to=request.status,
                scope_id=request.scope_id,
                document_type=request.document_type.value,
            )
        logger.info(f"Tracking generation {request_id} ({request.document_type.value}) in scope {request.scope_id}")
        return request

    async def apply(
        self,
        request_id: str,
        update: StatusUpdate,
        source: UpdateSource,
    ) -> Optional[Transition]:
        """Apply a status observation.

        Returns the Transition when the status advanced, None when the update
        was a no-op (unknown id, duplicate, regression or conflicting terminal).
        """
        async with self._lock_for(request_id):
            current = self._requests.get(request_id)
            if current is None:
                logger.warning(f"Ignoring {update.status.value} update for unknown request {request_id} ({source.value})")
                return None

            new_status = update.status
            if not is_advancing(current.status, new_status):
                logger.info(
                    f"Ignoring {new_status.value} from {source.value} for {request_id}: "
                    f"already {current.status.value}"
                )
                self._record(
                    request_id,
                    RegistryEventType.CONFLICT_IGNORED,
                    source=source,
                    status_from=current.status,
                    status_to=new_status,
                )
                return None

            now = datetime.now(timezone.utc)
            changes = {"status": new_status, "updated_at": now}
            if new_status == GenerationStatus.COMPLETED:
                changes["result_document_id"] = update.result_document_id
                changes["terminal_at"] = now
            elif new_status == GenerationStatus.FAILED:
                changes["error"] = update.error
                changes["terminal_at"] = now

            updated = current.model_copy(update=changes)
            self._requests[request_id] = updated
            details = {}
            if updated.result_document_id:
                details["result_document_id"] = updated.result_document_id
            if updated.error:
                details["error"] = updated.error
            self._record(
                request_id,
                RegistryEventType.TRANSITION,
                source=source,
                status_from=current.status,
                status_to=new_status,
                **details,
            )
            logger.info(f"Generation {request_id}: {current.status.value} -> {new_status.value} ({source.value})")

            return Transition(
                request=updated,
                status_from=current.status,
                status_to=new_status,
                source=source,
            )

    async def record_materialization_error(self, request_id: str, reason: str) -> GenerationRequest:
        async with self._lock_for(request_id):
            current = self.require(request_id)
            updated = current.model_copy(
                update={"materialization_error": reason, "updated_at": datetime.now(timezone.utc)}
            )
            self._requests[request_id] = updated
            self._record(
                request_id,
                RegistryEventType.MATERIALIZATION_FAILED,
                status_from=current.status,
                status_to=current.status,
                document_id=current.result_document_id,
                reason=reason,
            )
            return updated

    async def clear_materialization_error(self, request_id: str) -> GenerationRequest:
        """Mark the artifact as fetched."""
        async with self._lock_for(request_id):
            current = self.require(request_id)
            updated = current.model_copy(
                update={"materialization_error": None, "updated_at": datetime.now(timezone.utc)}
            )
            self._requests[request_id] = updated
            self._record(
                request_id,
                RegistryEventType.MATERIALIZED,
                status_from=current.status,
                status_to=current.status,
                document_id=current.result_document_id,
            )
            return updated

    def retire(self, request_id: str) -> bool:
        """Drop a request from the active set. The record stays readable until evicted."""
        if request_id not in self._active:
            return False
        self._active.discard(request_id)
        lock = self._locks.get(request_id)
        if lock is not None and not lock.locked():
            del self._locks[request_id]
        request = self._requests[request_id]
        self._record(request_id, RegistryEventType.RETIRED, status_from=request.status, status_to=request.status)

        self._retired.append(request_id)
        while len(self._retired) > self.max_retained:
            self._forget(self._retired.popleft())
        return True

    def _forget(self, request_id: str) -> None:
        self._requests.pop(request_id, None)
        self._events.pop(request_id, None)
        self._locks.pop(request_id, None)
        logger.debug(f"Evicted retired generation {request_id}")
