"""Collaborator interfaces and implementations for generation tracking.

Interfaces:
- QuotaSnapshotProvider: current usage + tier limits for a user
- GenerationSubmissionService: hands a validated request to the generation service
- StatusQueryService: one-shot status lookup (used by polling)
- BroadcastChannel: per-scope push notifications
- DocumentFetchService: fetches a finished document
- DocumentStore: materialized documents (written only by the result materializer)

MongoDB (Motor) and HTTP (httpx) implementations are provided, plus an
in-process broadcast channel fed by the webhook route.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncContextManager, AsyncIterator, Dict, Optional, Set

import httpx
from pymongo.errors import PyMongoError

from database import database
from mentorflow.exceptions import TransientFetchError
from mentorflow.models.documents import DocumentParameters, GeneratedDocument
from mentorflow.models.generation import (
    GenerationRequest,
    GenerationStatus,
    StatusUpdate,
    parse_status_message,
)
from mentorflow.models.usage import UsageCounters, UsageSnapshot
from mentorflow.services.tier_registry import tier_registry

logger = logging.getLogger(__name__)


# ============================================================================
# Interfaces
# ============================================================================

class QuotaSnapshotProvider(ABC):
    @abstractmethod
    async def get_usage_snapshot(self, user_id: str) -> UsageSnapshot:
        """Capture the user's current quota state. May raise on provider failure."""
        pass


class GenerationSubmissionService(ABC):
    @abstractmethod
    async def submit(
        self,
        scope_id: str,
        user_id: Optional[str],
        parameters: DocumentParameters,
    ) -> GenerationRequest:
        """Submit a generation job. Returns the PENDING request with its assigned id."""
        pass


class StatusQueryService(ABC):
    @abstractmethod
    async def get_status(self, request_id: str) -> StatusUpdate:
        """Current status of a job. Raises TransientFetchError on transport failure."""
        pass


class DocumentFetchService(ABC):
    @abstractmethod
    async def get_document(self, document_id: str) -> GeneratedDocument:
        pass


class BroadcastChannel(ABC):
    @abstractmethod
    def subscribe(self, scope_id: str) -> AsyncContextManager[AsyncIterator[Dict[str, Any]]]:
        """Open a subscription for one scope.

        Usage:
            async with channel.subscribe(scope_id) as messages:
                async for raw in messages:
                    ...

        The subscription is live once the context has been entered.
        """
        pass


class DocumentStore(ABC):
    @abstractmethod
    async def get(self, document_id: str) -> Optional[GeneratedDocument]:
        pass

    @abstractmethod
    async def put(self, document: GeneratedDocument) -> None:
        pass


# ============================================================================
# MongoDB implementations
# ============================================================================

class MongoQuotaSnapshotProvider(QuotaSnapshotProvider):
    """Reads user_subscriptions + the latest usage_tracking row; limits come from the tier registry."""

    def __init__(self, db=None):
        self.db = db

    def _get_db(self):
        if self.db is None:
            self.db = database.get_db()
        return self.db

    async def get_usage_snapshot(self, user_id: str) -> UsageSnapshot:
        db = self._get_db()

        subscription = await db.user_subscriptions.find_one({"user_id": user_id}, {"_id": 0})
        if not subscription:
            logger.info(f"No subscription found for user {user_id}")
            return UsageSnapshot(user_id=user_id, tier="none", subscription_status="none")

        usage_row = await db.usage_tracking.find_one(
            {"user_id": user_id},
            {"_id": 0},
            sort=[("period_start", -1)],
        )
        if usage_row is None:
            # First period: nothing consumed yet
            usage = UsageCounters(sessions_used=0, minutes_used=0, documents_generated=0, tokens_consumed=0)
        else:
            usage = UsageCounters(**usage_row)

        tier = subscription.get("tier") or "none"
        tier_code = tier_registry.resolve_tier(tier)
        limits_kwargs: Dict[str, Any] = {}
        features: Dict[str, bool] = {}
        if tier_code is not None:
            limits_kwargs["limits"] = tier_registry.get_limits(tier_code)
            features = tier_registry.get_features(tier_code)

        return UsageSnapshot(
            user_id=user_id,
            tier=tier,
            subscription_status=subscription.get("status") or "none",
            current_usage=usage,
            features=features,
            trial_ends_at=subscription.get("trial_ends_at"),
            captured_at=datetime.now(timezone.utc),
            **limits_kwargs,
        )


class MongoGenerationGateway(GenerationSubmissionService, StatusQueryService, DocumentFetchService):
    """Generation jobs queued in document_generation_requests, results in generated_documents.

    A separate generation worker picks up pending rows and writes the outcome back.
    """

    def __init__(self, db=None):
        self.db = db

    def _get_db(self):
        if self.db is None:
            self.db = database.get_db()
        return self.db

    async def submit(
        self,
        scope_id: str,
        user_id: Optional[str],
        parameters: DocumentParameters,
    ) -> GenerationRequest:
        db = self._get_db()
        request = GenerationRequest(
            scope_id=scope_id,
            user_id=user_id,
            document_type=parameters.document_type,
            parameters=parameters,
        )
        row = request.model_dump(mode="json")
        row["status"] = GenerationStatus.PENDING.value
        await db.document_generation_requests.insert_one(row)
        logger.info(f"Queued generation {request.request_id} for scope {scope_id}")
        return request

    async def get_status(self, request_id: str) -> StatusUpdate:
        db = self._get_db()
        try:
            row = await db.document_generation_requests.find_one(
                {"request_id": request_id},
                {"_id": 0, "request_id": 1, "status": 1, "result_document_id": 1, "error": 1},
            )
        except PyMongoError as e:
            raise TransientFetchError(f"Status lookup failed for {request_id}: {e}") from e
        if row is None:
            raise TransientFetchError(f"Generation request {request_id} not visible yet")
        return parse_status_message(row)

    async def get_document(self, document_id: str) -> GeneratedDocument:
        db = self._get_db()
        try:
            row = await db.generated_documents.find_one({"document_id": document_id}, {"_id": 0})
        except PyMongoError as e:
            raise TransientFetchError(f"Document lookup failed for {document_id}: {e}") from e
        if row is None:
            raise TransientFetchError(f"Document {document_id} not found")
        return GeneratedDocument(**row)


class MongoDocumentStore(DocumentStore):
    """Materialized documents, one row per document_id."""

    def __init__(self, db=None):
        self.db = db

    def _get_db(self):
        if self.db is None:
            self.db = database.get_db()
        return self.db

    async def get(self, document_id: str) -> Optional[GeneratedDocument]:
        db = self._get_db()
        row = await db.materialized_documents.find_one({"document_id": document_id}, {"_id": 0})
        return GeneratedDocument(**row) if row else None

    async def put(self, document: GeneratedDocument) -> None:
        db = self._get_db()
        await db.materialized_documents.replace_one(
            {"document_id": document.document_id},
            document.model_dump(),
            upsert=True,
        )


# ============================================================================
# HTTP implementation
# ============================================================================

class HttpGenerationGateway(GenerationSubmissionService, StatusQueryService, DocumentFetchService):
    """Remote generation service over HTTP.

    Endpoints:
    - POST {base_url}/generations
    - GET  {base_url}/generations/{request_id}
    - GET  {base_url}/documents/{document_id}
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(transport=self.transport, timeout=self.timeout) as client:
                response = await client.request(method, url, headers=self._headers(), **kwargs)
        except httpx.TransportError as e:
            raise TransientFetchError(f"Generation service unreachable ({method} {path}): {e}") from e

        if response.status_code >= 500:
            raise TransientFetchError(f"Generation service error {response.status_code} ({method} {path})")
        if response.status_code == 404:
            raise TransientFetchError(f"Generation service returned 404 for {path}")
        response.raise_for_status()
        return response.json()

    async def submit(
        self,
        scope_id: str,
        user_id: Optional[str],
        parameters: DocumentParameters,
    ) -> GenerationRequest:
        payload = {
            "scope_id": scope_id,
            "user_id": user_id,
            "document_type": parameters.document_type,
            "parameters": parameters.model_dump(mode="json", exclude={"document_type"}),
        }
        data = await self._request("POST", "/generations", json=payload)
        request_id = data.get("request_id") or data.get("requestId")
        if not request_id:
            raise ValueError("Generation service response is missing request_id")
        logger.info(f"Generation service accepted {request_id} for scope {scope_id}")
        return GenerationRequest(
            request_id=request_id,
            scope_id=scope_id,
            user_id=user_id,
            document_type=parameters.document_type,
            parameters=parameters,
        )

    async def get_status(self, request_id: str) -> StatusUpdate:
        data = await self._request("GET", f"/generations/{request_id}")
        data.setdefault("request_id", request_id)
        return parse_status_message(data)

    async def get_document(self, document_id: str) -> GeneratedDocument:
        data = await self._request("GET", f"/documents/{document_id}")
        return GeneratedDocument(**data)


# ============================================================================
# In-process implementations
# ============================================================================

class InProcessBroadcastChannel(BroadcastChannel):
    """Fan-out of raw status messages to every subscriber of a scope."""

    def __init__(self):
        self._subscribers: Dict[str, Set[asyncio.Queue]] = {}

    def subscriber_count(self, scope_id: str) -> int:
        return len(self._subscribers.get(scope_id, ()))

    async def publish(self, scope_id: str, payload: Dict[str, Any]) -> int:
        """Deliver payload to current subscribers of scope_id. Returns how many received it."""
        queues = list(self._subscribers.get(scope_id, ()))
        for queue in queues:
            queue.put_nowait(payload)
        if not queues:
            logger.debug(f"No subscribers for scope {scope_id}; message dropped")
        return len(queues)

    @asynccontextmanager
    async def subscribe(self, scope_id: str):
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.setdefault(scope_id, set()).add(queue)
        try:
            yield self._messages(queue)
        finally:
            subscribers = self._subscribers.get(scope_id)
            if subscribers is not None:
                subscribers.discard(queue)
                if not subscribers:
                    del self._subscribers[scope_id]

    @staticmethod
    async def _messages(queue: asyncio.Queue):
        while True:
            yield await queue.get()


class InMemoryDocumentStore(DocumentStore):
    def __init__(self):
        self._documents: Dict[str, GeneratedDocument] = {}

    async def get(self, document_id: str) -> Optional[GeneratedDocument]:
        return self._documents.get(document_id)

    async def put(self, document: GeneratedDocument) -> None:
        self._documents[document.document_id] = document

    def __len__(self) -> int:
        return len(self._documents)
