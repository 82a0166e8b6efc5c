"""
Pytest configuration and shared test helpers for MentorFlow backend tests.

Fixtures build a GenerationTracker wired to in-process fakes with short poll
intervals, so tracking scenarios run in milliseconds without MongoDB or a
generation service.
"""
import asyncio
import sys
from pathlib import Path
from typing import Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

BACKEND_DIR = Path(__file__).resolve().parent.parent
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

import pytest

from mentorflow.config import TrackingSettings
from mentorflow.exceptions import TransientFetchError
from mentorflow.models.documents import GeneratedDocument, PitchDeckParameters
from mentorflow.models.generation import GenerationRequest, parse_status_message
from mentorflow.models.usage import UsageCounters, UsageSnapshot
from mentorflow.services.collaborators import (
    DocumentFetchService,
    GenerationSubmissionService,
    InMemoryDocumentStore,
    InProcessBroadcastChannel,
    StatusQueryService,
)
from mentorflow.services.generation_tracker import GenerationTracker
from mentorflow.services.tier_registry import TierCode, tier_registry


def build_snapshot(
    user_id: str = "user-1",
    tier: TierCode = TierCode.FOUNDER_COMPANION,
    status: str = "active",
    features: Optional[Dict[str, bool]] = None,
    **usage,
) -> UsageSnapshot:
    """Snapshot with the tier's catalog limits and zero usage unless overridden."""
    counters = {"sessions_used": 0, "minutes_used": 0, "documents_generated": 0, "tokens_consumed": 0}
    counters.update(usage)
    return UsageSnapshot(
        user_id=user_id,
        tier=tier.value,
        subscription_status=status,
        current_usage=UsageCounters(**counters),
        limits=tier_registry.get_limits(tier),
        features=features if features is not None else tier_registry.get_features(tier),
    )


class FakeGenerationService(GenerationSubmissionService, StatusQueryService, DocumentFetchService):
    """Scriptable generation service. Request ids are GEN-TEST-1, GEN-TEST-2, ..."""

    def __init__(self):
        self.statuses: Dict[str, List[dict]] = {}
        self.documents: Dict[str, GeneratedDocument] = {}
        self.submitted: List[GenerationRequest] = []
        self.status_calls: List[str] = []
        self.document_calls: List[str] = []
        self.fail_status = 0
        self.fail_documents = 0
        self.document_delay = 0.0

    async def submit(self, scope_id, user_id, parameters) -> GenerationRequest:
        request = GenerationRequest(
            request_id=f"GEN-TEST-{len(self.submitted) + 1}",
            scope_id=scope_id,
            user_id=user_id,
            document_type=parameters.document_type,
            parameters=parameters,
        )
        self.submitted.append(request)
        return request

    def script(self, request_id: str, *messages: dict) -> None:
        """Statuses returned by successive polls; the last one repeats."""
        self.statuses[request_id] = list(messages)

    async def get_status(self, request_id: str):
        self.status_calls.append(request_id)
        if self.fail_status:
            self.fail_status -= 1
            raise TransientFetchError("status service unavailable")
        queue = self.statuses.get(request_id) or [{"status": "pending"}]
        raw = queue.pop(0) if len(queue) > 1 else queue[0]
        return parse_status_message({"requestId": request_id, **raw})

    def add_document(self, document_id: str, scope_id: str = "consult-1") -> GeneratedDocument:
        document = GeneratedDocument(
            document_id=document_id,
            scope_id=scope_id,
            document_type="pitch_deck",
            title="Acme Robotics - Investor Pitch Deck",
            content={"slides": [{"title": "Problem"}, {"title": "Solution"}]},
        )
        self.documents[document_id] = document
        return document

    async def get_document(self, document_id: str) -> GeneratedDocument:
        self.document_calls.append(document_id)
        if self.document_delay:
            await asyncio.sleep(self.document_delay)
        if self.fail_documents:
            self.fail_documents -= 1
            raise TransientFetchError("document storage unavailable")
        document = self.documents.get(document_id)
        if document is None:
            raise TransientFetchError(f"Document {document_id} not found")
        return document


async def _wait_until(predicate, timeout: float = 2.0, interval: float = 0.005) -> bool:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        if predicate():
            return True
        await asyncio.sleep(interval)
    return predicate()


@pytest.fixture
def wait_until():
    return _wait_until


@pytest.fixture
def snapshot_factory():
    return build_snapshot


@pytest.fixture
def pitch_deck():
    return PitchDeckParameters(
        company_name="Acme Robotics",
        business_idea="Autonomous warehouse robots for small retailers",
        target_market="Independent retailers in the UK",
        funding_amount="£500,000",
        industry="Robotics",
    )


@pytest.fixture
def fast_settings():
    return TrackingSettings(poll_interval_seconds=0.01, timeout_seconds=2.0)


@pytest.fixture
def generation_service():
    return FakeGenerationService()


@pytest.fixture
def channel():
    return InProcessBroadcastChannel()


@pytest.fixture
def document_store():
    return InMemoryDocumentStore()


@pytest.fixture
def quota_provider():
    provider = MagicMock()
    provider.get_usage_snapshot = AsyncMock(return_value=build_snapshot())
    return provider


@pytest.fixture
def make_tracker(quota_provider, generation_service, channel, document_store, fast_settings):
    """Factory: make_tracker(settings=None) -> GenerationTracker over the shared fakes."""
    def _make(settings: Optional[TrackingSettings] = None) -> GenerationTracker:
        return GenerationTracker(
            quota_provider=quota_provider,
            submission_service=generation_service,
            status_service=generation_service,
            document_service=generation_service,
            channel=channel,
            document_store=document_store,
            settings=settings or fast_settings,
        )
    return _make
