"""
Collaborator implementations: MongoDB (Motor), HTTP (httpx) and in-process channel.
MongoDB collections are replaced with AsyncMock stand-ins; HTTP uses httpx.MockTransport.
"""
import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from pymongo.errors import ServerSelectionTimeoutError

BACKEND_DIR = Path(__file__).resolve().parent.parent
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from mentorflow.config import TrackingSettings
from mentorflow.exceptions import TransientFetchError
from mentorflow.models.documents import GeneratedDocument
from mentorflow.models.generation import CompletedUpdate, ProcessingUpdate
from mentorflow.services.collaborators import (
    HttpGenerationGateway,
    InProcessBroadcastChannel,
    MongoDocumentStore,
    MongoGenerationGateway,
    MongoQuotaSnapshotProvider,
)


class TestMongoQuotaSnapshotProvider:
    @pytest.mark.asyncio
    async def test_snapshot_uses_tier_limits(self):
        db = MagicMock()
        db.user_subscriptions.find_one = AsyncMock(
            return_value={"user_id": "user-1", "tier": "growth_partner", "status": "active"}
        )
        db.usage_tracking.find_one = AsyncMock(
            return_value={"user_id": "user-1", "sessions_used": 2, "minutes_used": 55,
                          "documents_generated": 7, "tokens_consumed": 12000}
        )

        snapshot = await MongoQuotaSnapshotProvider(db).get_usage_snapshot("user-1")

        assert snapshot.tier == "growth_partner"
        assert snapshot.limits.max_tokens == 100000
        assert snapshot.current_usage.tokens_consumed == 12000
        assert snapshot.features["team_access"] is True
        _, kwargs = db.usage_tracking.find_one.call_args
        assert kwargs["sort"] == [("period_start", -1)]

    @pytest.mark.asyncio
    async def test_no_usage_row_means_nothing_used(self):
        db = MagicMock()
        db.user_subscriptions.find_one = AsyncMock(return_value={"tier": "founder_essential", "status": "trialing"})
        db.usage_tracking.find_one = AsyncMock(return_value=None)

        snapshot = await MongoQuotaSnapshotProvider(db).get_usage_snapshot("user-1")

        assert snapshot.current_usage.documents_generated == 0
        assert snapshot.subscription_status == "trialing"

    @pytest.mark.asyncio
    async def test_missing_subscription(self):
        db = MagicMock()
        db.user_subscriptions.find_one = AsyncMock(return_value=None)

        snapshot = await MongoQuotaSnapshotProvider(db).get_usage_snapshot("user-1")

        assert snapshot.subscription_status == "none"
        assert snapshot.limits.max_tokens is None


class TestMongoGenerationGateway:
    @pytest.mark.asyncio
    async def test_submit_queues_pending_row(self, pitch_deck):
        db = MagicMock()
        db.document_generation_requests.insert_one = AsyncMock()

        request = await MongoGenerationGateway(db).submit("consult-1", "user-1", pitch_deck)

        row = db.document_generation_requests.insert_one.call_args.args[0]
        assert row["request_id"] == request.request_id
        assert row["status"] == "pending"
        assert row["parameters"]["company_name"] == "Acme Robotics"

    @pytest.mark.asyncio
    async def test_status_row_is_parsed(self):
        db = MagicMock()
        db.document_generation_requests.find_one = AsyncMock(
            return_value={"request_id": "GEN-1", "status": "completed", "result_document_id": "doc-1"}
        )

        update = await MongoGenerationGateway(db).get_status("GEN-1")

        assert isinstance(update, CompletedUpdate)

    @pytest.mark.asyncio
    async def test_database_errors_are_transient(self):
        db = MagicMock()
        db.document_generation_requests.find_one = AsyncMock(side_effect=ServerSelectionTimeoutError("no primary"))

        with pytest.raises(TransientFetchError):
            await MongoGenerationGateway(db).get_status("GEN-1")

    @pytest.mark.asyncio
    async def test_missing_document_is_transient(self):
        db = MagicMock()
        db.generated_documents.find_one = AsyncMock(return_value=None)

        with pytest.raises(TransientFetchError):
            await MongoGenerationGateway(db).get_document("doc-1")


class TestMongoDocumentStore:
    @pytest.mark.asyncio
    async def test_put_upserts_by_document_id(self):
        db = MagicMock()
        db.materialized_documents.replace_one = AsyncMock()
        document = GeneratedDocument(document_id="doc-1", scope_id="consult-1", document_type="business_plan")

        await MongoDocumentStore(db).put(document)

        args, kwargs = db.materialized_documents.replace_one.call_args
        assert args[0] == {"document_id": "doc-1"}
        assert kwargs["upsert"] is True


class TestHttpGenerationGateway:
    @pytest.mark.asyncio
    async def test_submit_and_status(self, pitch_deck):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            if request.method == "POST":
                return httpx.Response(202, json={"requestId": "GEN-REMOTE-1", "status": "pending"})
            return httpx.Response(200, json={"status": "PROCESSING"})

        gateway = HttpGenerationGateway(
            "https://generation.internal/api", api_key="key-123", transport=httpx.MockTransport(handler)
        )

        request = await gateway.submit("consult-1", "user-1", pitch_deck)
        update = await gateway.get_status(request.request_id)

        assert request.request_id == "GEN-REMOTE-1"
        assert isinstance(update, ProcessingUpdate)
        assert update.request_id == "GEN-REMOTE-1"
        assert seen[0].headers["Authorization"] == "Bearer key-123"
        assert seen[1].url.path == "/api/generations/GEN-REMOTE-1"

    @pytest.mark.asyncio
    async def test_server_errors_are_transient(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(503, text="maintenance"))
        gateway = HttpGenerationGateway("https://generation.internal/api", transport=transport)

        with pytest.raises(TransientFetchError):
            await gateway.get_status("GEN-1")

    @pytest.mark.asyncio
    async def test_transport_errors_are_transient(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        gateway = HttpGenerationGateway("https://generation.internal/api", transport=httpx.MockTransport(handler))

        with pytest.raises(TransientFetchError):
            await gateway.get_document("doc-1")

    @pytest.mark.asyncio
    async def test_client_errors_propagate(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(400, json={"detail": "bad"}))
        gateway = HttpGenerationGateway("https://generation.internal/api", transport=transport)

        with pytest.raises(httpx.HTTPStatusError):
            await gateway.get_status("GEN-1")


class TestInProcessBroadcastChannel:
    @pytest.mark.asyncio
    async def test_publish_reaches_each_subscriber(self):
        channel = InProcessBroadcastChannel()
        async with channel.subscribe("consult-1") as first, channel.subscribe("consult-1") as second:
            assert await channel.publish("consult-1", {"requestId": "GEN-1", "status": "processing"}) == 2
            assert (await first.__anext__())["status"] == "processing"
            assert (await second.__anext__())["status"] == "processing"

        assert channel.subscriber_count("consult-1") == 0


class TestTrackingSettings:
    def test_defaults(self):
        settings = TrackingSettings()
        assert settings.poll_interval_seconds == 2.0
        assert settings.timeout_seconds == 300.0
        assert settings.warning_threshold == 0.8

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("GENERATION_POLL_INTERVAL_SECONDS", "0.5")
        monkeypatch.setenv("GENERATION_TIMEOUT_SECONDS", "not-a-number")
        monkeypatch.setenv("GENERATION_WEBHOOK_SECRET", "  whsec_abc  ")

        settings = TrackingSettings.from_env()

        assert settings.poll_interval_seconds == 0.5
        assert settings.timeout_seconds == 300.0
        assert settings.webhook_secret == "whsec_abc"
