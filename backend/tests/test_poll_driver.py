"""
Poll driver: periodic status queries with a hard local ceiling.
"""
import asyncio
import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

BACKEND_DIR = Path(__file__).resolve().parent.parent
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from mentorflow.exceptions import TransientFetchError
from mentorflow.models.generation import (
    CompletedUpdate,
    FailedUpdate,
    GenerationRequest,
    GenerationStatus,
    PendingUpdate,
    ProcessingUpdate,
    UpdateSource,
)
from mentorflow.services.job_registry import JobRegistry
from mentorflow.services.poll_driver import PollDriver


async def registry_with_request(pitch_deck, request_id="GEN-1") -> JobRegistry:
    registry = JobRegistry()
    await registry.create(
        GenerationRequest(
            request_id=request_id,
            scope_id="consult-1",
            user_id="user-1",
            document_type="pitch_deck",
            parameters=pitch_deck,
        )
    )
    return registry


def apply_to(registry: JobRegistry):
    async def on_update(update, source):
        return await registry.apply(update.request_id, update, source)
    return on_update


class TestPolling:
    @pytest.mark.asyncio
    async def test_polls_until_terminal(self, pitch_deck):
        registry = await registry_with_request(pitch_deck)
        status_service = MagicMock()
        status_service.get_status = AsyncMock(
            side_effect=[
                ProcessingUpdate(request_id="GEN-1"),
                CompletedUpdate(request_id="GEN-1", result_document_id="doc-1"),
            ]
        )
        driver = PollDriver(registry, status_service, apply_to(registry), interval_seconds=0.01, timeout_seconds=5)

        await asyncio.wait_for(driver.track("GEN-1"), timeout=2)

        assert registry.get("GEN-1").status == GenerationStatus.COMPLETED
        assert status_service.get_status.await_count == 2
        assert driver.is_tracking("GEN-1") is False

    @pytest.mark.asyncio
    async def test_terminal_request_is_not_queried(self, pitch_deck):
        registry = await registry_with_request(pitch_deck)
        await registry.apply("GEN-1", CompletedUpdate(request_id="GEN-1", result_document_id="doc-1"), UpdateSource.PUSH)
        status_service = MagicMock()
        status_service.get_status = AsyncMock()
        driver = PollDriver(registry, status_service, apply_to(registry), interval_seconds=0.01, timeout_seconds=5)

        await asyncio.wait_for(driver.track("GEN-1"), timeout=2)

        status_service.get_status.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_transient_errors_are_retried(self, pitch_deck):
        registry = await registry_with_request(pitch_deck)
        status_service = MagicMock()
        status_service.get_status = AsyncMock(
            side_effect=[
                TransientFetchError("connection reset"),
                RuntimeError("unexpected payload"),
                CompletedUpdate(request_id="GEN-1", result_document_id="doc-1"),
            ]
        )
        driver = PollDriver(registry, status_service, apply_to(registry), interval_seconds=0.01, timeout_seconds=5)

        await asyncio.wait_for(driver.track("GEN-1"), timeout=2)

        assert status_service.get_status.await_count == 3
        assert registry.get("GEN-1").status == GenerationStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_handler_failure_does_not_stop_polling(self, pitch_deck):
        registry = await registry_with_request(pitch_deck)
        status_service = MagicMock()
        status_service.get_status = AsyncMock(
            side_effect=[
                ProcessingUpdate(request_id="GEN-1"),
                CompletedUpdate(request_id="GEN-1", result_document_id="doc-1"),
            ]
        )
        real_handler = apply_to(registry)
        on_update = AsyncMock(side_effect=[RuntimeError("reconcile failed"), None])

        async def flaky(update, source):
            await on_update(update, source)
            return await real_handler(update, source)

        driver = PollDriver(registry, status_service, flaky, interval_seconds=0.01, timeout_seconds=5)
        await asyncio.wait_for(driver.track("GEN-1"), timeout=2)

        assert registry.get("GEN-1").status == GenerationStatus.COMPLETED


class TestTimeout:
    @pytest.mark.asyncio
    async def test_ceiling_forces_failed_timeout(self, pitch_deck):
        registry = await registry_with_request(pitch_deck)
        status_service = MagicMock()
        status_service.get_status = AsyncMock(return_value=PendingUpdate(request_id="GEN-1"))
        driver = PollDriver(registry, status_service, apply_to(registry), interval_seconds=0.01, timeout_seconds=0.05)

        await asyncio.wait_for(driver.track("GEN-1"), timeout=2)

        request = registry.get("GEN-1")
        assert request.status == GenerationStatus.FAILED
        assert request.error == "timeout"

    @pytest.mark.asyncio
    async def test_hung_status_query_still_times_out(self, pitch_deck):
        registry = await registry_with_request(pitch_deck)

        async def never_answers(request_id):
            await asyncio.sleep(3600)

        status_service = MagicMock()
        status_service.get_status = AsyncMock(side_effect=never_answers)
        driver = PollDriver(registry, status_service, apply_to(registry), interval_seconds=0.05, timeout_seconds=0.3)

        await asyncio.wait_for(driver.track("GEN-1"), timeout=2)

        request = registry.get("GEN-1")
        assert request.status == GenerationStatus.FAILED
        assert request.error == "timeout"
        assert status_service.get_status.await_count == 1
        assert driver.is_tracking("GEN-1") is False

    @pytest.mark.asyncio
    async def test_ceiling_uses_injected_clock(self, pitch_deck):
        registry = await registry_with_request(pitch_deck)
        status_service = MagicMock()
        status_service.get_status = AsyncMock(return_value=ProcessingUpdate(request_id="GEN-1"))
        now = [0.0]

        def clock():
            now[0] += 100.0
            return now[0]

        driver = PollDriver(
            registry, status_service, apply_to(registry),
            interval_seconds=0.01, timeout_seconds=300, clock=clock,
        )
        await asyncio.wait_for(driver.track("GEN-1"), timeout=2)

        # started=100; ticks at 200, 300 query; 400 crosses the ceiling
        assert status_service.get_status.await_count == 2
        assert registry.get("GEN-1").error == "timeout"

    @pytest.mark.asyncio
    async def test_timeout_after_terminal_is_noop(self, pitch_deck):
        registry = await registry_with_request(pitch_deck)
        await registry.apply("GEN-1", FailedUpdate(request_id="GEN-1", error="bad input"), UpdateSource.PUSH)
        changed = await registry.apply("GEN-1", FailedUpdate(request_id="GEN-1", error="timeout"), UpdateSource.POLL)

        assert changed is None
        assert registry.get("GEN-1").error == "bad input"


class TestStop:
    @pytest.mark.asyncio
    async def test_stop_cancels_polling(self, pitch_deck):
        registry = await registry_with_request(pitch_deck)
        status_service = MagicMock()
        status_service.get_status = AsyncMock(return_value=PendingUpdate(request_id="GEN-1"))
        driver = PollDriver(registry, status_service, apply_to(registry), interval_seconds=0.01, timeout_seconds=5)

        driver.track("GEN-1")
        assert driver.is_tracking("GEN-1")
        await driver.stop("GEN-1")

        assert driver.is_tracking("GEN-1") is False
        assert registry.get("GEN-1").status == GenerationStatus.PENDING

    @pytest.mark.asyncio
    async def test_track_is_idempotent(self, pitch_deck):
        registry = await registry_with_request(pitch_deck)
        status_service = MagicMock()
        status_service.get_status = AsyncMock(return_value=PendingUpdate(request_id="GEN-1"))
        driver = PollDriver(registry, status_service, apply_to(registry), interval_seconds=0.01, timeout_seconds=5)

        assert driver.track("GEN-1") is driver.track("GEN-1")
        assert driver.tracked_count() == 1
        await driver.close()
        assert driver.tracked_count() == 0
