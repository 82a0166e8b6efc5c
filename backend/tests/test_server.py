"""
Application lifespan: the tracker and the MongoDB client are always torn down.
"""
import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI

BACKEND_DIR = Path(__file__).resolve().parent.parent
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

import server


@pytest.fixture
def lifespan_parts(monkeypatch):
    """(database connect mock, database close mock, tracker mock) patched into server."""
    connect = AsyncMock()
    close = AsyncMock()
    monkeypatch.setattr(server.database, "connect", connect)
    monkeypatch.setattr(server.database, "close", close)

    tracker = MagicMock()
    tracker.__aenter__ = AsyncMock(return_value=tracker)
    tracker.__aexit__ = AsyncMock(return_value=False)
    monkeypatch.setattr(server, "build_generation_tracker", lambda settings: tracker)
    return connect, close, tracker


class TestLifespan:
    @pytest.mark.asyncio
    async def test_tracker_published_and_cleared(self, lifespan_parts):
        connect, close, tracker = lifespan_parts
        app = FastAPI()

        async with server.lifespan(app):
            assert app.state.generation_tracker is tracker

        assert app.state.generation_tracker is None
        connect.assert_awaited_once()
        close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_database_closed_when_tracker_teardown_fails(self, lifespan_parts):
        _, close, tracker = lifespan_parts
        tracker.__aexit__ = AsyncMock(side_effect=RuntimeError("poll task did not stop"))
        app = FastAPI()

        with pytest.raises(RuntimeError):
            async with server.lifespan(app):
                pass

        close.assert_awaited_once()
