"""Poll Driver - periodic status queries for each tracked generation request.

One asyncio task per request. Every tick (default 2s):
1. stop if the registry already has a terminal status (no query issued)
2. past the ceiling (default 300s since tracking started): force FAILED "timeout", stop
3. otherwise query the status service and hand the result to the reconciler;
   a query still running when the ceiling passes is abandoned and the request times out

Query failures are logged and retried on the next tick.
"""
import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, Optional

from mentorflow.config import DEFAULT_POLL_INTERVAL_SECONDS, DEFAULT_TIMEOUT_SECONDS
from mentorflow.exceptions import TransientFetchError
from mentorflow.models.generation import StatusUpdate, UpdateSource, timeout_update
from mentorflow.services.collaborators import StatusQueryService
from mentorflow.services.job_registry import JobRegistry

logger = logging.getLogger(__name__)

UpdateHandler = Callable[[StatusUpdate, UpdateSource], Awaitable[object]]


class PollDriver:
    def __init__(
        self,
        registry: JobRegistry,
        status_service: StatusQueryService,
        on_update: UpdateHandler,
        interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.registry = registry
        self.status_service = status_service
        self.on_update = on_update
        self.interval_seconds = interval_seconds
        self.timeout_seconds = timeout_seconds
        self.clock = clock
        self._tasks: Dict[str, asyncio.Task] = {}

    def track(self, request_id: str) -> asyncio.Task:
        """Start polling request_id. Tracking an already-polled id returns the existing task."""
        task = self._tasks.get(request_id)
        if task is not None and not task.done():
            return task
        task = asyncio.create_task(self._run(request_id), name=f"poll-{request_id}")
        self._tasks[request_id] = task
        return task

    def is_tracking(self, request_id: str) -> bool:
        task = self._tasks.get(request_id)
        return task is not None and not task.done()

    def tracked_count(self) -> int:
        return sum(1 for task in self._tasks.values() if not task.done())

    async def stop(self, request_id: str) -> None:
        task = self._tasks.pop(request_id, None)
        if task is None or task.done():
            return
        if task is asyncio.current_task():
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    async def close(self) -> None:
        tasks = [task for task in self._tasks.values() if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        logger.info(f"Poll driver stopped ({len(tasks)} task(s) cancelled)")

    async def _run(self, request_id: str) -> None:
        started = self.clock()
        try:
            while True:
                await asyncio.sleep(self.interval_seconds)

                if self.registry.is_terminal(request_id):
                    logger.debug(f"Stopped polling {request_id}: terminal")
                    return

                elapsed = self.clock() - started
                if elapsed >= self.timeout_seconds:
                    await self._expire(request_id)
                    return

                try:
                    update = await asyncio.wait_for(
                        self.status_service.get_status(request_id),
                        timeout=self.timeout_seconds - elapsed,
                    )
                except asyncio.TimeoutError:
                    # the query outlived the ceiling
                    await self._expire(request_id)
                    return
                except TransientFetchError as e:
                    logger.warning(f"Status poll for {request_id} failed, retrying: {e}")
                    continue
                except Exception as e:
                    logger.warning(f"Unexpected status poll error for {request_id}, retrying: {e}")
                    continue

                if update.request_id != request_id:
                    logger.warning(f"Status service answered for {update.request_id} when asked for {request_id}")
                    continue

                await self._deliver(update, request_id)
        finally:
            if self._tasks.get(request_id) is asyncio.current_task():
                del self._tasks[request_id]

    async def _deliver(self, update: StatusUpdate, request_id: str) -> Optional[object]:
        try:
            return await self.on_update(update, UpdateSource.POLL)
        except Exception as e:
            logger.error(f"Failed to reconcile polled status for {request_id}: {e}")
            return None

    async def _expire(self, request_id: str) -> None:
        logger.warning(
            f"Generation {request_id} reached the {self.timeout_seconds:.0f}s ceiling without a result"
        )
        await self._deliver(timeout_update(request_id), request_id)
