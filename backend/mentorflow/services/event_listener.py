"""Event Listener - push notifications for generation status, one subscription per scope.

Subscriptions are reference-counted by active requests: acquire() opens the
scope's subscription on first use and returns once it is live, release()
closes it when the last active request in the scope has finished.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from mentorflow.models.generation import StatusUpdate, UpdateSource, parse_status_message
from mentorflow.services.collaborators import BroadcastChannel

logger = logging.getLogger(__name__)

UpdateHandler = Callable[[StatusUpdate, UpdateSource], Awaitable[object]]


class _ScopeSubscription:
    def __init__(self, scope_id: str):
        self.scope_id = scope_id
        self.refs = 0
        self.ready = asyncio.Event()
        self.live = False
        self.closing = False
        self.task: Optional[asyncio.Task] = None


class EventListener:
    def __init__(self, channel: BroadcastChannel, on_update: UpdateHandler):
        self.channel = channel
        self.on_update = on_update
        self._subscriptions: Dict[str, _ScopeSubscription] = {}
        self.dropped_messages = 0

    def is_subscribed(self, scope_id: str) -> bool:
        subscription = self._subscriptions.get(scope_id)
        return subscription is not None and subscription.live

    def ref_count(self, scope_id: str) -> int:
        subscription = self._subscriptions.get(scope_id)
        return subscription.refs if subscription else 0

    async def acquire(self, scope_id: str) -> bool:
        """Take a reference on the scope's subscription, opening it if needed.

        Returns True once the subscription is live. False means the channel could
        not be subscribed; tracking then relies on polling alone.
        """
        subscription = self._subscriptions.get(scope_id)
        if subscription is None or (subscription.task is not None and subscription.task.done()):
            previous_refs = subscription.refs if subscription else 0
            subscription = _ScopeSubscription(scope_id)
            subscription.refs = previous_refs
            subscription.task = asyncio.create_task(self._listen(subscription), name=f"push-{scope_id}")
            self._subscriptions[scope_id] = subscription

        subscription.refs += 1
        await subscription.ready.wait()
        return subscription.live

    async def release(self, scope_id: str) -> None:
        """Drop a reference; the subscription closes when none remain."""
        subscription = self._subscriptions.get(scope_id)
        if subscription is None:
            return
        subscription.refs -= 1
        if subscription.refs > 0:
            return

        del self._subscriptions[scope_id]
        subscription.closing = True
        task = subscription.task
        if task is None or task.done():
            return
        if task is asyncio.current_task():
            # Released from inside our own dispatch; the loop exits after this message
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        logger.info(f"Closed push subscription for scope {scope_id}")

    async def close(self) -> None:
        subscriptions = list(self._subscriptions.values())
        self._subscriptions.clear()
        tasks = []
        for subscription in subscriptions:
            subscription.closing = True
            subscription.ready.set()
            if subscription.task is not None and not subscription.task.done():
                subscription.task.cancel()
                tasks.append(subscription.task)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _listen(self, subscription: _ScopeSubscription) -> None:
        scope_id = subscription.scope_id
        try:
            async with self.channel.subscribe(scope_id) as messages:
                subscription.live = True
                subscription.ready.set()
                logger.info(f"Listening for generation updates in scope {scope_id}")
                async for raw in messages:
                    await self._dispatch(scope_id, raw)
                    if subscription.closing:
                        logger.info(f"Closed push subscription for scope {scope_id}")
                        break
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Push subscription for scope {scope_id} failed, polling continues: {e}")
        finally:
            subscription.live = False
            subscription.ready.set()

    async def _dispatch(self, scope_id: str, raw: Any) -> None:
        try:
            update = parse_status_message(raw)
        except ValueError as e:
            self.dropped_messages += 1
            logger.warning(f"Dropping malformed status message in scope {scope_id}: {e}")
            return
        try:
            await self.on_update(update, UpdateSource.PUSH)
        except Exception as e:
            logger.error(f"Failed to reconcile pushed status for {update.request_id}: {e}")
