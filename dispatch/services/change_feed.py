"""
Change Feed

Per-collection subscription registry. Stores call `publish` after every
committed write; subscribers receive the fresh full snapshot of that
collection.
"""
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from dispatch.services.events import RedisEventBus
from dispatch.utils.clock import utcnow

logger = logging.getLogger(__name__)

Snapshot = List[Any]
Callback = Callable[[Snapshot], Optional[Awaitable[None]]]
Loader = Callable[[], Awaitable[Snapshot]]


class ChangeFeed:
    """In-process subscribers plus an optional cross-process Redis bus."""

    def __init__(self, event_bus: Optional[RedisEventBus] = None):
        self.event_bus = event_bus
        self._subscribers: Dict[str, List[Callback]] = {}

    def subscribe(self, collection: str, callback: Callback) -> Callable[[], None]:
        """Register a callback; returns the matching unsubscribe function."""
        self._subscribers.setdefault(collection, []).append(callback)

        def unsubscribe():
            callbacks = self._subscribers.get(collection, [])
            if callback in callbacks:
                callbacks.remove(callback)

        return unsubscribe

    def has_subscribers(self, collection: str) -> bool:
        return bool(self._subscribers.get(collection))

    async def publish(self, collection: str, entity_id: Optional[str], loader: Loader):
        """
        Notify subscribers of a committed change.

        The snapshot is only loaded when someone is listening. A failing
        subscriber is logged and skipped; it never fails the writer.
        """
        if self.event_bus is not None:
            await self.event_bus.publish(collection, {"id": entity_id, "at": utcnow().isoformat()})

        callbacks = list(self._subscribers.get(collection, []))
        if not callbacks:
            return

        try:
            snapshot = await loader()
        except Exception as e:
            logger.error(f"Could not load {collection} snapshot for subscribers: {e}", exc_info=True)
            return

        for callback in callbacks:
            try:
                result = callback(snapshot)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(
                    f"Subscriber failed on {collection} change",
                    extra={"collection": collection, "entity_id": entity_id, "error": str(e)},
                    exc_info=True,
                )
