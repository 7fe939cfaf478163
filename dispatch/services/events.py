"""
Redis Event Bus
Publishes small change events and delivers the ones other processes publish,
so every process can refresh its dispatch index.
"""
import redis.asyncio as aioredis
from dispatch.core.config import settings
from typing import Optional, Any, Awaitable, Callable, Dict
import json
import logging
import uuid

logger = logging.getLogger(__name__)

EventHandler = Callable[[str, Dict[str, Any]], Awaitable[None]]


class RedisEventBus:
    """Async Redis publisher and listener. Best-effort: failures disable it, never raise."""

    def __init__(self, url: Optional[str] = None, channel_prefix: Optional[str] = None):
        self.url = url or settings.redis_url
        self.channel_prefix = channel_prefix or settings.redis_channel_prefix
        self.redis: Optional[aioredis.Redis] = None
        self.enabled = True
        # Tags our own events so the listener can skip them
        self.origin = uuid.uuid4().hex

    async def connect(self):
        """Initialize Redis connection."""
        try:
            self.redis = aioredis.from_url(
                self.url,
                encoding="utf-8",
                decode_responses=True
            )
            # Test connection
            await self.redis.ping()
            self.enabled = True
            logger.info("Redis event bus connected successfully")
        except Exception as e:
            logger.warning(f"Redis connection failed: {e}. Change events disabled.")
            self.redis = None
            self.enabled = False

    def channel(self, collection: str) -> str:
        return f"{self.channel_prefix}:{collection}"

    async def publish(self, collection: str, event: Dict[str, Any]):
        """Publish a change event for a collection (tickets, employees, derivations)."""
        if not self.enabled or not self.redis:
            return

        try:
            payload = {**event, "origin": self.origin}
            await self.redis.publish(self.channel(collection), json.dumps(payload, default=str))
        except Exception as e:
            logger.error(f"Redis publish error on {collection}: {e}")

    async def handle_message(self, message: Dict[str, Any], handler: EventHandler) -> bool:
        """
        Pass one pub/sub message to the handler.

        Subscription confirmations, unreadable payloads and events this
        process published itself are skipped.

        Returns:
            True if the handler ran and succeeded
        """
        if message.get("type") != "pmessage":
            return False

        collection = str(message.get("channel", "")).split(":", 1)[-1]
        try:
            event = json.loads(message.get("data") or "")
        except (TypeError, ValueError) as e:
            logger.warning(f"Unreadable change event on {message.get('channel')}: {e}")
            return False
        if not isinstance(event, dict) or event.get("origin") == self.origin:
            return False

        try:
            await handler(collection, event)
            return True
        except Exception as e:
            logger.error(
                f"Change event handler failed on {collection}",
                extra={"collection": collection, "entity_id": event.get("id"), "error": str(e)},
                exc_info=True,
            )
            return False

    async def listen(self, handler: EventHandler):
        """Deliver change events from other processes until cancelled."""
        if not self.enabled or not self.redis:
            return

        pubsub = self.redis.pubsub()
        try:
            await pubsub.psubscribe(self.channel("*"))
            logger.info(f"Listening for change events on {self.channel('*')}")
            async for message in pubsub.listen():
                await self.handle_message(message, handler)
        except Exception as e:
            logger.error(f"Redis listener stopped: {e}")
        finally:
            await pubsub.aclose()

    async def close(self):
        """Close Redis connection."""
        if self.redis:
            await self.redis.close()


# Global event bus instance
event_bus = RedisEventBus()
