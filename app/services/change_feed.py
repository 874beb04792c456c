# app/services/change_feed.py
import json
from typing import AsyncIterator, Callable

import redis
import redis.asyncio as aioredis
from redis.exceptions import RedisError

from app.utils.settings import REDIS_URL
from app.utils.retry import redis_retry
from app.utils.logging import get_logger

logger = get_logger(__name__)

CHANNEL_PREFIX = "teashop:changes:"


def channel_for(table: str) -> str:
    return f"{CHANNEL_PREFIX}{table}"


class ChangeFeed:
    """
    Feed zmian na wierszach, kanal redis pub/sub na tabele.
    -publish po commicie (serwisy)
    -listen dla subskrybentow (kiosk czeka na platnosc, kolejka obslugi)
    Dostarczenie nie jest gwarantowane, dlatego obok zawsze jest polling.
    """

    def __init__(self, url: str | None = None):
        self.url = url or REDIS_URL
        self.redis = redis.Redis.from_url(self.url, decode_responses=True)

    @redis_retry()
    def _publish(self, channel: str, message: str) -> int:
        return self.redis.publish(channel, message)

    def publish(self, table: str, event_type: str, new: dict | None = None, old: dict | None = None) -> int:
        message = json.dumps(
            {"table": table, "type": event_type, "new": new, "old": old},
            default=str,
        )
        try:
            return self._publish(channel_for(table), message)
        except RedisError as e:
            # zapis w bazie juz jest, subskrybenci dogonia przez polling
            logger.warning(f"Change feed publish failed for {table} {event_type}: {e}")
            return 0

    async def listen(
        self,
        table: str,
        match: Callable[[dict], bool] | None = None,
    ) -> AsyncIterator[dict]:
        client = aioredis.Redis.from_url(self.url, decode_responses=True)
        pubsub = client.pubsub()
        channel = channel_for(table)
        await pubsub.subscribe(channel)
        logger.info(f"Subscribed to {channel}")

        try:
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                try:
                    event = json.loads(message["data"])
                except ValueError:
                    logger.warning(f"Malformed change event on {channel}: {message['data']!r}")
                    continue

                row = event.get("new") or event.get("old") or {}
                if match is not None and not match(row):
                    continue
                yield event
        finally:
            await pubsub.unsubscribe(channel)
            await pubsub.aclose()
            await client.aclose()
            logger.info(f"Unsubscribed from {channel}")
