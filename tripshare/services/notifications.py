"""
Change notifications published on Redis pub/sub

Delivery is best-effort: a failed publish is logged and never undoes or
fails the write it describes.
"""
import json
import logging
from typing import Any

from tripshare.core.cache_client import CacheClient
from tripshare.core.db import utcnow

logger = logging.getLogger(__name__)


def channel_for(trip_id: str) -> str:
    return f"trip:{trip_id}:updates"


class TripEventPublisher:
    """Publishes trip change events to ``trip:{trip_id}:updates``"""

    def __init__(self, cache_client: CacheClient):
        self.cache_client = cache_client

    async def publish(self, trip_id: str, event_type: str, actor_id: str, **payload: Any) -> bool:
        message = json.dumps(
            {
                "type": event_type,
                "trip_id": trip_id,
                "actor_id": actor_id,
                "timestamp": utcnow().isoformat(),
                **payload,
            },
            default=str,
        )
        published = await self.cache_client.publish(channel_for(trip_id), message)
        if not published and self.cache_client.enabled:
            logger.warning(
                f"Change notification not delivered: {event_type} for trip {trip_id}",
                extra={"trip_id": trip_id, "event_type": event_type},
            )
        return published
