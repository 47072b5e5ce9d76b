"""Redis-backed idempotency records for admin facade executions."""
import json
import logging
from typing import Any, Dict, Optional, Tuple

import redis.asyncio as redis

from shared.config import settings

logger = logging.getLogger(__name__)

IN_PROGRESS = "in_progress"
COMPLETED = "completed"


class IdempotencyStore:
    """Claims idempotency keys with SET NX and keeps the finished result for replay."""

    def __init__(self, redis_client: redis.Redis, ttl_seconds: Optional[int] = None):
        self.redis = redis_client
        self.prefix = f"{settings.redis_key_prefix}:idempotency"
        self.ttl = ttl_seconds or settings.idempotency_ttl_seconds

    def _key(self, scope: str, idempotency_key: str) -> str:
        return f"{self.prefix}:{scope}:{idempotency_key}"

    async def claim(self, scope: str, idempotency_key: str) -> Tuple[bool, Optional[Dict[str, Any]]]:
        """
        Try to claim a key.

        Returns (True, None) for a fresh claim, or (False, record) when the key
        is already held; record holds "state" and, once completed, "result".
        """
        key = self._key(scope, idempotency_key)
        claimed = await self.redis.set(key, json.dumps({"state": IN_PROGRESS}), nx=True, ex=self.ttl)
        if claimed:
            return True, None

        raw = await self.redis.get(key)
        if raw is None:
            # Expired between SET and GET; try once more
            claimed = await self.redis.set(key, json.dumps({"state": IN_PROGRESS}), nx=True, ex=self.ttl)
            return bool(claimed), None
        try:
            return False, json.loads(raw)
        except json.JSONDecodeError:
            logger.error(f"Corrupt idempotency record at {key}")
            return False, None

    async def complete(self, scope: str, idempotency_key: str, result: Dict[str, Any]):
        """Store the finished result for later replays."""
        await self.redis.set(
            self._key(scope, idempotency_key),
            json.dumps({"state": COMPLETED, "result": result}),
            ex=self.ttl
        )

    async def release(self, scope: str, idempotency_key: str):
        """Drop a claim so the request can be attempted again."""
        await self.redis.delete(self._key(scope, idempotency_key))
