"""
Session checkpoints: the latest conversation state per session.
Redis for deployments, in-memory for tests and single-process use.
"""
import asyncio
import json
import logging
import threading
from typing import Dict, Optional, Protocol

import redis

from .config import REDIS_URL
from .state import ConversationState

logger = logging.getLogger(__name__)

# Sync Redis client (thread-safe)
_redis_client: Optional[redis.Redis] = None
_lock = threading.Lock()


def get_redis_sync() -> redis.Redis:
    """Get or create sync Redis connection."""
    global _redis_client
    with _lock:
        if _redis_client is None:
            logger.info(f"Connecting to Redis (sync): {REDIS_URL}")
            _redis_client = redis.from_url(REDIS_URL, decode_responses=True)
            # Test connection
            _redis_client.ping()
            logger.info("Connected to Redis")
    return _redis_client


class CheckpointStore(Protocol):
    async def load(self, session_id: str) -> Optional[ConversationState]: ...

    async def save(self, session_id: str, state: ConversationState) -> None: ...


class InMemoryCheckpointStore:
    """Checkpoints held in a dict, lost on restart."""

    def __init__(self):
        self._states: Dict[str, str] = {}

    async def load(self, session_id: str) -> Optional[ConversationState]:
        raw = self._states.get(session_id)
        return json.loads(raw) if raw is not None else None

    async def save(self, session_id: str, state: ConversationState) -> None:
        # Stored serialized so callers never share mutable state with the store
        self._states[session_id] = json.dumps(state)


class RedisCheckpointStore:
    """One JSON document per session key. Last writer wins, no expiry."""

    def __init__(self, client: Optional[redis.Redis] = None, key_prefix: str = "checkpoint:"):
        self._client = client
        self.key_prefix = key_prefix

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            self._client = get_redis_sync()
        return self._client

    def _key(self, session_id: str) -> str:
        return f"{self.key_prefix}{session_id}"

    def load_sync(self, session_id: str) -> Optional[ConversationState]:
        raw = self.client.get(self._key(session_id))
        if raw is None:
            return None
        return json.loads(raw)

    def save_sync(self, session_id: str, state: ConversationState) -> None:
        self.client.set(self._key(session_id), json.dumps(state))

    def clear_sync(self, session_id: str) -> None:
        self.client.delete(self._key(session_id))

    async def load(self, session_id: str) -> Optional[ConversationState]:
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, self.load_sync, session_id)

    async def save(self, session_id: str, state: ConversationState) -> None:
        loop = asyncio.get_event_loop()
        await loop.run_in_executor(None, self.save_sync, session_id, state)
        logger.info(f"[Checkpoint] Saved state for session {session_id[:8]}")

    async def clear(self, session_id: str) -> None:
        loop = asyncio.get_event_loop()
        await loop.run_in_executor(None, self.clear_sync, session_id)
