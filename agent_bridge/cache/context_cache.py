"""
Context Cache - Per-user conversational context in Redis

This module caches the user and team facts every agent prompt needs, so a
burst of mentions does not hit the platform for the same records each time.

Cache Strategy:
- Key: team id + user id
- TTL: Configurable (default 30 minutes), entries expire and are rebuilt,
  never patched in place
- Miss: load user and team from the authoritative directory, write back in
  the background
"""

import asyncio
import logging
from typing import Optional, Dict, Any, Set

import redis.asyncio as redis
from pydantic import ValidationError
from redis.asyncio import Redis

from agent_bridge.errors import NotFoundError
from agent_bridge.models.conversation import ConversationContext
from agent_bridge.models.directory import TeamRecord, UserRecord
from agent_bridge.stores.protocols import UserDirectory

logger = logging.getLogger(__name__)

# Fields that belong to the request, not to the cached snapshot
REQUEST_SCOPED_FIELDS = {"country", "city", "timezone"}


class ContextCache:
    """
    Redis-backed TTL cache of ConversationContext snapshots

    Without a Redis connection every read is a miss and every write a no-op,
    so the bridge keeps working against the directory alone.
    """

    def __init__(
        self,
        directory: UserDirectory,
        client: Optional[Redis] = None,
        default_ttl: int = 1800,
        redis_url: str = "redis://localhost:6379/0",
        password: Optional[str] = None,
    ):
        self.directory = directory
        self.redis_url = redis_url
        self.password = password
        self.default_ttl = default_ttl
        self.client: Optional[Redis] = client
        self._pending_writes: Set[asyncio.Task] = set()
        self.stats = {
            "hits": 0,
            "misses": 0,
            "sets": 0,
            "write_failures": 0,
        }

    async def connect(self):
        """Connect to Redis"""
        try:
            self.client = await redis.from_url(
                self.redis_url,
                password=self.password,
                decode_responses=True,
            )
            await self.client.ping()
        except Exception as e:
            logger.warning("Redis connection failed: %s. Context caching disabled.", e)
            self.client = None

    async def disconnect(self):
        """Wait for pending write-backs, then disconnect"""
        await self.aclose()
        if self.client:
            await self.client.aclose()

    async def aclose(self):
        """Wait for background write-backs to settle"""
        if self._pending_writes:
            await asyncio.gather(*self._pending_writes, return_exceptions=True)

    def generate_key(self, user_id: str, team_id: str) -> str:
        return f"agent-bridge:context:{team_id}:{user_id}"

    async def get(self, user_id: str, team_id: str) -> Optional[ConversationContext]:
        """
        Get a cached context snapshot

        Returns:
            The snapshot, or None on miss, expiry or cache failure
        """
        if not self.client:
            self.stats["misses"] += 1
            return None

        try:
            cached_value = await self.client.get(self.generate_key(user_id, team_id))
        except Exception as e:
            logger.warning("Context cache read failed for %s/%s: %s", team_id, user_id, e)
            self.stats["misses"] += 1
            return None

        if not cached_value:
            self.stats["misses"] += 1
            return None

        try:
            context = ConversationContext.model_validate_json(cached_value)
        except ValidationError as e:
            logger.warning("Discarding unreadable context entry for %s/%s: %s", team_id, user_id, e)
            self.stats["misses"] += 1
            return None

        self.stats["hits"] += 1
        return context

    async def set(
        self,
        user_id: str,
        team_id: str,
        context: ConversationContext,
        ttl: Optional[int] = None,
    ):
        """
        Cache a context snapshot

        Args:
            user_id: User the snapshot belongs to
            team_id: Team the snapshot belongs to
            context: Snapshot to store, request-scoped fields are dropped
            ttl: Time to live in seconds (uses default if None)
        """
        if not self.client:
            return

        ttl = ttl or self.default_ttl
        serialized = context.model_dump_json(exclude=REQUEST_SCOPED_FIELDS)
        await self.client.setex(self.generate_key(user_id, team_id), ttl, serialized)
        self.stats["sets"] += 1

    async def get_context(
        self,
        user_id: str,
        team_id: str,
        country: Optional[str] = None,
        city: Optional[str] = None,
        timezone: Optional[str] = None,
    ) -> ConversationContext:
        """
        Get the context for a user, loading it from the directory on miss

        The write-back after a miss runs in the background: a failed write is
        logged and never fails the read.

        Raises:
            NotFoundError: user or team does not exist
        """
        context = await self.get(user_id, team_id)

        if context is None:
            user, team = await asyncio.gather(
                self.directory.get_user_by_id(user_id),
                self.directory.get_team_by_id(team_id),
            )
            if user is None:
                raise NotFoundError("User", user_id)
            if team is None:
                raise NotFoundError("Team", team_id)

            context = self.build_context(user, team)
            self._schedule_write(user_id, team_id, context)

        return context.with_request_scope(country=country, city=city, timezone=timezone)

    @staticmethod
    def build_context(user: UserRecord, team: TeamRecord) -> ConversationContext:
        """Snapshot of the cacheable user and team facts"""
        return ConversationContext(
            user_id=user.id,
            team_id=team.id,
            full_name=user.full_name,
            locale=user.locale,
            date_format=user.date_format,
            team_name=team.name,
            team_description=team.description,
            country_code=team.country_code,
        )

    def _schedule_write(self, user_id: str, team_id: str, context: ConversationContext):
        if not self.client:
            return

        task = asyncio.create_task(self._write_back(user_id, team_id, context))
        self._pending_writes.add(task)
        task.add_done_callback(self._pending_writes.discard)

    async def _write_back(self, user_id: str, team_id: str, context: ConversationContext):
        try:
            await self.set(user_id, team_id, context)
        except Exception as e:
            self.stats["write_failures"] += 1
            logger.warning(
                "Failed to cache context for %s/%s: %s", team_id, user_id, e
            )

    async def health_check(self) -> bool:
        """Check Redis connection health"""
        if not self.client:
            return False

        try:
            await self.client.ping()
            return True
        except Exception:
            return False

    async def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics"""
        total_requests = self.stats["hits"] + self.stats["misses"]
        hit_rate = (
            self.stats["hits"] / total_requests
            if total_requests > 0
            else 0.0
        )

        return {
            "hits": self.stats["hits"],
            "misses": self.stats["misses"],
            "sets": self.stats["sets"],
            "write_failures": self.stats["write_failures"],
            "hit_rate": round(hit_rate * 100, 2),
            "connected": self.client is not None,
        }
