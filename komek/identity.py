"""
Who is calling. The order core only consumes an AuthenticatedActor; credentials,
OAuth and profile editing live elsewhere. Bearer tokens are kept in Redis with a TTL
and the token store is passed in, never held as process-wide state.

TokenStore.issue is the hook the external identity layer (OAuth callback, login) calls
once it has authenticated a user; this service itself only resolves and revokes.
"""
import logging
import secrets
from abc import ABC, abstractmethod
from collections.abc import Iterable

import asyncpg
import redis.asyncio as redis
from pydantic import BaseModel, ConfigDict

from komek.specialties import filter_allowed_specialty_ids

logger = logging.getLogger(__name__)


class AuthenticatedActor(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    specialty_capabilities: frozenset[str] = frozenset()
    display_name: str | None = None

    @classmethod
    def build(cls, user_id: str, specialties: Iterable[str] | None = None, display_name: str | None = None):
        return cls(
            id=str(user_id),
            specialty_capabilities=frozenset(filter_allowed_specialty_ids(list(specialties or []))),
            display_name=display_name,
        )

    def can_serve(self, specialty_id: str) -> bool:
        return specialty_id in self.specialty_capabilities


class UserDirectory(ABC):
    @abstractmethod
    async def get_actor(self, user_id: str) -> AuthenticatedActor | None:
        ...


class PostgresUserDirectory(UserDirectory):
    def __init__(self, pool: asyncpg.Pool):
        self._pool = pool

    async def get_actor(self, user_id: str) -> AuthenticatedActor | None:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT id, first_name, last_name, specialist_specialties
                FROM users WHERE id = $1;
                """,
                user_id,
            )
        if row is None:
            return None
        name = " ".join(p for p in (row["first_name"], row["last_name"]) if p).strip()
        return AuthenticatedActor.build(row["id"], row["specialist_specialties"], name or None)


class TokenStore:
    """Opaque bearer tokens -> user id, expiring after ttl_seconds."""

    def __init__(self, client: redis.Redis, ttl_seconds: int, key_prefix: str = "auth:token:"):
        self._redis = client
        self._ttl = ttl_seconds
        self._prefix = key_prefix

    def _key(self, token: str) -> str:
        return f"{self._prefix}{token}"

    async def issue(self, user_id: str) -> str:
        token = secrets.token_hex(32)
        # NX: a collision would hand someone else's session over
        was_set = await self._redis.set(self._key(token), str(user_id), nx=True, ex=self._ttl)
        if not was_set:
            raise RuntimeError("token collision, refusing to overwrite")
        logger.info("Issued token for user_id=%s (prefix %s...)", user_id, token[:8])
        return token

    async def resolve(self, token: str) -> str | None:
        """User id for a live token, None for unknown or expired ones."""
        if not token:
            return None
        user_id = await self._redis.get(self._key(token))
        if isinstance(user_id, bytes):
            user_id = user_id.decode()
        return user_id

    async def revoke(self, token: str) -> bool:
        removed = await self._redis.delete(self._key(token))
        return bool(removed)
