"""Redis connection behind the bearer token store. One client per process, opened lazily."""
import redis.asyncio as redis

from komek.config import settings
from komek.identity import TokenStore

_client: redis.Redis | None = None


def _connect() -> redis.Redis:
    global _client
    if _client is None:
        _client = redis.from_url(settings.redis_url, decode_responses=True, health_check_interval=30)
    return _client


async def get_token_store() -> TokenStore:
    client = _connect()
    await client.ping()  # fail startup, not the first request, when Redis is down
    return TokenStore(client, settings.token_ttl_seconds, settings.token_key_prefix)


async def close_redis() -> None:
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None
