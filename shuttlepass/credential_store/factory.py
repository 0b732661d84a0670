"""Pick a credential store backend at startup."""

from __future__ import annotations

import redis

from shuttlepass.credential_store.base import CredentialStore
from shuttlepass.credential_store.memory import InMemoryCredentialStore
from shuttlepass.credential_store.redis import RedisCredentialStore
from utils.logging_utils import get_tagged_logger, redact_url

logger = get_tagged_logger(__name__, tag="credential_store/factory")


def build_credential_store(settings) -> CredentialStore:
    """Use Redis when configured and reachable, otherwise the in-memory store."""
    ttl = settings.schedule_cache_ttl_seconds
    url = settings.credential_redis_url
    if url:
        try:
            client = redis.Redis.from_url(url)
            client.ping()
            logger.info("Using RedisCredentialStore", extra={"redis_url": redact_url(url)})
            return RedisCredentialStore(client, schedule_ttl_seconds=ttl)
        except redis.RedisError as exc:
            logger.warning("Falling back to InMemoryCredentialStore (Redis unavailable)", extra={"error": str(exc)})
    return InMemoryCredentialStore(schedule_ttl_seconds=ttl)
