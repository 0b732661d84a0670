"""Redis-backed credential store; cached schedules expire via SETEX."""

import json
from typing import Optional

from shuttlepass.credential_store.base import CredentialStore, RawListing
from shuttlepass.models import Credentials
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="credential_store/redis")


class RedisCredentialStore(CredentialStore):
    """Stores credentials and per-date schedule listings as JSON strings."""

    def __init__(self, client, schedule_ttl_seconds: int = 3600, prefix: str = "shuttlepass:") -> None:
        """Initialize with a Redis client, schedule TTL and key prefix."""
        logger.debug("Initializing RedisCredentialStore")
        self.client = client
        self.schedule_ttl = schedule_ttl_seconds
        self.prefix = prefix

    @property
    def _credentials_key(self) -> str:
        return f"{self.prefix}credentials"

    def _schedule_key(self, date: str) -> str:
        return f"{self.prefix}schedule:{date}"

    def save_credentials(self, username: str, password: str) -> None:
        payload = json.dumps({"username": username, "password": password})
        try:
            self.client.set(self._credentials_key, payload.encode("utf-8"))
        except Exception as exc:  # pragma: no cover
            logger.error("Failed to write credentials to Redis: %s", exc)
            raise

    def load_credentials(self) -> Optional[Credentials]:
        """Return stored credentials, or None when missing or unreadable."""
        try:
            raw = self.client.get(self._credentials_key)
        except Exception as exc:  # pragma: no cover
            logger.error("Failed to read credentials from Redis: %s", exc)
            return None
        if not raw:
            return None
        try:
            data = json.loads(raw.decode("utf-8") if isinstance(raw, bytes) else raw)
            return Credentials(username=data["username"], password=data["password"])
        except (ValueError, KeyError, TypeError) as exc:
            logger.error("Stored credentials are corrupt; ignoring: %s", exc)
            return None

    def clear_credentials(self) -> None:
        """Delete credentials and every cached schedule under the prefix."""
        try:
            self.client.delete(self._credentials_key)
            for key in self.client.scan_iter(f"{self.prefix}schedule:*"):
                self.client.delete(key)
        except Exception as exc:  # pragma: no cover
            logger.error("Failed to clear credentials from Redis: %s", exc)

    def save_schedule(self, date: str, listing: RawListing) -> None:
        try:
            self.client.setex(self._schedule_key(date), self.schedule_ttl,
                              json.dumps(listing, ensure_ascii=False).encode("utf-8"))
        except Exception as exc:  # pragma: no cover
            logger.warning("Failed to cache schedule in Redis: %s", exc)

    def load_schedule(self, date: str) -> Optional[RawListing]:
        try:
            raw = self.client.get(self._schedule_key(date))
        except Exception as exc:  # pragma: no cover
            logger.warning("Failed to read cached schedule from Redis: %s", exc)
            return None
        if not raw:
            return None
        try:
            listing = json.loads(raw.decode("utf-8") if isinstance(raw, bytes) else raw)
        except ValueError as exc:
            logger.warning("Cached schedule is corrupt; ignoring: %s", exc)
            return None
        return listing if isinstance(listing, list) else None
