"""In-memory credential store with a TTL on cached schedules, for development and tests."""

import copy
import threading
import time
from typing import Any, Dict, Optional

from shuttlepass.credential_store.base import CredentialStore, RawListing
from shuttlepass.models import Credentials

from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="credential_store/in_memory")


class InMemoryCredentialStore(CredentialStore):
    """Thread-safe, process-local store."""

    def __init__(self, schedule_ttl_seconds: int = 3600) -> None:
        logger.debug("Initializing InMemoryCredentialStore")
        self.schedule_ttl = schedule_ttl_seconds
        self._credentials: Optional[Credentials] = None
        self._schedules: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def save_credentials(self, username: str, password: str) -> None:
        with self._lock:
            self._credentials = Credentials(username=username, password=password)

    def load_credentials(self) -> Optional[Credentials]:
        with self._lock:
            return self._credentials

    def clear_credentials(self) -> None:
        """Drop credentials and every cached schedule."""
        with self._lock:
            self._credentials = None
            self._schedules.clear()

    def save_schedule(self, date: str, listing: RawListing) -> None:
        with self._lock:
            self._schedules[date] = {
                "listing": copy.deepcopy(listing),
                "exp": time.monotonic() + self.schedule_ttl,
            }

    def load_schedule(self, date: str) -> Optional[RawListing]:
        """Return a copy of the cached listing, evicting it once expired."""
        with self._lock:
            entry = self._schedules.get(date)
            if not entry:
                return None
            if entry["exp"] < time.monotonic():
                self._schedules.pop(date, None)
                return None
            return copy.deepcopy(entry["listing"])
