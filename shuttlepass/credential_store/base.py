"""Shared protocol for credential and schedule-cache backends."""

from typing import Any, Dict, List, Optional, Protocol

from shuttlepass.models import Credentials

RawListing = List[Dict[str, Any]]


class CredentialStore(Protocol):
    """Protocol for the local state kept between refresh cycles."""

    def save_credentials(self, username: str, password: str) -> None:
        """Remember credentials for silent re-login."""

    def load_credentials(self) -> Optional[Credentials]:
        """Return stored credentials, or None if nothing is stored."""

    def clear_credentials(self) -> None:
        """Forget stored credentials (logout)."""

    def save_schedule(self, date: str, listing: RawListing) -> None:
        """Cache the raw resource listing for a date."""

    def load_schedule(self, date: str) -> Optional[RawListing]:
        """Return a cached listing for `date`, or None if missing or expired."""
