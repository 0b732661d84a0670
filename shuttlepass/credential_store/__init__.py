"""Credential and schedule-cache backends."""

from .base import CredentialStore, RawListing
from .memory import InMemoryCredentialStore
from .redis import RedisCredentialStore
from .factory import build_credential_store

__all__ = [
    "CredentialStore",
    "RawListing",
    "InMemoryCredentialStore",
    "RedisCredentialStore",
    "build_credential_store",
]
