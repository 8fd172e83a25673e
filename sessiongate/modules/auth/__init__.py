"""
Auth Module - Black Box Interface

Purpose: Durable credential material and login challenge state per session
Interface: AuthStateBridge (load/on_credential_updated/on_challenge/on_connected),
           CredentialStore (get/upsert/delete)
Hidden: Redis layout, blob serialization, duplicate write suppression

The store can be swapped (Redis, in-memory) without affecting the supervisor.
"""

from .bridge import AuthStateBridge, decode_credential, encode_credential
from .store import (
    CredentialRecord,
    CredentialStore,
    InMemoryCredentialStore,
    RedisCredentialStore,
)

__all__ = [
    "AuthStateBridge",
    "CredentialRecord",
    "CredentialStore",
    "InMemoryCredentialStore",
    "RedisCredentialStore",
    "decode_credential",
    "encode_credential",
]
