from .store import RecordStore, SupabaseStore, MemoryStore, StoreError
from .identity import (
    IdentityProvider,
    SupabaseIdentity,
    DevIdentity,
    AuthError,
    DEV_USER,
    DEV_TOKEN,
    SIGNED_IN,
    SIGNED_OUT,
    USER_UPDATED,
    PASSWORD_RECOVERY,
)

__all__ = [
    # Record store
    "RecordStore",
    "SupabaseStore",
    "MemoryStore",
    "StoreError",
    # Identity provider
    "IdentityProvider",
    "SupabaseIdentity",
    "DevIdentity",
    "AuthError",
    "DEV_USER",
    "DEV_TOKEN",
    # Session-change events
    "SIGNED_IN",
    "SIGNED_OUT",
    "USER_UPDATED",
    "PASSWORD_RECOVERY",
]
