"""Keyring package exports."""
from .rwlock import ReadWriteLock
from .secret import NAME_LEN, SecretBuffer
from .store import Keyring, KeyringStore, MutationStatus, Snapshot

__all__ = [
    "NAME_LEN",
    "SecretBuffer",
    "ReadWriteLock",
    "Keyring",
    "KeyringStore",
    "MutationStatus",
    "Snapshot",
]
