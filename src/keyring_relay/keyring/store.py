"""In-memory keyring guarded by a reader/writer lock."""
from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Iterable, List, Optional

from ..errors import MalformedEvent, MalformedSnapshot
from .rwlock import ReadWriteLock
from .secret import NAME_LEN, SecretBuffer


class MutationStatus(str, Enum):
    APPLIED = "applied"
    ALREADY_PRESENT = "already_present"
    NOT_FOUND = "not_found"


@dataclass(frozen=True, slots=True)
class Snapshot:
    """Point-in-time copy of the keyring.

    ``default`` is either empty or the 16-byte name of the default key; every
    entry in ``keys`` carries at least a full name.
    """

    default: bytes = b""
    keys: tuple[bytes, ...] = ()

    def __post_init__(self) -> None:
        if len(self.default) not in (0, NAME_LEN):
            raise MalformedSnapshot(f"invalid default key size {len(self.default)}")
        for key in self.keys:
            if len(key) < NAME_LEN:
                raise MalformedSnapshot(f"key entry shorter than {NAME_LEN} bytes")

    def names(self) -> List[bytes]:
        return [key[:NAME_LEN] for key in self.keys]

    def key_set(self) -> frozenset[bytes]:
        return frozenset(self.keys)


class Keyring:
    """Key entries plus the default designation.

    Instances are only handed out by :class:`KeyringStore` while the matching
    lock is held; the methods themselves do no locking.
    """

    def __init__(self) -> None:
        self._entries: List[SecretBuffer] = []
        self._default: Optional[SecretBuffer] = None

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def default_name(self) -> Optional[bytes]:
        return self._default.name if self._default is not None else None

    def names(self) -> List[bytes]:
        return [entry.name for entry in self._entries]

    def install(self, entry: SecretBuffer | bytes) -> MutationStatus:
        buffer = entry if isinstance(entry, SecretBuffer) else SecretBuffer(entry)
        if len(buffer) <= NAME_LEN:
            raise MalformedEvent(f"key entry must be longer than {NAME_LEN} bytes")
        if self._find(buffer.name) is not None:
            if buffer is not entry:
                buffer.wipe()
            return MutationStatus.ALREADY_PRESENT
        self._entries.append(buffer)
        return MutationStatus.APPLIED

    def remove(self, name: bytes) -> MutationStatus:
        index = self._find(name)
        if index is None:
            return MutationStatus.NOT_FOUND
        entry = self._entries.pop(index)
        if self._default is entry:
            self._default = None
        entry.wipe()
        return MutationStatus.APPLIED

    def set_default(self, name: bytes) -> MutationStatus:
        self._default = None
        index = self._find(name)
        if index is None:
            return MutationStatus.NOT_FOUND
        self._default = self._entries[index]
        return MutationStatus.APPLIED

    def wipe(self) -> MutationStatus:
        for entry in self._entries:
            entry.wipe()
        self._entries = []
        self._default = None
        return MutationStatus.APPLIED

    def snapshot(self) -> Snapshot:
        default = self._default.name if self._default is not None else b""
        return Snapshot(default=default, keys=tuple(entry.export() for entry in self._entries))

    def replace_all(self, snapshot: Snapshot) -> MutationStatus:
        """Discard every entry and adopt ``snapshot``.

        Returns ``NOT_FOUND`` when the snapshot names a default that is not among
        its keys; the default is then left unset.
        """

        self.wipe()
        for key in snapshot.keys:
            buffer = SecretBuffer(key)
            if self._find(buffer.name) is None:
                self._entries.append(buffer)
            else:
                buffer.wipe()
        if not snapshot.default:
            return MutationStatus.APPLIED
        return self.set_default(snapshot.default)

    def _find(self, name: bytes) -> Optional[int]:
        for index, entry in enumerate(self._entries):
            if entry.matches(name):
                return index
        return None


class KeyringStore:
    """The process-wide keyring and its reader/writer lock."""

    def __init__(self, entries: Iterable[bytes] = ()) -> None:
        self._lock = ReadWriteLock()
        self._ring = Keyring()
        for entry in entries:
            self._ring.install(entry)

    @property
    def lock(self) -> ReadWriteLock:
        return self._lock

    @asynccontextmanager
    async def read(self) -> AsyncIterator[Keyring]:
        """Hold the shared lock; the yielded keyring must not be mutated."""
        async with self._lock.read():
            yield self._ring

    @asynccontextmanager
    async def write(self) -> AsyncIterator[Keyring]:
        async with self._lock.write():
            yield self._ring

    async def install(self, entry: SecretBuffer | bytes) -> MutationStatus:
        async with self.write() as ring:
            return ring.install(entry)

    async def remove(self, name: bytes) -> MutationStatus:
        async with self.write() as ring:
            return ring.remove(name)

    async def set_default(self, name: bytes) -> MutationStatus:
        async with self.write() as ring:
            return ring.set_default(name)

    async def wipe(self) -> MutationStatus:
        async with self.write() as ring:
            return ring.wipe()

    async def snapshot(self) -> Snapshot:
        async with self.read() as ring:
            return ring.snapshot()

    async def replace_all(self, snapshot: Snapshot) -> MutationStatus:
        async with self.write() as ring:
            return ring.replace_all(snapshot)

    async def close(self) -> None:
        await self.wipe()


__all__ = ["MutationStatus", "Snapshot", "Keyring", "KeyringStore"]
