"""Typed tier records and the keyring mutation decoder."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar, Mapping

import structlog
from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictStr, ValidationError, field_validator

from .codec import coerce_bytes
from .errors import CodecError, MalformedEvent
from .keyring.secret import NAME_LEN
from .keyring.store import Keyring, MutationStatus

INSTALL_KEY_EVENT = "install-key"
REMOVE_KEY_EVENT = "remove-key"
SET_DEFAULT_KEY_EVENT = "set-default-key"
WIPE_KEYS_EVENT = "wipe-keys"

RETRIEVE_KEYS_QUERY = "retrieve-keys"

_UINT64_MASK = (1 << 64) - 1
_INT64_MIN = -(1 << 63)

logger = structlog.get_logger(__name__)


def _payload_bytes(value: Any) -> bytes:
    try:
        return coerce_bytes(value, "Payload")
    except CodecError as exc:
        raise ValueError(str(exc)) from exc


class UserEvent(BaseModel):
    """A user event as delivered by the tier's event stream."""

    name: StrictStr = Field(alias="Name")
    payload: bytes = Field(alias="Payload")
    coalesce: StrictBool = Field(alias="Coalesce")
    ltime: int = Field(default=0, alias="LTime")

    model_config = ConfigDict(extra="ignore", frozen=True, populate_by_name=True)

    @field_validator("payload", mode="before")
    @classmethod
    def _validate_payload(cls, value: Any) -> bytes:
        return _payload_bytes(value)

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "UserEvent":
        try:
            return cls.model_validate(record)
        except ValidationError as exc:
            raise MalformedEvent(f"invalid event: {exc}") from exc


class QueryEvent(BaseModel):
    """An inbound query; ``id`` is always normalised to an unsigned 64-bit value."""

    id: int = Field(alias="ID")
    name: StrictStr = Field(alias="Name")
    payload: bytes = Field(default=b"", alias="Payload")
    ltime: int = Field(default=0, alias="LTime")

    model_config = ConfigDict(extra="ignore", frozen=True, populate_by_name=True)

    @field_validator("id", mode="before")
    @classmethod
    def _normalize_id(cls, value: Any) -> int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError("ID must be an integer")
        if not _INT64_MIN <= value <= _UINT64_MASK:
            raise ValueError("ID does not fit in 64 bits")
        return value & _UINT64_MASK

    @field_validator("payload", mode="before")
    @classmethod
    def _validate_payload(cls, value: Any) -> bytes:
        return _payload_bytes(value)

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "QueryEvent":
        try:
            return cls.model_validate(record)
        except ValidationError as exc:
            raise MalformedEvent(f"invalid query: {exc}") from exc


class Mutation:
    """A decoded keyring intent."""

    kind: ClassVar[str]

    def apply(self, ring: Keyring) -> MutationStatus:  # pragma: no cover - interface
        raise NotImplementedError

    @property
    def key_name(self) -> bytes | None:
        return None


@dataclass(frozen=True, slots=True)
class InstallKey(Mutation):
    entry: bytes
    kind: ClassVar[str] = INSTALL_KEY_EVENT

    def apply(self, ring: Keyring) -> MutationStatus:
        return ring.install(self.entry)

    @property
    def key_name(self) -> bytes:
        return self.entry[:NAME_LEN]


@dataclass(frozen=True, slots=True)
class RemoveKey(Mutation):
    name: bytes
    kind: ClassVar[str] = REMOVE_KEY_EVENT

    def apply(self, ring: Keyring) -> MutationStatus:
        return ring.remove(self.name)

    @property
    def key_name(self) -> bytes:
        return self.name


@dataclass(frozen=True, slots=True)
class SetDefaultKey(Mutation):
    name: bytes
    kind: ClassVar[str] = SET_DEFAULT_KEY_EVENT

    def apply(self, ring: Keyring) -> MutationStatus:
        return ring.set_default(self.name)

    @property
    def key_name(self) -> bytes:
        return self.name


@dataclass(frozen=True, slots=True)
class WipeKeys(Mutation):
    kind: ClassVar[str] = WIPE_KEYS_EVENT

    def apply(self, ring: Keyring) -> MutationStatus:
        return ring.wipe()


class MutationDecoder:
    """Map prefixed event names and payloads to :class:`Mutation` intents."""

    def __init__(self, prefix: str) -> None:
        if not prefix:
            raise ValueError("event prefix must not be empty")
        self.prefix = prefix

    @property
    def retrieve_keys_query(self) -> str:
        return self.prefix + RETRIEVE_KEYS_QUERY

    def accepts(self, name: str) -> bool:
        return name.startswith(self.prefix)

    def decode(self, name: str, payload: bytes) -> Mutation | None:
        """Return the intent for ``name``, or ``None`` when it is not a mutation.

        Raises :class:`MalformedEvent` when a known mutation carries a payload
        of the wrong length.
        """

        if not self.accepts(name):
            return None
        suffix = name[len(self.prefix):]
        if suffix == INSTALL_KEY_EVENT:
            if len(payload) <= NAME_LEN:
                raise MalformedEvent(f"{name}: payload must be longer than {NAME_LEN} bytes")
            return InstallKey(entry=bytes(payload))
        if suffix == REMOVE_KEY_EVENT:
            _require_name(name, payload)
            return RemoveKey(name=bytes(payload))
        if suffix == SET_DEFAULT_KEY_EVENT:
            _require_name(name, payload)
            return SetDefaultKey(name=bytes(payload))
        if suffix == WIPE_KEYS_EVENT:
            if payload:
                logger.warning("decoder.wipe.payload_ignored", name=name, size=len(payload))
            return WipeKeys()
        return None


def _require_name(name: str, payload: bytes) -> None:
    if len(payload) != NAME_LEN:
        raise MalformedEvent(f"{name}: payload must be exactly {NAME_LEN} bytes, got {len(payload)}")


__all__ = [
    "INSTALL_KEY_EVENT",
    "REMOVE_KEY_EVENT",
    "SET_DEFAULT_KEY_EVENT",
    "WIPE_KEYS_EVENT",
    "RETRIEVE_KEYS_QUERY",
    "UserEvent",
    "QueryEvent",
    "Mutation",
    "InstallKey",
    "RemoveKey",
    "SetDefaultKey",
    "WipeKeys",
    "MutationDecoder",
]
