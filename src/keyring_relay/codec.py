"""Msgpack wire encoding for keyring snapshots.

A snapshot travels as one record with two fields, in order: ``Default`` (the
16-byte name of the default key, or empty) and ``Keys`` (every key entry,
name followed by key material). Peers written in Go may emit ``nil`` for an
empty byte string or list and may send byte strings as msgpack ``str``;
both are accepted on decode.
"""
from __future__ import annotations

from typing import Any, List

import msgpack

from .errors import CodecError
from .keyring.store import Snapshot

_FIELDS = ("Default", "Keys")


def encode_snapshot(snapshot: Snapshot) -> bytes:
    body = {"Default": bytes(snapshot.default), "Keys": [bytes(key) for key in snapshot.keys]}
    try:
        return msgpack.packb(body, use_bin_type=True)
    except Exception as exc:
        raise CodecError(f"cannot encode snapshot: {exc}") from exc


def decode_snapshot(payload: bytes) -> Snapshot:
    """Decode ``payload`` into a :class:`Snapshot`.

    Raises :class:`CodecError` when the bytes are not a snapshot record and
    :class:`MalformedSnapshot` when the record breaks the size rules.
    """

    body = unpack(payload)
    if isinstance(body, dict):
        default_raw = body.get("Default")
        keys_raw = body.get("Keys")
    elif isinstance(body, (list, tuple)) and len(body) == len(_FIELDS):
        default_raw, keys_raw = body
    else:
        raise CodecError(f"snapshot must be a record, got {type(body).__name__}")

    default = coerce_bytes(default_raw, "Default")
    if keys_raw is None:
        keys_raw = []
    if not isinstance(keys_raw, (list, tuple)):
        raise CodecError(f"Keys must be a list, got {type(keys_raw).__name__}")
    keys: List[bytes] = [coerce_bytes(item, "Keys") for item in keys_raw]
    return Snapshot(default=default, keys=tuple(keys))


def unpack(payload: bytes) -> Any:
    try:
        return msgpack.unpackb(
            payload,
            raw=False,
            unicode_errors="surrogateescape",
            strict_map_key=False,
        )
    except Exception as exc:
        raise CodecError(f"cannot decode msgpack payload: {exc}") from exc


def coerce_bytes(value: Any, field: str) -> bytes:
    """Return ``value`` as bytes, undoing msgpack's raw-to-str decoding."""

    if value is None:
        return b""
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    if isinstance(value, str):
        return value.encode("utf-8", errors="surrogateescape")
    raise CodecError(f"{field} must be a byte string, got {type(value).__name__}")


__all__ = ["encode_snapshot", "decode_snapshot", "unpack", "coerce_bytes"]
