"""Owned secret key buffers."""
from __future__ import annotations

import hmac

NAME_LEN = 16


class SecretBuffer:
    """Mutable copy of one key entry that is zeroed before it is released.

    The first :data:`NAME_LEN` bytes are the key name and the entry's identity;
    the rest is key material. The buffer owns a private ``bytearray`` so that
    :meth:`wipe` can overwrite it in place. Wiping happens on explicit
    :meth:`wipe`, when leaving a ``with`` block and, as a last resort, when the
    object is garbage collected.
    """

    __slots__ = ("_data", "_wiped")

    def __init__(self, data: bytes | bytearray | memoryview) -> None:
        self._data = bytearray(data)
        self._wiped = False

    @property
    def name(self) -> bytes:
        return bytes(self._data[:NAME_LEN])

    @property
    def wiped(self) -> bool:
        return self._wiped

    def matches(self, name: bytes) -> bool:
        return hmac.compare_digest(bytes(self._data[:NAME_LEN]), bytes(name))

    def export(self) -> bytes:
        """Return an independent copy of the whole entry."""
        return bytes(self._data)

    def is_zeroed(self) -> bool:
        return not any(self._data)

    def wipe(self) -> None:
        self._data[:] = bytes(len(self._data))
        self._wiped = True

    def __len__(self) -> int:
        return len(self._data)

    def __enter__(self) -> "SecretBuffer":
        return self

    def __exit__(self, *_exc: object) -> None:
        self.wipe()

    def __del__(self) -> None:
        # attributes may be missing if __init__ failed
        data = getattr(self, "_data", None)
        if data:
            data[:] = bytes(len(data))

    def __repr__(self) -> str:
        state = "wiped" if self._wiped else self.name.hex()
        return f"SecretBuffer({state}, {len(self._data)} bytes)"


__all__ = ["NAME_LEN", "SecretBuffer"]
