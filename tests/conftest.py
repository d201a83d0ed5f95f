import pytest

from keyring_relay.keyring import NAME_LEN


def make_key(tag: int, material: bytes = b"material") -> bytes:
    """Return a key entry whose 16-byte name is filled with ``tag``."""
    return bytes([tag]) * NAME_LEN + material


@pytest.fixture
def k1() -> bytes:
    return make_key(1, b"\x11" * 8)


@pytest.fixture
def k2() -> bytes:
    return make_key(2, b"\x22" * 16)


@pytest.fixture
def key_of():
    return make_key
