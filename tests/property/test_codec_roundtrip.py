from hypothesis import given, strategies as st

from keyring_relay.codec import decode_snapshot, encode_snapshot
from keyring_relay.keyring import NAME_LEN, Snapshot

_entries = st.binary(min_size=NAME_LEN + 1, max_size=64)


@given(st.lists(_entries, max_size=8), st.booleans())
def test_snapshot_round_trip_preserves_default_and_keys(keys: list[bytes], with_default: bool) -> None:
    default = keys[0][:NAME_LEN] if keys and with_default else b""
    snapshot = Snapshot(default=default, keys=tuple(keys))
    decoded = decode_snapshot(encode_snapshot(snapshot))
    assert decoded.default == default
    assert decoded.key_set() == set(keys)
