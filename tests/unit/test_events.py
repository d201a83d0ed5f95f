import pytest
from structlog.testing import capture_logs

from keyring_relay.errors import MalformedEvent
from keyring_relay.events import (
    InstallKey,
    MutationDecoder,
    QueryEvent,
    RemoveKey,
    SetDefaultKey,
    UserEvent,
    WipeKeys,
)
from keyring_relay.keyring import NAME_LEN, Keyring, MutationStatus

decoder = MutationDecoder("ether:")


def test_decode_install(k1: bytes) -> None:
    mutation = decoder.decode("ether:install-key", k1)
    assert mutation == InstallKey(entry=k1)
    assert mutation.key_name == k1[:NAME_LEN]


def test_decode_remove_and_set_default(k1: bytes) -> None:
    name = k1[:NAME_LEN]
    assert decoder.decode("ether:remove-key", name) == RemoveKey(name=name)
    assert decoder.decode("ether:set-default-key", name) == SetDefaultKey(name=name)


def test_decode_wipe_ignores_payload() -> None:
    assert decoder.decode("ether:wipe-keys", b"") == WipeKeys()
    assert decoder.decode("ether:wipe-keys", b"junk") == WipeKeys()


@pytest.mark.parametrize(
    "name, size",
    [
        ("ether:install-key", NAME_LEN),
        ("ether:install-key", 0),
        ("ether:remove-key", NAME_LEN - 1),
        ("ether:remove-key", NAME_LEN + 1),
        ("ether:set-default-key", 0),
        ("ether:set-default-key", 32),
    ],
)
def test_decode_rejects_bad_lengths(name: str, size: int) -> None:
    with pytest.raises(MalformedEvent):
        decoder.decode(name, b"\x01" * size)


def test_unprefixed_and_unknown_names_are_ignored(k1: bytes) -> None:
    assert not decoder.accepts("install-key")
    assert decoder.decode("install-key", k1) is None
    assert decoder.decode("other:install-key", k1) is None
    assert decoder.accepts("ether:deploy")
    assert decoder.decode("ether:deploy", b"x") is None


def test_custom_prefix(k1: bytes) -> None:
    custom = MutationDecoder("dc1/")
    assert custom.retrieve_keys_query == "dc1/retrieve-keys"
    assert custom.decode("dc1/install-key", k1) == InstallKey(entry=k1)
    assert custom.decode("ether:install-key", k1) is None


def test_empty_prefix_rejected() -> None:
    with pytest.raises(ValueError):
        MutationDecoder("")


def test_mutations_apply_to_ring(k1: bytes) -> None:
    ring = Keyring()
    name = k1[:NAME_LEN]
    assert InstallKey(entry=k1).apply(ring) is MutationStatus.APPLIED
    assert InstallKey(entry=k1).apply(ring) is MutationStatus.ALREADY_PRESENT
    assert SetDefaultKey(name=name).apply(ring) is MutationStatus.APPLIED
    assert RemoveKey(name=name).apply(ring) is MutationStatus.APPLIED
    assert RemoveKey(name=name).apply(ring) is MutationStatus.NOT_FOUND
    assert WipeKeys().apply(ring) is MutationStatus.APPLIED


def test_user_event_from_record_accepts_str_payload() -> None:
    event = UserEvent.from_record(
        {"Event": "user", "LTime": 4, "Name": "ether:wipe-keys", "Payload": "abc", "Coalesce": True}
    )
    assert event.name == "ether:wipe-keys"
    assert event.payload == b"abc"
    assert event.coalesce is True
    assert event.ltime == 4


@pytest.mark.parametrize(
    "record",
    [
        {"Payload": b"", "Coalesce": False},
        {"Name": "ether:wipe-keys", "Payload": b""},
        {"Name": 12, "Payload": b"", "Coalesce": False},
        {"Name": "ether:wipe-keys", "Payload": 5, "Coalesce": False},
    ],
)
def test_user_event_rejects_invalid_records(record) -> None:
    with pytest.raises(MalformedEvent):
        UserEvent.from_record(record)


def test_query_id_normalised_to_unsigned() -> None:
    query = QueryEvent.from_record({"ID": -1, "Name": "ether:retrieve-keys", "Payload": None})
    assert query.id == 2**64 - 1
    assert query.payload == b""
    assert QueryEvent.from_record({"ID": 2**64 - 1, "Name": "q"}).id == 2**64 - 1


@pytest.mark.parametrize("query_id", [2**64, -(2**63) - 1, True, "7"])
def test_query_id_out_of_range(query_id) -> None:
    with pytest.raises(MalformedEvent):
        QueryEvent.from_record({"ID": query_id, "Name": "q"})


def test_nil_payload_is_an_empty_payload() -> None:
    wipe = UserEvent.from_record({"Name": "ether:wipe-keys", "Payload": None, "Coalesce": False})
    assert wipe.payload == b""
    assert decoder.decode(wipe.name, wipe.payload) == WipeKeys()
    other = UserEvent.from_record({"Name": "deploy", "Payload": None, "Coalesce": False})
    assert other.payload == b""
    assert decoder.decode(other.name, other.payload) is None


def test_wipe_payload_warning_names_the_event() -> None:
    with capture_logs() as logs:
        assert decoder.decode("ether:wipe-keys", b"junk") == WipeKeys()
    assert logs == [
        {"event": "decoder.wipe.payload_ignored", "name": "ether:wipe-keys", "size": 4, "log_level": "warning"}
    ]
