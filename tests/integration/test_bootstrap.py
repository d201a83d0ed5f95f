import asyncio

import msgpack
import pytest
from structlog.testing import capture_logs

from keyring_relay.bootstrap import BootstrapSynchronizer
from keyring_relay.codec import encode_snapshot
from keyring_relay.errors import BootstrapError, CodecError, MalformedSnapshot
from keyring_relay.events import MutationDecoder
from keyring_relay.keyring import NAME_LEN, KeyringStore, Snapshot
from keyring_relay.relay import EventRelay
from keyring_relay.transport import MemoryTier, NodeResponse


async def _wan(*payloads: bytes) -> MemoryTier:
    wan = MemoryTier("wan")
    await wan.connect()
    wan.on_query(
        "ether:retrieve-keys",
        lambda _payload: [NodeResponse(from_node=f"wan-{index}", payload=p) for index, p in enumerate(payloads)],
    )
    return wan


@pytest.mark.asyncio
async def test_bootstrap_adopts_first_response(k1: bytes, k2: bytes, key_of) -> None:
    wan = await _wan(
        encode_snapshot(Snapshot(default=b"", keys=(k1, k2))),
        encode_snapshot(Snapshot(default=b"", keys=(key_of(8),))),
    )
    store = KeyringStore([key_of(5)])
    synchronizer = BootstrapSynchronizer(wan, store, MutationDecoder("ether:"))
    result = await synchronizer.run()

    assert synchronizer.locked.is_set()
    assert result.node == "wan-0"
    assert result.keys == 2
    assert result.default is None
    snapshot = await store.snapshot()
    assert snapshot.key_set() == {k1, k2}
    assert snapshot.default == b""
    assert wan.queries == ["ether:retrieve-keys"]


@pytest.mark.asyncio
async def test_bootstrap_resolves_default(k1: bytes, k2: bytes) -> None:
    wan = await _wan(encode_snapshot(Snapshot(default=k1[:NAME_LEN], keys=(k1, k2))))
    store = KeyringStore()
    result = await BootstrapSynchronizer(wan, store, MutationDecoder("ether:")).run()
    assert result.default == k1[:NAME_LEN]
    assert (await store.snapshot()).default == k1[:NAME_LEN]


@pytest.mark.asyncio
async def test_bootstrap_unknown_default_left_unset(k1: bytes, key_of) -> None:
    wan = await _wan(encode_snapshot(Snapshot(default=key_of(4)[:NAME_LEN], keys=(k1,))))
    store = KeyringStore()
    result = await BootstrapSynchronizer(wan, store, MutationDecoder("ether:")).run()
    assert result.default is None
    assert (await store.snapshot()).keys == (k1,)


@pytest.mark.asyncio
async def test_bad_default_length_leaves_store_untouched(k1: bytes) -> None:
    payload = msgpack.packb({"Default": b"\x01" * 5, "Keys": [k1]}, use_bin_type=True)
    wan = await _wan(payload)
    store = KeyringStore([k1[:NAME_LEN] + b"original"])
    with pytest.raises(MalformedSnapshot):
        await BootstrapSynchronizer(wan, store, MutationDecoder("ether:")).run()
    assert (await store.snapshot()).keys == (k1[:NAME_LEN] + b"original",)
    assert not store.lock.write_locked


@pytest.mark.asyncio
async def test_undecodable_response_is_fatal() -> None:
    wan = await _wan(b"\xc1\xc1")
    with pytest.raises(CodecError):
        await BootstrapSynchronizer(wan, KeyringStore(), MutationDecoder("ether:")).run()


@pytest.mark.asyncio
async def test_no_response_is_fatal() -> None:
    wan = await _wan()
    with pytest.raises(BootstrapError):
        await BootstrapSynchronizer(wan, KeyringStore(), MutationDecoder("ether:")).run()


@pytest.mark.asyncio
async def test_relayed_mutations_wait_for_bootstrap(k1: bytes, k2: bytes) -> None:
    release = asyncio.Event()

    async def slow_handler(_payload: bytes) -> list[NodeResponse]:
        await release.wait()
        return [NodeResponse("wan-0", encode_snapshot(Snapshot(keys=(k1,))))]

    wan, lan = MemoryTier("wan"), MemoryTier("lan")
    await wan.connect()
    await lan.connect()
    wan.on_query("ether:retrieve-keys", slow_handler)
    store = KeyringStore()
    decoder = MutationDecoder("ether:")
    events = await wan.stream("user")

    synchronizer = BootstrapSynchronizer(wan, store, decoder)
    bootstrap = asyncio.create_task(synchronizer.run())
    await asyncio.wait_for(synchronizer.locked.wait(), timeout=1)
    relay = asyncio.create_task(EventRelay(events, lan, store, decoder).run())

    wan.emit_user_event("ether:install-key", k2)
    await asyncio.sleep(0.05)
    # already relayed downstream, not yet applied locally
    assert [event.name for event in lan.published] == ["ether:install-key"]
    assert store.lock.write_locked

    release.set()
    await asyncio.wait_for(bootstrap, timeout=1)
    wan.end_streams()
    await asyncio.wait_for(relay, timeout=1)
    assert (await store.snapshot()).key_set() == {k1, k2}


@pytest.mark.asyncio
async def test_bootstrap_logs_received_key_names(k1: bytes, k2: bytes) -> None:
    wan = await _wan(encode_snapshot(Snapshot(default=k2[:NAME_LEN], keys=(k1, k2))))
    with capture_logs() as logs:
        await BootstrapSynchronizer(wan, KeyringStore(), MutationDecoder("ether:")).run()
    received = [entry for entry in logs if entry["event"] == "bootstrap.snapshot"]
    assert len(received) == 1
    assert received[0]["keys"] == [k1[:NAME_LEN].hex(), k2[:NAME_LEN].hex()]
    assert received[0]["default"] == k2[:NAME_LEN].hex()
    assert received[0]["total"] == 2
