"""Forward keyring events from one tier to the other and apply them locally."""
from __future__ import annotations

from typing import AsyncIterator

import structlog

from .events import InstallKey, MutationDecoder, RemoveKey, SetDefaultKey, UserEvent
from .keyring.store import KeyringStore, MutationStatus
from .transport.base import Record, TierClient

logger = structlog.get_logger(__name__)

_MISS_EVENTS = {
    (InstallKey, MutationStatus.ALREADY_PRESENT): "relay.install.duplicate",
    (RemoveKey, MutationStatus.NOT_FOUND): "relay.remove.missing",
    (SetDefaultKey, MutationStatus.NOT_FOUND): "relay.set_default.missing",
}


class EventRelay:
    """Consume user events from ``source`` and mirror them onto ``sink``.

    Each prefixed event is validated, published to ``sink`` unchanged and then
    applied to ``store`` under the exclusive lock, one event at a time.
    Malformed mutations raise :class:`~keyring_relay.errors.MalformedEvent`
    before anything is published.
    """

    def __init__(self, events: AsyncIterator[Record], sink: TierClient, store: KeyringStore, decoder: MutationDecoder) -> None:
        self._events = events
        self._sink = sink
        self._store = store
        self._decoder = decoder
        self.relayed = 0
        self.applied = 0

    async def run(self) -> None:
        logger.info("relay.start", sink=self._sink.name, prefix=self._decoder.prefix)
        async for record in self._events:
            await self.handle(UserEvent.from_record(record))
        logger.info("relay.stop", relayed=self.relayed, applied=self.applied)

    async def handle(self, event: UserEvent) -> MutationStatus | None:
        if not self._decoder.accepts(event.name):
            return None
        mutation = self._decoder.decode(event.name, event.payload)

        await self._sink.user_event(event.name, event.payload, event.coalesce)
        self.relayed += 1
        logger.info("relay.event", name=event.name, ltime=event.ltime, size=len(event.payload))

        if mutation is None:
            logger.debug("relay.event.unhandled", name=event.name)
            return None
        async with self._store.write() as ring:
            status = mutation.apply(ring)
            count = len(ring)
        key = mutation.key_name.hex() if mutation.key_name is not None else None
        miss = _MISS_EVENTS.get((type(mutation), status))
        if miss is not None:
            logger.warning(miss, key=key)
        else:
            self.applied += 1
            logger.info("relay.applied", kind=mutation.kind, key=key, keys=count)
        return status


__all__ = ["EventRelay"]
