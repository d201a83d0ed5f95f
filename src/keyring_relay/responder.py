"""Answer retrieve-keys queries with the current keyring snapshot."""
from __future__ import annotations

from typing import AsyncIterator

import structlog

from .codec import encode_snapshot
from .events import MutationDecoder, QueryEvent
from .keyring.store import KeyringStore
from .transport.base import Record, TierClient

logger = structlog.get_logger(__name__)


class QueryResponder:
    def __init__(self, queries: AsyncIterator[Record], tier: TierClient, store: KeyringStore, decoder: MutationDecoder) -> None:
        self._queries = queries
        self._tier = tier
        self._store = store
        self._query_name = decoder.retrieve_keys_query
        self.answered = 0

    async def run(self) -> None:
        logger.info("responder.start", tier=self._tier.name, query=self._query_name)
        async for record in self._queries:
            await self.handle(QueryEvent.from_record(record))
        logger.info("responder.stop", answered=self.answered)

    async def handle(self, query: QueryEvent) -> bool:
        if query.name != self._query_name:
            return False
        snapshot = await self._store.snapshot()
        payload = encode_snapshot(snapshot)
        await self._tier.respond(query.id, payload)
        self.answered += 1
        logger.info("responder.query", id=query.id, keys=len(snapshot.keys), size=len(payload))
        return True


__all__ = ["QueryResponder"]
