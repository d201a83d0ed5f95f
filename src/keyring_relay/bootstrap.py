"""One-shot seeding of the keyring from the upstream tier."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass

import structlog

from .codec import decode_snapshot
from .errors import BootstrapError
from .events import MutationDecoder
from .keyring.store import KeyringStore, MutationStatus
from .transport.base import NodeResponse, TierClient

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class BootstrapResult:
    node: str
    keys: int
    default: bytes | None


class BootstrapSynchronizer:
    """Replace the keyring with the snapshot held by the upstream tier.

    The exclusive lock is taken before the query is sent and released only
    after the snapshot is adopted, so no relayed mutation or query answer can
    observe the keyring half-way. :attr:`locked` is set once the lock is held.
    """

    def __init__(self, tier: TierClient, store: KeyringStore, decoder: MutationDecoder, *, timeout: float = 0.0) -> None:
        self._tier = tier
        self._store = store
        self._query_name = decoder.retrieve_keys_query
        self._timeout = timeout
        self.locked = asyncio.Event()

    async def run(self) -> BootstrapResult:
        async with self._store.write() as ring:
            self.locked.set()
            logger.info("bootstrap.start", tier=self._tier.name, query=self._query_name)
            response = await self._first_response()
            logger.info("bootstrap.response", node=response.from_node, size=len(response.payload))
            snapshot = decode_snapshot(response.payload)
            logger.info(
                "bootstrap.snapshot",
                node=response.from_node,
                default=snapshot.default.hex() or None,
                keys=[name.hex() for name in snapshot.names()],
                total=len(snapshot.keys),
            )
            status = ring.replace_all(snapshot)
            if status is MutationStatus.NOT_FOUND:
                logger.warning("bootstrap.default.missing", default=snapshot.default.hex())
            result = BootstrapResult(node=response.from_node, keys=len(ring), default=ring.default_name)
        logger.info(
            "bootstrap.complete",
            node=result.node,
            keys=result.keys,
            default=result.default.hex() if result.default else None,
        )
        return result

    async def _first_response(self) -> NodeResponse:
        responses = await self._tier.query(self._query_name, request_ack=False, timeout=self._timeout)
        try:
            async for response in responses:
                return response
        finally:
            await responses.aclose()
        raise BootstrapError(f"{self._query_name}: query on {self._tier.name} completed without a response")


__all__ = ["BootstrapResult", "BootstrapSynchronizer"]
