"""Composition root wiring both tiers, the keyring store and its consumers."""
from __future__ import annotations

import asyncio
import signal
from typing import Any, Optional

import structlog

from .bootstrap import BootstrapResult, BootstrapSynchronizer
from .config import AppConfig
from .events import MutationDecoder
from .keyring.store import KeyringStore
from .relay import EventRelay
from .responder import QueryResponder
from .transport.base import STREAM_QUERY, STREAM_USER, TierClient
from .transport.serf import SerfRPCClient

logger = structlog.get_logger(__name__)


class RelayService:
    """Run the keyring relay between the ``wan`` and ``lan`` tiers.

    Startup order: connect both tiers, subscribe the LAN query stream and the
    WAN event stream, let bootstrap take the exclusive lock, then start the
    relay and responder. The first task to fail stops everything and its
    error is re-raised from :meth:`serve_forever`.
    """

    def __init__(
        self,
        config: AppConfig,
        *,
        wan: TierClient | None = None,
        lan: TierClient | None = None,
        store: KeyringStore | None = None,
    ) -> None:
        self.config = config
        self.wan = wan or SerfRPCClient.from_config("wan", config.wan)
        self.lan = lan or SerfRPCClient.from_config("lan", config.lan)
        self.store = store or KeyringStore()
        self.decoder = MutationDecoder(config.relay.prefix)
        self.bootstrap_result: Optional[BootstrapResult] = None
        self._shutdown = asyncio.Event()
        self._tasks: list[asyncio.Task[Any]] = []

    async def serve_forever(self) -> None:
        logger.info("service.start", wan=self.config.wan.addr, lan=self.config.lan.addr, prefix=self.decoder.prefix)
        try:
            await self.wan.connect()
            await self.lan.connect()
            queries = await self.lan.stream(STREAM_QUERY)
            events = await self.wan.stream(STREAM_USER)

            bootstrap = BootstrapSynchronizer(self.wan, self.store, self.decoder, timeout=self.config.wan.timeout)
            bootstrap_task = asyncio.create_task(bootstrap.run(), name="bootstrap")
            self._tasks.append(bootstrap_task)
            locked = asyncio.create_task(bootstrap.locked.wait())
            await asyncio.wait({bootstrap_task, locked}, return_when=asyncio.FIRST_COMPLETED)
            locked.cancel()

            relay = EventRelay(events, self.lan, self.store, self.decoder)
            responder = QueryResponder(queries, self.lan, self.store, self.decoder)
            self._tasks.append(asyncio.create_task(relay.run(), name="relay"))
            self._tasks.append(asyncio.create_task(responder.run(), name="responder"))
            await self._supervise(bootstrap_task)
        except Exception as exc:
            logger.error("service.fatal", error=str(exc), error_type=type(exc).__name__, exc_info=True)
            raise
        finally:
            await self._shutdown_all()
        logger.info("service.stop")

    async def stop(self) -> None:
        self._shutdown.set()

    def install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(signum, self._shutdown.set)
            except NotImplementedError:  # pragma: no cover - windows event loops
                signal.signal(signum, lambda *_: loop.call_soon_threadsafe(self._shutdown.set))

    async def _supervise(self, bootstrap_task: asyncio.Task[BootstrapResult]) -> None:
        stop = asyncio.create_task(self._shutdown.wait(), name="shutdown")
        pending: set[asyncio.Task[Any]] = {stop, *self._tasks}
        try:
            while True:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    if task is stop:
                        logger.info("service.stop.requested")
                        return
                    error = task.exception()
                    if error is not None:
                        raise error
                    if task is bootstrap_task:
                        self.bootstrap_result = task.result()
                    else:
                        logger.info("service.task.finished", task=task.get_name())
                if pending == {stop}:
                    return
        finally:
            stop.cancel()

    async def _shutdown_all(self) -> None:
        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        for tier in (self.wan, self.lan):
            try:
                await tier.close()
            except Exception as exc:  # pragma: no cover - best effort on shutdown
                logger.warning("service.close.failed", tier=tier.name, error=str(exc))
        await self.store.close()


__all__ = ["RelayService"]
