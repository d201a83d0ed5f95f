"""Asyncio client for the Serf agent RPC protocol.

Every request is a msgpack header ``{"Command", "Seq"}`` optionally followed
by a msgpack body. The agent answers with a header ``{"Seq", "Error"}``;
stream and query commands keep sending further header + body pairs under the
same sequence number until they are stopped or done.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Dict, Optional, TypeVar

import msgpack
import structlog
from msgpack.exceptions import UnpackException

from ..codec import coerce_bytes
from ..config import TierConfig
from ..errors import CodecError, ConnectionClosed, RPCError, TransportError
from .base import STREAM_QUERY, STREAM_USER, NodeResponse, Record, Subscription, TierClient

RPC_VERSION = 1

_READ_CHUNK = 64 * 1024
_NANOSECONDS = 1_000_000_000

logger = structlog.get_logger(__name__)

R = TypeVar("R")


@dataclass(eq=False)
class _Channel:
    """Routing state for a sequence number that outlives its first reply."""

    command: str
    subscription: Subscription[Any]
    stopping: bool = False


class SerfRPCClient(TierClient):
    """Serf agent RPC connection implementing :class:`TierClient`."""

    def __init__(
        self,
        name: str,
        host: str,
        port: int,
        *,
        auth_key: str = "",
        timeout: float = 0.0,
    ) -> None:
        super().__init__(name)
        self.host = host
        self.port = port
        self.auth_key = auth_key
        self.timeout = timeout
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._write_lock = asyncio.Lock()
        self._unpacker = msgpack.Unpacker(
            raw=False,
            unicode_errors="surrogateescape",
            strict_map_key=False,
        )
        self._seq = 0
        self._pending: Dict[int, tuple[str, asyncio.Future[None]]] = {}
        self._channels: Dict[int, _Channel] = {}
        self._error: Optional[BaseException] = None
        self._closed = False

    @classmethod
    def from_config(cls, name: str, config: TierConfig) -> "SerfRPCClient":
        host, port = config.host_port()
        return cls(name, host, port, auth_key=config.auth_key, timeout=config.timeout)

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    async def connect(self) -> None:
        try:
            self._reader, self._writer = await self._bounded(
                asyncio.open_connection(self.host, self.port), "connect"
            )
        except OSError as exc:
            raise TransportError(f"{self.name}: cannot connect to {self.address}: {exc}") from exc
        self._reader_task = asyncio.create_task(self._read_loop(), name=f"serf-{self.name}-reader")
        await self._call("handshake", {"Version": RPC_VERSION})
        if self.auth_key:
            await self._call("auth", {"AuthKey": self.auth_key})
        logger.info("serf.connected", tier=self.name, addr=self.address)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._reader_task is not None:
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
        if self._writer is not None:
            self._writer.close()
            try:
                await self._writer.wait_closed()
            except (ConnectionResetError, BrokenPipeError):  # pragma: no cover - race condition
                pass
        self._fail_all(ConnectionClosed(f"{self.name}: client closed"))
        logger.info("serf.closed", tier=self.name, addr=self.address)

    async def stream(self, kind: str) -> Subscription[Record]:
        if kind not in (STREAM_USER, STREAM_QUERY):
            raise ValueError(f"Unsupported stream type: {kind}")
        seq = self._next_seq()
        subscription: Subscription[Record] = Subscription(
            f"{self.name}:{kind}", on_close=lambda: self._stop(seq)
        )
        self._channels[seq] = _Channel(command="stream", subscription=subscription)
        try:
            await self._call("stream", {"Type": kind}, seq=seq)
        except BaseException:
            self._channels.pop(seq, None)
            raise
        logger.info("serf.stream.open", tier=self.name, type=kind, seq=seq)
        return subscription

    async def user_event(self, name: str, payload: bytes, coalesce: bool) -> None:
        await self._call("event", {"Name": name, "Payload": bytes(payload), "Coalesce": coalesce})

    async def respond(self, query_id: int, payload: bytes) -> None:
        await self._call("respond", {"ID": query_id, "Payload": bytes(payload)})

    async def query(
        self,
        name: str,
        payload: bytes = b"",
        *,
        request_ack: bool = False,
        timeout: float = 0.0,
    ) -> Subscription[NodeResponse]:
        seq = self._next_seq()
        subscription: Subscription[NodeResponse] = Subscription(f"{self.name}:query:{name}")
        self._channels[seq] = _Channel(command="query", subscription=subscription)
        body = {
            "FilterNodes": None,
            "FilterTags": None,
            "RequestAck": request_ack,
            "RelayFactor": 0,
            "Timeout": int(timeout * _NANOSECONDS),
            "Name": name,
            "Payload": bytes(payload),
        }
        try:
            await self._call("query", body, seq=seq)
        except BaseException:
            self._channels.pop(seq, None)
            raise
        return subscription

    # -- Request plumbing -------------------------------------------------

    def _next_seq(self) -> int:
        self._seq += 1
        return self._seq

    async def _call(self, command: str, body: Any = None, *, seq: int | None = None) -> None:
        if self._error is not None:
            raise ConnectionClosed(f"{self.name}: connection unavailable") from self._error
        if self._writer is None:
            raise TransportError(f"{self.name}: not connected")
        seq = self._next_seq() if seq is None else seq
        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._pending[seq] = (command, future)
        data = msgpack.packb({"Command": command, "Seq": seq}, use_bin_type=True)
        if body is not None:
            data += msgpack.packb(body, use_bin_type=True)
        try:
            async with self._write_lock:
                self._writer.write(data)
                await self._writer.drain()
            await self._bounded(future, command)
        except (ConnectionError, OSError) as exc:
            raise ConnectionClosed(f"{self.name}: {command} failed: {exc}") from exc
        finally:
            self._pending.pop(seq, None)

    async def _stop(self, seq: int) -> None:
        channel = self._channels.get(seq)
        if channel is None or self._error is not None:
            self._channels.pop(seq, None)
            return
        channel.stopping = True
        try:
            await self._call("stop", {"Stop": seq})
        finally:
            self._channels.pop(seq, None)

    async def _bounded(self, awaitable: Awaitable[R], command: str) -> R:
        if self.timeout <= 0:
            return await awaitable
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except asyncio.TimeoutError:
            raise TransportError(f"{self.name}: {command} timed out after {self.timeout}s") from None

    # -- Reply routing ----------------------------------------------------

    async def _read_loop(self) -> None:
        error: BaseException = ConnectionClosed(f"{self.name}: agent closed the connection")
        try:
            while True:
                header = await self._next_object()
                if not isinstance(header, dict):
                    raise CodecError(f"{self.name}: unexpected RPC header {header!r}")
                self._route(header, await self._body_for(header))
        except asyncio.CancelledError:
            error = ConnectionClosed(f"{self.name}: client closed")
            raise
        except (ConnectionClosed, CodecError) as exc:
            error = exc
        except (ConnectionError, OSError) as exc:
            error = ConnectionClosed(f"{self.name}: {exc}")
        finally:
            self._fail_all(error)

    async def _body_for(self, header: Dict[str, Any]) -> Any:
        seq = header.get("Seq")
        if seq in self._pending or header.get("Error"):
            return None
        if seq in self._channels:
            return await self._next_object()
        return None

    def _route(self, header: Dict[str, Any], body: Any) -> None:
        seq = header.get("Seq")
        error = header.get("Error") or ""
        pending = self._pending.pop(seq, None)
        if pending is not None:
            command, future = pending
            if not future.done():
                if error:
                    future.set_exception(RPCError(command, str(error)))
                else:
                    future.set_result(None)
            return

        channel = self._channels.get(seq)
        if channel is None:
            logger.warning("serf.reply.unexpected", tier=self.name, seq=seq, error=error)
            return
        if error:
            self._channels.pop(seq, None)
            channel.subscription.finish(RPCError(channel.command, str(error)))
            return
        if channel.stopping:
            return
        if channel.command == "stream":
            if isinstance(body, dict):
                channel.subscription.push(body)
            else:
                channel.subscription.finish(CodecError(f"{self.name}: malformed stream record"))
            return
        self._route_query(seq, channel, body)

    def _route_query(self, seq: int, channel: _Channel, body: Any) -> None:
        if not isinstance(body, dict):
            self._channels.pop(seq, None)
            channel.subscription.finish(CodecError(f"{self.name}: malformed query record"))
            return
        kind = body.get("Type")
        if kind == "response":
            try:
                payload = coerce_bytes(body.get("Payload"), "Payload")
            except CodecError as exc:
                self._channels.pop(seq, None)
                channel.subscription.finish(exc)
                return
            channel.subscription.push(NodeResponse(from_node=str(body.get("From", "")), payload=payload))
        elif kind == "ack":
            logger.debug("serf.query.ack", tier=self.name, node=body.get("From"))
        elif kind == "done":
            self._channels.pop(seq, None)
            channel.subscription.finish()
        else:
            logger.warning("serf.query.unknown_record", tier=self.name, type=kind)

    async def _next_object(self) -> Any:
        assert self._reader is not None
        while True:
            try:
                return next(self._unpacker)
            except StopIteration:
                pass
            except (ValueError, UnpackException) as exc:
                raise CodecError(f"{self.name}: undecodable RPC frame: {exc}") from exc
            chunk = await self._reader.read(_READ_CHUNK)
            if not chunk:
                raise ConnectionClosed(f"{self.name}: agent closed the connection")
            self._unpacker.feed(chunk)

    def _fail_all(self, error: BaseException) -> None:
        if self._error is None:
            self._error = error
        for _command, future in list(self._pending.values()):
            if not future.done():
                future.set_exception(error)
        self._pending.clear()
        for channel in list(self._channels.values()):
            channel.subscription.finish(error)
        self._channels.clear()


__all__ = ["RPC_VERSION", "SerfRPCClient"]
