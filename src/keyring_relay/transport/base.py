"""Tier transport abstractions."""
from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Mapping, Optional, TypeVar

T = TypeVar("T")

Record = Mapping[str, Any]

STREAM_USER = "user"
STREAM_QUERY = "query"


@dataclass(frozen=True, slots=True)
class NodeResponse:
    """One node's answer to a query."""

    from_node: str
    payload: bytes


@dataclass(frozen=True, slots=True)
class _End:
    error: Optional[BaseException] = None


class Subscription(AsyncIterator[T]):
    """Unbounded, ordered queue of items fed by a transport.

    Iteration ends when the producer calls :meth:`finish`; if it finishes with
    an error the error is raised to the consumer once every queued item has
    been delivered.
    """

    def __init__(self, label: str, on_close: Callable[[], Awaitable[None]] | None = None) -> None:
        self.label = label
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._on_close = on_close
        self._finished = False
        self._closed = False

    def push(self, item: T) -> None:
        if self._finished:
            return
        self._queue.put_nowait(item)

    def finish(self, error: BaseException | None = None) -> None:
        if self._finished:
            return
        self._finished = True
        self._queue.put_nowait(_End(error))

    def __aiter__(self) -> "Subscription[T]":
        return self

    async def __anext__(self) -> T:
        if self._closed:
            raise StopAsyncIteration
        item = await self._queue.get()
        if isinstance(item, _End):
            self._closed = True
            if item.error is not None:
                raise item.error
            raise StopAsyncIteration
        return item

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.finish()
        if self._on_close is not None:
            await self._on_close()


class TierClient(ABC):
    """Event and query channel to one tier of the membership system."""

    def __init__(self, name: str) -> None:
        self.name = name

    @abstractmethod
    async def connect(self) -> None:  # pragma: no cover - interface
        ...

    @abstractmethod
    async def close(self) -> None:  # pragma: no cover - interface
        ...

    @abstractmethod
    async def stream(self, kind: str) -> Subscription[Record]:  # pragma: no cover - interface
        """Subscribe to ``kind`` (``"user"`` or ``"query"``) records."""

    @abstractmethod
    async def user_event(self, name: str, payload: bytes, coalesce: bool) -> None:  # pragma: no cover - interface
        ...

    @abstractmethod
    async def respond(self, query_id: int, payload: bytes) -> None:  # pragma: no cover - interface
        ...

    @abstractmethod
    async def query(
        self,
        name: str,
        payload: bytes = b"",
        *,
        request_ack: bool = False,
        timeout: float = 0.0,
    ) -> Subscription[NodeResponse]:  # pragma: no cover - interface
        ...

    async def __aenter__(self) -> "TierClient":
        await self.connect()
        return self

    async def __aexit__(self, *_exc: object) -> None:
        await self.close()


__all__ = [
    "NodeResponse",
    "Record",
    "STREAM_QUERY",
    "STREAM_USER",
    "Subscription",
    "TierClient",
]
