"""In-process tier used for tests and local dry runs."""
from __future__ import annotations

import inspect
import itertools
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Iterable, List, Union

from ..errors import ConnectionClosed
from .base import STREAM_QUERY, STREAM_USER, NodeResponse, Record, Subscription, TierClient

QueryHandler = Callable[[bytes], Union[Iterable[NodeResponse], Awaitable[Iterable[NodeResponse]]]]


@dataclass(frozen=True, slots=True)
class PublishedEvent:
    name: str
    payload: bytes
    coalesce: bool


class MemoryTier(TierClient):
    """Loopback tier.

    Events published with :meth:`user_event` are recorded in :attr:`published`
    and delivered to this tier's own ``user`` subscribers, like a gossip agent
    echoing its own broadcasts. Queries are answered by a registered handler
    or, failing that, looped back to the ``query`` subscribers so a responder
    attached to the same tier can answer them through :meth:`respond`.
    """

    def __init__(self, name: str = "memory", *, node_name: str = "memory-node") -> None:
        super().__init__(name)
        self.node_name = node_name
        self.published: List[PublishedEvent] = []
        self.responses: Dict[int, bytes] = {}
        self.queries: List[str] = []
        self.connected = False
        self._subscribers: Dict[str, List[Subscription[Record]]] = {STREAM_USER: [], STREAM_QUERY: []}
        self._handlers: Dict[str, QueryHandler] = {}
        self._inflight: Dict[int, Subscription[NodeResponse]] = {}
        self._ids = itertools.count(1)
        self._ltime = itertools.count(1)

    async def connect(self) -> None:
        self.connected = True

    async def close(self) -> None:
        self.connected = False
        error = ConnectionClosed(f"{self.name}: client closed")
        for subscriptions in self._subscribers.values():
            for subscription in subscriptions:
                subscription.finish(error)
            subscriptions.clear()
        for subscription in self._inflight.values():
            subscription.finish(error)
        self._inflight.clear()

    async def stream(self, kind: str) -> Subscription[Record]:
        if kind not in self._subscribers:
            raise ValueError(f"Unsupported stream type: {kind}")
        async def _detach() -> None:
            if subscription in self._subscribers[kind]:
                self._subscribers[kind].remove(subscription)

        subscription: Subscription[Record] = Subscription(f"{self.name}:{kind}", on_close=_detach)
        self._subscribers[kind].append(subscription)
        return subscription

    async def user_event(self, name: str, payload: bytes, coalesce: bool) -> None:
        self._require_connected()
        self.published.append(PublishedEvent(name=name, payload=bytes(payload), coalesce=coalesce))
        self.emit_user_event(name, payload, coalesce)

    async def respond(self, query_id: int, payload: bytes) -> None:
        self._require_connected()
        self.responses[query_id] = bytes(payload)
        subscription = self._inflight.pop(query_id, None)
        if subscription is not None:
            subscription.push(NodeResponse(from_node=self.node_name, payload=bytes(payload)))
            subscription.finish()

    async def query(
        self,
        name: str,
        payload: bytes = b"",
        *,
        request_ack: bool = False,
        timeout: float = 0.0,
    ) -> Subscription[NodeResponse]:
        self._require_connected()
        self.queries.append(name)
        subscription: Subscription[NodeResponse] = Subscription(f"{self.name}:query:{name}")
        handler = self._handlers.get(name)
        if handler is not None:
            result = handler(bytes(payload))
            if inspect.isawaitable(result):
                result = await result
            for response in result:
                subscription.push(response)
            subscription.finish()
            return subscription
        query_id = self.emit_query(name, payload)
        self._inflight[query_id] = subscription
        return subscription

    # -- Test and dry-run helpers ------------------------------------------

    def on_query(self, name: str, handler: QueryHandler) -> None:
        self._handlers[name] = handler

    def emit_user_event(self, name: str, payload: bytes, coalesce: bool = False) -> None:
        record = {
            "Event": "user",
            "LTime": next(self._ltime),
            "Name": name,
            "Payload": bytes(payload),
            "Coalesce": coalesce,
        }
        for subscription in list(self._subscribers[STREAM_USER]):
            subscription.push(record)

    def emit_query(self, name: str, payload: bytes = b"", *, query_id: int | None = None) -> int:
        query_id = next(self._ids) if query_id is None else query_id
        record = {
            "Event": "query",
            "ID": query_id,
            "LTime": next(self._ltime),
            "Name": name,
            "Payload": bytes(payload),
        }
        for subscription in list(self._subscribers[STREAM_QUERY]):
            subscription.push(record)
        return query_id

    def emit_record(self, kind: str, record: Record) -> None:
        for subscription in list(self._subscribers[kind]):
            subscription.push(record)

    def end_streams(self) -> None:
        for subscriptions in self._subscribers.values():
            for subscription in subscriptions:
                subscription.finish()
            subscriptions.clear()

    def _require_connected(self) -> None:
        if not self.connected:
            raise ConnectionClosed(f"{self.name}: not connected")


__all__ = ["MemoryTier", "PublishedEvent", "QueryHandler"]
