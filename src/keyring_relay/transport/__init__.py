"""Transport package exports."""
from .base import STREAM_QUERY, STREAM_USER, NodeResponse, Record, Subscription, TierClient
from .memory import MemoryTier, PublishedEvent
from .serf import SerfRPCClient

__all__ = [
    "STREAM_QUERY",
    "STREAM_USER",
    "NodeResponse",
    "Record",
    "Subscription",
    "TierClient",
    "MemoryTier",
    "PublishedEvent",
    "SerfRPCClient",
]
