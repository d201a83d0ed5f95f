"""Exception hierarchy for keyring-relay.

Two families matter to callers. :class:`ProtocolError` subclasses signal
corrupted or malformed input on one of the tiers; they are never retried and
stop the relay. :class:`TransportError` subclasses come from the RPC layer
and are equally fatal to a running service. Expected misses (duplicate
install, unknown key name) are not exceptions at all, see
:class:`keyring_relay.keyring.store.MutationStatus`.
"""
from __future__ import annotations


class KeyringRelayError(Exception):
    """Base exception for all keyring-relay failures"""


class ConfigError(KeyringRelayError):
    """Raised when configuration cannot be loaded or validated"""


class ProtocolError(KeyringRelayError):
    """Raised when a tier delivers data that cannot be trusted"""


class MalformedEvent(ProtocolError):
    """Raised for a mutation event or query record with an invalid shape"""


class MalformedSnapshot(ProtocolError):
    """Raised when a decoded snapshot violates the keyring invariants"""


class CodecError(ProtocolError):
    """Raised when a snapshot payload cannot be encoded or decoded"""


class BootstrapError(ProtocolError):
    """Raised when the bootstrap query yields no usable response"""


class TransportError(KeyringRelayError):
    """Raised for failures talking to a tier agent"""


class ConnectionClosed(TransportError):
    """Raised when the agent connection is closed unexpectedly"""


class RPCError(TransportError):
    """Raised when the agent answers a request with an error string"""

    def __init__(self, command: str, message: str) -> None:
        super().__init__(f"{command}: {message}")
        self.command = command
        self.message = message


__all__ = [
    "KeyringRelayError",
    "ConfigError",
    "ProtocolError",
    "MalformedEvent",
    "MalformedSnapshot",
    "CodecError",
    "BootstrapError",
    "TransportError",
    "ConnectionClosed",
    "RPCError",
]
