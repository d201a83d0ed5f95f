"""Keyring relay between two Serf gossip tiers."""
from __future__ import annotations

from typing import TYPE_CHECKING, Any

from .version import __version__

__all__ = ["RelayService", "__version__"]


def __getattr__(name: str) -> Any:  # pragma: no cover - thin wrapper
    if name == "RelayService":
        from .service import RelayService

        globals()["RelayService"] = RelayService
        return RelayService
    raise AttributeError(name)


if TYPE_CHECKING:  # pragma: no cover - typing aid
    from .service import RelayService  # noqa: F401
