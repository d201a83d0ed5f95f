"""Typer-based command line interface for keyring-relay."""
from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Dict, Optional

import typer

from ..codec import decode_snapshot
from ..config import AppConfig, apply_overrides, dump_default_config, load_config
from ..errors import BootstrapError, ConfigError, KeyringRelayError
from ..events import MutationDecoder
from ..logging import configure_logging
from ..service import RelayService
from ..transport.serf import SerfRPCClient

app = typer.Typer(help="Relay keyring events between two Serf tiers")


def _load(config: Optional[Path], overrides: Dict[str, Any] | None = None) -> AppConfig:
    try:
        app_config = load_config(config)
        if overrides:
            app_config = apply_overrides(app_config, overrides)
    except ConfigError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=2)
    configure_logging(app_config.logging.normalized_level())
    return app_config


@app.command()
def run(
    config: Optional[Path] = typer.Option(None, "--config", metavar="PATH", help="Override config path"),
    wan_addr: Optional[str] = typer.Option(None, "--wan-addr", help="WAN agent RPC address"),
    wan_auth: Optional[str] = typer.Option(None, "--wan-auth", help="WAN agent RPC auth key"),
    wan_timeout: Optional[float] = typer.Option(None, "--wan-timeout", help="WAN RPC timeout in seconds"),
    lan_addr: Optional[str] = typer.Option(None, "--lan-addr", help="LAN agent RPC address"),
    lan_auth: Optional[str] = typer.Option(None, "--lan-auth", help="LAN agent RPC auth key"),
    lan_timeout: Optional[float] = typer.Option(None, "--lan-timeout", help="LAN RPC timeout in seconds"),
    prefix: Optional[str] = typer.Option(None, "--prefix", help="Serf event prefix"),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Logging verbosity"),
) -> None:
    """Run the relay until interrupted."""

    app_config = _load(
        config,
        {
            "wan.addr": wan_addr,
            "wan.auth_key": wan_auth,
            "wan.timeout": wan_timeout,
            "lan.addr": lan_addr,
            "lan.auth_key": lan_auth,
            "lan.timeout": lan_timeout,
            "relay.prefix": prefix,
            "logging.level": log_level,
        },
    )
    try:
        asyncio.run(_serve(RelayService(app_config)))
    except KeyringRelayError:
        raise typer.Exit(code=1)
    except KeyboardInterrupt:
        pass


async def _serve(service: RelayService) -> None:
    service.install_signal_handlers()
    await service.serve_forever()


@app.command()
def inspect(
    config: Optional[Path] = typer.Option(None, "--config", metavar="PATH", help="Override config path"),
    tier: str = typer.Option("wan", "--tier", help="Tier to query: wan or lan"),
) -> None:
    """Print the keyring held by a tier, without key material."""

    if tier not in ("wan", "lan"):
        typer.echo(f"Unknown tier '{tier}', expected wan or lan", err=True)
        raise typer.Exit(code=2)
    app_config = _load(config)
    client = SerfRPCClient.from_config(tier, getattr(app_config, tier))
    decoder = MutationDecoder(app_config.relay.prefix)
    try:
        report = asyncio.run(_inspect(client, decoder.retrieve_keys_query, getattr(app_config, tier).timeout))
    except KeyringRelayError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1)
    typer.echo(json.dumps(report, indent=2))


async def _inspect(client: SerfRPCClient, query: str, timeout: float) -> Dict[str, Any]:
    async with client:
        responses = await client.query(query, request_ack=False, timeout=timeout)
        try:
            async for response in responses:
                snapshot = decode_snapshot(response.payload)
                return {
                    "tier": client.name,
                    "node": response.from_node,
                    "count": len(snapshot.keys),
                    "default": snapshot.default.hex() or None,
                    "keys": [name.hex() for name in snapshot.names()],
                }
        finally:
            await responses.aclose()
    raise BootstrapError(f"{query}: no node responded on {client.name}")


@app.command("config-init")
def config_init(path: Path = typer.Argument(..., help="Where to write the default config")) -> None:
    dump_default_config(path)
    typer.echo(f"Default configuration written to {path}")


@app.command()
def version() -> None:
    from ..version import __version__

    typer.echo(__version__)


if __name__ == "__main__":  # pragma: no cover
    app()
