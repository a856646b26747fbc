"""
CLI entry point for the verification relayer.
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional

import structlog
import typer

from .config import Settings, load_settings
from .errors import ConfigError, RelayerError

app = typer.Typer(
    name="verification-relayer",
    help="Cross-chain proof-of-human verification relayer",
    add_completion=False,
)


def configure_logging(level: str = "info", json: bool = False) -> None:
    """Configure structlog: console output by default, JSON lines for log shippers."""
    renderer = structlog.processors.JSONRenderer() if json else structlog.dev.ConsoleRenderer()
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if json:
        processors.append(structlog.processors.format_exc_info)
    processors.append(renderer)

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.INFO)
        ),
        cache_logger_on_first_use=True,
    )


def _load(config_path: Optional[Path]) -> Settings:
    settings = load_settings(config_path)
    configure_logging(settings.log_level, settings.log_json)
    return settings


ConfigOption = typer.Option(
    None,
    "--config",
    "-c",
    help="Path to .env configuration file",
)


@app.command()
def serve(
    config_path: Optional[Path] = ConfigOption,
    host: Optional[str] = typer.Option(None, "--host", help="Bind address"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Bind port"),
) -> None:
    """
    Run the relayer with its HTTP control plane.
    """
    from .server import serve as run_server

    settings = _load(config_path)
    overrides = {k: v for k, v in (("host", host), ("port", port)) if v is not None}
    if overrides:
        settings = settings.model_copy(update=overrides)

    typer.echo(f"Serving on {settings.host}:{settings.port}. Press Ctrl+C to stop.")
    exit_code = asyncio.run(run_server(settings))
    raise typer.Exit(code=exit_code)


@app.command("sync-once")
def sync_once(
    config_path: Optional[Path] = ConfigOption,
    addresses: Optional[list[str]] = typer.Option(
        None,
        "--address",
        "-a",
        help="Address to sync (repeatable). Discovers recent verifications when omitted.",
    ),
) -> None:
    """
    Run a single sync and exit (no HTTP server).
    """
    from .supervisor import connect_gateways
    from .sync import SyncEngine

    settings = _load(config_path)

    async def _run():
        registry, flag_store = await connect_gateways(settings)
        try:
            engine = SyncEngine(
                registry,
                flag_store,
                policy=settings.reconciliation_policy,
                window_blocks=settings.discovery_window_blocks,
            )
            return await engine.run(addresses or None)
        finally:
            await registry.close()
            await flag_store.close()

    try:
        result = asyncio.run(_run())
    except RelayerError as e:
        typer.echo(f"✗ {type(e).__name__}: {e}", err=True)
        raise typer.Exit(code=1)

    for address in result.addresses:
        typer.echo(f"✓ Synced: {address}")
    typer.echo(f"Synced {result.synced}, skipped {result.skipped}, errors {result.errors}")
    if result.errors:
        raise typer.Exit(code=1)


@app.command()
def check(
    address: str = typer.Argument(..., help="EVM address to check"),
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """
    Show an address's source record and target flag (without writing).
    """
    from .address import InvalidAddressError, normalize_address
    from .supervisor import connect_gateways

    settings = _load(config_path)

    try:
        checksum = normalize_address(address)
    except InvalidAddressError as e:
        typer.echo(f"✗ {e}", err=True)
        raise typer.Exit(code=1)

    async def _check():
        registry, flag_store = await connect_gateways(settings)
        try:
            record = await registry.read_verification_record(checksum)
            flag = await flag_store.read_verification_flag(checksum)
            return record, flag
        finally:
            await registry.close()
            await flag_store.close()

    try:
        record, flag = asyncio.run(_check())
    except ConfigError as e:
        typer.echo(f"✗ Configuration: {e}", err=True)
        raise typer.Exit(code=1)
    except RelayerError as e:
        typer.echo(f"✗ {type(e).__name__}: {e}", err=True)
        raise typer.Exit(code=1)

    typer.echo(f"Address: {checksum}")
    typer.echo("")
    if record is None:
        typer.echo("  Source: not verified")
    else:
        typer.echo(f"  Source: verified at {record.timestamp}")
        disclosed = record.disclosed_attributes()
        if disclosed:
            typer.echo(f"  Disclosed: {', '.join(disclosed)}")
    typer.echo(f"  Target flag: {'set' if flag else 'not set'}")


@app.command()
def version() -> None:
    """Show the relayer version."""
    from verification_relayer import __version__
    typer.echo(f"verification-relayer v{__version__}")


def main() -> None:
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
