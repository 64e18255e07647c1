"""CLI entry point for the relay server."""

from pathlib import Path

import click

from pairrelay import __version__
from pairrelay.config import load_config
from pairrelay.logging import setup_logging


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=False, path_type=Path),
    default=None,
    help="Path to config file.",
)
@click.pass_context
def main(ctx: click.Context, config: Path | None) -> None:
    """pairrelay - Pairing and message relay for two devices."""
    ctx.ensure_object(dict)
    ctx.obj["config"] = load_config(config)
    ctx.obj["logger"] = setup_logging(ctx.obj["config"])


@main.command()
@click.option("--host", default=None, help="Address to bind to.")
@click.option(
    "--port",
    "-p",
    type=int,
    default=None,
    envvar="PORT",
    help="Port to listen on (also read from $PORT).",
)
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None) -> None:
    """Run the relay server."""
    import asyncio

    from pairrelay.relay import RelayService
    from pairrelay.server import RelayServer

    config = ctx.obj["config"]
    host = host or config.bind_address
    port = port if port is not None else config.port

    async def _serve():
        server = RelayServer(
            RelayService(config),
            api_prefix=config.api_prefix,
            cors_origin=config.cors_origin,
        )

        try:
            await server.start(host, port)
            click.echo(f"Relay server started on {host}:{server.port}")
            click.echo("Press Ctrl+C to stop")
            await server.run_forever()
        except OSError as e:
            click.echo(f"Startup error: {e}", err=True)
            raise SystemExit(1)
        finally:
            await server.stop()

    try:
        asyncio.run(_serve())
    except KeyboardInterrupt:
        click.echo("\nShutting down...")


@main.command()
@click.option(
    "--url",
    "-u",
    default=None,
    help="Base URL of the server (default: local server from config).",
)
@click.pass_context
def status(ctx: click.Context, url: str | None) -> None:
    """Show pair and code counts of a running server."""
    import asyncio

    import aiohttp

    config = ctx.obj["config"]
    base_url = (url or f"http://127.0.0.1:{config.port}").rstrip("/")

    async def _status():
        async with aiohttp.ClientSession() as http:
            try:
                async with http.get(f"{base_url}{config.api_prefix}/health") as resp:
                    if resp.status != 200:
                        click.echo(f"Error: Health check failed (HTTP {resp.status})", err=True)
                        raise SystemExit(1)
                    data = await resp.json()
            except aiohttp.ClientConnectorError:
                click.echo("Error: Cannot connect to server. Is it running?", err=True)
                click.echo("Start the server with: pairrelay serve", err=True)
                raise SystemExit(1)

        click.echo(f"Server status: {data.get('status')}")
        click.echo(f"Active pairs:  {data.get('activePairs')}")
        click.echo(f"Pending codes: {data.get('pendingCodes')}")

    asyncio.run(_status())


@main.command()
def version() -> None:
    """Show version."""
    click.echo(f"pairrelay version {__version__}")
