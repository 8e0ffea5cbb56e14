"""
CLI entrypoint for the KOOK gateway client.
"""
import typer
from typing import Optional
import asyncio

from kook_gateway.client.event_router import all_categories
from kook_gateway.client.gateway_client import TRANSPORT_ERRORS, GatewayClient
from kook_gateway.client.resolver import GatewayResolver
from kook_gateway.client.visualizer import Visualizer
from kook_gateway.shared.config import GatewayOptions, settings
from kook_gateway.shared.errors import GatewayError
from kook_gateway.shared.log_utils import configure_logging

app = typer.Typer(help="KOOK gateway session manager CLI")


def _options(token: Optional[str], compress: Optional[bool]) -> GatewayOptions:
    options = GatewayOptions.from_settings(settings)
    if token:
        options.token = token
    if compress is not None:
        options.compress = compress
    if not options.token:
        typer.echo("No bot token. Pass --token or set KOOK_TOKEN.")
        raise typer.Exit(1)
    return options


@app.command()
def listen(
    token: Optional[str] = typer.Option(None, help="Bot token (defaults to KOOK_TOKEN)"),
    api_base: Optional[str] = typer.Option(None, help="API base URL, e.g. http://127.0.0.1:8765/api/v3 for the mock gateway"),
    duration: float = typer.Option(60.0, help="Duration to keep the session open in seconds"),
    compress: Optional[bool] = typer.Option(None, "--compress/--no-compress", help="Request zlib-compressed frames"),
):
    """Connect to the gateway and show the live dashboard."""
    configure_logging("WARNING")
    options = _options(token, compress)
    resolver = GatewayResolver(options.token, compress=options.compress, api_base_url=api_base)
    client = GatewayClient(options, resolver=resolver, debug_sink=lambda message: None)
    visualizer = Visualizer(client)

    async def main():
        try:
            await visualizer.run(duration)
        finally:
            await client.aclose()

    try:
        asyncio.run(main())
    except (GatewayError, *TRANSPORT_ERRORS) as e:
        typer.echo(f"Gateway error: {e}")
        raise typer.Exit(1)
    except KeyboardInterrupt:
        pass


@app.command()
def resolve(
    token: Optional[str] = typer.Option(None, help="Bot token (defaults to KOOK_TOKEN)"),
    api_base: Optional[str] = typer.Option(None, help="API base URL"),
    compress: Optional[bool] = typer.Option(None, "--compress/--no-compress", help="Request zlib-compressed frames"),
):
    """Ask the API for the gateway URL and print it."""
    configure_logging(settings.LOG_LEVEL)
    options = _options(token, compress)

    async def main() -> str:
        resolver = GatewayResolver(options.token, compress=options.compress, api_base_url=api_base)
        try:
            return await resolver.resolve()
        finally:
            await resolver.aclose()

    try:
        typer.echo(asyncio.run(main()))
    except GatewayError as e:
        typer.echo(str(e))
        raise typer.Exit(1)


@app.command()
def categories():
    """List every category a listener can subscribe to."""
    for name in all_categories():
        typer.echo(name)


@app.command("mock-gateway")
def mock_gateway(port: Optional[int] = typer.Option(None, help="Port to serve on (defaults to MOCK_PORT)")):
    """Start the local mock gateway using Uvicorn."""
    import uvicorn
    configure_logging(settings.LOG_LEVEL)
    port = port or settings.MOCK_PORT
    typer.echo(f"Starting mock gateway on port {port}...")
    uvicorn.run("kook_gateway.server.main:app", host="127.0.0.1", port=port, log_level=settings.LOG_LEVEL.lower())


if __name__ == "__main__":
    app()
