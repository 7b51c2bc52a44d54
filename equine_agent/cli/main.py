"""Equine Agent CLI using Typer."""

import logging
import os
from pathlib import Path

import typer
from dotenv import load_dotenv

from equine_agent.cli.harvest import harvest_app

# Load .env file from current directory or project root
_env_paths = [
    Path.cwd() / ".env",
    Path(__file__).parent.parent.parent / ".env",
]
for _env_path in _env_paths:
    if _env_path.exists():
        load_dotenv(_env_path)
        break

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "WARNING").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = typer.Typer(
    name="equine-agent",
    help="Equine Agent - Harvests and reconciles horse competition, ranking and pedigree data",
    add_completion=False,
)
app.add_typer(harvest_app, name="harvest")


@app.command()
def run(
    host: str = typer.Option("127.0.0.1", "--host", "-h", help="Host to bind to"),
    port: int = typer.Option(8000, "--port", "-p", help="Port to bind to"),
    reload: bool = typer.Option(
        False, "--reload", "-r", help="Enable auto-reload for development"
    ),
) -> None:
    """Start the Equine Agent web server."""
    import uvicorn

    typer.echo(f"Starting Equine Agent on http://{host}:{port}")
    typer.echo("Press Ctrl+C to stop the server")
    typer.echo("")

    uvicorn.run(
        "equine_agent.web.app:app",
        host=host,
        port=port,
        reload=reload,
    )


@app.command()
def version() -> None:
    """Show the Equine Agent version."""
    typer.echo("Equine Agent v0.1.0")


@app.command()
def check_config() -> None:
    """Check the current configuration status."""
    from equine_agent.ingestion.registry import get_default_registry

    typer.echo("Equine Agent Configuration")
    typer.echo("=" * 40)

    env_found = False
    for _env_path in _env_paths:
        if _env_path.exists():
            typer.echo(f"  .env file: {_env_path}")
            env_found = True
            break
    if not env_found:
        typer.echo("  .env file: Not found")

    config_path = os.environ.get("SOURCES_CONFIG_PATH", "config/sources.yaml")
    registry = get_default_registry()
    typer.echo(f"  Sources config: {config_path}")
    typer.echo(
        f"  Sources: {len(registry.list_sources())} "
        f"({len(registry.list_enabled_sources())} enabled)"
    )
    settings = registry.global_config
    typer.echo(f"  Max concurrency: {settings.max_concurrency}")
    typer.echo(f"  Cache TTL: {settings.cache_ttl_seconds:.0f}s")
    typer.echo(f"  Redis: {os.environ.get('REDIS_HOST', 'localhost')}:{os.environ.get('REDIS_PORT', '6379')}")


if __name__ == "__main__":
    app()
