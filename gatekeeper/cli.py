"""
Command-line entry point: `gatekeeper serve`, `gatekeeper check`, `gatekeeper version`.
Flags default to the GATEKEEPER_* environment settings.
"""
import logging
import platform
import sys

import click
import uvicorn

from gatekeeper.config import (
    AUTH_ENDPOINT,
    CACHE_SIZE,
    CONF_PATH,
    HOST,
    JWT_FRESHNESS,
    PORT,
    PRUNE_SIZE,
    VERSION,
    parse_duration,
)
from gatekeeper.decision import build_gatekeeper
from gatekeeper.errors import ConfigError
from gatekeeper.main import create_app
from gatekeeper.registry import Registry, load_registry_file

logger = logging.getLogger(__name__)


class DurationType(click.ParamType):
    name = "duration"

    def convert(self, value, param, ctx):
        if not isinstance(value, str):
            return value
        try:
            return parse_duration(value)
        except ValueError as e:
            self.fail(str(e), param, ctx)


def _parse_listen(listen: str) -> tuple[str, int]:
    host, sep, port = listen.rpartition(":")
    if not sep or not port.isdigit():
        raise click.BadParameter(f"expected HOST:PORT, got {listen!r}", param_hint="--listen")
    return host or "0.0.0.0", int(port)


def _load(conf: str) -> Registry:
    try:
        return load_registry_file(conf)
    except ConfigError as e:
        logger.error("Failed to read services file: %s", e)
        sys.exit(1)


@click.group()
def cli() -> None:
    """Token verification and path authorization service for reverse proxies."""
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")


@cli.command()
@click.option("--conf", default=CONF_PATH, show_default=True, help="Path to services TOML file.")
@click.option("--listen", default=f"{HOST}:{PORT}", show_default=True, help="Address to listen to.")
@click.option("--jwt-freshness", type=DurationType(), default=JWT_FRESHNESS, show_default=True,
              help="Maximum age of a token's iat (e.g. 90s, 15m, 1h).")
@click.option("--auth-endpoint", default=AUTH_ENDPOINT, show_default=True, help="Auth endpoint path.")
@click.option("--cache-size", type=click.IntRange(min=0), default=CACHE_SIZE, show_default=True,
              help="Max number of verified tokens to cache (0 disables the cache).")
@click.option("--prune-size", type=click.IntRange(min=1), default=PRUNE_SIZE, show_default=True,
              help="Number of cached tokens to prune when the cache is full.")
@click.option("--dry-run", is_flag=True, help="Check the services file only.")
def serve(conf, listen, jwt_freshness, auth_endpoint, cache_size, prune_size, dry_run):
    """Run the HTTP service."""
    host, port = _parse_listen(listen)
    registry = _load(conf)
    if dry_run:
        logger.info("Loaded services file successfully: %d services", len(registry))
        return

    gatekeeper = build_gatekeeper(registry, jwt_freshness, cache_size, prune_size)
    app = create_app(gatekeeper, auth_endpoint=auth_endpoint)
    uvicorn.run(app, host=host, port=port)


@cli.command()
@click.option("--conf", default=CONF_PATH, show_default=True, help="Path to services TOML file.")
def check(conf):
    """Validate the services file and exit."""
    registry = _load(conf)
    logger.info("Loaded services file successfully: %d services", len(registry))
    for service_id in registry.service_ids:
        click.echo(service_id)


@cli.command()
def version():
    """Show version."""
    click.echo(f"gatekeeper {VERSION}")
    click.echo(f"Python: {platform.python_implementation()} {platform.python_version()}")


if __name__ == "__main__":
    cli()
