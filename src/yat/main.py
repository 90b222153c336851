"""
Main entry point for the YAT extension host CLI.

This module provides developer commands for checking extension packages
outside the host application: validation, tunnel view inspection and
discovery of local extension directories.
"""

import asyncio
import json
import sys
from pathlib import Path

import click
from pydantic import ValidationError

from yat.extensions.errors import ExtensionError
from yat.extensions.host import ExtensionHost
from yat.extensions.loader import ExtensionLoader
from yat.extensions.models import Tunnel
from yat.extensions.validation import ExtensionValidator
from yat.utils.config import get_settings
from yat.utils.helpers import validate_settings_or_exit
from yat.utils.logging import configure_root_logging, setup_logging

logger = setup_logging(__name__)


@click.group()
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose logging')
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """YAT extension host - develop and check App extensions."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose

    settings = get_settings()
    configure_root_logging(
        level="DEBUG" if verbose else settings.log_level.upper(),
        structured=settings.log_structured,
        log_file=settings.get_log_file_path(),
    )

    if verbose:
        logger.debug("Verbose logging enabled")


@cli.command()
@click.argument('ref')
def validate(ref: str) -> None:
    """Load an extension package and report problems.

    REF is a module path (``pkg.module:attr``), an extension directory or
    the name of a directory in the configured extensions directory.
    """
    validate_settings_or_exit()
    settings = get_settings()
    loader = ExtensionLoader(settings)

    try:
        package = loader.load_package(ref)
    except ExtensionError as e:
        click.echo(f"Error: {e.message}")
        sys.exit(1)

    validator = ExtensionValidator(settings)
    result = validator.validate_package(package)
    for warning in result.warnings:
        click.echo(f"Warning: {warning}")
    for error in result.errors:
        click.echo(f"Error: {error}")

    try:
        validator.check_host_version(package.metadata)
    except ExtensionError as e:
        click.echo(f"Error: {e.message}")
        result.valid = False

    if not result.valid:
        sys.exit(1)

    app = package.app_definition
    click.echo(f"{package.metadata.id} v{package.metadata.version}: OK")
    click.echo(f"App: {app.id} ({app.name})")
    click.echo(f"Tabs: {', '.join(tab.key for tab in app.tabs) or '-'}")
    click.echo(f"Actions: {', '.join(action.key for action in app.actions) or '-'}")
    if package.metadata.dependencies:
        deps = ', '.join(f"{dep} {rng}" for dep, rng in package.metadata.dependencies.items())
        click.echo(f"Dependencies: {deps}")


@cli.command()
@click.argument('ref')
@click.option('--tunnel', 'tunnel_json', required=True,
              help='Tunnel snapshot as JSON, e.g. \'{"id": "t1", "name": "web", "status": "active"}\'')
@click.option('--with', 'requirements', multiple=True,
              help='Package to install first (for dependencies); may be repeated')
def inspect(ref: str, tunnel_json: str, requirements: tuple[str, ...]) -> None:
    """Show the tab and action state an extension computes for a tunnel."""
    try:
        tunnel = Tunnel.model_validate(json.loads(tunnel_json))
    except (json.JSONDecodeError, ValidationError) as e:
        click.echo(f"Error: invalid tunnel snapshot: {e}")
        sys.exit(1)

    try:
        view, diagnostics = asyncio.run(_inspect(ref, tunnel, requirements))
    except ExtensionError as e:
        click.echo(f"Error: {e.message}")
        sys.exit(1)

    if view is None:
        click.echo(f"Tunnel {tunnel.id} is not bound to this extension's App")
        sys.exit(1)

    click.echo(f"Tunnel: {tunnel.id} (app {view.app_id})")
    click.echo("Tabs:")
    for state in view.tabs:
        marker = '*' if state.tab.key == view.active_tab else ' '
        click.echo(f" {marker} {state.tab.key:<20} {'visible' if state.visible else 'hidden'}")
    click.echo("Actions:")
    for state in view.actions:
        flags = 'visible' if state.visible else 'hidden'
        if state.disabled:
            flags += ', disabled'
        click.echo(f"   {state.action.key:<20} {flags}")

    for entry in diagnostics:
        click.echo(f"Warning: [{entry.source}] {entry.message}")


async def _inspect(ref: str, tunnel: Tunnel, requirements: tuple[str, ...]):
    """Install into a throwaway host and evaluate the tunnel view."""
    host = ExtensionHost(get_settings())
    async with host.managed_lifecycle():
        for requirement in requirements:
            await host.install_from(requirement)
        record = await host.install_from(ref)

        if not tunnel.app_id:
            tunnel = tunnel.model_copy(update={"app_id": record.app_id})
        view = host.track_tunnel(tunnel)
        return view, host.get_diagnostics(record.app_id)


@cli.command()
@click.argument('directory', required=False, type=click.Path(path_type=Path))
def discover(directory: Path | None) -> None:
    """List extension directories (defaults to the configured directory)."""
    settings = get_settings()
    loader = ExtensionLoader(settings)
    directory = directory.expanduser().resolve() if directory else settings.get_extensions_directory()

    names = loader.discover(directory)
    if not names:
        click.echo(f"No extensions found in {directory}")
        return

    click.echo(f"Extensions in {directory}:")
    for name in names:
        click.echo(f"  {name}")


def main() -> None:
    """Main entry point."""
    cli()


if __name__ == '__main__':
    main()
