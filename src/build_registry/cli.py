"""CLI entrypoint for the build registry."""

import json
import logging
import os
import uuid
from pathlib import Path
from typing import Any, Optional

import click
from dotenv import load_dotenv

from build_registry.config import ConfigError, load_build_config, load_config
from build_registry.errors import RegistryError
from build_registry.keys import BuildSpec

# Load .env file on CLI startup
load_dotenv()


def _registry():
    from build_registry.registry import BuildRegistry

    try:
        return BuildRegistry.from_config(load_config(require_all=True))
    except ConfigError as e:
        click.echo(f"Configuration error:\n{e}", err=True)
        raise SystemExit(1)


def _dump(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, sort_keys=True, default=str))


def _fail(e: Exception) -> None:
    click.echo(f"Error: {e}", err=True)
    raise SystemExit(1)


def _spec(name: str, env: str, version: Optional[str] = None, locale: Optional[str] = None) -> BuildSpec:
    return BuildSpec(name=name, env=env, version=version, locale=locale)


@click.group()
@click.version_option(package_name="build-registry")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def cli(verbose: bool):
    """Build registry CLI - publish, promote and roll back builds."""
    debug = verbose or bool(os.environ.get("BFFS_DEBUG"))
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@cli.command()
def check_config():
    """Check if required configuration is present."""
    try:
        config = load_config(require_all=True)
        click.echo("Configuration loaded successfully!")
        click.echo(f"  DATABASE_URL: {config.database_url[:20]}..." if len(config.database_url) > 20 else f"  DATABASE_URL: [set]")
        click.echo("  REDIS_URL: [set]")
        click.echo(f"  Environments: {', '.join(config.envs) or '(none)'}")
    except ConfigError as e:
        click.echo(f"Configuration error:\n{e}", err=True)
        raise SystemExit(1)


# Database commands
@cli.group()
def db():
    """Database commands."""
    pass


@db.command("init")
def db_init():
    """Initialize the database schema."""
    from build_registry.db import init_schema

    try:
        init_schema()
        click.echo("Database schema initialized successfully.")
    except FileNotFoundError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)
    except Exception as e:
        click.echo(f"Database error: {e}", err=True)
        raise SystemExit(1)


@cli.command()
@click.argument("name")
@click.argument("version")
@click.argument("env")
@click.argument("directory", type=click.Path(exists=True, file_okay=False))
@click.option("--locale", default=None, help="Locale of the build (default: en-US)")
@click.option(
    "--build-config",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="YAML file listing recommended files per environment",
)
@click.option("--no-promote", is_flag=True, help="Publish without moving HEAD")
def publish(name: str, version: str, env: str, directory: str, locale: str, build_config: str, no_promote: bool):
    """Publish the compiled files in DIRECTORY."""
    from build_registry.files import collect_files

    registry = _registry()
    try:
        options = {
            "files": collect_files(Path(directory)),
            "config": load_build_config(Path(build_config)) if build_config else None,
            "promote": not no_promote,
        }
        build = registry.publish(_spec(name, env, version, locale), options)
    except (RegistryError, ConfigError) as e:
        _fail(e)

    click.echo(f"Published {build.build_id}")
    click.echo(f"  Files: {len(build.fingerprints)}")
    if build.previous_build_id:
        click.echo(f"  Previous: {build.previous_build_id}")


@cli.command()
@click.argument("name")
@click.argument("env")
@click.option("--locale", default=None)
def head(name: str, env: str, locale: str):
    """Show the current HEAD build."""
    result = _registry().head(_spec(name, env, locale=locale))
    if result is None:
        click.echo("No HEAD found.")
        return
    _dump(result.to_row())


@cli.command()
@click.argument("name")
@click.argument("version")
@click.argument("env")
@click.option("--locale", default=None)
def search(name: str, version: str, env: str, locale: str):
    """Show a published build."""
    result = _registry().search(_spec(name, env, version, locale))
    if result is None:
        click.echo("No build found.")
        return
    _dump(result.to_row())


@cli.command()
@click.argument("name")
@click.argument("version")
def meta(name: str, version: str):
    """Show a build across every environment."""
    result = _registry().meta(_spec(name, "", version))
    if result is None:
        click.echo("No build found.")
        return
    _dump(result)


@cli.command()
@click.argument("name")
@click.argument("version")
@click.argument("env")
def promote(name: str, version: str, env: str):
    """Make an already published build HEAD for every locale."""
    try:
        outcomes = _registry().promote(_spec(name, env, version))
    except RegistryError as e:
        _fail(e)

    for outcome in outcomes:
        click.echo(f"  {outcome.locale:<10} {outcome.status:<8} {outcome.build_id or outcome.reason or ''}")


@cli.command()
@click.argument("name")
@click.argument("env")
@click.option("--version", "target_version", default=None, help="Version to roll back to (default: previous)")
@click.option("--best-effort", is_flag=True, help="Continue past per-locale storage errors")
def rollback(name: str, env: str, target_version: str, best_effort: bool):
    """Roll HEAD back to an earlier build."""
    try:
        outcomes = _registry().rollback(_spec(name, env), target_version, best_effort=best_effort)
    except RegistryError as e:
        _fail(e)

    for outcome in outcomes:
        click.echo(f"  {outcome.locale:<10} {outcome.status:<8} {outcome.build_id or outcome.reason or ''}")


@cli.command()
@click.argument("name")
@click.argument("version")
@click.argument("env")
@click.option("--locale", default=None, help="Only this locale (default: all)")
def unpublish(name: str, version: str, env: str, locale: str):
    """Remove a build, its files and its HEAD."""
    try:
        count = _registry().unpublish(_spec(name, env, version, locale))
    except RegistryError as e:
        _fail(e)
    click.echo(f"Removed {count} record(s).")


# Lock commands
@cli.group()
def lock():
    """In-progress build markers."""
    pass


@lock.command("start")
@click.argument("name")
@click.argument("version")
@click.argument("env")
@click.option("--locale", default=None)
@click.option("--id", "build_id", default=None, help="Opaque build id (default: random uuid)")
@click.option("--timeout", default=900, show_default=True, help="Seconds before the marker expires")
def lock_start(name: str, version: str, env: str, locale: str, build_id: str, timeout: int):
    """Mark a build as running."""
    build_id = build_id or str(uuid.uuid4())
    try:
        key = _registry().start(_spec(name, env, version, locale), build_id, timeout)
    except RegistryError as e:
        _fail(e)
    click.echo(f"{key} = {build_id}")


@lock.command("stop")
@click.argument("name")
@click.argument("version")
@click.argument("env")
@click.option("--locale", default=None)
def lock_stop(name: str, version: str, env: str, locale: str):
    """Clear the running marker of a build."""
    _registry().stop(_spec(name, env, version, locale))
    click.echo("Stopped.")


@lock.command("status")
@click.argument("name")
@click.argument("version")
@click.argument("env")
@click.option("--locale", default=None)
def lock_status(name: str, version: str, env: str, locale: str):
    """Show the build id running for an exact spec."""
    value = _registry().partial(_spec(name, env, version, locale))
    click.echo(value or "Not running.")


@lock.command("active")
@click.argument("name")
@click.argument("version")
@click.argument("env")
def lock_active(name: str, version: str, env: str):
    """List running builds across every locale."""
    active = _registry().active(_spec(name, env, version))
    if not active:
        click.echo("No active builds.")
        return
    for item in active:
        click.echo(f"{item.key} = {item.value}")


@lock.command("wipe")
@click.argument("name")
@click.argument("version")
@click.argument("env")
def lock_wipe(name: str, version: str, env: str):
    """Clear running markers across every locale."""
    removed = _registry().wipe(_spec(name, env, version))
    click.echo(f"Wiped {removed} marker(s).")


if __name__ == "__main__":
    cli()
