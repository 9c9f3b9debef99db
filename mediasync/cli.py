"""
Command-line interface for mediasync.

Thin entry points over the connection and sync layers, built with Click.
rich-click is used for the output colors.

Commands:
    mediasync discover                  List servers answering on the LAN
    mediasync servers                   List known servers
    mediasync connect [ADDRESS]         Connect to a server (best known one by default)
    mediasync login ADDRESS             Sign a user in on a server
    mediasync sync                      Sync every known server
    mediasync logout                    Sign out everywhere and forget tokens

Options:
    --config <path>                     Path to config.yaml

Usage:
    # First time: sign in on a server
    mediasync login 192.168.1.20:8096

    # Pull assigned media, push offline actions and camera uploads
    mediasync sync

Configuration:
    An optional config.yaml in the current directory (or --config) with
    device, storage, network, discovery, sync and logging sections.
    Without it, defaults are used and data goes to ~/.mediasync.
"""

import sys
from dataclasses import dataclass
from pathlib import Path

import rich_click as click

# Configure rich-click for better help formatting
click.rich_click.USE_RICH_MARKUP = True
click.rich_click.SHOW_ARGUMENTS = True
click.rich_click.GROUP_ARGUMENTS_OPTIONS = True
click.rich_click.STYLE_ERRORS_SUGGESTION = "magenta italic"
click.rich_click.ERRORS_SUGGESTION = ""
click.rich_click.MAX_WIDTH = 100

from mediasync import __version__
from mediasync.api.models import ConnectionState, ServerRecord
from mediasync.core import (
    CancellationToken,
    Config,
    ConfigError,
    Database,
    DatabaseError,
    MediaSyncError,
    ServerUnavailableError,
    SyncCancelledError,
    get_logger,
    load_config,
    setup_logging,
    shutdown_logging,
)
from mediasync.core.progress import SyncProgressBar
from mediasync.credentials import CredentialStore
from mediasync.data import LocalAssetStore
from mediasync.device import Device
from mediasync.network import ConnectionManager
from mediasync.sync import FleetSyncCoordinator, ServerSync

logger = get_logger(__name__)


@dataclass
class AppContext:
    """Objects shared by every command, built once per invocation."""
    config: Config
    database: Database
    store: LocalAssetStore
    credentials: CredentialStore
    device: Device
    manager: ConnectionManager

    def close(self) -> None:
        self.database.close()


def _build_context(config_path: Path | None) -> AppContext:
    """
    Load configuration, set up logging and open local storage.

    Raises:
        ConfigError: If the configuration is invalid.
        DatabaseError: If the database cannot be opened.
    """
    config = load_config(config_path)
    storage = config.storage
    storage.data_directory.mkdir(parents=True, exist_ok=True)

    setup_logging(config.logging, storage.data_directory)
    logger.debug(f"mediasync {__version__} starting, data in {storage.data_directory}")

    database = Database(storage.database_path)
    store = LocalAssetStore(database, storage.media_directory, storage.image_directory)
    credentials = CredentialStore(storage.credentials_path)
    manager = ConnectionManager(credentials, config.device, config.network, config.discovery)

    return AppContext(
        config=config,
        database=database,
        store=store,
        credentials=credentials,
        device=Device(config.device),
        manager=manager,
    )


def _run(ctx: click.Context, command) -> None:
    """
    Run a command body with the shared error handling.

    Exit codes: 1 configuration, 2 database, 3 server unavailable,
    4 other errors, 130 interrupted.
    """
    app: AppContext | None = None
    try:
        app = _build_context(ctx.obj.get("config_path"))
        command(app)

    except ConfigError as e:
        click.echo(f"Configuration error: {e.message}", err=True)
        sys.exit(1)

    except DatabaseError as e:
        click.echo(f"Database error: {e.message}", err=True)
        logger.error(f"Database error: {e.message}", exc_info=True)
        sys.exit(2)

    except ServerUnavailableError as e:
        click.echo(f"Server unavailable: {e.message}", err=True)
        sys.exit(3)

    except (KeyboardInterrupt, SyncCancelledError):
        click.echo("\nInterrupted by user", err=True)
        logger.info("Interrupted by user")
        sys.exit(130)

    except MediaSyncError as e:
        click.echo(f"Error: {e.message}", err=True)
        logger.error(f"Error: {e.message}", exc_info=True)
        sys.exit(4)

    finally:
        if app is not None:
            app.close()
        shutdown_logging()


def _describe(server: ServerRecord) -> str:
    address = server.local_address or server.remote_address or "?"
    signed_in = "signed in" if server.access_token else "not signed in"
    return f"{server.name or '(unnamed)'}  {address}  [{signed_in}]"


@click.group()
@click.option(
    "--config", "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    metavar="<config.yaml>",
    help="Path to the configuration file"
)
@click.version_option(__version__, prog_name="mediasync")
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None) -> None:
    """
    mediasync: keep an offline copy of your media server library.

    Pulls the media each server assigned to this device, pushes playback
    events recorded while offline and uploads new camera roll content.

    \b
    BASIC USAGE:
        mediasync login 192.168.1.20:8096     # Sign in once
        mediasync sync                        # Sync every known server
    """
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


@cli.command()
@click.pass_context
def discover(ctx: click.Context) -> None:
    """List servers answering the LAN discovery broadcast."""
    def command(app: AppContext) -> None:
        found = app.manager.locator.find_servers(app.config.discovery.timeout)
        if not found:
            click.echo("No servers found on the local network")
            return
        for server in found:
            click.echo(f"{server.name or '(unnamed)'}  {server.address}")

    _run(ctx, command)


@cli.command()
@click.pass_context
def servers(ctx: click.Context) -> None:
    """List servers known to this device."""
    def command(app: AppContext) -> None:
        known = app.credentials.get_servers()
        if not known:
            click.echo("No known servers. Use 'mediasync login <address>' first.")
            return
        active = app.credentials.active_server_id
        for server in known:
            marker = "*" if server.id == active else " "
            click.echo(f"{marker} {_describe(server)}")

    _run(ctx, command)


@cli.command()
@click.argument("address", required=False)
@click.pass_context
def connect(ctx: click.Context, address: str | None) -> None:
    """
    Connect to ADDRESS, or to the best known server when omitted.
    """
    def command(app: AppContext) -> None:
        if address:
            result = app.manager.connect_to_address(address)
        else:
            result = app.manager.connect()

        if result.state == ConnectionState.UNAVAILABLE or result.server is None:
            raise ServerUnavailableError(
                f"No server reachable{' at ' + address if address else ''}",
                details={"address": address}
            )

        click.echo(f"{_describe(result.server)}: {result.state.value}")

    _run(ctx, command)


@cli.command()
@click.argument("address")
@click.option("--username", "-u", prompt=True, help="User name")
@click.option("--password", "-p", prompt=True, hide_input=True, help="Password")
@click.pass_context
def login(ctx: click.Context, address: str, username: str, password: str) -> None:
    """Sign a user in on the server at ADDRESS and remember the session."""
    def command(app: AppContext) -> None:
        result = app.manager.connect_to_address(address)
        if result.state == ConnectionState.UNAVAILABLE or result.server is None:
            raise ServerUnavailableError(f"No server reachable at {address}", details={"address": address})

        server = app.manager.authenticate(result.server, username, password)
        click.echo(f"Signed in to {server.name} as {username}")

    _run(ctx, command)


@cli.command()
@click.pass_context
def logout(ctx: click.Context) -> None:
    """Sign out of every server and forget stored tokens."""
    def command(app: AppContext) -> None:
        app.manager.logout()
        click.echo("Signed out")

    _run(ctx, command)


@cli.command()
@click.pass_context
def sync(ctx: click.Context) -> None:
    """Sync every known server: media, offline actions, users and uploads."""
    def command(app: AppContext) -> None:
        cancellation = CancellationToken()
        server_sync = ServerSync(app.manager, app.store, app.device, app.config.sync)
        fleet = FleetSyncCoordinator(app.manager, server_sync)

        try:
            with SyncProgressBar("Syncing") as bar:
                stats = fleet.sync(progress=bar, cancellation=cancellation)
        except KeyboardInterrupt:
            cancellation.cancel()
            raise

        logger.info("=" * 60)
        logger.info("SYNC SUMMARY")
        logger.info("=" * 60)
        logger.info(f"Servers:           {stats.total}")
        logger.info(f"Synced:            {len(stats.synced)}")
        logger.info(f"Skipped:           {len(stats.skipped)}")
        logger.info(f"Failed:            {len(stats.failed)}")
        for server_id, reason in stats.failed.items():
            logger.info(f"  {server_id}: {reason}")
        logger.info("=" * 60)

    _run(ctx, command)


def main() -> None:
    """Entry point for the `mediasync` console script."""
    cli()


if __name__ == "__main__":
    main()
