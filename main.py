"""Unfold CLI entry point."""

from __future__ import annotations

import configparser
import logging
from pathlib import Path
from typing import Optional

import typer

from discovery.config import DEFAULT_CONFIG_PATH, UnfoldConfig, get_config
from discovery.database import init_db, reset_database
from discovery.exceptions import LibraryNotFoundError, OperationInProgressError
from discovery.integrity import IntegritySweeper
from discovery.logging_config import setup_logging
from discovery.migrations import get_status, run_migrations, stamp_if_needed
from discovery.scanner import index_library
from discovery.service import DiscoveryService
from discovery.thumbnails import ThumbnailCache


__version__ = "0.1.0"

app = typer.Typer(add_completion=False, help="Unfold media discovery CLI")
logger = logging.getLogger("unfold")

STARTUP_BANNER = r"""
             __       _     _
 _   _ _ __  / _| ___ | | __| |
| | | | '_ \| |_ / _ \| |/ _` |
| |_| | | | |  _| (_) | | (_| |
 \__,_|_| |_|_|  \___/|_|\__,_|
"""


def _ensure_config() -> UnfoldConfig:
    try:
        return get_config()
    except FileNotFoundError:
        typer.echo("[ERROR] config.ini not found. Run: unfold init --library /path/to/media")
        raise typer.Exit(code=1)


def _write_config(config_path: Path, library_path: Path, default_user: str) -> None:
    parser = configparser.ConfigParser()

    parser["library"] = {
        "path": str(library_path.expanduser()),
        "default_user": default_user,
    }
    parser["server"] = {
        "host": "0.0.0.0",
        "port": "3001",
    }
    parser["thumbnails"] = {
        "width": "400",
        "height": "400",
        "quality": "80",
        "format": "webp",
        "batch_limit": "100",
        "workers": "4",
    }
    parser["scanner"] = {
        "image_extensions": ".jpg,.jpeg,.png,.webp,.gif",
        "video_extensions": ".mp4,.webm,.mov",
        "ignore_patterns": ".DS_Store,Thumbs.db,@eaDir",
    }
    parser["monitoring"] = {
        "enabled": "true",
        "debounce_seconds": "3",
        "max_errors": "5",
    }
    parser["feed"] = {
        "page_size": "20",
        "max_page_size": "100",
    }
    parser["integrity"] = {
        "interval_minutes": "0",
    }

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w") as handle:
        parser.write(handle)


def _migrate_on_start() -> None:
    init_db()
    # Databases created by init_db() have no alembic_version yet
    stamp_if_needed()
    current, head = get_status()
    if current != head:
        logger.info(f"Migrating database {current} -> {head} ...")
        run_migrations(backup=True)
        logger.info("Migration complete.")
    else:
        logger.info(f"Database at {head} (up to date).")


@app.command()
def init(
    library: Path = typer.Option(..., "--library", help="Path to your media folder"),
    user: str = typer.Option("local", "--user", help="User that indexed folders are granted to"),
) -> None:
    """Initialize config.ini with default settings."""
    config_path = DEFAULT_CONFIG_PATH
    _write_config(config_path, library, user)
    typer.echo(f"[OK] Config created at {config_path}")


@app.command()
def index(
    path: Optional[Path] = typer.Option(None, "--path", help="Index another folder"),
    user: Optional[str] = typer.Option(None, "--user", help="User to grant sources to"),
) -> None:
    """Index the media folder and update the database."""
    setup_logging()

    config = _ensure_config()
    thumbnails = ThumbnailCache.from_config(config)
    try:
        result = index_library(
            config,
            root=path,
            user_id=user or config.library.default_user,
            thumbnails=thumbnails,
        )
    except LibraryNotFoundError as exc:
        typer.echo(f"[ERROR] {exc}")
        raise typer.Exit(code=1)

    typer.echo(
        "✓ Index completed: "
        f"{result.scanned} scanned, "
        f"{result.added} added, "
        f"{result.removed} removed, "
        f"{result.source_count} sources."
    )


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Server host"),
    port: Optional[int] = typer.Option(None, "--port", help="Server port"),
    no_watch: bool = typer.Option(False, "--no-watch", help="Disable file monitoring"),
) -> None:
    """Start the API server with an initial index and file monitoring."""
    from discovery.app import run_server

    setup_logging()

    typer.echo(typer.style(STARTUP_BANNER, fg=typer.colors.MAGENTA, bold=True))
    config = _ensure_config()
    _migrate_on_start()

    service = DiscoveryService(config)

    logger.info("Running initial library index...")
    try:
        outcome = service.trigger_index(
            user_id=config.library.default_user,
            watch=not no_watch,
        )
    except LibraryNotFoundError as exc:
        logger.error(f"{exc}")
        raise typer.Exit(code=1)

    result = outcome.result
    logger.info(
        f"Index complete: {result.added} added, {result.removed} removed, "
        f"{result.source_count} sources."
    )
    if no_watch:
        logger.info("File monitoring disabled")
    elif outcome.watcher_error:
        logger.error(f"File monitoring failed to start: {outcome.watcher_error}")

    service.start_periodic_sweep()

    try:
        run_server(config, service, host=host, port=port)
    except KeyboardInterrupt:
        pass
    finally:
        service.shutdown()


@app.command()
def thumbnails(
    regenerate: bool = typer.Option(False, "--regenerate", help="Regenerate all thumbnails"),
) -> None:
    """Generate missing (or all) thumbnails."""
    setup_logging()

    config = _ensure_config()
    init_db()
    stats = ThumbnailCache.from_config(config).generate_missing(regenerate=regenerate)
    typer.echo(
        f"✓ Thumbnails: {stats['generated']} generated, {stats['cached']} cached, "
        f"{stats['failed']} failed, {stats['missing']} missing."
    )


@app.command()
def check() -> None:
    """Remove records whose file no longer exists."""
    setup_logging()

    config = _ensure_config()
    init_db()
    sweeper = IntegritySweeper(ThumbnailCache.from_config(config))
    try:
        report = sweeper.check()
    except OperationInProgressError as exc:
        typer.echo(f"[ERROR] {exc}")
        raise typer.Exit(code=1)

    typer.echo(
        f"[INFO] Checked {report.total} records: {report.valid} valid, "
        f"{report.missing} removed, {report.unreadable} unreadable ({report.duration_ms} ms)"
    )


@app.command()
def cleanup() -> None:
    """Remove invalid records and orphaned thumbnails."""
    config = _ensure_config()
    init_db()
    report = IntegritySweeper(ThumbnailCache.from_config(config)).cleanup()
    typer.echo(
        f"[INFO] Removed {report.invalid_records_removed} invalid records and "
        f"{report.orphaned_thumbnails_removed} orphaned thumbnails"
    )


@app.command()
def stats() -> None:
    """Show library statistics."""
    config = _ensure_config()
    init_db()

    service = DiscoveryService(config)
    health = service.health()
    thumbs = health["thumbnails"]
    media_count = health["media_count"]
    percent = (thumbs["total_cached"] / media_count * 100) if media_count else 0

    typer.echo("Library Statistics:")
    typer.echo(f"  Total media: {media_count}")
    typer.echo(f"  Total sources: {health['source_count']}")
    typer.echo(
        f"  Thumbnails cached: {thumbs['total_cached']} / {media_count} "
        f"({percent:.0f}%, {thumbs['size_bytes'] / (1024 ** 2):.1f} MB)"
    )


@app.command()
def migrate(
    check: bool = typer.Option(False, "--check", help="Print status and exit (1 if not at head)"),
) -> None:
    """Run pending database migrations (or check status with --check)."""
    _ensure_config()
    init_db()

    current, head = get_status()

    if check:
        if current == head:
            typer.echo(f"[OK] Database at {head} (head).")
            raise typer.Exit(code=0)
        typer.echo(f"[WARN] Database behind: current {current}, head {head}")
        raise typer.Exit(code=1)

    if current == head:
        logger.info(f"Database already at {head} (head). Nothing to do.")
        raise typer.Exit(code=0)

    logger.info(f"Migrating database {current} -> {head} ...")
    run_migrations(backup=True)
    logger.info("Migration complete.")


@app.command()
def reset(
    confirm: bool = typer.Option(False, "--confirm", help="Confirm destructive reset"),
) -> None:
    """Reset database and thumbnails, then re-index."""
    if not confirm:
        typer.echo("[ERROR] This will delete your database and thumbnails. Use --confirm.")
        raise typer.Exit(code=1)

    setup_logging()
    config = _ensure_config()

    reset_database()
    thumbnails = ThumbnailCache.from_config(config)
    thumbnails.clear()

    typer.echo("[INFO] Database and thumbnails reset. Re-indexing library...")
    index_library(config, user_id=config.library.default_user, thumbnails=thumbnails)


if __name__ == "__main__":
    app()
