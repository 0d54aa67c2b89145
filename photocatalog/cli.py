"""CLI interface for photocatalog."""

import json
import sys
from concurrent.futures import TimeoutError as FutureTimeoutError
from datetime import datetime
from pathlib import Path

import click

from photocatalog.config import SECRET_KEY_ENV, Config
from photocatalog.connections import ConnectionManager
from photocatalog.credentials import CredentialError, FernetCredentialStore, encrypt_credentials, generate_key
from photocatalog.crawler import CrawlEngine, CrawlService
from photocatalog.crawler.progress import format_duration
from photocatalog.database import (
    Backend,
    BackendNotFoundError,
    Catalog,
    CrawlJob,
    CrawlStatus,
    Database,
    ProtocolType,
)
from photocatalog.extractor import ExiftoolNotFoundError, MetadataExtractor
from photocatalog.filesystem import DirectoryTreeNode, StorageError, sanitize_connection_url
from photocatalog.logging_config import setup_logging

PROGRESS_POLL_SECONDS = 2.0


@click.group()
@click.option("--database", type=click.Path(path_type=Path), help="Path to database file")
@click.option("--log-level", default="WARNING", show_default=True, help="Logging level")
@click.option("--log-file", type=click.Path(path_type=Path), help="Also log to a rotating file")
@click.pass_context
def cli(ctx: click.Context, database: Path | None, log_level: str, log_file: Path | None) -> None:
    ctx.ensure_object(dict)
    config = Config()
    if database is not None:
        config.database_path = database
    ctx.obj["config"] = config
    setup_logging(log_level, log_file)


@cli.command("generate-key")
def generate_key_cmd() -> None:
    """Print a new credential encryption key."""
    click.echo(generate_key())
    click.echo(f"Export it as {SECRET_KEY_ENV} before adding backends with credentials.", err=True)


@cli.group()
def backend() -> None:
    """Manage storage backends."""


@backend.command("add")
@click.argument("name")
@click.option(
    "--protocol",
    type=click.Choice([p.value for p in ProtocolType]),
    required=True,
    help="Storage protocol",
)
@click.option("--url", "connection_url", required=True, help="Local path, smb://host/share, sftp://host or ftp://host")
@click.option("--root", "root_path", default="", help="Root directory within the backend")
@click.option("--username", default="", help="Login user")
@click.option("--password", default="", help="Login password")
@click.option("--domain", default="", help="SMB domain")
@click.option("--host", default="", help="Host, when it is not part of the URL")
@click.option("--port", type=int, default=None, help="Port, when it is not part of the URL")
@click.option("--auto-connect", is_flag=True, help="Connect when the application starts")
@click.pass_context
def backend_add(
    ctx: click.Context,
    name: str,
    protocol: str,
    connection_url: str,
    root_path: str,
    username: str,
    password: str,
    domain: str,
    host: str,
    port: int | None,
    auto_connect: bool,
) -> None:
    config: Config = ctx.obj["config"]
    credentials = {"username": username, "password": password, "domain": domain, "host": host, "port": port}

    if any(credentials.values()) and not config.credentials.secret_key:
        click.echo(
            f"Error: {SECRET_KEY_ENV} is not set; credentials could not be decrypted later. "
            "Run 'photocatalog generate-key' first.",
            err=True,
        )
        sys.exit(1)

    store = FernetCredentialStore(config.credentials.secret_key)
    with Database(config.database_path) as db:
        catalog = Catalog(db)
        created = catalog.add_backend(
            Backend(
                id=None,
                name=name,
                protocol=ProtocolType(protocol),
                connection_url=connection_url,
                root_path=root_path,
                encrypted_credentials=encrypt_credentials(store, credentials),
                auto_connect=auto_connect,
            )
        )
    click.echo(f"Added backend {created.id}: {created.name} ({protocol} {sanitize_connection_url(connection_url)})")


@backend.command("list")
@click.pass_context
def backend_list(ctx: click.Context) -> None:
    config: Config = ctx.obj["config"]
    with Database(config.database_path) as db:
        backends = Catalog(db).list_backends()

    if not backends:
        click.echo("No backends configured. Run 'photocatalog backend add' first.")
        return

    click.echo("ID".rjust(4) + "  " + "Name".ljust(20) + "Protocol".ljust(10) + "Location")
    click.echo("-" * 80)
    for b in backends:
        location = sanitize_connection_url(b.connection_url)
        if b.root_path:
            location = f"{location} [{b.root_path}]"
        click.echo(f"{b.id:>4}  {_truncate(b.name, 19):<20}{b.protocol.value:<10}{_truncate(location, 46)}")


@cli.command("test-connection")
@click.argument("backend_id", type=int)
@click.pass_context
def test_connection(ctx: click.Context, backend_id: int) -> None:
    """Connect to a backend and report whether it is reachable."""
    config: Config = ctx.obj["config"]
    with Database(config.database_path) as db:
        connections = _connection_manager(db, config)
        try:
            result = connections.test_connection(backend_id)
        except BackendNotFoundError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)
        finally:
            connections.shutdown()

    marker = "OK" if result.success else "FAILED"
    click.echo(f"{marker}: {result.message} ({result.duration_ms} ms)")
    if not result.success:
        sys.exit(1)


@cli.command()
@click.argument("backend_id", type=int)
@click.argument("path", required=False, default="")
@click.option("--json", "as_json", is_flag=True, help="Print the tree as JSON")
@click.pass_context
def tree(ctx: click.Context, backend_id: int, path: str, as_json: bool) -> None:
    """Show the directory tree of a backend with image counts."""
    config: Config = ctx.obj["config"]
    with Database(config.database_path) as db:
        connections = _connection_manager(db, config)
        try:
            root = connections.directory_tree(backend_id, path)
        except (BackendNotFoundError, CredentialError, StorageError, ValueError) as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)
        finally:
            connections.shutdown()

    if as_json:
        click.echo(json.dumps(root.to_dict(), indent=2))
    else:
        _print_tree(root)


@cli.command()
@click.argument("backend_id", type=int)
@click.option("--root", "root_path", default="", help="Directory to crawl, relative to the backend root")
@click.option("--incremental", is_flag=True, help="Skip files unchanged since the last crawl")
@click.option("--exif", "extract_exif", is_flag=True, help="Extract EXIF metadata with exiftool")
@click.pass_context
def crawl(ctx: click.Context, backend_id: int, root_path: str, incremental: bool, extract_exif: bool) -> None:
    """Crawl a backend and update the catalog."""
    config: Config = ctx.obj["config"]

    extractor = None
    if extract_exif:
        try:
            extractor = MetadataExtractor()
            click.echo(f"exiftool version: {extractor.exiftool.version}")
        except ExiftoolNotFoundError as e:
            click.echo(f"Warning: {e}\nContinuing without EXIF extraction.", err=True)
            extract_exif = False

    with Database(config.database_path) as db:
        catalog = Catalog(db)
        connections = _connection_manager(db, config, catalog)
        engine = CrawlEngine(
            catalog,
            connections,
            extractor=extractor,
            save_interval=config.crawler.save_interval,
            hash_chunk_size=config.crawler.hash_chunk_size,
        )
        service = CrawlService(catalog, engine, max_workers=config.crawler.max_workers)
        try:
            job = service.start_crawl(backend_id, root_path, incremental=incremental, extract_exif=extract_exif)
            click.echo(f"Started crawl job {job.id}")
            try:
                job = _wait_with_progress(service, job.id)
            except KeyboardInterrupt:
                click.echo("\nCancelling crawl...", err=True)
                service.request_cancel(job.id)
                _print_job_summary(service.wait(job.id))
                sys.exit(130)
        except BackendNotFoundError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)
        finally:
            service.shutdown(wait=True, cancel_running=True)
            connections.shutdown()

    _print_job_summary(job)
    if job.status == CrawlStatus.FAILED:
        sys.exit(1)


@cli.command()
@click.argument("backend_id", type=int, required=False)
@click.option("--clear", is_flag=True, help="Delete finished jobs of BACKEND_ID")
@click.pass_context
def jobs(ctx: click.Context, backend_id: int | None, clear: bool) -> None:
    """List crawl jobs, newest first."""
    config: Config = ctx.obj["config"]

    if not config.database_path.exists():
        click.echo("No database found. Run 'photocatalog backend add' first.")
        return

    with Database(config.database_path) as db:
        catalog = Catalog(db)
        if clear:
            if backend_id is None:
                click.echo("Error: --clear needs a BACKEND_ID.", err=True)
                sys.exit(1)
            service = CrawlService(catalog, CrawlEngine(catalog, _connection_manager(db, config, catalog)))
            try:
                deleted = service.clear_history(backend_id)
            except BackendNotFoundError as e:
                click.echo(f"Error: {e}", err=True)
                sys.exit(1)
            finally:
                service.shutdown()
            click.echo(f"Deleted {deleted} finished job(s).")
            return

        rows = catalog.list_jobs(backend_id)

    if not rows:
        click.echo("No crawl jobs found.")
        return

    click.echo("\nCrawl Jobs:")
    click.echo("-" * 88)
    header = "ID".rjust(5) + "  " + "Backend".rjust(7) + "  " + "Status".ljust(12) + "Mode".ljust(12)
    header += "Processed".rjust(10) + "Added".rjust(8) + "Updated".rjust(8) + "Deleted".rjust(8)
    header += "  " + "Started".ljust(12)
    click.echo(header)
    click.echo("-" * 88)
    for job in rows:
        mode = "incremental" if job.incremental else "full"
        click.echo(
            f"{job.id:>5}  "
            f"{job.backend_id:>7}  "
            f"{job.status.value:<12}"
            f"{mode:<12}"
            f"{job.files_processed:>10,}"
            f"{job.files_added:>8,}"
            f"{job.files_updated:>8,}"
            f"{job.files_deleted:>8,}  "
            f"{_format_relative_time(job.started_at_unix):<12}"
        )


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show backends with their connection state and image counts."""
    config: Config = ctx.obj["config"]

    if not config.database_path.exists():
        click.echo("No database found. Run 'photocatalog backend add' first.")
        return

    with Database(config.database_path) as db:
        backends = Catalog(db).list_backends()

    if not backends:
        click.echo("No backends configured.")
        return

    click.echo("\nBackends:")
    click.echo("-" * 80)
    header = "Name".ljust(25) + "Protocol".ljust(10) + "Status".ljust(14)
    header += "Images".rjust(10) + "  " + "Last crawled".ljust(15)
    click.echo(header)
    click.echo("-" * 80)

    for b in backends:
        click.echo(
            f"{_truncate(b.name, 24):<25}"
            f"{b.protocol.value:<10}"
            f"{b.status.value:<14}"
            f"{b.image_count:>10,}  "
            f"{_format_relative_time(b.last_crawled_at_unix):<15}"
        )


def _connection_manager(db: Database, config: Config, catalog: Catalog | None = None) -> ConnectionManager:
    return ConnectionManager(
        catalog or Catalog(db),
        FernetCredentialStore(config.credentials.secret_key),
        config,
    )


def _wait_with_progress(service: CrawlService, job_id: int) -> CrawlJob:
    last_processed = -1
    while True:
        try:
            return service.wait(job_id, timeout=PROGRESS_POLL_SECONDS)
        except FutureTimeoutError:
            job = service.get_job(job_id)
            if job.files_processed != last_processed:
                last_processed = job.files_processed
                click.echo(f"[{job.files_processed:,} files] Crawling: {job.current_path or '/'}", err=True)


def _print_job_summary(job: CrawlJob) -> None:
    click.echo()
    click.echo(f"Crawl job {job.id} {job.status.value} in {format_duration(job.duration_seconds)}")
    click.echo(f"  Files processed: {job.files_processed:,}")
    click.echo(f"  Added: {job.files_added:,}")
    click.echo(f"  Updated: {job.files_updated:,}")
    click.echo(f"  Deleted: {job.files_deleted:,}")
    if job.errors:
        click.echo(f"  Errors: {len(job.errors):,}")
        for error in job.errors[:10]:
            click.echo(f"    {error}")
        if len(job.errors) > 10:
            click.echo(f"    ... and {len(job.errors) - 10:,} more")


def _print_tree(node: DirectoryTreeNode, depth: int = 0) -> None:
    click.echo(f"{'  ' * depth}{node.name}/  {node.image_count:,} ({node.total_image_count:,} total)")
    for child in node.children:
        _print_tree(child, depth + 1)


def _format_relative_time(unix_timestamp: float | None) -> str:
    if not unix_timestamp:
        return "never"

    now = datetime.now()
    then = datetime.fromtimestamp(unix_timestamp)
    delta = now - then

    if delta.days > 1:
        return f"{delta.days} days ago"
    if delta.days == 1:
        return "yesterday"
    if delta.seconds > 3600:
        hours = delta.seconds // 3600
        return f"{hours}h ago"
    if delta.seconds > 60:
        minutes = delta.seconds // 60
        return f"{minutes}m ago"
    return "just now"


def _truncate(text: str, max_len: int) -> str:
    if len(text) <= max_len:
        return text
    return "..." + text[-(max_len - 3) :]


def main() -> None:
    """Entry point for the CLI."""
    cli(standalone_mode=True)  # pylint: disable=no-value-for-parameter


if __name__ == "__main__":
    main()
