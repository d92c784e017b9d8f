"""
Command-line interface for b2transfer.

Uploads and downloads any number of files to and from one B2 bucket,
all of them concurrently under a single authorized session.
"""

import logging
import sys
from typing import Dict, List, Tuple

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import (
    BarColumn, DownloadColumn, Progress, SpinnerColumn, TaskProgressColumn,
    TextColumn, TransferSpeedColumn,
)

from . import __version__
from .api import B2Api
from .config import load_config, load_credentials
from .dispatcher import TransferDispatcher
from .exceptions import ConfigurationError, TransferError
from .models import TransferJob, TransferKind, TransferOutcome, TransferProgress
from .session import SessionManager
from .utils import calculate_transfer_speed, format_file_size

# Outcomes go to stdout, logs and progress bars to stderr
console = Console()
err_console = Console(stderr=True)

logger = logging.getLogger(__name__)


def setup_logging(verbosity: int) -> None:
    """Route log records through rich on stderr."""
    if verbosity >= 2:
        level = logging.DEBUG
    elif verbosity == 1:
        level = logging.INFO
    else:
        level = logging.WARNING

    handler = RichHandler(
        level=level,
        console=err_console,
        show_path=False,
        rich_tracebacks=True,
    )
    logging.basicConfig(level=level, format="%(message)s", datefmt="[%X]", handlers=[handler], force=True)
    # urllib3 logs every retried connection at WARNING
    logging.getLogger("urllib3").setLevel(max(level, logging.ERROR))


def build_jobs(
    uploads: List[Tuple[str, str]],
    downloads: List[Tuple[str, str]],
) -> List[TransferJob]:
    """Jobs for every --upload pair followed by every --download pair."""
    jobs = [TransferJob.upload(local, remote) for local, remote in uploads]
    jobs.extend(TransferJob.download(remote, local) for remote, local in downloads)
    return jobs


def report(outcomes: List[TransferOutcome]) -> int:
    """Print one line per outcome and return the number of failures."""
    failures = 0
    total_bytes = 0
    elapsed = 0.0
    for outcome in outcomes:
        if outcome.success:
            console.print(f"✅ {outcome.describe()}", markup=False, highlight=False)
            total_bytes += outcome.bytes_transferred
            elapsed = max(elapsed, outcome.elapsed_time)
        else:
            failures += 1
            console.print(f"❌ {outcome.describe()}", markup=False, highlight=False)

    speed = calculate_transfer_speed(total_bytes, elapsed)
    console.print(
        f"[dim]{len(outcomes) - failures}/{len(outcomes)} transfers succeeded, "
        f"{format_file_size(total_bytes)} in {elapsed:.1f}s ({format_file_size(int(speed))}/s)[/dim]"
    )
    return failures


def _run_with_progress(dispatcher: TransferDispatcher, jobs: List[TransferJob]) -> List[TransferOutcome]:
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        DownloadColumn(),
        TransferSpeedColumn(),
        console=err_console,
        transient=True,
    ) as progress:
        tasks: Dict[int, int] = {}
        for job in jobs:
            verb = "Uploading" if job.kind is TransferKind.UPLOAD else "Downloading"
            tasks[id(job)] = progress.add_task(f"{verb} {job.source}", total=None)

        def on_progress(event: TransferProgress):
            progress.update(
                tasks[id(event.job)],
                completed=event.bytes_transferred,
                total=event.total_bytes,
            )

        dispatcher.on_progress = on_progress
        return dispatcher.run(jobs)


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.option('-a', '--auth', 'auth_file', default='credentials.txt', show_default=True,
              type=click.Path(dir_okay=False), metavar='FILE',
              help='JSON file containing the credentials for b2')
@click.option('-b', '--bucket', required=True, metavar='BUCKET',
              help='The b2 bucket to interact with')
@click.option('-u', '--upload', 'uploads', multiple=True, nargs=2,
              type=(click.Path(dir_okay=False), str), metavar='LOCAL DESTINATION',
              help='File to upload (repeatable)')
@click.option('-d', '--download', 'downloads', multiple=True, nargs=2,
              type=(str, click.Path(dir_okay=False)), metavar='B2FILE DESTINATION',
              help='File to download (repeatable)')
@click.option('--config', 'config_file', type=click.Path(dir_okay=False),
              help='Settings file (default: ~/.b2transfer/config.json)')
@click.option('--max-workers', type=click.IntRange(min=1),
              help='Run at most this many transfers at once (default: all)')
@click.option('--chunk-size', type=click.IntRange(min=1),
              help='Bytes per read/write step')
@click.option('--no-progress', is_flag=True, help='Do not draw progress bars')
@click.option('-v', '--verbose', count=True, help='Log more (-vv for debug output)')
@click.version_option(__version__, prog_name='b2transfer')
def cli(auth_file, bucket, uploads, downloads, config_file, max_workers, chunk_size, no_progress, verbose):
    """Transfer files to and from a Backblaze B2 bucket."""
    setup_logging(verbose)

    jobs = build_jobs(list(uploads), list(downloads))
    if not jobs:
        return

    try:
        config = load_config(config_file)
        if max_workers:
            config.max_workers = max_workers
        if chunk_size:
            config.chunk_size = chunk_size
        credentials = load_credentials(auth_file)
    except ConfigurationError as e:
        err_console.print(f"❌ {e}", markup=False)
        sys.exit(2)

    api = B2Api(config.api_url, timeout=config.timeout)
    try:
        session = SessionManager.create(api, credentials, bucket, config.retry_policy())
    except TransferError as e:
        err_console.print(f"❌ Could not start session: {e}", markup=False)
        sys.exit(1)

    dispatcher = TransferDispatcher(
        session,
        chunk_size=config.chunk_size,
        max_workers=config.max_workers,
    )
    if no_progress:
        outcomes = dispatcher.run(jobs)
    else:
        outcomes = _run_with_progress(dispatcher, jobs)

    failures = report(outcomes)
    if session.fatal_error is not None:
        err_console.print(f"❌ Session lost: {session.fatal_error}", markup=False)
        sys.exit(1)
    if failures:
        sys.exit(1)


def main():
    cli()


if __name__ == '__main__':
    main()
