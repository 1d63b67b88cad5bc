"""
Start point for httpmirror. Collect command line parameters using click.
Loads extra ignore patterns from a file
Takes a lock per watched directory so two mirrors of one tree cannot run at once
Creates instance of timeloop at global scope, so we can remove its logger later
"""
import sys
import logging
import hashlib
import traceback
import importlib.metadata
import tempfile
from datetime import timedelta
from pathlib import Path
import click
from click import version_option
from timeloop import Timeloop
from fasteners import InterProcessLock

import constants
from context import Context
from event.event_dispatcher import EventDispatcher
from event.watch_event import SyncTask, SyncKind
from logger.logger import setup_logging, KeywordFilter, Logger
from model.directory_registry import DirectoryRegistry
from model.ignore_filter import IgnoreFilter
from model.sync_queue import SyncQueue
from remote.remote_store import RemoteStore
from remote.sync_worker import SyncWorker
from watch.watch_service import WatchService

NAME: str = "httpmirror"
logger: Logger = logging.getLogger(NAME)
timeloop: Timeloop = Timeloop()

def load_patterns(name: str) -> list[str]:
    """
    Load ignore substrings from file, one per line, skipping blank lines and
    lines starting with #. A missing file yields no patterns.
    """
    if not Path(name).is_file():
        return []
    lines = []
    with open(file=name, encoding="utf-8") as f:
        for line in f.readlines():
            l = line.strip()
            if l.startswith('#'):
                continue
            if len(l):
                lines.append(l)
    return lines

def lock_file_for(directory: Path) -> Path:
    """Lock file in the temp directory, unique per watched directory."""
    digest = hashlib.sha1(str(directory).encode("utf-8")).hexdigest()[:16]
    return Path(tempfile.gettempdir()).joinpath(f"{NAME}-{digest}.lock")

def _version() -> str:
    try:
        return importlib.metadata.version(NAME)
    except importlib.metadata.PackageNotFoundError:
        return "unknown"

def _endpoint(_ctx: click.Context, _param: click.Parameter, value: str) -> str:
    if not value.startswith(("http://", "https://")):
        raise click.BadParameter("must be an http:// or https:// URL")
    return value if value.endswith("/") else value + "/"

def mirror(ctx: Context, watch_service: WatchService | None = None) -> constants.ExitCode:
    """
    Wire the components and run the dispatch loop on the calling thread.
    Returns when every watched directory is gone, after the pending sync tasks
    were processed.
    """
    ignore_filter = IgnoreFilter(ctx.ignore_patterns)
    for p in ignore_filter.patterns:
        logger.info("ignore %s", p)

    if watch_service is None:
        watch_service = WatchService(max_pending_events=ctx.max_pending_events, recursive=ctx.recursive)
    watch_service.start()
    try:
        registry = DirectoryRegistry(watch_service, ignore_filter)
        logger.info("Scanning %s ...", ctx.directory)
        files: list[Path] = []
        if ctx.recursive:
            files = registry.register_recursive(ctx.directory)
        elif registry.register_one(ctx.directory) is not None:
            files = [p for p in sorted(ctx.directory.iterdir())
                     if p.is_file() and not p.is_symlink() and not ignore_filter.should_ignore_path(p)]
        if not len(registry):
            logger.error("cannot watch %s", ctx.directory)
            return constants.ExitCode.EXIT_FAILED_CANNOT_WATCH
        logger.info("Done, watching %d directories", len(registry))

        sync_queue = SyncQueue()
        store = RemoteStore(ctx)
        worker = SyncWorker(sync_queue, store)
        worker.start()
        logger.info("mirroring %s to %s", ctx.directory, store.endpoint)

        if ctx.sync_on_start:
            logger.info("uploading %d existing files", len(files))
            for path in files:
                sync_queue.put(SyncTask(path=path, kind=SyncKind.UPSERT))

        if ctx.timeloop is not None and ctx.status_period.total_seconds() > 0:
            ctx.timeloop.job(interval=ctx.status_period)(worker.log_status)
            ctx.timeloop.start(block=False)

        EventDispatcher(ctx=ctx,
                        registry=registry,
                        watch_service=watch_service,
                        sync_queue=sync_queue,
                        ignore_filter=ignore_filter).run()

        logger.info("waiting for %d pending tasks", sync_queue.qsize())
        sync_queue.join()
        worker.log_status()
        store.close()
    finally:
        watch_service.close()
    return constants.ExitCode.EXIT_NORMAL

CONTEXT_SETTINGS: dict = {"help_option_names": ["-h", "--help"], "max_content_width": 120}
@click.command(help="Mirror a local directory tree to an HTTP endpoint with PUT and DELETE",
               context_settings=CONTEXT_SETTINGS,
               options_metavar="[options]",
               no_args_is_help=True)
@click.argument("directory",
                type=click.Path(exists=True, file_okay=False, dir_okay=True))
@click.option("--endpoint",
              help="Base URL remote paths are appended to",
              metavar="<url>",
              default=constants.DEFAULT_ENDPOINT,
              show_default=True,
              callback=_endpoint)
@click.option("-u", "--username",
              help="Username for HTTP basic authentication",
              metavar="<username>")
@click.option("-p", "--password",
              help="Password for HTTP basic authentication",
              metavar="<password>")
@click.option("--ignore-patterns",
              help="File of extra ignore substrings, one per line",
              type=click.Path(exists=False),
              metavar="<filename>",
              default=".ignore-patterns.txt",
              show_default=True)
@click.option("--logging-config",
              help="JSON logging config filename",
              metavar="<filename>",
              default="logging-config.json",
              show_default=True)
@click.option("--recursive/--no-recursive",
              help="Watch sub-directories, including ones created later",
              default=True,
              show_default=True)
@click.option("--sync-on-start",
              help="Upload every existing file once at startup",
              is_flag=True,
              default=False)
@click.option("--http-timeout",
              help="Seconds to wait for the endpoint, 0 waits forever",
              type=click.FloatRange(min=0),
              metavar="<seconds>",
              default=constants.HTTP_TIMEOUT_SECONDS,
              show_default=True)
@click.option("--insecure",
              help="Do not verify TLS certificates of the endpoint",
              is_flag=True,
              default=False)
@click.option("--status-period",
              help="Period in seconds to log sync statistics, 0 disables",
              type=click.IntRange(min=0),
              metavar="<seconds>",
              default=constants.STATUS_SECONDS,
              show_default=True)
@click.option("--max-pending-events",
              help="Pending events per directory before they are reported as lost",
              type=click.IntRange(min=1),
              metavar="<events>",
              default=constants.MAX_PENDING_EVENTS,
              show_default=True)
@version_option(package_name=NAME)

# pylint: disable=too-many-arguments, too-many-locals
def main(directory: str,
         endpoint: str,
         username: str,
         password: str,
         ignore_patterns: str,
         logging_config: str,
         recursive: bool,
         sync_on_start: bool,
         http_timeout: float,
         insecure: bool,
         status_period: int,
         max_pending_events: int
         ) -> int:
    """
    main
    """
    log_path = setup_logging(logging_config=Path(logging_config))
    for handler in list(timeloop.logger.handlers):
        timeloop.logger.removeHandler(handler)
    logger.info("%s %s", NAME, _version())
    if password is not None:
        KeywordFilter.add_keyword(password)
    if not Path(directory).is_dir():
        logger.error("local directory %s does not exist or is not a directory", directory)
        sys.exit(constants.ExitCode.EXIT_FAILED_NOT_A_DIRECTORY.value)

    directory = Path(directory).resolve()
    lock_file = lock_file_for(directory)
    lock: InterProcessLock = InterProcessLock(lock_file)
    if not lock.acquire(blocking=False):
        print(f"another instance of {NAME} is mirroring {directory}, check for {lock_file} file")
        sys.exit(constants.ExitCode.EXIT_FAILED_ALREADY_RUNNING.value)

    exit_code = constants.ExitCode.EXIT_NORMAL
    try:
        context = Context(directory=directory,
                          endpoint=endpoint,
                          username=username,
                          password=password,
                          ignore_patterns=load_patterns(ignore_patterns),
                          logging_config=logging_config,
                          log_path=log_path,
                          recursive=recursive,
                          sync_on_start=sync_on_start,
                          http_timeout=http_timeout,
                          verify_tls=not insecure,
                          status_period=timedelta(seconds=status_period),
                          max_pending_events=max_pending_events,
                          timeloop=timeloop)
        exit_code = mirror(context)
    except KeyboardInterrupt:
        logger.info("interrupted")
    except Exception as e:
        logger.critical("exception in main thread: %s %s", e.__class__.__name__, e)
        logger.critical(traceback.format_exc())
        exit_code = constants.ExitCode.EXIT_FAILED_EXCEPTION
    finally:
        if any(job.is_alive() for job in timeloop.jobs):
            timeloop.stop()
        lock.release()
        if lock_file.exists():
            lock_file.unlink()
    sys.exit(exit_code.value)

if __name__ == "__main__":
    main()
