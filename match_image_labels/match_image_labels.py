import asyncio
import concurrent.futures
import functools
import logging
import shutil
import signal
import sys
from collections.abc import AsyncIterator, Callable, Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path

import rich
from rich.markup import escape
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeRemainingColumn,
)

from .datasource import load_labels
from .executor import ProcessPerTaskExecutor
from .list_files import list_image_files
from .logging_config import setup_logging
from .matcher import match_label
from .types import (
    Action,
    CopyTo,
    Matched,
    MatchOptions,
    MatchOutcome,
    NoMatch,
    Skip,
    TaskResult,
    TaskState,
)
from .utils import sanitize_label, worker_cap

Matcher = Callable[[Path, Sequence[str]], MatchOutcome]
Work = Callable[[Path], TaskResult]
ExecutorFactory = Callable[[int, str], concurrent.futures.Executor]

logger = logging.getLogger(__name__)


@dataclass
class Summary:
    """Counts of per-file outcomes for one run."""

    renamed: int = 0
    no_match: int = 0
    failed: int = 0
    cancelled: int = 0

    @property
    def total(self) -> int:
        return self.renamed + self.no_match + self.failed + self.cancelled

    def record(self, result: TaskResult) -> None:
        if result.state is TaskState.FAILED:
            self.failed += 1
        elif result.state is TaskState.CANCELLED:
            self.cancelled += 1
        elif result.dest is not None:
            self.renamed += 1
        else:
            self.no_match += 1

    def __str__(self) -> str:
        text = f"Processed {self.total} files: {self.renamed} renamed, {self.no_match} no match, {self.failed} failed"
        if self.cancelled:
            text += f", {self.cancelled} cancelled"
        return text


def decide(image_path: Path, outcome: MatchOutcome, output_dir: Path) -> Action:
    """Decide where a matched image should be copied. Performs no I/O.

    The copy is named after the label, with the original extension (case
    preserved). Two images with the same label get the same destination; the
    later copy overwrites the earlier one.
    """
    match outcome:
        case Matched(label=label):
            stem = sanitize_label(label)
            if not stem:
                logger.warning("Label %r for %s is not usable as a filename", label, image_path.name)
                return Skip()
            return CopyTo(output_dir / f"{stem}{image_path.suffix}")
        case NoMatch():
            return Skip()
        case _:
            raise TypeError(f"Unknown match outcome: {outcome!r}")


def process_image(
    image_path: Path,
    *,
    labels: Sequence[str],
    output_dir: Path,
    matcher: Matcher,
    dry_run: bool = False,
) -> TaskResult:
    """Match one image and copy it to its label. Runs inside a worker.

    Copy failures propagate, so the scheduler reports the image as failed.
    """
    logger.debug("Starting to process %s", image_path)
    outcome = matcher(image_path, labels)
    action = decide(image_path, outcome, output_dir)

    match action:
        case CopyTo(dest=dest):
            if not dry_run:
                shutil.copy2(image_path, dest)
            verb = "Would rename" if dry_run else "Renamed"
            return TaskResult(image_path, TaskState.COMPLETED, f"{verb} {image_path.name} to {dest.name}", dest)
        case _:
            return TaskResult(image_path, TaskState.COMPLETED, f"No match found for {image_path.name}")


async def run_task(
    path: Path,
    work: Work,
    executor: concurrent.futures.Executor,
) -> TaskResult:
    """Run ``work`` for one file in the executor, turning any error into a failed result."""
    loop = asyncio.get_running_loop()
    try:
        return await loop.run_in_executor(executor, work, path)
    except Exception as e:
        logger.error("Error processing %s: %s", path, e)
        return TaskResult(path, TaskState.FAILED, f"Error processing {path.name}: {e}")


async def process_batch(
    files: Iterable[Path],
    work: Work,
    *,
    cap: int,
    executor: concurrent.futures.Executor,
    is_cancelled: Callable[[], bool] = lambda: False,
) -> AsyncIterator[TaskResult]:
    """Run ``work`` for every file with at most ``cap`` files in flight.

    Files are dispatched in order. Results are yielded as tasks finish, in any
    order, exactly one per file. Once ``is_cancelled`` returns true, the
    remaining files are not dispatched and are yielded as cancelled; tasks
    already in flight still run to completion.
    """
    if cap < 1:
        raise ValueError(f"cap must be at least 1, got {cap}")

    in_flight: set[asyncio.Task[TaskResult]] = set()

    for path in files:
        # Wait for a free slot
        while len(in_flight) >= cap:
            done, in_flight = await asyncio.wait(in_flight, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                yield task.result()

        if is_cancelled():
            yield TaskResult(path, TaskState.CANCELLED, f"Cancelled {path.name}")
            continue

        logger.debug("Dispatching %s (%d in flight)", path.name, len(in_flight) + 1)
        in_flight.add(asyncio.create_task(run_task(path, work, executor)))

    # Drain
    while in_flight:
        done, in_flight = await asyncio.wait(in_flight, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            yield task.result()


def init_worker(log_level: str) -> None:
    """Set up a worker process: the coordinator handles Ctrl+C, not the workers."""
    signal.signal(signal.SIGINT, signal.SIG_IGN)
    setup_logging(log_level)


def make_executor(cap: int, log_level: str) -> concurrent.futures.Executor:
    """Run each image in its own process. The scheduler keeps at most ``cap`` running."""
    return ProcessPerTaskExecutor(initializer=init_worker, initargs=(log_level,))


async def match_image_labels(
    options: MatchOptions,
    *,
    matcher: Matcher | None = None,
    executor_factory: ExecutorFactory | None = None,
) -> Summary:
    """Match every image in the input directory against the data source's labels.

    Args:
        options: Run options
        matcher: Replaces the model-backed matcher; must be picklable when the
            executor runs work in other processes
        executor_factory: Builds the executor from the worker cap and log level;
            defaults to one worker process per image

    Raises:
        ConfigError: before any image is processed, if the data source, column,
            or images directory is unusable
    """
    labels = load_labels(options.data_file, options.column)
    files = list_image_files(options.images_dir)
    logger.debug("%d candidate labels, %d files", len(labels), len(files))

    summary = Summary()
    if not files:
        rich.print(f"[yellow]No files to process in {options.images_dir}[/yellow]")
        return summary

    if not options.dry_run:
        options.output_dir.mkdir(parents=True, exist_ok=True)

    if matcher is None:
        matcher = functools.partial(
            match_label,
            model_name=options.model_name,
            retries=options.retries,
            timeout=options.timeout,
        )
    work = functools.partial(
        process_image,
        labels=labels,
        output_dir=options.output_dir,
        matcher=matcher,
        dry_run=options.dry_run,
    )
    if executor_factory is None:
        executor_factory = make_executor
    cap = max(1, options.jobs) if options.jobs else worker_cap()
    logger.debug("Processing with up to %d workers", cap)

    # Handle SIGINT gracefully
    is_cancelled = False
    executor: concurrent.futures.Executor | None = None

    def sigint_handler(signum, frame):
        nonlocal is_cancelled
        if is_cancelled:
            if executor is not None:
                # Stop the workers still running instead of waiting for them
                executor.shutdown(wait=False, cancel_futures=True)
            sys.exit(1)
        is_cancelled = True
        rich.print("\n[yellow]Cancelling... Press Ctrl+C again to force quit[/yellow]")

    original_sigint_handler = signal.signal(signal.SIGINT, sigint_handler)

    progress = Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        TimeRemainingColumn(),
        transient=True,
    )
    try:
        executor = executor_factory(cap, options.log_level)
        with progress, executor:
            task_id = progress.add_task("Matching images...", total=len(files))
            async for result in process_batch(
                files,
                work,
                cap=cap,
                executor=executor,
                is_cancelled=lambda: is_cancelled,
            ):
                summary.record(result)
                progress.advance(task_id)
                message = escape(result.message)
                if result.state is TaskState.FAILED:
                    progress.console.print(f"[red]{message}[/red]")
                elif result.state is TaskState.CANCELLED:
                    progress.console.print(f"[dim]{message}[/dim]")
                elif result.dest is None:
                    progress.console.print(f"[yellow]{message}[/yellow]")
                else:
                    progress.console.print(message)

        rich.print(f"\n{summary}")
    finally:
        signal.signal(signal.SIGINT, original_sigint_handler)
    return summary
