#!/usr/bin/env python3


import asyncio
from pathlib import Path

import click
from dotenv import load_dotenv

from .logging_config import setup_logging
from .match_image_labels import match_image_labels
from .matcher import DEFAULT_MODEL, DEFAULT_TIMEOUT, get_model
from .types import MatchOptions


@click.command()
@click.option(
    "-c",
    "--column",
    envvar="MATCH_IMAGES_COLUMN",
    help="Column name in the data source to match images against",
)
@click.option(
    "--images",
    "images_dir",
    type=click.Path(file_okay=False, path_type=Path),
    default="images",
    envvar="MATCH_IMAGES_INPUT_DIR",
    show_default=True,
    help="Directory of images to match",
)
@click.option(
    "--output",
    "output_dir",
    type=click.Path(file_okay=False, path_type=Path),
    default="dist",
    envvar="MATCH_IMAGES_OUTPUT_DIR",
    show_default=True,
    help="Directory that receives the renamed copies",
)
@click.option(
    "--data",
    "data_file",
    type=click.Path(dir_okay=False, path_type=Path),
    default="data/datasource.csv",
    envvar="MATCH_IMAGES_DATA_FILE",
    show_default=True,
    help="CSV or XLSX data source",
)
@click.option(
    "--model",
    "model_name",
    type=click.STRING,
    default=DEFAULT_MODEL,
    envvar="MATCH_IMAGES_MODEL",
    help=f"Vision model to use for matching (default: {DEFAULT_MODEL})",
)
@click.option(
    "-j",
    "--jobs",
    type=click.IntRange(min=1),
    default=None,
    help="Number of images to process at once (default: 80% of CPU cores)",
)
@click.option(
    "--retries",
    type=click.IntRange(0, 10),
    default=0,
    help="Retry failed model requests this many times, with backoff (default: 0)",
)
@click.option(
    "--timeout",
    type=click.FloatRange(min=1),
    default=DEFAULT_TIMEOUT,
    help=f"Seconds to wait for each model request (default: {DEFAULT_TIMEOUT:.0f})",
)
@click.option("-n", "--dry-run", is_flag=True, help="Show matches without copying files")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    default="INFO",
    help="Set the logging level (default: INFO)",
)
def main(
    column: str | None,
    images_dir: Path,
    output_dir: Path,
    data_file: Path,
    model_name: str,
    jobs: int | None,
    retries: int,
    timeout: float,
    dry_run: bool,
    log_level: str,
) -> None:
    """Copy images to the output directory, named after the data source label they match."""
    setup_logging(log_level)

    # Fail early on a missing key rather than once per image
    get_model(model_name)

    options = MatchOptions(
        images_dir=images_dir,
        output_dir=output_dir,
        data_file=data_file,
        column=column,
        model_name=model_name,
        jobs=jobs,
        retries=retries,
        timeout=timeout,
        dry_run=dry_run,
        log_level=log_level,
    )

    # Run the async function
    asyncio.run(match_image_labels(options))


def run() -> None:
    # Load environment variables from .env file
    load_dotenv()
    main()


if __name__ == "__main__":
    run()
