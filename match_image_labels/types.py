from dataclasses import dataclass
from enum import Enum
from pathlib import Path

import click


class ConfigError(click.ClickException):
    """A problem with the inputs or settings that stops the run before any image is processed."""

    def __init__(self, message: str, *, available_columns: list[str] | None = None):
        self.available_columns = available_columns
        if available_columns is not None:
            message = f"{message}. Available columns: {', '.join(available_columns)}"
        super().__init__(message)


@dataclass(frozen=True)
class Matched:
    """The model picked one of the candidate labels."""

    label: str


@dataclass(frozen=True)
class NoMatch:
    """The model found no matching label, or its answer was unusable."""


MatchOutcome = Matched | NoMatch


@dataclass(frozen=True)
class CopyTo:
    dest: Path


@dataclass(frozen=True)
class Skip:
    pass


Action = CopyTo | Skip


class TaskState(Enum):
    """Final state of a file. Pending and in-flight files live only in the scheduler."""

    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class TaskResult:
    """Outcome of one image, as reported back to the scheduler."""

    path: Path
    state: TaskState
    message: str
    dest: Path | None = None  # set when the image was (or would be) copied


@dataclass(frozen=True)
class MatchOptions:
    """Options for one matching run."""

    images_dir: Path
    output_dir: Path
    data_file: Path
    column: str | None
    model_name: str
    jobs: int | None  # None means derive from the CPU count
    retries: int = 0
    timeout: float = 60.0
    dry_run: bool = False
    log_level: str = "INFO"
