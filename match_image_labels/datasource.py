"""Load candidate labels from a CSV or XLSX data source."""

import csv
import logging
from pathlib import Path

from openpyxl import load_workbook

from .types import ConfigError

logger = logging.getLogger(__name__)

SUPPORTED_EXTS = (".csv", ".xlsx")


def load_csv(path: Path) -> tuple[list[str], list[dict[str, object]]]:
    with path.open("r", encoding="utf-8-sig", newline="") as f:
        reader = csv.DictReader(f)
        rows: list[dict[str, object]] = list(reader)
        return list(reader.fieldnames or []), rows


def load_xlsx(path: Path) -> tuple[list[str], list[dict[str, object]]]:
    """Read the first sheet of a workbook. The first row is the header."""
    wb = load_workbook(filename=str(path), read_only=True, data_only=True)
    try:
        ws = wb.worksheets[0]
        rows_iter = ws.iter_rows(values_only=True)
        try:
            header = next(rows_iter)
        except StopIteration:
            return [], []
        columns = ["" if c is None else str(c) for c in header]
        rows = []
        for values in rows_iter:
            if all(v is None for v in values):
                continue
            rows.append(dict(zip(columns, values)))
        return columns, rows
    finally:
        wb.close()


def load_rows(path: Path) -> tuple[list[str], list[dict[str, object]]]:
    """Load ``(columns, rows)`` from a data source file.

    Raises:
        ConfigError: if the file is missing, unreadable, of an unsupported type,
            or has no data rows.
    """
    if not path.is_file():
        raise ConfigError(f"Data source {path} not found")
    suffix = path.suffix.lower()
    if suffix not in SUPPORTED_EXTS:
        raise ConfigError(f"Unsupported data source format {suffix or path.name!r}; use one of {', '.join(SUPPORTED_EXTS)}")

    try:
        if suffix == ".csv":
            columns, rows = load_csv(path)
        else:
            columns, rows = load_xlsx(path)
    except Exception as e:
        # csv and openpyxl raise a variety of errors for corrupt files
        raise ConfigError(f"Could not read data source {path}: {e}") from e

    logger.debug("Loaded %d rows with columns %s from %s", len(rows), columns, path)
    if not rows:
        raise ConfigError(f"Data source {path} has no rows", available_columns=columns)
    return columns, rows


def validate_column(column: str | None, columns: list[str]) -> str:
    if not column:
        raise ConfigError("Please provide a column name from the data source with --column", available_columns=columns)
    if column not in columns:
        raise ConfigError(f"Column {column!r} not found in the data source", available_columns=columns)
    return column


def extract_labels(rows: list[dict[str, object]], column: str) -> tuple[str, ...]:
    """Return the distinct non-blank values of ``column``, in first-seen order."""
    labels: dict[str, None] = {}
    for row in rows:
        value = row.get(column)
        if value is None:
            continue
        text = str(value).strip()
        if text:
            labels.setdefault(text, None)
    return tuple(labels)


def load_labels(path: Path, column: str | None) -> tuple[str, ...]:
    """Load the candidate label set for ``column`` from the data source at ``path``."""
    columns, rows = load_rows(path)
    column = validate_column(column, columns)
    labels = extract_labels(rows, column)
    if not labels:
        raise ConfigError(f"Column {column!r} has no values", available_columns=columns)
    return labels
