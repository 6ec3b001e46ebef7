"""Utility functions for match-image-labels."""

import math
import os
import re
import unicodedata
from typing import Final

# Share of the available CPUs given to concurrent image workers
CPU_SHARE: Final = 0.8

# Characters that are invalid in filenames on at least one common filesystem
UNSAFE_FILENAME_CHARS: Final = re.compile(r'[/\\:*?"<>|\x00-\x1f\x7f]')


def available_cpus() -> int:
    """Return the number of CPUs this process may run on, honoring CPU affinity."""
    if hasattr(os, "process_cpu_count"):  # Python 3.13+
        return os.process_cpu_count() or 1
    if hasattr(os, "sched_getaffinity"):
        return len(os.sched_getaffinity(0)) or 1
    return os.cpu_count() or 1


def worker_cap(cpu_count: int | None = None) -> int:
    """Return the maximum number of images processed at once.

    Uses 80% of the available CPUs, rounded down, and never less than one.
    """
    if cpu_count is None:
        cpu_count = available_cpus()
    return max(1, math.floor(cpu_count * CPU_SHARE))


def sanitize_label(text: str) -> str:
    """Convert a label chosen by the model into a safe filename stem.

    Surrounding whitespace is removed and the text is normalized to NFC. Path
    separators, characters that filesystems reject, and control characters
    are replaced with hyphens; runs of hyphens that this creates are
    collapsed. Everything else, including spaces, accents, and case, is kept.

    Returns an empty string if nothing usable remains.
    """
    text = unicodedata.normalize("NFC", text.strip())

    replaced = UNSAFE_FILENAME_CHARS.sub("-", text)
    if replaced != text:
        replaced = re.sub(r"-{2,}", "-", replaced).strip("-").strip()
    text = replaced

    # "." and ".." would name a directory, not a file
    if text in (".", ".."):
        return ""
    return text
