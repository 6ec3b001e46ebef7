"""Tests for utility functions."""

import os
from pathlib import Path

import pytest

from match_image_labels.list_files import list_image_files
from match_image_labels.utils import available_cpus, sanitize_label, worker_cap


def test_worker_cap() -> None:
    """Test the worker cap is 80% of the CPUs, at least one."""
    assert worker_cap(1) == 1
    assert worker_cap(2) == 1
    assert worker_cap(4) == 3
    assert worker_cap(8) == 6
    assert worker_cap(10) == 8
    assert worker_cap(16) == 12

    # Never less than one
    assert worker_cap(0) == 1

    # Default uses the machine's CPU count
    assert worker_cap() >= 1


def test_worker_cap_uses_cpus_available_to_process(monkeypatch: pytest.MonkeyPatch) -> None:
    """Test the default cap counts the CPUs this process may use, not every CPU on the machine."""
    monkeypatch.setattr(os, "cpu_count", lambda: 64)
    monkeypatch.setattr(os, "process_cpu_count", lambda: 5, raising=False)
    assert available_cpus() == 5
    assert worker_cap() == 4


def test_worker_cap_uses_cpu_affinity(monkeypatch: pytest.MonkeyPatch) -> None:
    """Test that, before Python 3.13, the CPU affinity mask limits the cap."""
    monkeypatch.setattr(os, "cpu_count", lambda: 64)
    monkeypatch.delattr(os, "process_cpu_count", raising=False)
    monkeypatch.setattr(os, "sched_getaffinity", lambda pid: {0, 1, 2, 3}, raising=False)
    assert available_cpus() == 4
    assert worker_cap() == 3


def test_sanitize_label() -> None:
    """Test label sanitization."""
    # Plain labels are unchanged
    assert sanitize_label("x") == "x"
    assert sanitize_label("Tomato") == "Tomato"
    assert sanitize_label("Cherry Tomato") == "Cherry Tomato"
    assert sanitize_label("Café au lait") == "Café au lait"
    assert sanitize_label("carrots_2kg") == "carrots_2kg"

    # Surrounding whitespace is removed
    assert sanitize_label("  Tomato \n") == "Tomato"

    # Path separators can't escape the output directory
    assert sanitize_label("../etc/passwd") == "..-etc-passwd"
    assert sanitize_label("a/b") == "a-b"
    assert sanitize_label("a\\b") == "a-b"

    # Characters rejected by common filesystems
    assert sanitize_label('What? "Yes": <no>|*') == "What- -Yes- -no"
    assert sanitize_label("a:b") == "a-b"
    assert sanitize_label("a\tb") == "a-b"
    assert all(c not in sanitize_label('x?*<>|"y') for c in '?*<>|"')

    # Nothing usable
    assert sanitize_label("") == ""
    assert sanitize_label("   ") == ""
    assert sanitize_label("/") == ""
    assert sanitize_label(".") == ""
    assert sanitize_label("..") == ""


def test_list_image_files(tmp_path: Path) -> None:
    """Test that only regular files are listed, in name order."""
    (tmp_path / "b.jpg").write_bytes(b"")
    (tmp_path / "a.png").write_bytes(b"")
    (tmp_path / "notes.txt").write_text("not an image")
    (tmp_path / ".DS_Store").write_bytes(b"")
    (tmp_path / "nested").mkdir()
    (tmp_path / "nested" / "c.jpg").write_bytes(b"")

    files = list_image_files(tmp_path)
    assert [f.name for f in files] == ["a.png", "b.jpg", "notes.txt"]
