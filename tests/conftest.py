"""Pytest configuration and fixtures for bspvalidator tests.

Child processes in these tests are the running Python interpreter executing
small scripts, so the suite needs no cross toolchain.
"""

import io
import json
import sys
import textwrap
import warnings
from pathlib import Path

import pytest

from bspvalidator import output

# Suppress ResourceWarnings from file cleanup in Python 3.13
if sys.version_info >= (3, 13):
    warnings.filterwarnings("ignore", category=ResourceWarning)


@pytest.fixture(autouse=True)
def _restore_stdio():  # noqa: PT004
    """Ensure stdout/stderr are always restored after each test."""
    yield

    if sys.stdout.closed:
        sys.stdout = sys.__stdout__
    if sys.stderr.closed:
        sys.stderr = sys.__stderr__


@pytest.fixture(autouse=True)
def _quiet_output():  # noqa: PT004
    """Send timestamped console output to a buffer instead of the terminal."""
    buffer = io.StringIO()
    output.init_timer(buffer)
    output.set_verbose(True)
    yield buffer
    output.init_timer(sys.stdout)
    output.set_output_file(None)


@pytest.fixture
def console_output(_quiet_output):
    """The buffer receiving bspvalidator.output lines."""
    return _quiet_output


@pytest.fixture
def python_script(tmp_path):
    """Write a Python script and return the argv prefix that runs it."""

    def _write(name: str, body: str) -> list[str]:
        path = tmp_path / f"{name}.py"
        path.write_text(textwrap.dedent(body), encoding="utf-8")
        return [sys.executable, str(path)]

    return _write


@pytest.fixture
def write_json(tmp_path):
    """Write a JSON document relative to tmp_path and return its path."""

    def _write(relative: str, data) -> Path:
        path = tmp_path / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(data, indent=2), encoding="utf-8")
        return path

    return _write
