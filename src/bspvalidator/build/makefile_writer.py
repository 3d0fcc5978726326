"""Makefile-style build description for the driver-delegated engine.

The file is also kept in preserved cell directories, where its header
comments (original sample path, resolved flags) make a failing cell
reproducible by hand with a plain 'make'.
"""

from collections.abc import Iterable
from pathlib import Path
from typing import Optional

from .models import BuildGraph, join_arguments, quote_argument

MAKEFILE_NAME = "Makefile"


def render_makefile(
    graph: BuildGraph,
    comments: Optional[Iterable[str]] = None,
    continue_past_errors: bool = False,
) -> str:
    """Render the build description as makefile text.

    Args:
        graph: Build graph to describe
        comments: Free-form header lines, each written as a '#' comment
        continue_past_errors: Prefix recipes with '-' so make ignores failures

    Returns:
        Makefile contents
    """
    lines: list[str] = []
    if comments is not None:
        lines.extend(f"#{c}" for c in comments)
        lines.append("")

    lines.append(f"all: {graph.primary_target}")
    lines.append("")

    mode = "-" if continue_past_errors else ""
    for task in graph.all_tasks:
        lines.append(f"{task.primary_output}: {join_arguments(task.inputs)}")
        lines.append(f"\t{mode}{quote_argument(task.executable)} {task.arguments}")
        lines.append("")

    return "\n".join(lines)


def write_makefile(
    graph: BuildGraph,
    directory: Path,
    comments: Optional[Iterable[str]] = None,
    continue_past_errors: bool = False,
) -> Path:
    """Write the build description into directory.

    Returns:
        Path of the written makefile
    """
    path = directory / MAKEFILE_NAME
    path.write_text(render_makefile(graph, comments, continue_past_errors), encoding="utf-8")
    return path
