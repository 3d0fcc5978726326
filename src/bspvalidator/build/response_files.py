"""Response file handling for oversized command lines.

Windows limits a command line to 32K characters and cmd.exe to 8K, and
generated BSPs routinely exceed both once every framework include directory
is on the line. Tasks whose argument template is longer than
RESPONSE_FILE_THRESHOLD keep everything up to and including the first-input
placeholder in-line and move the rest into '<output>.rsp' (e.g. 'main.o.rsp'),
passed as '@<output>.rsp'. The full output name keeps 'test.o' and
'test.elf' from sharing a response file.
"""

import logging
from pathlib import Path

from .models import FIRST_INPUT_PLACEHOLDER, BuildGraph, BuildTask

logger = logging.getLogger(__name__)

RESPONSE_FILE_THRESHOLD = 7000


def split_arguments(arguments: str) -> tuple[str, str]:
    """Split an argument template at the first-input placeholder.

    Args:
        arguments: Argument template

    Returns:
        (in-line prefix including the placeholder, tail). The prefix is empty
        when the template has no first-input placeholder.
    """
    idx = arguments.find(FIRST_INPUT_PLACEHOLDER)
    if idx == -1:
        return "", arguments
    end = idx + len(FIRST_INPUT_PLACEHOLDER)
    return arguments[:end], arguments[end:]


def escape_response_text(text: str) -> str:
    """Normalize path separators while keeping escaped quotes intact."""
    return text.replace("\\", "/").replace('/"', '\\"')


def apply_response_file(task: BuildTask, directory: Path, threshold: int = RESPONSE_FILE_THRESHOLD) -> bool:
    """Move the tail of an oversized argument template into a response file.

    Placeholders in the tail are expanded before writing, since neither the
    compiler nor a build driver expands them inside the file.

    Args:
        task: Task to rewrite in place
        directory: Working directory receiving the response file
        threshold: Maximum in-line template length

    Returns:
        True if a response file was written
    """
    if len(task.arguments) <= threshold:
        return False

    prefix, tail = split_arguments(task.arguments)
    rsp_name = f"{Path(task.primary_output).name}.rsp"
    rsp_path = directory / rsp_name
    rsp_path.write_text(escape_response_text(task.expand(tail)).strip() + "\n", encoding="utf-8")

    logger.debug(f"{task.primary_output}: {len(task.arguments)} chars, tail moved to {rsp_name}")
    task.arguments = f"{prefix} @{rsp_name}".strip()
    task.response_file = rsp_name
    return True


def apply_response_files(graph: BuildGraph, directory: Path, threshold: int = RESPONSE_FILE_THRESHOLD) -> int:
    """Apply the command-line size guard to every task of a graph.

    Returns:
        Number of response files written
    """
    directory.mkdir(parents=True, exist_ok=True)
    return sum(1 for task in graph.all_tasks if apply_response_file(task, directory, threshold))
