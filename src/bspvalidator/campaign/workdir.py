"""Cell working directories.

Antivirus scanners and indexers on build machines briefly hold handles to
freshly written object files, so deleting the previous run's directory can
fail transiently. Both removal and creation are retried a bounded number of
times before the campaign gives up.
"""

import logging
import shutil
import time
from collections.abc import Callable
from pathlib import Path

from ..errors import WorkspaceError

logger = logging.getLogger(__name__)

DEFAULT_RETRY_COUNT = 20
DEFAULT_RETRY_DELAY = 0.05


def remove_cell_directory(
    path: Path,
    attempts: int = DEFAULT_RETRY_COUNT,
    delay: float = DEFAULT_RETRY_DELAY,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    """Remove a directory tree, retrying while it is locked.

    Raises:
        WorkspaceError: If the directory still exists after all attempts
    """
    for attempt in range(1, attempts + 1):
        if not path.exists():
            return
        logger.debug(f"Deleting {path} (attempt {attempt}/{attempts})")
        try:
            shutil.rmtree(path)
        except OSError as e:
            logger.debug(f"Cannot delete {path}: {e}")
        if not path.exists():
            return
        if attempt < attempts:
            sleep(delay)

    raise WorkspaceError(f"Cannot remove folder {path} after {attempts} attempts")


def create_cell_directory(
    path: Path,
    attempts: int = DEFAULT_RETRY_COUNT,
    delay: float = DEFAULT_RETRY_DELAY,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    """Create a directory (and parents), retrying on transient failures.

    Raises:
        WorkspaceError: If the directory does not exist after all attempts
    """
    for attempt in range(1, attempts + 1):
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.debug(f"Cannot create {path} (attempt {attempt}/{attempts}): {e}")
        if path.is_dir():
            return
        if attempt < attempts:
            sleep(delay)

    raise WorkspaceError(f"Cannot create folder {path} after {attempts} attempts")


def prepare_cell_directory(
    path: Path,
    attempts: int = DEFAULT_RETRY_COUNT,
    delay: float = DEFAULT_RETRY_DELAY,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    """Replace path with a fresh, empty directory.

    Raises:
        WorkspaceError: If the old directory cannot be removed or the new one created
    """
    remove_cell_directory(path, attempts, delay, sleep)
    create_cell_directory(path, attempts, delay, sleep)
