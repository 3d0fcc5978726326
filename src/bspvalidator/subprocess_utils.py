"""Subprocess utilities for launching toolchain processes.

Compilers and build drivers are started through safe_popen(), which hides
console windows on Windows and detaches stdin so that a compiler waiting
for input can never stall a campaign. terminate_process_tree() is
used when a build is interrupted so that no compiler (or a compiler's own
children, such as cc1 or as) outlives the validator.
"""

import logging
import subprocess
import sys
from typing import Any

import psutil

logger = logging.getLogger(__name__)

_TERMINATE_TIMEOUT = 3.0  # seconds to wait before escalating to kill()


def get_subprocess_creation_flags() -> int:
    """Get platform-specific subprocess creation flags.

    Returns:
        - Windows: subprocess.CREATE_NO_WINDOW (prevents console window)
        - Other platforms: 0 (no special flags)
    """
    if sys.platform == "win32":
        return subprocess.CREATE_NO_WINDOW
    return 0


def _apply_defaults(kwargs: dict[str, Any]) -> dict[str, Any]:
    default_flags = get_subprocess_creation_flags()

    if "creationflags" in kwargs:
        kwargs["creationflags"] = kwargs["creationflags"] | default_flags
    elif default_flags:
        kwargs["creationflags"] = default_flags

    if "stdin" not in kwargs:
        kwargs["stdin"] = subprocess.DEVNULL

    return kwargs


def safe_popen(cmd: list[str], **kwargs: Any) -> subprocess.Popen:
    """Execute subprocess.Popen with platform-specific flags.

    An explicit 'creationflags' is OR'd with the platform default; an explicit
    'stdin' is used as-is, otherwise stdin is redirected to DEVNULL.

    Args:
        cmd: Command and arguments (same as subprocess.Popen)
        **kwargs: Additional arguments passed to subprocess.Popen

    Returns:
        Popen process handle
    """
    return subprocess.Popen(cmd, **_apply_defaults(kwargs))


def terminate_process_tree(pid: int) -> int:
    """Terminate a process and all of its descendants, children first.

    Args:
        pid: PID of the root process

    Returns:
        Number of processes that were signalled
    """
    try:
        root = psutil.Process(pid)
        victims = list(reversed(root.children(recursive=True))) + [root]
    except psutil.NoSuchProcess:
        return 0

    signalled: list[psutil.Process] = []
    for proc in victims:
        try:
            proc.terminate()
            signalled.append(proc)
        except psutil.NoSuchProcess:
            pass  # Already gone

    _gone, alive = psutil.wait_procs(signalled, timeout=_TERMINATE_TIMEOUT)
    for proc in alive:
        logger.warning("Process %d did not terminate, killing it", proc.pid)
        try:
            proc.kill()
        except psutil.NoSuchProcess:
            pass

    return len(signalled)
