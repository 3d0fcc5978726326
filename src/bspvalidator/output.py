"""
Centralized console output for bspvalidator.

All user-facing progress is prefixed with the elapsed time since the
campaign started, in MM:SS.cc format, so that slow devices and samples
stand out when reading a long run:

    00:00.04 Testing LEDBlink...
    00:00.05 [1/12] STM32F407VG
    00:03.61       Succeeded (3.56s)
    00:03.61 LEDBlink: 8% done (1/12 devices, 0 failed)

Usage:
    from bspvalidator.output import log, log_phase, log_detail

    init_timer()
    log("Testing LEDBlink...")
    log_phase(1, 12, "STM32F407VG")
    log_detail("Succeeded (3.56s)")
"""

import sys
import time
from types import TracebackType
from typing import Optional, TextIO

_start_time: Optional[float] = None
_output_stream: TextIO = sys.stdout
_verbose: bool = True
_output_file: Optional[TextIO] = None


def init_timer(output_stream: Optional[TextIO] = None) -> None:
    """
    Initialize the campaign timer.

    Args:
        output_stream: Optional output stream (defaults to sys.stdout)
    """
    global _start_time, _output_stream
    _start_time = time.time()
    if output_stream is not None:
        _output_stream = output_stream


def set_verbose(verbose: bool) -> None:
    """
    Set verbose mode for logging.

    Args:
        verbose: If False, messages logged with verbose_only=True are dropped
    """
    global _verbose
    _verbose = verbose


def set_output_file(output_file: Optional[TextIO]) -> None:
    """
    Mirror all console output into a file.

    Args:
        output_file: File object to receive output, or None to disable mirroring
    """
    global _output_file
    _output_file = output_file


def get_elapsed() -> float:
    """Seconds elapsed since init_timer() (initializing it on first use)."""
    if _start_time is None:
        init_timer()
    return time.time() - _start_time  # type: ignore


def format_timestamp() -> str:
    """Format the current elapsed time as MM:SS.cc."""
    elapsed = get_elapsed()
    minutes = int(elapsed // 60)
    seconds = elapsed % 60
    return f"{minutes:02d}:{seconds:05.2f}"


def _print(message: str) -> None:
    line = f"{format_timestamp()} {message}\n"
    _output_stream.write(line)
    _output_stream.flush()

    if _output_file is not None:
        _output_file.write(line)
        _output_file.flush()


def log(message: str, verbose_only: bool = False) -> None:
    """
    Log a message with timestamp.

    Args:
        message: Message to log
        verbose_only: If True, only print if verbose mode is enabled
    """
    if verbose_only and not _verbose:
        return
    _print(message)


def log_phase(phase: int, total: int, message: str, verbose_only: bool = False) -> None:
    """
    Log a numbered step, formatted as "[N/M] message".

    Args:
        phase: Current step number
        total: Total number of steps
        message: Step description
        verbose_only: If True, only print if verbose mode is enabled
    """
    if verbose_only and not _verbose:
        return
    _print(f"[{phase}/{total}] {message}")


def log_detail(message: str, indent: int = 6, verbose_only: bool = False) -> None:
    """
    Log an indented detail message.

    Args:
        message: Detail message
        indent: Number of spaces to indent (default 6)
        verbose_only: If True, only print if verbose mode is enabled
    """
    if verbose_only and not _verbose:
        return
    _print(f"{' ' * indent}{message}")


def log_progress(sample: str, done: int, total: int, failed: int) -> None:
    """
    Log matrix progress for one sample.

    Args:
        sample: Sample name
        done: Number of devices tested so far
        total: Number of devices selected for the sample
        failed: Number of failed devices so far
    """
    percent = (done * 100) // total if total else 100
    _print(f"{sample}: {percent}% done ({done}/{total} devices, {failed} failed)")


def log_error(message: str) -> None:
    """Log an error message."""
    _print(f"ERROR: {message}")


def log_warning(message: str) -> None:
    """Log a warning message."""
    _print(f"WARNING: {message}")


class TimedLogger:
    """
    Context manager that logs an operation and its duration.

    Usage:
        with TimedLogger("Building STM32F407VG") as logger:
            logger.detail("12 compile tasks")
    """

    def __init__(self, operation: str, phase: Optional[tuple[int, int]] = None, verbose_only: bool = False):
        self.operation = operation
        self.phase = phase
        self.verbose_only = verbose_only
        self.start_time = 0.0
        self.elapsed = 0.0

    def __enter__(self) -> "TimedLogger":
        self.start_time = time.time()
        if self.phase:
            log_phase(self.phase[0], self.phase[1], self.operation, self.verbose_only)
        else:
            log(f"{self.operation}...", self.verbose_only)
        return self

    def __exit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[TracebackType],
    ) -> None:
        del exc_val, exc_tb  # Unused
        self.elapsed = time.time() - self.start_time
        if exc_type is not None:
            log_detail(f"Aborted after {self.elapsed:.2f}s", verbose_only=self.verbose_only)
        return None

    def detail(self, message: str) -> None:
        """Log a detail message within this operation."""
        log_detail(message, verbose_only=self.verbose_only)
