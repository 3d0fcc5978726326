"""Shared build log.

Every line written by any process of a cell ends up in one file, prefixed
with the slot that ran the process:

    [0] /opt/gcc/bin/arm-none-eabi-gcc -c -o main.o main.c ...
    [1] /opt/gcc/bin/arm-none-eabi-g++ -c -o system.o system.cpp ...
    [0] main.c:12:5: error: 'GPIOA' undeclared

Reader threads of concurrently running processes call write_line() at the
same time; a single lock guarantees lines are never torn.
"""

import threading
from pathlib import Path
from types import TracebackType
from typing import Optional, TextIO

BUILD_LOG_NAME = "build.log"


class BuildLog:
    """Thread-safe, line-oriented build log.

    Args:
        path: Log file path (truncated on open)
    """

    def __init__(self, path: Path):
        self.path = path
        self._lock = threading.Lock()
        self._stream: Optional[TextIO] = None

    def open(self) -> "BuildLog":
        self._stream = open(self.path, "w", encoding="utf-8", errors="replace")
        return self

    def close(self) -> None:
        with self._lock:
            if self._stream is not None:
                self._stream.close()
                self._stream = None

    def __enter__(self) -> "BuildLog":
        return self.open()

    def __exit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[TracebackType],
    ) -> None:
        self.close()

    def write_line(self, slot: int, text: str) -> None:
        """Append one '[slot] text' line."""
        text = text.rstrip("\r\n")
        line = f"[{slot}] {text}\n"
        with self._lock:
            if self._stream is None:
                raise RuntimeError(f"Build log {self.path} is not open")
            self._stream.write(line)
            self._stream.flush()

    def write_raw(self, text: str) -> None:
        """Append untagged text (diagnostics, headers)."""
        with self._lock:
            if self._stream is None:
                raise RuntimeError(f"Build log {self.path} is not open")
            self._stream.write(text if text.endswith("\n") else text + "\n")
            self._stream.flush()
