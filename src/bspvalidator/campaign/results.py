"""Test results and the persisted campaign report.

The report ('bsptest.log' in the output directory) is written as the
campaign progresses and closed with a summary block:

    Testing LEDBlink...
    	STM32F407VG: Succeeded
    	STM32F405RG: Failed

    --- Summary ---

    LEDBlink succeeded on 1 devices, failed on: STM32F405RG
    Total test: 2, failed: 1
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from types import TracebackType
from typing import Optional, TextIO

REPORT_FILE_NAME = "bsptest.log"


class TestOutcome(Enum):
    """Terminal state of a cell."""

    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    SKIPPED = "Skipped"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class TestResult:
    """Outcome of one cell.

    Attributes:
        outcome: Succeeded, Failed or Skipped
        log_file: Build log of the cell, if a build was attempted
        dependencies: Dependency closure of a successful build, when tracked
    """

    __test__ = False

    outcome: TestOutcome
    log_file: Optional[Path] = None
    dependencies: Optional[frozenset[str]] = None


@dataclass
class SampleStatistics:
    """Per-device results of one sample, in test order."""

    name: str
    results: dict[str, TestResult] = field(default_factory=dict)

    def _devices(self, outcome: TestOutcome) -> list[str]:
        return [d for d, r in self.results.items() if r.outcome == outcome]

    @property
    def succeeded(self) -> int:
        return len(self._devices(TestOutcome.SUCCEEDED))

    @property
    def failed_devices(self) -> list[str]:
        return self._devices(TestOutcome.FAILED)

    @property
    def skipped(self) -> int:
        return len(self._devices(TestOutcome.SKIPPED))

    @property
    def total(self) -> int:
        return len(self.results)


@dataclass
class CampaignStatistics:
    """Counts accumulated over a whole campaign. Counters only ever grow."""

    passed: int = 0
    failed: int = 0
    skipped: int = 0
    samples: list[SampleStatistics] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.passed + self.failed + self.skipped

    @property
    def all_passed(self) -> bool:
        return self.failed == 0

    def record(self, sample: SampleStatistics, device_id: str, result: TestResult) -> None:
        sample.results[device_id] = result
        if result.outcome == TestOutcome.SUCCEEDED:
            self.passed += 1
        elif result.outcome == TestOutcome.FAILED:
            self.failed += 1
        else:
            self.skipped += 1


class ResultLogger:
    """Writes the campaign report.

    The summary is written on close, including when the campaign is
    unwinding from a fatal error.

    Args:
        path: Report file path
    """

    def __init__(self, path: Path):
        self.path = path
        self._stream: Optional[TextIO] = None
        self._samples: list[SampleStatistics] = []

    def __enter__(self) -> "ResultLogger":
        self._stream = open(self.path, "w", encoding="utf-8")
        return self

    def __exit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[TracebackType],
    ) -> None:
        if exc_val is not None:
            self._write(f"\tCampaign aborted: {exc_val}")
        self.close()

    def _write(self, line: str) -> None:
        if self._stream is None:
            raise RuntimeError(f"Report {self.path} is not open")
        self._stream.write(line + "\n")
        self._stream.flush()

    def begin_sample(self, sample: SampleStatistics) -> None:
        self._samples.append(sample)
        self._write(f"Testing {sample.name}...")

    def log_result(self, device_id: str, result: TestResult) -> None:
        self._write(f"\t{device_id}: {result.outcome}")

    def close(self) -> None:
        if self._stream is None:
            return
        self._write("")
        self._write("--- Summary ---")
        self._write("")
        for sample in self._samples:
            failed = sample.failed_devices
            suffix = f", failed on: {' '.join(failed)}" if failed else ""
            self._write(f"{sample.name} succeeded on {sample.succeeded} devices{suffix}")
            self._write(f"Total test: {sample.total}, failed: {len(failed)}")
        self._stream.close()
        self._stream = None
