"""Process scheduling for build graphs.

Two engines execute a BuildGraph inside a cell directory:

- SlotScheduler runs the tools itself. A fixed number of slots each hold at
  most one compiler process. Every launched process gets a supervisor thread
  that drains its output into the shared BuildLog and then posts a
  completion event, so the controlling thread can block until "any slot
  frees up" without platform-specific wait APIs. After the first failing
  compile no new work is started, but every process still running is
  awaited before returning. Link and convert tasks run one at a time after
  all compiles have succeeded.

- MakeDriverScheduler writes nothing but the makefile and hands the whole
  graph to 'make -jN'.

Both return a plain success flag; the reason for a failure is in the log.
"""

import logging
import multiprocessing
import queue
import subprocess
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from ..subprocess_utils import safe_popen, terminate_process_tree
from .build_log import BuildLog
from .makefile_writer import MAKEFILE_NAME, write_makefile
from .models import BuildGraph, BuildTask

logger = logging.getLogger(__name__)

_DRAIN_TIMEOUT = 5.0  # seconds to wait per supervisor after an interrupt


class BuildEngine(Enum):
    """Execution strategy for a cell build."""

    INTERNAL = "internal"
    MAKE = "make"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class _Completion:
    """Posted by a supervisor thread once its process has exited."""

    slot: int
    task: BuildTask
    returncode: int


class ProcessScheduler(ABC):
    """Executes a build graph in a working directory."""

    @abstractmethod
    def run(self, graph: BuildGraph, working_dir: Path, log: BuildLog) -> bool:
        """Build every task of the graph.

        Args:
            graph: Build graph to execute
            working_dir: Directory the tools run in
            log: Open build log receiving all process output

        Returns:
            True if every task exited with status zero
        """


class SlotScheduler(ProcessScheduler):
    """Self-scheduled engine with a bounded number of concurrent processes.

    Args:
        max_parallel: Number of slots (default: CPU count)
    """

    def __init__(self, max_parallel: Optional[int] = None):
        self.max_parallel = max_parallel or multiprocessing.cpu_count()
        if self.max_parallel < 1:
            raise ValueError(f"max_parallel must be positive, got {self.max_parallel}")
        self.peak_parallelism = 0

    def run(self, graph: BuildGraph, working_dir: Path, log: BuildLog) -> bool:
        completions: "queue.Queue[_Completion]" = queue.Queue()
        running: dict[int, subprocess.Popen] = {}
        self.peak_parallelism = 0

        try:
            failed = self._run_compile_tasks(graph, working_dir, log, running, completions)

            # Wait for every process still in flight, failed build or not
            while running:
                failed = self._collect(running, completions, block=True) or failed

            if failed:
                return False

            for task in graph.other_tasks:
                if not self._run_sequential(task, working_dir, log, running, completions):
                    return False

            return True
        except KeyboardInterrupt:
            for proc in running.values():
                terminate_process_tree(proc.pid)
            # Supervisors must be done with the log before the caller closes it
            self._drain(running, completions)
            raise

    def _run_compile_tasks(
        self,
        graph: BuildGraph,
        working_dir: Path,
        log: BuildLog,
        running: dict[int, subprocess.Popen],
        completions: "queue.Queue[_Completion]",
    ) -> bool:
        """Launch compile tasks in order. Returns True if a compile failed."""
        failed = False
        for task in graph.compile_tasks:
            failed = self._collect(running, completions, block=False) or failed
            while not failed and len(running) >= self.max_parallel:
                failed = self._collect(running, completions, block=True) or failed
            if failed:
                logger.debug("Compile failure observed, not launching further tasks")
                break

            slot = next(i for i in range(self.max_parallel) if i not in running)
            proc = self._start(task, slot, working_dir, log, completions)
            if proc is None:
                failed = True
                break
            running[slot] = proc
            self.peak_parallelism = max(self.peak_parallelism, len(running))

        return failed

    def _run_sequential(
        self,
        task: BuildTask,
        working_dir: Path,
        log: BuildLog,
        running: dict[int, subprocess.Popen],
        completions: "queue.Queue[_Completion]",
    ) -> bool:
        proc = self._start(task, 0, working_dir, log, completions)
        if proc is None:
            return False
        running[0] = proc
        return not self._collect(running, completions, block=True)

    @staticmethod
    def _collect(
        running: dict[int, subprocess.Popen],
        completions: "queue.Queue[_Completion]",
        block: bool,
    ) -> bool:
        """Retire finished processes.

        With block=True, waits for at least one completion first. Returns
        True if any retired process exited non-zero.
        """
        failed = False
        while running:
            try:
                done = completions.get(block=block)
            except queue.Empty:
                break
            block = False
            running.pop(done.slot, None)
            if done.returncode != 0:
                logger.info(f"{done.task.primary_output} failed with exit code {done.returncode}")
                failed = True
        return failed

    @staticmethod
    def _drain(running: dict[int, subprocess.Popen], completions: "queue.Queue[_Completion]") -> None:
        """Wait for the supervisors of terminated processes to post their completions."""
        while running:
            try:
                done = completions.get(timeout=_DRAIN_TIMEOUT)
            except queue.Empty:
                logger.warning(f"{len(running)} supervisor threads did not finish after interrupt")
                return
            running.pop(done.slot, None)

    @staticmethod
    def _start(
        task: BuildTask,
        slot: int,
        working_dir: Path,
        log: BuildLog,
        completions: "queue.Queue[_Completion]",
    ) -> Optional[subprocess.Popen]:
        log.write_line(slot, task.command_line())
        try:
            proc = safe_popen(
                task.argv(),
                cwd=working_dir,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                encoding="utf-8",
                errors="replace",
            )
        except OSError as e:
            log.write_line(slot, f"Cannot start {task.executable}: {e}")
            return None

        supervisor = threading.Thread(
            target=_supervise,
            args=(proc, slot, task, log, completions),
            name=f"slot-{slot}",
            daemon=True,
        )
        supervisor.start()
        return proc


def _supervise(
    proc: subprocess.Popen,
    slot: int,
    task: BuildTask,
    log: BuildLog,
    completions: "queue.Queue[_Completion]",
) -> None:
    """Drain a process's output, wait for it, then post its completion."""
    assert proc.stdout is not None
    try:
        for line in proc.stdout:
            log.write_line(slot, line)
    except Exception:
        logger.exception(f"Lost output of {task.primary_output}, killing the process")
        proc.kill()
    finally:
        proc.stdout.close()
        returncode = proc.wait()
        completions.put(_Completion(slot, task, returncode))


class MakeDriverScheduler(ProcessScheduler):
    """Delegates the graph to an external make.

    Args:
        make_path: Build driver executable
        jobs: Parallelism passed as -j (default: CPU count)
        continue_past_errors: Used when the makefile has to be written here
    """

    def __init__(self, make_path: str = "make", jobs: Optional[int] = None, continue_past_errors: bool = False):
        self.make_path = make_path
        self.jobs = jobs or multiprocessing.cpu_count()
        self.continue_past_errors = continue_past_errors

    def run(self, graph: BuildGraph, working_dir: Path, log: BuildLog) -> bool:
        if not (working_dir / MAKEFILE_NAME).exists():
            write_makefile(graph, working_dir, continue_past_errors=self.continue_past_errors)

        cmd = [self.make_path, f"-j{self.jobs}", "-f", MAKEFILE_NAME]
        log.write_line(0, " ".join(cmd))
        try:
            proc = safe_popen(
                cmd,
                cwd=working_dir,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                encoding="utf-8",
                errors="replace",
            )
        except OSError as e:
            log.write_raw(f"Cannot start build driver {self.make_path}: {e}")
            return False

        assert proc.stdout is not None
        try:
            with proc.stdout:
                for line in proc.stdout:
                    log.write_raw(line)
            returncode = proc.wait()
        except KeyboardInterrupt:
            terminate_process_tree(proc.pid)
            raise

        logger.debug(f"{self.make_path} exited with {returncode}")
        return returncode == 0


def create_scheduler(
    engine: BuildEngine,
    jobs: Optional[int] = None,
    make_path: str = "make",
    continue_past_errors: bool = False,
) -> ProcessScheduler:
    """Create the scheduler for an engine."""
    if engine == BuildEngine.MAKE:
        return MakeDriverScheduler(make_path, jobs, continue_past_errors)
    return SlotScheduler(jobs)
