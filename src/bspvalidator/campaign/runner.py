"""
Campaign runner.

Builds every selected sample on every selected device, one cell at a time:

    PENDING -> DIRECTORY_PREPARED -> CONFIGURED -> BUILT -> VERIFIED -> SUCCEEDED
                        |                |           |         |
                        +-> SKIPPED      +-----------+---------+-> FAILED

Cells run sequentially; the only parallelism is inside one cell's build.
Build and verification failures are recorded and the campaign moves on.
Configuration and workspace errors abort the whole campaign, after the
report summary has been written.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum, Flag, auto
from pathlib import Path
from typing import Optional

from .. import output
from ..build.build_log import BUILD_LOG_NAME, BuildLog
from ..build.graph_builder import BIN_FILE, MAP_FILE, BuildGraphBuilder, find_first_source_in
from ..build.makefile_writer import write_makefile
from ..build.models import BuildGraph, DiagnosticSeverity
from ..build.scheduler import BuildEngine, ProcessScheduler, create_scheduler
from ..deps.discovery import DependencyDiscoverer
from ..errors import ConfigurationError, NameCollisionError
from ..registers.injector import RegisterValidationInjector
from .bsp import ProjectResolver, ResolvedProject
from .job import TestedSample, TestJob
from .results import REPORT_FILE_NAME, CampaignStatistics, ResultLogger, SampleStatistics, TestOutcome, TestResult
from .workdir import DEFAULT_RETRY_COUNT, DEFAULT_RETRY_DELAY, prepare_cell_directory, remove_cell_directory

logger = logging.getLogger(__name__)

MINIMUM_IMAGE_SIZE = 512

# A 'main' entry in the symbol section of a GNU ld map file
MAIN_SYMBOL_PATTERN = re.compile(r"^[ \t]+0x[0-9a-fA-F]+[ \t]+main$")


class CellState(Enum):
    """Lifecycle of one (sample, device) cell."""

    PENDING = "pending"
    DIRECTORY_PREPARED = "directory_prepared"
    CONFIGURED = "configured"
    BUILT = "built"
    VERIFIED = "verified"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in (CellState.SUCCEEDED, CellState.FAILED, CellState.SKIPPED)


class ValidationFlags(Flag):
    """Caller policy for a campaign."""

    NONE = 0
    KEEP_DIRECTORY_AFTER_SUCCESS = auto()
    RESOLVE_NAME_COLLISIONS = auto()
    CONTINUE_PAST_COMPILATION_ERRORS = auto()


@dataclass
class CampaignOptions:
    """
    Execution options for a campaign.

    Attributes:
        jobs: Maximum concurrent processes per cell (default: CPU count)
        engine: Self-scheduled or driver-delegated builds
        flags: Directory retention and error tolerance policy
        track_dependencies: Compute the dependency closure of successful cells
        device_filter: Additional device include pattern from the caller
        directory_retry_count: Attempts to remove/create a cell directory
        directory_retry_delay: Seconds between those attempts
        minimum_image_size: Smallest acceptable binary image, in bytes
    """

    jobs: Optional[int] = None
    engine: BuildEngine = BuildEngine.INTERNAL
    flags: ValidationFlags = ValidationFlags.NONE
    track_dependencies: bool = False
    device_filter: Optional[str] = None
    directory_retry_count: int = DEFAULT_RETRY_COUNT
    directory_retry_delay: float = DEFAULT_RETRY_DELAY
    minimum_image_size: int = MINIMUM_IMAGE_SIZE


@dataclass
class Cell:
    """One (sample, device) pair and its current state."""

    sample: TestedSample
    device_id: str
    directory: Path
    state: CellState = CellState.PENDING
    result: Optional[TestResult] = field(default=None, repr=False)

    def advance(self, state: CellState) -> None:
        logger.debug(f"{self.directory.name}: {self.state.value} -> {state.value}")
        self.state = state

    def finish(
        self,
        outcome: TestOutcome,
        log_file: Optional[Path] = None,
        dependencies: Optional[frozenset[str]] = None,
    ) -> TestResult:
        self.advance(CellState[outcome.name])
        self.result = TestResult(outcome, log_file, dependencies)
        return self.result


def verify_image(directory: Path, minimum_size: int = MINIMUM_IMAGE_SIZE) -> bool:
    """
    Check the artifacts of a successful build.

    The map file must list a 'main' symbol and the binary image must be at
    least minimum_size bytes.
    """
    map_file = directory / MAP_FILE
    if not map_file.is_file():
        logger.info(f"{directory.name}: no map file")
        return False

    with open(map_file, "r", encoding="utf-8", errors="replace") as f:
        if not any(MAIN_SYMBOL_PATTERN.match(line.rstrip("\r\n")) for line in f):
            logger.info(f"{directory.name}: no main() in {MAP_FILE}")
            return False

    bin_file = directory / BIN_FILE
    if not bin_file.is_file() or bin_file.stat().st_size < minimum_size:
        logger.info(f"{directory.name}: {BIN_FILE} missing or smaller than {minimum_size} bytes")
        return False
    return True


def _search(pattern: Optional[str], device_id: str) -> bool:
    return pattern is None or re.search(pattern, device_id) is not None


class CampaignRunner:
    """
    Runs a test job over the device/sample matrix.

    Args:
        job: Loaded job descriptor
        resolver: Resolves and materializes each cell's project
        output_dir: Directory receiving cell directories and the report
        options: Execution options
        scheduler: Process scheduler (default: created from options)
    """

    def __init__(
        self,
        job: TestJob,
        resolver: ProjectResolver,
        output_dir: Path,
        options: Optional[CampaignOptions] = None,
        scheduler: Optional[ProcessScheduler] = None,
    ):
        self.job = job
        self.resolver = resolver
        self.output_dir = output_dir.absolute()
        self.options = options or CampaignOptions()
        self.scheduler = scheduler or create_scheduler(
            self.options.engine,
            self.options.jobs,
            job.make_path,
            self._has_flag(ValidationFlags.CONTINUE_PAST_COMPILATION_ERRORS),
        )
        self.injector = RegisterValidationInjector(job.register_validation_parameters)
        self.cells: list[Cell] = []

    def _has_flag(self, flag: ValidationFlags) -> bool:
        return bool(self.options.flags & flag)

    def select_devices(self) -> list[str]:
        """Devices passing the campaign-wide include and exclude patterns."""
        devices = [d for d in self.resolver.device_ids() if _search(self.job.device_regex, d)]
        if self.job.skipped_device_regex is not None:
            devices = [d for d in devices if re.search(self.job.skipped_device_regex, d) is None]
        return devices

    def devices_for(self, sample: TestedSample, devices: list[str]) -> list[str]:
        """Narrow the campaign devices by the sample pattern and the caller filter."""
        selected = [d for d in devices if sample.selects(d)]
        return [d for d in selected if _search(self.options.device_filter, d)]

    def run(self) -> CampaignStatistics:
        """
        Run the campaign.

        Returns:
            Campaign-wide and per-sample statistics

        Raises:
            ConfigurationError: If a sample cannot be resolved or applies to no device
            WorkspaceError: If a cell directory cannot be prepared
        """
        self.output_dir.mkdir(parents=True, exist_ok=True)
        stats = CampaignStatistics()
        devices = self.select_devices()
        logger.info(f"{len(devices)} devices selected for {len(self.job.samples)} samples")

        with ResultLogger(self.output_dir / REPORT_FILE_NAME) as report:
            for sample in self.job.samples:
                self._run_sample(sample, devices, stats, report)

        return stats

    def _run_sample(
        self,
        sample: TestedSample,
        devices: list[str],
        stats: CampaignStatistics,
        report: ResultLogger,
    ) -> None:
        sample_stats = SampleStatistics(sample.display_name)
        stats.samples.append(sample_stats)
        report.begin_sample(sample_stats)
        output.log(f"Testing {sample.display_name}...")

        selected = self.devices_for(sample, devices)
        if not selected:
            raise ConfigurationError(f"No devices selected for {sample.display_name}")

        for i, device_id in enumerate(selected, start=1):
            cell = Cell(sample, device_id, self.output_dir / f"{device_id}{sample.test_dir_suffix}")
            self.cells.append(cell)

            with output.TimedLogger(f"Building {cell.directory.name}", phase=(i, len(selected))) as timer:
                result = self.test_cell(cell)
            output.log_detail(f"{result.outcome} ({timer.elapsed:.2f}s)")

            stats.record(sample_stats, device_id, result)
            report.log_result(device_id, result)
            output.log_progress(sample.display_name, i, len(selected), len(sample_stats.failed_devices))

        if sample_stats.succeeded + len(sample_stats.failed_devices) == 0:
            raise ConfigurationError(f"Not a single device supports {sample.display_name}")

    def test_cell(self, cell: Cell) -> TestResult:
        """
        Drive one cell to a terminal state.

        Raises:
            ConfigurationError: If the sample is missing and may not be skipped
            WorkspaceError: If the cell directory cannot be prepared or removed
        """
        retries = (self.options.directory_retry_count, self.options.directory_retry_delay)
        prepare_cell_directory(cell.directory, *retries)
        cell.advance(CellState.DIRECTORY_PREPARED)

        project = self.resolver.resolve(
            cell.sample, cell.device_id, self.job.parameter_set_for(cell.device_id), cell.directory
        )
        if project is None:
            if not cell.sample.skip_if_not_found:
                raise ConfigurationError(f"Cannot find sample: {cell.sample.display_name} for {cell.device_id}")
            remove_cell_directory(cell.directory, *retries)
            return cell.finish(TestOutcome.SKIPPED)

        log_file = cell.directory / BUILD_LOG_NAME
        with BuildLog(log_file) as build_log:
            graph = self._configure(cell, project, build_log)
            if graph is None:
                return cell.finish(TestOutcome.FAILED, log_file)
            cell.advance(CellState.CONFIGURED)

            if not self.scheduler.run(graph, cell.directory, build_log):
                return cell.finish(TestOutcome.FAILED, log_file)
            cell.advance(CellState.BUILT)

        if not verify_image(cell.directory, self.options.minimum_image_size):
            return cell.finish(TestOutcome.FAILED, log_file)
        cell.advance(CellState.VERIFIED)

        dependencies = None
        if self.options.track_dependencies:
            discoverer = DependencyDiscoverer(cell.directory, project.sample_directory)
            dependencies = discoverer.discover(project.sample_sources)

        if not self._has_flag(ValidationFlags.KEEP_DIRECTORY_AFTER_SUCCESS):
            remove_cell_directory(cell.directory, *retries)

        return cell.finish(TestOutcome.SUCCEEDED, log_file, dependencies)

    def _configure(self, cell: Cell, project: ResolvedProject, build_log: BuildLog) -> Optional[BuildGraph]:
        """Build the graph, write the makefile and inject register checks.

        Returns:
            The build graph, or None if the graph could not be built
        """
        builder = BuildGraphBuilder(
            self.job.toolchain_prefix,
            cell.directory,
            resolve_name_collisions=self._has_flag(ValidationFlags.RESOLVE_NAME_COLLISIONS),
        )
        try:
            graph = builder.build(list(project.source_files), project.flags, cell.sample.source_file_extensions)
        except NameCollisionError as e:
            output.log_error(str(e))
            build_log.write_raw(f"ERROR: {e}")
            for name, sources in e.collisions.items():
                build_log.write_raw(f"{name} corresponds to the following files:")
                for source in sources:
                    build_log.write_raw(f"\t{source}")
            return None

        for diagnostic in graph.diagnostics:
            build_log.write_raw(diagnostic.format())
            if diagnostic.severity == DiagnosticSeverity.ERROR:
                output.log_error(diagnostic.format())
            else:
                output.log_warning(diagnostic.format())

        comments = [f"Original directory: {project.sample_directory}"] + project.flags.describe()
        write_makefile(
            graph,
            cell.directory,
            comments,
            continue_past_errors=self._has_flag(ValidationFlags.CONTINUE_PAST_COMPILATION_ERRORS),
        )

        if project.register_map is not None:
            target = find_first_source_in(graph, cell.directory)
            if target is None:
                raise ConfigurationError(
                    f"{project.sample_name}: no source file in {cell.directory} to validate registers in"
                )
            count = self.injector.inject(Path(target), project.register_map)
            output.log_detail(f"Validating {count} register offsets", verbose_only=True)

        return graph
