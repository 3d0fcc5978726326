"""
Command-line interface for bspvalidator.

    bspvalidator job.json out/                    # Test every sample on every device
    bspvalidator job.json out/ -d "^STM32F4"      # Only devices matching a pattern
    bspvalidator job.json out/ --engine make -j 8 # Delegate builds to make
    bspvalidator job.json out/ --keep-dirs        # Keep successful cell directories
    bspvalidator job.json out/ --log-file run.log # Mirror progress into a file

Exit codes: 0 when every cell succeeded or was skipped, 1 when any cell
failed, 2 on a configuration or workspace error, 130 when interrupted.
"""

import argparse
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from rich.console import Console

from bspvalidator import __version__, output
from bspvalidator.build.scheduler import BuildEngine
from bspvalidator.campaign.bsp import BSPProjectResolver, load_bsp
from bspvalidator.campaign.job import load_job
from bspvalidator.campaign.report import print_summary
from bspvalidator.campaign.results import CampaignStatistics
from bspvalidator.campaign.runner import CampaignOptions, CampaignRunner, ValidationFlags
from bspvalidator.errors import BSPValidatorError

EXIT_SUCCESS = 0
EXIT_TEST_FAILURES = 1
EXIT_FATAL = 2
EXIT_INTERRUPTED = 130


@dataclass
class ValidateArgs:
    """Arguments for a validation campaign."""

    job_file: Path
    output_dir: Path
    jobs: Optional[int] = None
    engine: BuildEngine = BuildEngine.INTERNAL
    keep_dirs: bool = False
    resolve_collisions: bool = False
    continue_past_errors: bool = False
    track_dependencies: bool = False
    device_filter: Optional[str] = None
    verbose: bool = False
    log_file: Optional[Path] = None

    def campaign_options(self) -> CampaignOptions:
        flags = ValidationFlags.NONE
        if self.keep_dirs:
            flags |= ValidationFlags.KEEP_DIRECTORY_AFTER_SUCCESS
        if self.resolve_collisions:
            flags |= ValidationFlags.RESOLVE_NAME_COLLISIONS
        if self.continue_past_errors:
            flags |= ValidationFlags.CONTINUE_PAST_COMPILATION_ERRORS
        return CampaignOptions(
            jobs=self.jobs,
            engine=self.engine,
            flags=flags,
            track_dependencies=self.track_dependencies,
            device_filter=self.device_filter,
        )


def validate_command(args: ValidateArgs, console: Optional[Console] = None) -> int:
    """Run a campaign and print its summary.

    Console progress is mirrored into args.log_file when one is given.

    Returns:
        Process exit code
    """
    console = console if console is not None else Console()
    output.init_timer()
    output.set_verbose(args.verbose)

    log_file = None
    if args.log_file is not None:
        try:
            args.log_file.parent.mkdir(parents=True, exist_ok=True)
            log_file = open(args.log_file, "w", encoding="utf-8")
        except OSError as e:
            console.print(f"[bold red]✗ Cannot open log file[/bold red]: {e}")
            return EXIT_FATAL
        output.set_output_file(log_file)

    try:
        job = load_job(args.job_file)
        resolver = BSPProjectResolver(load_bsp(job.bsp_path))
        runner = CampaignRunner(job, resolver, args.output_dir, args.campaign_options())
        stats = runner.run()
    except KeyboardInterrupt:
        console.print()
        console.print("[bold yellow]✗ Campaign interrupted[/bold yellow]")
        return EXIT_INTERRUPTED
    except BSPValidatorError as e:
        console.print()
        console.print(f"[bold red]✗ {type(e).__name__}[/bold red]: {e}")
        return EXIT_FATAL
    finally:
        if log_file is not None:
            output.set_output_file(None)
            log_file.close()

    print_summary(stats, console)
    return _exit_code(stats)


def _exit_code(stats: CampaignStatistics) -> int:
    return EXIT_SUCCESS if stats.all_passed else EXIT_TEST_FAILURES


def _positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {value}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bspvalidator",
        description="Compile every sample of a generated BSP on every device",
    )
    parser.add_argument("--version", action="version", version=f"bspvalidator {__version__}")
    parser.add_argument("job_file", type=Path, help="Job descriptor (JSON)")
    parser.add_argument("output_dir", type=Path, help="Directory for cell directories and bsptest.log")
    parser.add_argument(
        "-j",
        "--jobs",
        type=_positive_int,
        default=None,
        help="Concurrent compiler processes per cell (default: CPU count)",
    )
    parser.add_argument(
        "--engine",
        type=BuildEngine,
        choices=list(BuildEngine),
        default=BuildEngine.INTERNAL,
        help="Run the tools directly (internal) or through make",
    )
    parser.add_argument(
        "--keep-dirs",
        action="store_true",
        help="Keep cell directories of successful tests",
    )
    parser.add_argument(
        "--resolve-collisions",
        action="store_true",
        help="Rename colliding object files instead of failing the cell",
    )
    parser.add_argument(
        "--continue-past-errors",
        action="store_true",
        help="Let make continue after failed recipes",
    )
    parser.add_argument(
        "--track-dependencies",
        action="store_true",
        help="Compute the files each successful build depended on",
    )
    parser.add_argument(
        "-d",
        "--device-filter",
        default=None,
        help="Only test devices matching this pattern",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Show verbose output and debug logging",
    )
    parser.add_argument(
        "--log-file",
        type=Path,
        default=None,
        help="Also write timestamped progress lines to this file",
    )
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """bspvalidator - compile-matrix regression testing for generated BSPs."""
    parsed_args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if parsed_args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    args = ValidateArgs(
        job_file=parsed_args.job_file,
        output_dir=parsed_args.output_dir,
        jobs=parsed_args.jobs,
        engine=parsed_args.engine,
        keep_dirs=parsed_args.keep_dirs,
        resolve_collisions=parsed_args.resolve_collisions,
        continue_past_errors=parsed_args.continue_past_errors,
        track_dependencies=parsed_args.track_dependencies,
        device_filter=parsed_args.device_filter,
        verbose=parsed_args.verbose,
        log_file=parsed_args.log_file,
    )
    return validate_command(args)


if __name__ == "__main__":
    sys.exit(main())
