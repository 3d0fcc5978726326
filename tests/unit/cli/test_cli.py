"""Unit tests for the command-line interface."""

from io import StringIO
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from rich.console import Console

from bspvalidator import output
from bspvalidator.build.scheduler import BuildEngine
from bspvalidator.campaign.results import CampaignStatistics
from bspvalidator.campaign.runner import ValidationFlags
from bspvalidator.cli import (
    EXIT_FATAL,
    EXIT_INTERRUPTED,
    EXIT_SUCCESS,
    EXIT_TEST_FAILURES,
    ValidateArgs,
    build_parser,
    main,
    validate_command,
)


def _console() -> tuple[Console, StringIO]:
    buffer = StringIO()
    return Console(file=buffer, width=120, color_system=None), buffer


class TestParser:
    """Test argument parsing."""

    def test_defaults(self):
        """Test the defaults of a minimal invocation."""
        args = build_parser().parse_args(["job.json", "out"])

        assert args.engine == BuildEngine.INTERNAL
        assert args.jobs is None
        assert not args.keep_dirs
        assert args.device_filter is None

    def test_all_options(self):
        """Test that every option is parsed."""
        args = build_parser().parse_args(
            ["job.json", "out", "-j", "8", "--engine", "make", "--keep-dirs", "--resolve-collisions",
             "--continue-past-errors", "--track-dependencies", "-d", "^STM32F4", "-v"]
        )

        assert args.jobs == 8
        assert args.engine == BuildEngine.MAKE
        assert args.keep_dirs and args.resolve_collisions and args.continue_past_errors
        assert args.track_dependencies
        assert args.device_filter == "^STM32F4"
        assert args.verbose

    def test_log_file(self):
        """Test that --log-file is parsed as a path and absent by default."""
        assert build_parser().parse_args(["job.json", "out"]).log_file is None
        args = build_parser().parse_args(["job.json", "out", "--log-file", "logs/run.log"])
        assert args.log_file == Path("logs/run.log")

    @pytest.mark.parametrize("jobs", ["0", "-2", "many"])
    def test_invalid_jobs(self, jobs):
        """Test that the process cap must be a positive integer."""
        with pytest.raises(SystemExit):
            build_parser().parse_args(["job.json", "out", "-j", jobs])

    def test_invalid_engine(self):
        """Test that unknown engines are rejected."""
        with pytest.raises(SystemExit):
            build_parser().parse_args(["job.json", "out", "--engine", "ninja"])


class TestValidateArgs:
    """Test conversion of arguments into campaign options."""

    def test_flags(self, tmp_path):
        """Test that boolean options become validation flags."""
        args = ValidateArgs(tmp_path / "job.json", tmp_path, keep_dirs=True, continue_past_errors=True, jobs=2)
        options = args.campaign_options()

        assert options.flags == ValidationFlags.KEEP_DIRECTORY_AFTER_SUCCESS | ValidationFlags.CONTINUE_PAST_COMPILATION_ERRORS
        assert options.jobs == 2
        assert options.engine == BuildEngine.INTERNAL

    def test_no_flags(self, tmp_path):
        """Test that no options means no flags."""
        assert ValidateArgs(tmp_path / "job.json", tmp_path).campaign_options().flags == ValidationFlags.NONE


class TestValidateCommand:
    """Test exit codes of the validate command."""

    def _run(self, tmp_path, stats=None, error=None) -> tuple[int, str]:
        runner = MagicMock()
        if error is not None:
            runner.run.side_effect = error
        else:
            runner.run.return_value = stats
        console, buffer = _console()
        with (
            patch("bspvalidator.cli.load_job"),
            patch("bspvalidator.cli.load_bsp"),
            patch("bspvalidator.cli.CampaignRunner", return_value=runner),
        ):
            code = validate_command(ValidateArgs(tmp_path / "job.json", tmp_path / "out"), console)
        return code, buffer.getvalue()

    def test_all_passed(self, tmp_path):
        """Test exit code 0 when nothing failed."""
        code, text = self._run(tmp_path, CampaignStatistics(passed=4, skipped=1))
        assert code == EXIT_SUCCESS
        assert "4 passed, 0 failed, 1 skipped" in text

    def test_failures(self, tmp_path):
        """Test exit code 1 when a cell failed."""
        code, _ = self._run(tmp_path, CampaignStatistics(passed=4, failed=1))
        assert code == EXIT_TEST_FAILURES

    def test_interrupted(self, tmp_path):
        """Test exit code 130 on Ctrl-C."""
        code, text = self._run(tmp_path, error=KeyboardInterrupt())
        assert code == EXIT_INTERRUPTED
        assert "interrupted" in text

    def test_missing_job_file(self, tmp_path):
        """Test that a configuration error exits with code 2."""
        console, buffer = _console()
        code = validate_command(ValidateArgs(tmp_path / "missing.json", tmp_path / "out"), console)

        assert code == EXIT_FATAL
        assert "ConfigurationError" in buffer.getvalue()
        assert "Job file not found" in buffer.getvalue()


def test_main_reports_configuration_error(tmp_path, write_json):
    """Test main() end to end with a BSP directory that has no description."""
    job = write_json("job.json", {"bsp_path": str(tmp_path / "bsp"), "toolchain_prefix": "x-", "samples": [{"name": "s"}]})
    assert main([str(job), str(tmp_path / "out")]) == EXIT_FATAL


class TestLogFile:
    """Test mirroring of console progress into a log file."""

    def _run(self, tmp_path, log_file, run):
        runner = MagicMock()
        runner.run.side_effect = run
        console, _ = _console()
        with (
            patch("bspvalidator.cli.load_job"),
            patch("bspvalidator.cli.load_bsp"),
            patch("bspvalidator.cli.CampaignRunner", return_value=runner),
        ):
            args = ValidateArgs(tmp_path / "job.json", tmp_path / "out", log_file=log_file)
            return validate_command(args, console)

    def test_progress_mirrored(self, tmp_path, console_output):
        """Test that progress lines reach both the console and the log file."""

        def run():
            output.log("Testing LEDBlink...")
            return CampaignStatistics(passed=1)

        log_file = tmp_path / "logs" / "run.log"
        assert self._run(tmp_path, log_file, run) == EXIT_SUCCESS

        assert "Testing LEDBlink..." in log_file.read_text(encoding="utf-8")
        assert "Testing LEDBlink..." in console_output.getvalue()

    def test_mirror_detached_after_run(self, tmp_path):
        """Test that the log file stops receiving lines once the command returns."""
        log_file = tmp_path / "run.log"
        self._run(tmp_path, log_file, KeyboardInterrupt())

        output.log("after the campaign")
        assert "after the campaign" not in log_file.read_text(encoding="utf-8")

    def test_unwritable_log_file(self, tmp_path):
        """Test that a log file that cannot be created is a fatal error."""
        (tmp_path / "blocker").write_text("", encoding="utf-8")
        assert self._run(tmp_path, tmp_path / "blocker" / "run.log", None) == EXIT_FATAL
