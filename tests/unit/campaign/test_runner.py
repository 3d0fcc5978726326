"""Unit tests for the campaign runner.

The resolver and the scheduler are replaced by in-process fakes, so these
tests exercise cell sequencing, outcome accounting and artifact
verification without starting any tool.
"""

import os
from pathlib import Path
from typing import Optional

import pytest

from bspvalidator.build.build_log import BUILD_LOG_NAME, BuildLog
from bspvalidator.build.models import BuildGraph, ToolFlags
from bspvalidator.build.scheduler import ProcessScheduler
from bspvalidator.campaign.bsp import ProjectResolver, ResolvedProject
from bspvalidator.campaign.job import DeviceParameterSet, TestedSample, TestJob
from bspvalidator.campaign.results import REPORT_FILE_NAME, TestOutcome
from bspvalidator.campaign.runner import (
    CampaignOptions,
    CampaignRunner,
    CellState,
    ValidationFlags,
    verify_image,
)
from bspvalidator.errors import ConfigurationError
from bspvalidator.registers.models import Register, RegisterGroup, RegisterMap

MAP_WITH_MAIN = """\
Memory Configuration

 .text          0x08000000      0x400
                0x08000100                main
                0x08000180                SystemInit
"""


class FakeResolver(ProjectResolver):
    """Materializes a one-file project for every device except those listed as missing."""

    def __init__(self, devices, missing=(), colliding=(), register_map=None):
        self.devices = list(devices)
        self.missing = set(missing)
        self.colliding = set(colliding)
        self.register_map = register_map
        self.parameter_sets: dict[str, Optional[DeviceParameterSet]] = {}

    def device_ids(self):
        return list(self.devices)

    def resolve(self, sample, device_id, parameter_set, cell_dir):
        self.parameter_sets[device_id] = parameter_set
        if device_id in self.missing:
            return None
        (cell_dir / "main.c").write_text("int main() { return 0; }\n", encoding="utf-8")
        sources = [str(cell_dir / "main.c")]
        if device_id in self.colliding:
            (cell_dir / "hal").mkdir()
            (cell_dir / "hal" / "main.c").write_text("void hal(void) {}\n", encoding="utf-8")
            sources.append(str(cell_dir / "hal" / "main.c"))
        return ResolvedProject(
            sample_name=sample.name,
            sample_directory=cell_dir,
            source_files=tuple(sources),
            sample_sources=("main.c",),
            flags=ToolFlags(),
            register_map=self.register_map if sample.validate_registers else None,
        )


class FakeScheduler(ProcessScheduler):
    """Writes the artifacts a successful link would produce."""

    def __init__(self, failing=(), image_size=600, with_main=True):
        self.failing = set(failing)
        self.image_size = image_size
        self.with_main = with_main
        self.built: list[str] = []

    def run(self, graph: BuildGraph, working_dir: Path, log: BuildLog) -> bool:
        self.built.append(working_dir.name)
        log.write_line(0, f"building {len(graph.compile_tasks)} sources")
        if working_dir.name in self.failing:
            log.write_line(0, "main.c:1:1: error: expected ';'")
            return False
        (working_dir / "main.d").write_text("main.o: main.c board.h\n", encoding="utf-8")
        map_text = MAP_WITH_MAIN if self.with_main else MAP_WITH_MAIN.replace("main\n", "Reset_Handler\n")
        (working_dir / "test.map").write_text(map_text, encoding="utf-8")
        (working_dir / "test.bin").write_bytes(b"\xff" * self.image_size)
        return True


def _job(*samples: TestedSample, **kwargs) -> TestJob:
    return TestJob(bsp_path=Path("/bsp"), toolchain_prefix="arm-none-eabi-", samples=samples, **kwargs)


def _runner(tmp_path, job, resolver, scheduler=None, **options) -> CampaignRunner:
    return CampaignRunner(job, resolver, tmp_path / "out", CampaignOptions(**options), scheduler or FakeScheduler())


class TestVerifyImage:
    """Test artifact verification."""

    def _write(self, directory: Path, map_text: str, size: int) -> None:
        (directory / "test.map").write_text(map_text, encoding="utf-8")
        (directory / "test.bin").write_bytes(b"\0" * size)

    def test_valid(self, tmp_path):
        """Test a map with main and a large enough image."""
        self._write(tmp_path, MAP_WITH_MAIN, 512)
        assert verify_image(tmp_path)

    def test_image_too_small(self, tmp_path):
        """Test that an image below the minimum size fails."""
        self._write(tmp_path, MAP_WITH_MAIN, 511)
        assert not verify_image(tmp_path)

    def test_main_must_stand_alone(self, tmp_path):
        """Test that symbols merely containing 'main' do not count."""
        self._write(tmp_path, "                0x08000100                main_loop\n main 0x0\n", 1024)
        assert not verify_image(tmp_path)

    def test_crlf_map(self, tmp_path):
        """Test that Windows line endings are tolerated."""
        (tmp_path / "test.map").write_bytes(b"\t0x08000100\tmain\r\n")
        (tmp_path / "test.bin").write_bytes(b"\0" * 1024)
        assert verify_image(tmp_path)

    def test_missing_artifacts(self, tmp_path):
        """Test that missing map or image files fail."""
        assert not verify_image(tmp_path)
        (tmp_path / "test.map").write_text(MAP_WITH_MAIN, encoding="utf-8")
        assert not verify_image(tmp_path)


class TestDeviceSelection:
    """Test the order of device filters."""

    def test_filters(self, tmp_path):
        """Test include, exclude, sample and caller filters."""
        resolver = FakeResolver(["STM32F407VG", "STM32F405RG", "STM32F401CC", "STM32F103C8"])
        sample = TestedSample("LEDBlink", device_regex="F40")
        job = _job(sample, device_regex="^STM32F4", skipped_device_regex="F401")
        runner = _runner(tmp_path, job, resolver, device_filter="VG$")

        devices = runner.select_devices()

        assert devices == ["STM32F407VG", "STM32F405RG"]
        assert runner.devices_for(sample, devices) == ["STM32F407VG"]


class TestCampaignRunner:
    """Test running campaigns end to end with fakes."""

    def test_every_cell_reaches_terminal_state(self, tmp_path):
        """Test that the number of terminal cells equals the number of tests."""
        resolver = FakeResolver(["A", "B", "C"], missing={"C"})
        scheduler = FakeScheduler(failing={"B"})
        job = _job(TestedSample("LEDBlink", skip_if_not_found=True))

        stats = _runner(tmp_path, job, resolver, scheduler).run()

        assert (stats.passed, stats.failed, stats.skipped) == (1, 1, 1)
        assert stats.samples[0].failed_devices == ["B"]
        assert scheduler.built == ["A", "B"]

    def test_cell_states(self, tmp_path):
        """Test the terminal state recorded on each cell."""
        resolver = FakeResolver(["A", "B", "C"], missing={"C"})
        runner = _runner(tmp_path, _job(TestedSample("x", skip_if_not_found=True)), resolver, FakeScheduler(failing={"B"}))

        stats = runner.run()

        assert [c.state for c in runner.cells] == [CellState.SUCCEEDED, CellState.FAILED, CellState.SKIPPED]
        assert all(c.state.is_terminal for c in runner.cells)
        assert len(runner.cells) == stats.total

    def test_report_written(self, tmp_path):
        """Test that the report lists outcomes and failing devices."""
        resolver = FakeResolver(["STM32F407VG", "STM32F405RG"])
        _runner(tmp_path, _job(TestedSample("LEDBlink")), resolver, FakeScheduler(failing={"STM32F405RG"})).run()

        report = (tmp_path / "out" / REPORT_FILE_NAME).read_text(encoding="utf-8")
        assert "\tSTM32F407VG: Succeeded" in report
        assert "\tSTM32F405RG: Failed" in report
        assert "LEDBlink succeeded on 1 devices, failed on: STM32F405RG" in report

    def test_relative_output_directory(self, tmp_path, monkeypatch):
        """Test that cells of a relative output directory get absolute paths."""
        monkeypatch.chdir(tmp_path)
        runner = CampaignRunner(_job(TestedSample("x")), FakeResolver(["A"]), Path("out"), CampaignOptions(), FakeScheduler())

        stats = runner.run()

        assert stats.passed == 1
        assert runner.cells[0].directory == tmp_path / "out" / "A"
        assert (tmp_path / "out" / REPORT_FILE_NAME).is_file()

    def test_directories_removed_after_success(self, tmp_path):
        """Test that only failed cells keep their directory by default."""
        resolver = FakeResolver(["A", "B"])
        _runner(tmp_path, _job(TestedSample("x")), resolver, FakeScheduler(failing={"B"})).run()

        assert not (tmp_path / "out" / "A").exists()
        assert (tmp_path / "out" / "B" / BUILD_LOG_NAME).is_file()

    def test_keep_directories(self, tmp_path):
        """Test that successful cells are kept on request."""
        runner = _runner(
            tmp_path,
            _job(TestedSample("x", test_dir_suffix="-x")),
            FakeResolver(["A"]),
            flags=ValidationFlags.KEEP_DIRECTORY_AFTER_SUCCESS,
        )
        runner.run()

        cell = tmp_path / "out" / "A-x"
        assert (cell / "test.bin").is_file()
        assert (cell / "Makefile").is_file()
        assert "Original directory:" in (cell / "Makefile").read_text(encoding="utf-8")

    def test_stale_directory_replaced(self, tmp_path):
        """Test that leftovers from a previous campaign are removed first."""
        stale = tmp_path / "out" / "A" / "stale.o"
        stale.parent.mkdir(parents=True)
        stale.write_bytes(b"old")

        runner = _runner(
            tmp_path, _job(TestedSample("x")), FakeResolver(["A"]), flags=ValidationFlags.KEEP_DIRECTORY_AFTER_SUCCESS
        )
        runner.run()

        assert not stale.exists()

    def test_verification_failure(self, tmp_path):
        """Test that a build without main fails verification."""
        stats = _runner(tmp_path, _job(TestedSample("x")), FakeResolver(["A"]), FakeScheduler(with_main=False)).run()
        assert stats.failed == 1

    def test_small_image_fails(self, tmp_path):
        """Test the minimum image size."""
        stats = _runner(tmp_path, _job(TestedSample("x")), FakeResolver(["A"]), FakeScheduler(image_size=100)).run()
        assert stats.failed == 1

    def test_name_collision_fails_cell(self, tmp_path):
        """Test that colliding object names fail the cell and are logged."""
        scheduler = FakeScheduler()
        stats = _runner(tmp_path, _job(TestedSample("x")), FakeResolver(["A", "B"], colliding={"A"}), scheduler).run()

        assert (stats.passed, stats.failed) == (1, 1)
        assert scheduler.built == ["B"]
        log = (tmp_path / "out" / "A" / BUILD_LOG_NAME).read_text(encoding="utf-8")
        assert "ERROR: Multiple source files with the same name found: main.o" in log
        assert "main.o corresponds to the following files:" in log

    def test_name_collision_resolved(self, tmp_path):
        """Test that collisions are disambiguated on request."""
        scheduler = FakeScheduler()
        stats = _runner(
            tmp_path,
            _job(TestedSample("x")),
            FakeResolver(["A"], colliding={"A"}),
            scheduler,
            flags=ValidationFlags.RESOLVE_NAME_COLLISIONS,
        ).run()

        assert stats.passed == 1
        assert scheduler.built == ["A"]

    def test_dependency_tracking(self, tmp_path):
        """Test that the closure is computed before the directory is removed."""
        runner = _runner(tmp_path, _job(TestedSample("x")), FakeResolver(["A"]), track_dependencies=True)
        runner.run()

        cell = tmp_path / "out" / "A"
        assert runner.cells[0].result.dependencies == frozenset(
            {os.path.abspath(cell / "main.c"), os.path.abspath(cell / "board.h")}
        )

    def test_register_validation_injected(self, tmp_path):
        """Test that register assertions are appended to the first sample source."""
        reg_map = RegisterMap("STM32F407xx", (RegisterGroup("RCC", (Register("CR", 0x40023800),)),))
        runner = _runner(
            tmp_path,
            _job(TestedSample("x", validate_registers=True)),
            FakeResolver(["A"], register_map=reg_map),
            flags=ValidationFlags.KEEP_DIRECTORY_AFTER_SUCCESS,
        )
        runner.run()

        text = (tmp_path / "out" / "A" / "main.c").read_text(encoding="utf-8")
        assert "STATIC_ASSERT((unsigned)&(RCC->CR) == 0x40023800);" in text

    def test_parameter_set_passed_to_resolver(self, tmp_path):
        """Test that the first matching parameter set reaches the resolver."""
        params = DeviceParameterSet("^a$", mcu_configuration={"k": "v"})
        resolver = FakeResolver(["A", "B"])
        _runner(tmp_path, _job(TestedSample("x"), device_parameter_sets=(params,)), resolver).run()

        assert resolver.parameter_sets == {"A": params, "B": None}


class TestFatalConditions:
    """Test conditions that abort the campaign."""

    def test_no_devices_selected(self, tmp_path):
        """Test that a sample applying to no device is fatal."""
        job = _job(TestedSample("x", device_regex="^nRF"))
        with pytest.raises(ConfigurationError, match="No devices selected"):
            _runner(tmp_path, job, FakeResolver(["STM32F407VG"])).run()

    def test_all_skipped(self, tmp_path):
        """Test that a sample skipped on every device is fatal."""
        job = _job(TestedSample("USB", skip_if_not_found=True))
        with pytest.raises(ConfigurationError, match="Not a single device supports USB"):
            _runner(tmp_path, job, FakeResolver(["A", "B"], missing={"A", "B"})).run()

    def test_missing_sample_not_skippable(self, tmp_path):
        """Test that a missing sample without skip_if_not_found is fatal."""
        with pytest.raises(ConfigurationError, match="Cannot find sample"):
            _runner(tmp_path, _job(TestedSample("USB")), FakeResolver(["A"], missing={"A"})).run()

    def test_summary_written_on_abort(self, tmp_path):
        """Test that the report summary survives a fatal error in a later sample."""
        job = _job(TestedSample("LEDBlink"), TestedSample("USB", device_regex="^nRF"))
        with pytest.raises(ConfigurationError):
            _runner(tmp_path, job, FakeResolver(["A"])).run()

        report = (tmp_path / "out" / REPORT_FILE_NAME).read_text(encoding="utf-8")
        assert "\tA: Succeeded" in report
        assert "Campaign aborted: No devices selected for USB" in report
        assert "LEDBlink succeeded on 1 devices" in report
