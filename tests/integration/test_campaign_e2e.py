"""
End-to-end campaign over a fake cross toolchain.

The toolchain is a set of Python scripts named like the real tools. The
"compiler" writes an object file and a dependency file, the "linker" writes
a map file that lists main() unless the linker script discards it, and
"objcopy" writes a 1 KiB image. This exercises job loading, BSP resolution,
graph construction, process scheduling, artifact verification and the
report without a real toolchain.
"""

import os
import stat
import sys

import pytest

from bspvalidator.campaign.bsp import BSPProjectResolver, load_bsp
from bspvalidator.campaign.job import load_job
from bspvalidator.campaign.results import REPORT_FILE_NAME, TestOutcome
from bspvalidator.campaign.runner import CampaignOptions, CampaignRunner
from bspvalidator.cli import EXIT_TEST_FAILURES, main

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(sys.platform == "win32", reason="fake tools rely on shebang lines"),
]

PREFIX = "arm-none-eabi-"

FAKE_TOOL = """
import os
import sys

args = sys.argv[1:]
tool = os.path.basename(sys.argv[0])


def value_after(flag):
    return args[args.index(flag) + 1]


if tool.endswith("objcopy"):
    with open(args[-1], "wb") as f:
        f.write(b"\\xff" * 1024)
    sys.exit(0)

output = value_after("-o")
if "-c" in args:
    source = args[args.index("-c") + 3]
    with open(source, encoding="utf-8") as f:
        text = f.read()
    if "#error" in text:
        print(f"{source}:1:2: error: #error directive", flush=True)
        sys.exit(1)
    with open(output, "w", encoding="utf-8") as f:
        f.write("obj\\n")
    with open(os.path.splitext(output)[0] + ".d", "w", encoding="utf-8") as f:
        f.write(f"{output}: {source}\\n")
    sys.exit(0)

script = next(a[2:] for a in args if a.startswith("-T"))
with open(script, encoding="utf-8") as f:
    discard = "/DISCARD/" in f.read()
symbol = "Reset_Handler" if discard else "main"
with open("test.map", "w", encoding="utf-8") as f:
    f.write(f"Memory Configuration\\n\\n                0x08000100                {symbol}\\n")
with open(output, "wb") as f:
    f.write(b"\\x7fELF")
"""


@pytest.fixture
def toolchain(tmp_path):
    """Directory holding fake gcc, g++ and objcopy; returns the tool prefix."""
    bin_dir = tmp_path / "toolchain" / "bin"
    bin_dir.mkdir(parents=True)
    for name in ("gcc", "g++", "objcopy"):
        tool = bin_dir / f"{PREFIX}{name}"
        tool.write_text(f"#!{sys.executable}\n{FAKE_TOOL}", encoding="utf-8")
        tool.chmod(tool.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return f"{bin_dir}{os.sep}{PREFIX}"


@pytest.fixture
def job_file(tmp_path, write_json, toolchain):
    """A BSP with a good and a broken device, and a job testing LEDBlink on both."""
    bsp = tmp_path / "bsp"
    (bsp / "samples" / "LEDBlink").mkdir(parents=True)
    (bsp / "samples" / "LEDBlink" / "main.c").write_text("int main(void) { for (;;); }\n", encoding="utf-8")
    (bsp / "startup").mkdir()
    (bsp / "startup" / "startup_DEV_GOOD.c").write_text("void Reset_Handler(void) {}\n", encoding="utf-8")
    (bsp / "startup" / "startup_DEV_BAD.c").write_text("void Reset_Handler(void) {}\n", encoding="utf-8")
    (bsp / "ld").mkdir()
    (bsp / "ld" / "DEV_GOOD.lds").write_text("SECTIONS { .text : { *(.text*) } }\n", encoding="utf-8")
    (bsp / "ld" / "DEV_BAD.lds").write_text("SECTIONS { /DISCARD/ : { *(.text.main) } }\n", encoding="utf-8")

    def device(device_id):
        return {
            "id": device_id,
            "sources": ["startup/startup_$$DEVICE$$.c"],
            "flags": {"common_flags": "-mthumb", "linker_script": "ld/$$DEVICE$$.lds"},
        }

    write_json(
        "bsp/bsp.json",
        {
            "devices": [device("DEV_GOOD"), device("DEV_BAD")],
            "samples": [{"name": "LEDBlink", "directory": "samples/LEDBlink", "sources": ["main.c"]}],
        },
    )
    return write_json(
        "jobs/job.json",
        {"bsp_path": "$$JOBDIR$$/../bsp", "toolchain_prefix": toolchain, "samples": [{"name": "LEDBlink"}]},
    )


class TestCampaignEndToEnd:
    """Run complete campaigns against the fake toolchain."""

    def test_good_and_bad_device(self, tmp_path, job_file):
        """Test that a discarded main() fails only the affected device."""
        job = load_job(job_file)
        out = tmp_path / "out"
        runner = CampaignRunner(job, BSPProjectResolver(load_bsp(job.bsp_path)), out, CampaignOptions(jobs=2))

        stats = runner.run()

        assert (stats.passed, stats.failed, stats.skipped) == (1, 1, 0)
        outcomes = {c.device_id: c.result.outcome for c in runner.cells}
        assert outcomes == {"DEV_GOOD": TestOutcome.SUCCEEDED, "DEV_BAD": TestOutcome.FAILED}

        assert not (out / "DEV_GOOD").exists()
        assert (out / "DEV_BAD" / "test.map").is_file()
        report = (out / REPORT_FILE_NAME).read_text(encoding="utf-8")
        assert "LEDBlink succeeded on 1 devices, failed on: DEV_BAD" in report
        assert "Total test: 2, failed: 1" in report

    def test_compile_error(self, tmp_path, job_file):
        """Test that a compiler error fails the cell and lands in build.log."""
        (tmp_path / "bsp" / "samples" / "LEDBlink" / "main.c").write_text("#error broken\n", encoding="utf-8")
        job = load_job(job_file)
        out = tmp_path / "out"

        stats = CampaignRunner(job, BSPProjectResolver(load_bsp(job.bsp_path)), out).run()

        assert stats.failed == 2
        log = (out / "DEV_GOOD" / "build.log").read_text(encoding="utf-8")
        assert "error: #error directive" in log

    def test_dependency_tracking(self, tmp_path, job_file):
        """Test that a successful cell reports the files its build read."""
        job = load_job(job_file)
        options = CampaignOptions(track_dependencies=True, device_filter="GOOD")
        out = tmp_path / "out"
        runner = CampaignRunner(job, BSPProjectResolver(load_bsp(job.bsp_path)), out, options)

        runner.run()

        assert [c.device_id for c in runner.cells] == ["DEV_GOOD"]
        assert runner.cells[0].result.dependencies == frozenset(
            {
                os.path.abspath(out / "DEV_GOOD" / "main.c"),
                os.path.realpath(tmp_path / "bsp" / "startup" / "startup_DEV_GOOD.c"),
            }
        )

    def test_cli_exit_code(self, tmp_path, job_file):
        """Test that the CLI exits with 1 when a device fails."""
        assert main([str(job_file), str(tmp_path / "cli-out"), "-j", "1"]) == EXIT_TEST_FAILURES
        assert (tmp_path / "cli-out" / REPORT_FILE_NAME).is_file()

    def test_cli_relative_output_directory(self, tmp_path, job_file, monkeypatch):
        """Test that a relative output directory builds cells from the current directory."""
        monkeypatch.chdir(tmp_path)

        assert main([str(job_file), "rel-out", "-j", "1"]) == EXIT_TEST_FAILURES

        report = (tmp_path / "rel-out" / REPORT_FILE_NAME).read_text(encoding="utf-8")
        assert "\tDEV_GOOD: Succeeded" in report
        assert "\tDEV_BAD: Failed" in report
        assert (tmp_path / "rel-out" / "DEV_BAD" / "main.o").is_file()
