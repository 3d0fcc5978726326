"""Job descriptor.

A job file names the BSP to test, the toolchain to test it with, and the
samples to build on every selected device:

    {
      "bsp_path": "$$JOBDIR$$/../generated/stm32",
      "toolchain_prefix": "/opt/gcc-arm/bin/arm-none-eabi-",
      "device_regex": "^STM32F4",
      "skipped_device_regex": "STM32F401",
      "samples": [
        {"name": "LEDBlink", "validate_registers": true},
        {"name": "USB_CDC", "test_dir_suffix": "-USB", "skip_if_not_found": true}
      ],
      "device_parameter_sets": [
        {"device_regex": "^stm32f41", "mcu_configuration": {"com.sysprogs.bspoptions.primary_memory": "sram"}}
      ],
      "register_renaming_rules": [
        {"register_set_regex": "GPIO[A-K]", "register_regex": "AFR", "mode": "high_low"}
      ],
      "non_validated_registers": ["^DBGMCU"],
      "undefined_macros": ["^CR$"]
    }
"""

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from ..build.graph_builder import DEFAULT_SOURCE_EXTENSIONS
from ..errors import ConfigurationError
from ..registers.models import RegisterValidationParameters, RenamingRule, renaming_rule_from_dict

logger = logging.getLogger(__name__)

JOB_DIR_VARIABLE = "$$JOBDIR$$"


def _string_dict(data: dict[str, Any], key: str, where: str) -> dict[str, str]:
    value = data.get(key) or {}
    if not isinstance(value, dict):
        raise ConfigurationError(f"{where}: '{key}' must be an object")
    return {str(k): str(v) for k, v in value.items()}


def _string_list(data: dict[str, Any], key: str, where: str) -> tuple[str, ...]:
    value = data.get(key) or []
    if not isinstance(value, list):
        raise ConfigurationError(f"{where}: '{key}' must be a list")
    return tuple(str(v) for v in value)


def _compile(pattern: Optional[str], where: str, flags: int = 0) -> Optional[re.Pattern[str]]:
    if not pattern:
        return None
    try:
        return re.compile(pattern, flags)
    except re.error as e:
        raise ConfigurationError(f"{where}: invalid pattern {pattern!r}: {e}") from e


@dataclass(frozen=True)
class TestedSample:
    """One sample to build on every selected device.

    Attributes:
        name: Sample name in the BSP (empty selects the first sample of each device)
        test_dir_suffix: Appended to the device id to form the cell directory name
        device_regex: Per-sample device include pattern
        skip_if_not_found: Record devices without this sample as Skipped instead of aborting
        validate_registers: Inject register offset assertions
        source_file_extensions: Extensions that are compiled, ';'-separated
        sample_configuration: Sample configuration overrides
        framework_configuration: Framework configuration overrides
        mcu_configuration: MCU configuration overrides
    """

    __test__ = False

    name: str
    test_dir_suffix: str = ""
    device_regex: Optional[str] = None
    skip_if_not_found: bool = False
    validate_registers: bool = False
    source_file_extensions: str = DEFAULT_SOURCE_EXTENSIONS
    sample_configuration: dict[str, str] = field(default_factory=dict)
    framework_configuration: dict[str, str] = field(default_factory=dict)
    mcu_configuration: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TestedSample":
        if not isinstance(data, dict):
            raise ConfigurationError("Sample entries must be objects")
        name = str(data.get("name") or "")
        where = f"sample '{name}'"
        device_regex = data.get("device_regex")
        _compile(device_regex, where)
        return cls(
            name=name,
            test_dir_suffix=str(data.get("test_dir_suffix") or ""),
            device_regex=device_regex,
            skip_if_not_found=bool(data.get("skip_if_not_found", False)),
            validate_registers=bool(data.get("validate_registers", False)),
            source_file_extensions=str(data.get("source_file_extensions") or DEFAULT_SOURCE_EXTENSIONS),
            sample_configuration=_string_dict(data, "sample_configuration", where),
            framework_configuration=_string_dict(data, "framework_configuration", where),
            mcu_configuration=_string_dict(data, "mcu_configuration", where),
        )

    @property
    def display_name(self) -> str:
        return self.name or "(default sample)"

    def selects(self, device_id: str) -> bool:
        """Whether the per-sample device pattern admits device_id."""
        return self.device_regex is None or re.search(self.device_regex, device_id) is not None


@dataclass(frozen=True)
class DeviceParameterSet:
    """Configuration overrides for devices matching a case-insensitive pattern."""

    device_regex: str
    sample_configuration: dict[str, str] = field(default_factory=dict)
    framework_configuration: dict[str, str] = field(default_factory=dict)
    mcu_configuration: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DeviceParameterSet":
        if not isinstance(data, dict) or not data.get("device_regex"):
            raise ConfigurationError("Device parameter sets need a 'device_regex'")
        where = f"device parameter set '{data['device_regex']}'"
        _compile(data["device_regex"], where, re.IGNORECASE)
        return cls(
            device_regex=data["device_regex"],
            sample_configuration=_string_dict(data, "sample_configuration", where),
            framework_configuration=_string_dict(data, "framework_configuration", where),
            mcu_configuration=_string_dict(data, "mcu_configuration", where),
        )

    def matches(self, device_id: str) -> bool:
        return re.search(self.device_regex, device_id, re.IGNORECASE) is not None


@dataclass(frozen=True)
class TestJob:
    """A validation campaign: which BSP, which toolchain, which samples.

    Attributes:
        bsp_path: Directory holding bsp.json
        toolchain_prefix: Path prefix of the cross tools
        samples: Samples to test, in order
        device_regex: Campaign-wide device include pattern
        skipped_device_regex: Campaign-wide device exclude pattern
        make_path: Build driver for the driver-delegated engine
        device_parameter_sets: Per-device overrides, first match wins
        renaming_rules: Register renaming rules, first match wins
        non_validated_registers: Register/group name patterns never validated
        undefined_macros: Register name patterns to #undef before use
    """

    __test__ = False

    bsp_path: Path
    toolchain_prefix: str
    samples: tuple[TestedSample, ...]
    device_regex: Optional[str] = None
    skipped_device_regex: Optional[str] = None
    make_path: str = "make"
    device_parameter_sets: tuple[DeviceParameterSet, ...] = ()
    renaming_rules: tuple[RenamingRule, ...] = ()
    non_validated_registers: tuple[str, ...] = ()
    undefined_macros: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: dict[str, Any], job_dir: Optional[Path] = None) -> "TestJob":
        """Create a job from its JSON representation.

        Args:
            data: Parsed job file
            job_dir: Directory substituted for $$JOBDIR$$ in bsp_path

        Raises:
            ConfigurationError: If a field is missing or malformed
        """
        if not isinstance(data, dict):
            raise ConfigurationError("Job file must contain an object")
        for key in ("bsp_path", "toolchain_prefix"):
            if not data.get(key):
                raise ConfigurationError(f"Job file is missing '{key}'")

        samples = data.get("samples") or []
        if not isinstance(samples, list) or not samples:
            raise ConfigurationError("Job file must list at least one sample")

        bsp_path = str(data["bsp_path"])
        if job_dir is not None:
            bsp_path = bsp_path.replace(JOB_DIR_VARIABLE, str(job_dir))

        _compile(data.get("device_regex"), "device_regex")
        _compile(data.get("skipped_device_regex"), "skipped_device_regex")
        non_validated = _string_list(data, "non_validated_registers", "job")
        undefined = _string_list(data, "undefined_macros", "job")
        for pattern in non_validated:
            _compile(pattern, "non_validated_registers")
        for pattern in undefined:
            _compile(pattern, "undefined_macros")

        rules = []
        for rule in data.get("register_renaming_rules") or []:
            try:
                rules.append(renaming_rule_from_dict(rule))
            except (ValueError, TypeError, re.error) as e:
                raise ConfigurationError(f"Invalid register renaming rule {rule!r}: {e}") from e

        return cls(
            bsp_path=Path(bsp_path),
            toolchain_prefix=str(data["toolchain_prefix"]),
            samples=tuple(TestedSample.from_dict(s) for s in samples),
            device_regex=data.get("device_regex") or None,
            skipped_device_regex=data.get("skipped_device_regex") or None,
            make_path=str(data.get("make_path") or "make"),
            device_parameter_sets=tuple(DeviceParameterSet.from_dict(p) for p in data.get("device_parameter_sets") or []),
            renaming_rules=tuple(rules),
            non_validated_registers=non_validated,
            undefined_macros=undefined,
        )

    @property
    def register_validation_parameters(self) -> RegisterValidationParameters:
        return RegisterValidationParameters(
            renaming_rules=self.renaming_rules,
            non_validated_registers=self.non_validated_registers,
            undefined_macros=self.undefined_macros,
        )

    def parameter_set_for(self, device_id: str) -> Optional[DeviceParameterSet]:
        """First device parameter set whose pattern matches device_id."""
        return next((p for p in self.device_parameter_sets if p.matches(device_id)), None)


def load_job(path: Path) -> TestJob:
    """Load a job file.

    Raises:
        ConfigurationError: If the file is missing or malformed
    """
    if not path.is_file():
        raise ConfigurationError(f"Job file not found: {path}")
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"{path}: invalid JSON: {e}") from e

    job = TestJob.from_dict(data, job_dir=path.resolve().parent)
    logger.debug(f"Loaded job {path}: {len(job.samples)} samples, BSP at {job.bsp_path}")
    return job
