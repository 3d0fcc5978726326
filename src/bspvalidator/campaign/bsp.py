"""BSP description and per-cell project resolution.

The BSP generator emits a 'bsp.json' next to the generated headers,
startup files and linker scripts:

    {
      "devices": [
        {"id": "STM32F407VG",
         "sources": ["STM32F4xx/StartupFiles/startup_stm32f407xx.c"],
         "register_map": "STM32F4xx/registers/STM32F407xx.json",
         "configuration": {"com.sysprogs.bspoptions.primary_memory": "flash"},
         "flags": {"common_flags": "-mcpu=cortex-m4 -mthumb",
                   "include_directories": ["STM32F4xx/CMSIS/Include"],
                   "preprocessor_macros": ["STM32F407xx"],
                   "linker_script": "STM32F4xx/LinkerScripts/STM32F407VG_$$com.sysprogs.bspoptions.primary_memory$$.lds"}}
      ],
      "samples": [
        {"name": "LEDBlink", "directory": "samples/LEDBlink",
         "sources": ["main.c", "inc/board.h"], "devices": "^STM32F4"}
      ]
    }

Paths are relative to the BSP directory unless absolute. '$$KEY$$' in any
flag is replaced with the value of KEY in the cell's merged configuration.
"""

import json
import logging
import re
import shutil
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Optional

from ..build.models import ToolFlags
from ..errors import ConfigurationError
from ..registers.loader import load_register_map
from ..registers.models import RegisterMap
from .job import DeviceParameterSet, TestedSample

logger = logging.getLogger(__name__)

BSP_FILE_NAME = "bsp.json"
PROJECT_NAME = "test"

_VARIABLE_REFERENCE = re.compile(r"\$\$([^$\s]+)\$\$")


def merge_configuration(*layers: Optional[Mapping[str, str]]) -> dict[str, str]:
    """Merge configuration layers in order; later layers win."""
    merged: dict[str, str] = {}
    for layer in layers:
        if layer:
            merged.update(layer)
    return merged


def expand_variables(text: str, variables: Mapping[str, str]) -> str:
    """Replace $$KEY$$ references. Unknown keys are left in place."""

    def _lookup(match: re.Match[str]) -> str:
        key = match.group(1)
        if key in variables:
            return variables[key]
        logger.debug(f"No value for {match.group(0)}")
        return match.group(0)

    return _VARIABLE_REFERENCE.sub(_lookup, text)


def _strings(data: dict[str, Any], key: str) -> tuple[str, ...]:
    value = data.get(key) or []
    if isinstance(value, str):
        return (value,)
    return tuple(str(v) for v in value)


def _flags(data: dict[str, Any], where: str) -> ToolFlags:
    value = data.get("flags") or {}
    if not isinstance(value, dict):
        raise ConfigurationError(f"{where}: 'flags' must be an object")
    return ToolFlags.from_dict(value)


@dataclass(frozen=True)
class DeviceDescription:
    """One MCU of the BSP."""

    id: str
    flags: ToolFlags = field(default_factory=ToolFlags)
    sources: tuple[str, ...] = ()
    register_map: Optional[str] = None
    configuration: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DeviceDescription":
        if not isinstance(data, dict) or not data.get("id"):
            raise ConfigurationError("Invalid MCU ID: every device needs a non-empty 'id'")
        where = f"device {data['id']}"
        return cls(
            id=str(data["id"]),
            flags=_flags(data, where),
            sources=_strings(data, "sources"),
            register_map=data.get("register_map"),
            configuration={str(k): str(v) for k, v in (data.get("configuration") or {}).items()},
        )


@dataclass(frozen=True)
class SampleDescription:
    """A sample project shipped with the BSP."""

    name: str
    directory: str
    sources: tuple[str, ...] = ()
    libraries: tuple[str, ...] = ()
    linker_script: Optional[str] = None
    devices: Optional[str] = None
    flags: ToolFlags = field(default_factory=ToolFlags)
    configuration: dict[str, str] = field(default_factory=dict)
    framework_configuration: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SampleDescription":
        if not isinstance(data, dict) or not data.get("name") or not data.get("directory"):
            raise ConfigurationError("Every sample needs a 'name' and a 'directory'")
        where = f"sample {data['name']}"
        return cls(
            name=str(data["name"]),
            directory=str(data["directory"]),
            sources=_strings(data, "sources"),
            libraries=_strings(data, "libraries"),
            linker_script=data.get("linker_script"),
            devices=data.get("devices"),
            flags=_flags(data, where),
            configuration={str(k): str(v) for k, v in (data.get("configuration") or {}).items()},
            framework_configuration={str(k): str(v) for k, v in (data.get("framework_configuration") or {}).items()},
        )

    def supports(self, device_id: str) -> bool:
        return self.devices is None or re.search(self.devices, device_id) is not None


@dataclass(frozen=True)
class BSPDescription:
    """Devices and samples of a generated BSP."""

    root: Path
    devices: tuple[DeviceDescription, ...] = ()
    samples: tuple[SampleDescription, ...] = ()

    @classmethod
    def from_dict(cls, data: dict[str, Any], root: Path) -> "BSPDescription":
        if not isinstance(data, dict):
            raise ConfigurationError(f"{root / BSP_FILE_NAME}: top-level value must be an object")
        devices = tuple(DeviceDescription.from_dict(d) for d in data.get("devices") or [])
        samples = tuple(SampleDescription.from_dict(s) for s in data.get("samples") or [])
        ids = [d.id for d in devices]
        if len(set(ids)) != len(ids):
            raise ConfigurationError(f"{root / BSP_FILE_NAME}: duplicate device ids")
        return cls(root=root, devices=devices, samples=samples)

    def device(self, device_id: str) -> DeviceDescription:
        for device in self.devices:
            if device.id == device_id:
                return device
        raise ConfigurationError(f"Unknown device: {device_id}")

    def samples_for(self, device_id: str) -> list[SampleDescription]:
        return [s for s in self.samples if s.supports(device_id)]

    def path(self, relative: str) -> Path:
        """Resolve a BSP-relative path."""
        p = Path(relative)
        return p if p.is_absolute() else self.root / p


def load_bsp(bsp_path: Path) -> BSPDescription:
    """Load bsp.json from a BSP directory.

    Raises:
        ConfigurationError: If the description is missing or malformed
    """
    description = bsp_path / BSP_FILE_NAME
    if not description.is_file():
        raise ConfigurationError(f"BSP description not found: {description}")
    try:
        with open(description, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"{description}: invalid JSON: {e}") from e

    bsp = BSPDescription.from_dict(data, bsp_path.resolve())
    logger.info(f"Loaded BSP {bsp.root}: {len(bsp.devices)} devices, {len(bsp.samples)} samples")
    return bsp


@dataclass(frozen=True)
class ResolvedProject:
    """Everything the build pipeline needs for one cell.

    Attributes:
        sample_name: Name of the resolved sample
        sample_directory: Original location of the sample
        source_files: Paths handed to the graph builder (sample copies, BSP sources, libraries)
        sample_sources: Original sample source paths, relative to sample_directory
        flags: Fully expanded tool flags
        register_map: Register map of the device, when register validation was requested
    """

    sample_name: str
    sample_directory: Path
    source_files: tuple[str, ...]
    sample_sources: tuple[str, ...]
    flags: ToolFlags
    register_map: Optional[RegisterMap] = None


class ProjectResolver(ABC):
    """Turns a (sample, device) cell into a buildable project."""

    @abstractmethod
    def device_ids(self) -> list[str]:
        """Ids of every device the BSP declares, in declaration order."""

    @abstractmethod
    def resolve(
        self,
        sample: TestedSample,
        device_id: str,
        parameter_set: Optional[DeviceParameterSet],
        cell_dir: Path,
    ) -> Optional[ResolvedProject]:
        """Resolve and materialize a cell.

        Args:
            sample: Sample requested by the job
            device_id: Device under test
            parameter_set: Matching device parameter set, if any
            cell_dir: Fresh, empty cell directory

        Returns:
            The resolved project, or None if the device has no such sample

        Raises:
            ConfigurationError: If the project cannot be resolved
        """


class BSPProjectResolver(ProjectResolver):
    """Resolves cells against a BSPDescription.

    Register maps are loaded on first use and shared by every later cell of
    the same device.
    """

    def __init__(self, bsp: BSPDescription):
        self.bsp = bsp
        self._register_maps: dict[str, Optional[RegisterMap]] = {}

    def device_ids(self) -> list[str]:
        return [d.id for d in self.bsp.devices]

    def register_map(self, device: DeviceDescription) -> Optional[RegisterMap]:
        if device.id not in self._register_maps:
            if device.register_map is None:
                self._register_maps[device.id] = None
            else:
                self._register_maps[device.id] = load_register_map(self.bsp.path(device.register_map))
        return self._register_maps[device.id]

    def find_sample(self, name: str, device_id: str) -> Optional[SampleDescription]:
        """Sample named name supporting device_id; an empty name selects the first one."""
        candidates = self.bsp.samples_for(device_id)
        if not name:
            return candidates[0] if candidates else None
        return next((s for s in candidates if s.name == name), None)

    def resolve(
        self,
        sample: TestedSample,
        device_id: str,
        parameter_set: Optional[DeviceParameterSet],
        cell_dir: Path,
    ) -> Optional[ResolvedProject]:
        device = self.bsp.device(device_id)
        description = self.find_sample(sample.name, device_id)
        if description is None:
            return None

        overrides = parameter_set or DeviceParameterSet(device_regex="")
        variables = merge_configuration(
            {"BSP_ROOT": str(self.bsp.root), "PROJECTNAME": PROJECT_NAME, "DEVICE": device_id},
            merge_configuration(device.configuration, overrides.mcu_configuration, sample.mcu_configuration),
            merge_configuration(
                description.framework_configuration,
                overrides.framework_configuration,
                sample.framework_configuration,
            ),
            merge_configuration(description.configuration, overrides.sample_configuration, sample.sample_configuration),
        )

        # Tools run inside the cell, so every recorded path must be absolute
        cell_dir = cell_dir.absolute()
        sample_dir = self.bsp.path(description.directory)
        copies = self._materialize(description, sample_dir, cell_dir)

        flags = device.flags.merged(description.flags)
        if description.linker_script:
            flags = replace(flags, linker_script=description.linker_script)
        flags = replace(flags, include_directories=(str(cell_dir),) + flags.include_directories)
        flags = self._expand_flags(flags, variables)

        source_files = (
            copies
            + [str(self.bsp.path(expand_variables(s, variables))) for s in device.sources]
            + [str(self.bsp.path(expand_variables(lib, variables))) for lib in description.libraries]
        )

        register_map = self.register_map(device) if sample.validate_registers else None
        return ResolvedProject(
            sample_name=description.name,
            sample_directory=sample_dir,
            source_files=tuple(source_files),
            sample_sources=description.sources,
            flags=flags,
            register_map=register_map,
        )

    @staticmethod
    def _materialize(description: SampleDescription, sample_dir: Path, cell_dir: Path) -> list[str]:
        """Copy the sample sources into the cell directory, keeping relative paths."""
        copies = []
        for relative in description.sources:
            source = sample_dir / relative
            if not source.is_file():
                raise ConfigurationError(f"Sample {description.name}: missing source {source}")
            target = cell_dir / relative
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source, target)
            copies.append(str(target))
        return copies

    def _expand_flags(self, flags: ToolFlags, variables: Mapping[str, str]) -> ToolFlags:
        def strings(values: tuple[str, ...]) -> tuple[str, ...]:
            return tuple(expand_variables(v, variables) for v in values)

        def paths(values: tuple[str, ...]) -> tuple[str, ...]:
            return tuple(str(self.bsp.path(v)) for v in strings(values))

        linker_script = None
        if flags.linker_script:
            linker_script = str(self.bsp.path(expand_variables(flags.linker_script, variables)))

        return ToolFlags(
            c_flags=strings(flags.c_flags),
            cxx_flags=strings(flags.cxx_flags),
            common_flags=strings(flags.common_flags),
            ld_flags=strings(flags.ld_flags),
            include_directories=paths(flags.include_directories),
            preprocessor_macros=strings(flags.preprocessor_macros),
            library_directories=paths(flags.library_directories),
            libraries=strings(flags.libraries),
            linker_inputs=paths(flags.linker_inputs),
            linker_script=linker_script,
        )
