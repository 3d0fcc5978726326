"""Register map loader.

Reads the JSON hardware description produced by the BSP generator:

    {
      "mcu_name": "STM32F407xx",
      "register_sets": [
        {"name": "GPIOA",
         "registers": [{"name": "MODER", "address": "0x40020000"}, ...]},
        ...
      ]
    }

Addresses may be JSON integers or strings in any base Python's int(x, 0)
accepts.
"""

import json
import logging
from pathlib import Path
from typing import Any

from ..errors import ConfigurationError
from .models import Register, RegisterGroup, RegisterMap

logger = logging.getLogger(__name__)


def _parse_address(value: Any, where: str) -> int:
    if isinstance(value, bool):
        raise ConfigurationError(f"{where}: invalid address {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError:
            pass
    raise ConfigurationError(f"{where}: invalid address {value!r}")


def register_map_from_dict(data: dict[str, Any], source: str = "<register map>") -> RegisterMap:
    """Build a RegisterMap from its JSON representation.

    Raises:
        ConfigurationError: If the structure is malformed
    """
    if not isinstance(data, dict):
        raise ConfigurationError(f"{source}: top-level value must be an object")

    groups = []
    for group_data in data.get("register_sets", []):
        group_name = group_data.get("name")
        if not group_name:
            raise ConfigurationError(f"{source}: register set without a name")
        registers = []
        for reg in group_data.get("registers", []):
            if "name" not in reg or "address" not in reg:
                raise ConfigurationError(f"{source}: {group_name}: register needs 'name' and 'address'")
            registers.append(Register(reg["name"], _parse_address(reg["address"], f"{source}: {group_name}.{reg['name']}")))
        groups.append(RegisterGroup(group_name, tuple(registers)))

    return RegisterMap(mcu_name=data.get("mcu_name", ""), groups=tuple(groups))


def load_register_map(path: Path) -> RegisterMap:
    """Load a register map from a JSON file.

    Raises:
        ConfigurationError: If the file is missing or malformed
    """
    if not path.is_file():
        raise ConfigurationError(f"Register map not found: {path}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"{path}: invalid JSON") from e

    register_map = register_map_from_dict(data, str(path))
    logger.debug(f"Loaded {register_map.register_count} registers for {register_map.mcu_name} from {path}")
    return register_map
