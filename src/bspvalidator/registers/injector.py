"""Register offset validation.

Appends a function to one source file of the cell whose body is a list of
compile-time assertions, one per register:

    #define STATIC_ASSERT(COND) typedef char static_assertion[(COND)?1:-1]
    void ValidateOffsets()
    {
    STATIC_ASSERT((unsigned)&(GPIOA->MODER) == 0x40020000);
    #undef CR
    STATIC_ASSERT((unsigned)&(RCC->CR) == 0x40023800);
    STATIC_ASSERT((unsigned)&(GPIOA->AFR[0]) == 0x40020020);
    }

If a peripheral struct in the generated headers has a wrong field layout,
the cell stops compiling, which turns a silent register offset mistake into
a failed test.
"""

import logging
from pathlib import Path
from typing import Optional

from ..errors import RegisterInjectionError
from .models import RegisterMap, RegisterValidationParameters, rename_register

logger = logging.getLogger(__name__)

STATIC_ASSERT_DEFINITION = "#define STATIC_ASSERT(COND) typedef char static_assertion[(COND)?1:-1]"
VALIDATION_FUNCTION = "ValidateOffsets"

# Groups describing the CPU core rather than vendor peripherals
CORE_REGION_PREFIX = "ARM Cortex M"

# MSP432 headers wrap every register in a union and expose it as 'r<NAME>'
_R_PREFIXED_FAMILY = "MSP432"
_RESERVED_MARKER = "RESERVED"


def generate_validation_code(register_map: RegisterMap, parameters: RegisterValidationParameters) -> list[str]:
    """Generate the lines of the validation function.

    Args:
        register_map: Registers and expected addresses of the MCU
        parameters: Renaming rules and exclusion patterns

    Returns:
        Source lines, without trailing newlines
    """
    r_prefixed = register_map.mcu_name.startswith(_R_PREFIXED_FAMILY)
    lines = ["", STATIC_ASSERT_DEFINITION, f"void {VALIDATION_FUNCTION}()", "{"]

    for group in register_map.groups:
        if parameters.is_excluded(group.name) or group.name.startswith(CORE_REGION_PREFIX):
            continue
        for register in group.registers:
            if parameters.is_excluded(register.name):
                continue
            if r_prefixed and _RESERVED_MARKER in register.name:
                continue
            if parameters.needs_undefine(register.name):
                lines.append(f"#undef {register.name}")

            field = rename_register(parameters.renaming_rules, group.name, register.name)
            if r_prefixed:
                field = f"r{field}"
            lines.append(f"STATIC_ASSERT((unsigned)&({group.name}->{field}) == 0x{register.address:X});")

    lines.append("}")
    return lines


class RegisterValidationInjector:
    """Appends register offset assertions to a source file.

    Args:
        parameters: Campaign-wide renaming rules and exclusion lists
    """

    def __init__(self, parameters: RegisterValidationParameters):
        self.parameters = parameters

    def inject(self, source_file: Path, register_map: Optional[RegisterMap]) -> int:
        """Append the validation function to source_file.

        Args:
            source_file: Source file belonging to the cell's build
            register_map: Register map of the cell's MCU; None disables validation

        Returns:
            Number of assertions written

        Raises:
            RegisterInjectionError: If source_file does not exist
        """
        if not source_file.is_file():
            raise RegisterInjectionError(f"File does not exist: {source_file}")
        if register_map is None:
            return 0

        lines = generate_validation_code(register_map, self.parameters)
        with open(source_file, "a", encoding="utf-8") as f:
            f.write("\n".join(lines) + "\n")

        count = sum(1 for line in lines if line.startswith("STATIC_ASSERT("))
        logger.debug(f"Appended {count} register assertions to {source_file}")
        return count
