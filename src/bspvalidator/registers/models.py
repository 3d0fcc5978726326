"""Register map and register renaming models.

A RegisterMap describes the peripheral registers of one MCU as named groups
of (register name, byte address) pairs. Register names in the hardware
description do not always match the C struct fields in the vendor headers:
TIM1 may list CCR1..CCR4 where the header declares 'CCR[4]', or AFRL/AFRH
where the header declares 'AFR[2]'. RenamingRules map the former to the
latter and are evaluated in declared order, first match wins.
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar, Optional


@dataclass(frozen=True)
class Register:
    """A single register and its absolute byte address."""

    name: str
    address: int


@dataclass(frozen=True)
class RegisterGroup:
    """A peripheral instance (e.g. "GPIOA") and its registers."""

    name: str
    registers: tuple[Register, ...] = ()


@dataclass(frozen=True)
class RegisterMap:
    """Hardware register model of one MCU.

    Attributes:
        mcu_name: MCU name as given by the hardware description
        groups: Register groups in declaration order
    """

    mcu_name: str
    groups: tuple[RegisterGroup, ...] = ()

    @property
    def register_count(self) -> int:
        return sum(len(g.registers) for g in self.groups)


class RenamingMode(Enum):
    """How a matching register name is turned into a field accessor."""

    NORMAL = "normal"
    HIGH_LOW = "high_low"
    WITH_SUFFIX = "with_suffix"


@dataclass(frozen=True)
class RenamingRule(ABC):
    """Base class of the typed renaming rules.

    Attributes:
        group_pattern: Anchored pattern for the group name, None matches any group
        register_pattern: Anchored pattern for the register name, built per mode
        offset: Added to the numeric index taken from the register name
    """

    group_pattern: Optional[re.Pattern[str]]
    register_pattern: re.Pattern[str]
    offset: int = 0

    mode: ClassVar[RenamingMode]
    _name_template: ClassVar[str]

    @classmethod
    def compile(cls, group_regex: Optional[str], register_regex: str, offset: int = 0) -> "RenamingRule":
        """Build a rule from the user-supplied base patterns."""
        group = re.compile(f"^{group_regex}$") if group_regex is not None else None
        return cls(group, re.compile(cls._name_template.format(register_regex)), offset)

    def applies_to_group(self, group_name: str) -> bool:
        return self.group_pattern is None or self.group_pattern.search(group_name) is not None

    def apply(self, group_name: str, register_name: str) -> Optional[str]:
        """Return the renamed accessor, or None if the rule does not match."""
        if not self.applies_to_group(group_name):
            return None
        match = self.register_pattern.search(register_name)
        if match is None:
            return None
        return self._rename(match)

    @abstractmethod
    def _rename(self, match: re.Match[str]) -> str: ...


@dataclass(frozen=True)
class IndexedRenamingRule(RenamingRule):
    """CCR1 -> CCR[1 + offset]"""

    mode: ClassVar[RenamingMode] = RenamingMode.NORMAL
    _name_template: ClassVar[str] = "^({})([0-9]+)$"

    def _rename(self, match: re.Match[str]) -> str:
        return f"{match.group(1)}[{int(match.group(2)) + self.offset}]"


@dataclass(frozen=True)
class HighLowRenamingRule(RenamingRule):
    """AFRL -> AFR[0], AFRH -> AFR[1]"""

    mode: ClassVar[RenamingMode] = RenamingMode.HIGH_LOW
    _name_template: ClassVar[str] = "^({})(H|L)$"

    def _rename(self, match: re.Match[str]) -> str:
        index = 1 if match.group(2) == "H" else 0
        return f"{match.group(1)}[{index}]"


@dataclass(frozen=True)
class SuffixedRenamingRule(RenamingRule):
    """FR1_FR1 -> FR[1 + offset].FR1"""

    mode: ClassVar[RenamingMode] = RenamingMode.WITH_SUFFIX
    _name_template: ClassVar[str] = "^({})([0-9]+)_(.*)$"

    def _rename(self, match: re.Match[str]) -> str:
        return f"{match.group(1)}[{int(match.group(2)) + self.offset}].{match.group(3)}"


_RULE_TYPES: dict[RenamingMode, type[RenamingRule]] = {
    RenamingMode.NORMAL: IndexedRenamingRule,
    RenamingMode.HIGH_LOW: HighLowRenamingRule,
    RenamingMode.WITH_SUFFIX: SuffixedRenamingRule,
}


def create_renaming_rule(
    mode: RenamingMode, register_regex: str, group_regex: Optional[str] = None, offset: int = 0
) -> RenamingRule:
    """Create the typed rule for a renaming mode."""
    return _RULE_TYPES[mode].compile(group_regex, register_regex, offset)


def renaming_rule_from_dict(data: dict[str, Any]) -> RenamingRule:
    """Create a rule from its job-file representation.

    Raises:
        ValueError: On an unknown mode or a missing register pattern
        re.error: On an invalid pattern
    """
    if "register_regex" not in data:
        raise ValueError("renaming rule is missing 'register_regex'")
    mode = RenamingMode(data.get("mode", RenamingMode.NORMAL.value))
    return create_renaming_rule(
        mode,
        data["register_regex"],
        group_regex=data.get("register_set_regex"),
        offset=int(data.get("offset", 0)),
    )


def rename_register(rules: tuple[RenamingRule, ...], group_name: str, register_name: str) -> str:
    """Apply the first matching rule; unmatched names are returned unchanged."""
    for rule in rules:
        renamed = rule.apply(group_name, register_name)
        if renamed is not None:
            return renamed
    return register_name


def _matches_any(name: str, patterns: tuple[str, ...]) -> bool:
    return any(re.search(p, name) for p in patterns)


@dataclass(frozen=True)
class RegisterValidationParameters:
    """Campaign-wide settings for register offset validation.

    Attributes:
        renaming_rules: Ordered renaming rules
        non_validated_registers: Patterns of group or register names to skip
        undefined_macros: Patterns of register names shadowed by a header macro
    """

    renaming_rules: tuple[RenamingRule, ...] = ()
    non_validated_registers: tuple[str, ...] = ()
    undefined_macros: tuple[str, ...] = ()

    def is_excluded(self, name: str) -> bool:
        return _matches_any(name, self.non_validated_registers)

    def needs_undefine(self, name: str) -> bool:
        return _matches_any(name, self.undefined_macros)
