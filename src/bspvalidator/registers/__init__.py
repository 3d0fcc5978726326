"""Register maps and compile-time register offset validation."""

from .injector import RegisterValidationInjector, generate_validation_code
from .loader import load_register_map, register_map_from_dict
from .models import (
    HighLowRenamingRule,
    IndexedRenamingRule,
    Register,
    RegisterGroup,
    RegisterMap,
    RegisterValidationParameters,
    RenamingMode,
    RenamingRule,
    SuffixedRenamingRule,
    create_renaming_rule,
    rename_register,
    renaming_rule_from_dict,
)

__all__ = [
    "HighLowRenamingRule",
    "IndexedRenamingRule",
    "Register",
    "RegisterGroup",
    "RegisterMap",
    "RegisterValidationInjector",
    "RegisterValidationParameters",
    "RenamingMode",
    "RenamingRule",
    "SuffixedRenamingRule",
    "create_renaming_rule",
    "generate_validation_code",
    "load_register_map",
    "register_map_from_dict",
    "rename_register",
    "renaming_rule_from_dict",
]
