"""Build graph construction and execution."""

from .build_log import BUILD_LOG_NAME, BuildLog
from .graph_builder import BIN_FILE, ELF_FILE, MAP_FILE, BuildGraphBuilder, find_first_source_in, parse_source_extensions
from .makefile_writer import MAKEFILE_NAME, render_makefile, write_makefile
from .models import BuildGraph, BuildTask, Diagnostic, DiagnosticSeverity, TaskKind, ToolFlags
from .response_files import RESPONSE_FILE_THRESHOLD, apply_response_file
from .scheduler import BuildEngine, MakeDriverScheduler, ProcessScheduler, SlotScheduler, create_scheduler

__all__ = [
    "BIN_FILE",
    "BUILD_LOG_NAME",
    "BuildEngine",
    "BuildGraph",
    "BuildGraphBuilder",
    "BuildLog",
    "BuildTask",
    "Diagnostic",
    "DiagnosticSeverity",
    "ELF_FILE",
    "MAKEFILE_NAME",
    "MAP_FILE",
    "MakeDriverScheduler",
    "ProcessScheduler",
    "RESPONSE_FILE_THRESHOLD",
    "SlotScheduler",
    "TaskKind",
    "ToolFlags",
    "apply_response_file",
    "create_scheduler",
    "find_first_source_in",
    "parse_source_extensions",
    "render_makefile",
    "write_makefile",
]
