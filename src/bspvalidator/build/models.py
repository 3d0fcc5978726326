"""Data models for build graphs.

Defines the structures passed between the graph builder and the scheduler:
- ToolFlags: fully resolved compiler/linker flags for one device + sample
- BuildTask: one tool invocation producing a single primary output
- BuildGraph: ordered compile tasks followed by ordered link/convert tasks
- Diagnostic: a warning or error produced while constructing a graph
"""

import shlex
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

# Makefile-style placeholders used in argument templates
OUTPUT_PLACEHOLDER = "$@"
FIRST_INPUT_PLACEHOLDER = "$<"
ALL_INPUTS_PLACEHOLDER = "$^"


def quote_argument(arg: str) -> str:
    """Quote a single argument for both /bin/sh recipes and shlex parsing.

    Backslashes are normalized to forward slashes, except where they escape
    a double quote (-DNAME=\\"text\\").
    """
    arg = arg.replace("\\", "/").replace('/"', '\\"')
    if arg and not any(c.isspace() or c in "\"'" for c in arg):
        return arg
    return shlex.quote(arg)


def join_arguments(args: list[str]) -> str:
    """Join arguments into one command-line fragment."""
    return " ".join(quote_argument(a) for a in args if a)


class TaskKind(Enum):
    """Kind of a build task."""

    COMPILE = "compile"
    LINK = "link"
    CONVERT = "convert"


class DiagnosticSeverity(Enum):
    """Severity of a graph construction diagnostic."""

    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class Diagnostic:
    """Single diagnostic emitted while building a graph."""

    severity: DiagnosticSeverity
    message: str
    file_path: Optional[str] = None

    def format(self) -> str:
        """Format the diagnostic as a human-readable line."""
        text = f"{self.severity.value.upper()}: {self.message}"
        if self.file_path:
            text += f" ({self.file_path})"
        return text


def _tuple(data: dict[str, Any], key: str) -> tuple[str, ...]:
    value = data.get(key) or []
    if isinstance(value, str):
        return tuple(shlex.split(value))
    return tuple(str(v) for v in value)


@dataclass(frozen=True)
class ToolFlags:
    """Resolved flags bundle for one cell.

    Attributes:
        c_flags: Flags used only for C sources
        cxx_flags: Flags used only for C++ (and assembler) sources
        common_flags: Flags used for every compile and for linking
        ld_flags: Linker-only flags
        include_directories: Directories passed as -I
        preprocessor_macros: Macros passed as -D (NAME or NAME=VALUE)
        library_directories: Directories passed as -L
        libraries: Library names passed as -l
        linker_inputs: Extra objects/archives passed to the linker verbatim
        linker_script: Linker script passed as -T, if any
    """

    c_flags: tuple[str, ...] = ()
    cxx_flags: tuple[str, ...] = ()
    common_flags: tuple[str, ...] = ()
    ld_flags: tuple[str, ...] = ()
    include_directories: tuple[str, ...] = ()
    preprocessor_macros: tuple[str, ...] = ()
    library_directories: tuple[str, ...] = ()
    libraries: tuple[str, ...] = ()
    linker_inputs: tuple[str, ...] = ()
    linker_script: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ToolFlags":
        """Create flags from a JSON dictionary.

        Flag lists may be given either as JSON arrays or as a single
        shell-style string.
        """
        return cls(
            c_flags=_tuple(data, "c_flags"),
            cxx_flags=_tuple(data, "cxx_flags"),
            common_flags=_tuple(data, "common_flags"),
            ld_flags=_tuple(data, "ld_flags"),
            include_directories=_tuple(data, "include_directories"),
            preprocessor_macros=_tuple(data, "preprocessor_macros"),
            library_directories=_tuple(data, "library_directories"),
            libraries=_tuple(data, "libraries"),
            linker_inputs=_tuple(data, "linker_inputs"),
            linker_script=data.get("linker_script"),
        )

    def merged(self, other: "ToolFlags") -> "ToolFlags":
        """Return flags with other's entries appended (other's linker script wins)."""
        return ToolFlags(
            c_flags=self.c_flags + other.c_flags,
            cxx_flags=self.cxx_flags + other.cxx_flags,
            common_flags=self.common_flags + other.common_flags,
            ld_flags=self.ld_flags + other.ld_flags,
            include_directories=tuple(dict.fromkeys(self.include_directories + other.include_directories)),
            preprocessor_macros=self.preprocessor_macros + other.preprocessor_macros,
            library_directories=tuple(dict.fromkeys(self.library_directories + other.library_directories)),
            libraries=self.libraries + other.libraries,
            linker_inputs=self.linker_inputs + other.linker_inputs,
            linker_script=other.linker_script or self.linker_script,
        )

    def effective_compile_flags(self, is_cpp: bool) -> list[str]:
        """Flags for compiling one source file, including -I and -D."""
        flags = list(self.common_flags)
        flags.extend(self.cxx_flags if is_cpp else self.c_flags)
        flags.extend(f"-I{d}" for d in self.include_directories)
        flags.extend(f"-D{m}" for m in self.preprocessor_macros)
        return flags

    def effective_link_flags(self) -> list[str]:
        """Flags placed before the object list on the link command line."""
        flags = list(self.common_flags)
        flags.extend(self.ld_flags)
        flags.extend(f"-L{d}" for d in self.library_directories)
        if self.linker_script:
            flags.append(f"-T{self.linker_script}")
        return flags

    def library_flags(self) -> list[str]:
        """Libraries and extra inputs placed inside the link group."""
        return list(self.linker_inputs) + [f"-l{lib}" for lib in self.libraries]

    def describe(self) -> list[str]:
        """Multi-line description used as build description comments."""
        lines = ["Tool flags:"]
        sections = (
            ("Include directories", self.include_directories),
            ("Preprocessor macros", self.preprocessor_macros),
            ("Library directories", self.library_directories),
            ("Library names", self.libraries),
            ("Extra linker inputs", self.linker_inputs),
        )
        for title, values in sections:
            lines.append(f"\t{title}:")
            lines.extend(f"\t\t{v}" for v in values)
        lines.append(f"\tCFLAGS: {' '.join(self.c_flags)}")
        lines.append(f"\tCXXFLAGS: {' '.join(self.cxx_flags)}")
        lines.append(f"\tLDFLAGS: {' '.join(self.ld_flags)}")
        lines.append(f"\tCOMMONFLAGS: {' '.join(self.common_flags)}")
        lines.append(f"\tLinker script: {self.linker_script or '(none)'}")
        return lines


@dataclass
class BuildTask:
    """A single tool invocation.

    The argument template may reference $@ (primary output), $< (first input)
    and $^ (all inputs), exactly like a makefile recipe.

    Attributes:
        kind: Compile, link or convert
        executable: Path of the tool
        arguments: Argument template
        inputs: Input paths; inputs[0] is the first input
        primary_output: Path of the single output, relative to the working directory
        response_file: Response file holding the argument tail, if one was written
    """

    kind: TaskKind
    executable: str
    arguments: str
    inputs: list[str]
    primary_output: str
    response_file: Optional[str] = None

    def expand(self, template: Optional[str] = None) -> str:
        """Substitute placeholders in the argument template (or in template)."""
        text = self.arguments if template is None else template
        text = text.replace(OUTPUT_PLACEHOLDER, quote_argument(self.primary_output))
        if self.inputs:
            text = text.replace(FIRST_INPUT_PLACEHOLDER, quote_argument(self.inputs[0]))
        return text.replace(ALL_INPUTS_PLACEHOLDER, join_arguments(self.inputs))

    def argv(self) -> list[str]:
        """Argument vector for launching the task directly."""
        return [self.executable] + shlex.split(self.expand())

    def command_line(self) -> str:
        """Single-line rendering used in logs."""
        return f"{self.executable} {self.expand()}"

    def disambiguated_output(self, suffix: str) -> str:
        """Primary output name with suffix inserted before the extension."""
        stem, dot, ext = self.primary_output.rpartition(".")
        if not dot:
            return self.primary_output + suffix
        return f"{stem}{suffix}.{ext}"


@dataclass
class BuildGraph:
    """Ordered build description for one cell.

    Compile tasks are independent of each other. Other tasks (link, then
    binary conversion) run strictly after every compile task, in order.
    """

    compile_tasks: list[BuildTask] = field(default_factory=list)
    other_tasks: list[BuildTask] = field(default_factory=list)
    diagnostics: list[Diagnostic] = field(default_factory=list)

    @property
    def all_tasks(self) -> list[BuildTask]:
        return self.compile_tasks + self.other_tasks

    @property
    def primary_target(self) -> str:
        """Output of the last task in the graph."""
        tasks = self.all_tasks
        if not tasks:
            raise ValueError("Build graph is empty")
        return tasks[-1].primary_output

    @property
    def has_errors(self) -> bool:
        return any(d.severity == DiagnosticSeverity.ERROR for d in self.diagnostics)
