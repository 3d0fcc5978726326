"""
Build graph construction.

Turns the resolved source list and flags of one cell into compile tasks,
a link task and a binary conversion task:

    main.c        -> main.o     (gcc -c -o $@ $< ...)
    startup.s     -> startup.o  (g++ -c -o $@ $< ...)
    *.o + *.a     -> test.elf   (g++ ... -Wl,-Map,test.map $^ -o $@)
    test.elf      -> test.bin   (objcopy -O binary $< $@)

Object files are written flat into the working directory, so two sources
with the same file name in different directories collide. Colliding outputs
are renamed main_1.o, main_2.o, ... and the collision is an error unless the
caller explicitly allows it to be resolved that way.
"""

import logging
from collections.abc import Iterable
from pathlib import Path
from typing import Optional

from ..errors import NameCollisionError
from .models import (
    BuildGraph,
    BuildTask,
    Diagnostic,
    DiagnosticSeverity,
    TaskKind,
    ToolFlags,
    join_arguments,
)
from .response_files import RESPONSE_FILE_THRESHOLD, apply_response_files

logger = logging.getLogger(__name__)

ELF_FILE = "test.elf"
BIN_FILE = "test.bin"
MAP_FILE = "test.map"

DEFAULT_SOURCE_EXTENSIONS = "cpp;c;s"
DEFAULT_CXX_STANDARD = "-std=gnu++11"

# Files that legitimately appear in a sample's file list without being compiled
PASS_THROUGH_EXTENSIONS = frozenset({"h", "hpp", "hh", "inc", "txt", "a"})
ARCHIVE_EXTENSION = "a"


def parse_source_extensions(value: str | Iterable[str]) -> frozenset[str]:
    """Parse a "cpp;c;s" style extension list (case-insensitive, no dots)."""
    items = value.split(";") if isinstance(value, str) else value
    return frozenset(item.strip().lstrip(".").lower() for item in items if item.strip())


def _extension(path: str) -> str:
    return Path(path).suffix.lstrip(".").lower()


class BuildGraphBuilder:
    """Builds the task graph of one cell.

    Args:
        toolchain_prefix: Prefix of the cross tools, e.g. "/opt/gcc/bin/arm-none-eabi-"
        working_dir: Cell directory; tasks run here and response files are written here
        resolve_name_collisions: Build with disambiguated object names instead of failing
        response_file_threshold: Maximum in-line argument template length
    """

    def __init__(
        self,
        toolchain_prefix: str,
        working_dir: Path,
        resolve_name_collisions: bool = False,
        response_file_threshold: int = RESPONSE_FILE_THRESHOLD,
    ):
        self.toolchain_prefix = toolchain_prefix
        self.working_dir = working_dir
        self.resolve_name_collisions = resolve_name_collisions
        self.response_file_threshold = response_file_threshold

    @property
    def c_compiler(self) -> str:
        return f"{self.toolchain_prefix}gcc"

    @property
    def cxx_compiler(self) -> str:
        return f"{self.toolchain_prefix}g++"

    @property
    def objcopy(self) -> str:
        return f"{self.toolchain_prefix}objcopy"

    def build(
        self,
        source_files: list[str],
        flags: ToolFlags,
        source_extensions: str | Iterable[str] = DEFAULT_SOURCE_EXTENSIONS,
    ) -> BuildGraph:
        """Create the build graph.

        Args:
            source_files: Ordered source paths of the project
            flags: Resolved tool flags
            source_extensions: Extensions that are compiled

        Returns:
            BuildGraph whose diagnostics list holds every warning and error

        Raises:
            NameCollisionError: If object names collide and resolution is disabled
        """
        extensions = parse_source_extensions(source_extensions)
        graph = BuildGraph()
        archives: list[str] = []

        for source in source_files:
            normalized = source.replace("\\", "/")
            ext = _extension(normalized)
            if ext == ARCHIVE_EXTENSION:
                archives.append(normalized)
            if ext not in extensions:
                if ext not in PASS_THROUGH_EXTENSIONS:
                    graph.diagnostics.append(
                        Diagnostic(DiagnosticSeverity.WARNING, "not a recognized source file", source)
                    )
                    logger.warning(f"{source} is not a recognized source file")
                continue
            graph.compile_tasks.append(self._compile_task(normalized, ext, flags))

        collisions = self._disambiguate_outputs(graph)
        if collisions and not self.resolve_name_collisions:
            raise NameCollisionError(collisions)

        graph.other_tasks.append(self._link_task(graph, archives, flags))
        graph.other_tasks.append(
            BuildTask(
                kind=TaskKind.CONVERT,
                executable=self.objcopy,
                arguments="-O binary $< $@",
                inputs=[ELF_FILE],
                primary_output=BIN_FILE,
            )
        )

        written = apply_response_files(graph, self.working_dir, self.response_file_threshold)
        logger.debug(
            f"Build graph: {len(graph.compile_tasks)} compile tasks, "
            f"{len(archives)} archives, {written} response files"
        )
        return graph

    def _compile_task(self, source: str, ext: str, flags: ToolFlags) -> BuildTask:
        is_cpp = ext != "c"
        args = ["-MD"]
        if is_cpp and not any(f.startswith("-std=") for f in flags.cxx_flags):
            args.append(DEFAULT_CXX_STANDARD)
        args.extend(flags.effective_compile_flags(is_cpp))
        return BuildTask(
            kind=TaskKind.COMPILE,
            executable=self.cxx_compiler if is_cpp else self.c_compiler,
            arguments=f"-c -o $@ $< {join_arguments(args)}",
            inputs=[source],
            primary_output=Path(source).with_suffix(".o").name,
        )

    def _link_task(self, graph: BuildGraph, archives: list[str], flags: ToolFlags) -> BuildTask:
        inputs = [t.primary_output for t in graph.compile_tasks] + archives
        parts = [
            join_arguments(flags.effective_link_flags() + [f"-Wl,-Map,{MAP_FILE}"]),
            "-Wl,--start-group $^",
            join_arguments(flags.library_flags()),
            "-Wl,--end-group -o $@",
        ]
        return BuildTask(
            kind=TaskKind.LINK,
            executable=self.cxx_compiler,
            arguments=" ".join(p for p in parts if p),
            inputs=inputs,
            primary_output=ELF_FILE,
        )

    def _disambiguate_outputs(self, graph: BuildGraph) -> dict[str, list[str]]:
        """Rename colliding object files and report each collision.

        Returns:
            Mapping of lowercased object name to the colliding sources
        """
        groups: dict[str, list[BuildTask]] = {}
        for task in graph.compile_tasks:
            groups.setdefault(task.primary_output.lower(), []).append(task)

        # Suffixed names must not clash with any other output, e.g. main_1.c -> main_1.o
        taken = {name for name, tasks in groups.items() if len(tasks) == 1}
        collisions: dict[str, list[str]] = {}
        for name, tasks in groups.items():
            if len(tasks) < 2:
                continue
            sources = [t.inputs[0] for t in tasks]
            collisions[name] = sources
            counter = 0
            for task in tasks:
                while True:
                    counter += 1
                    candidate = task.disambiguated_output(f"_{counter}")
                    if candidate.lower() not in taken:
                        break
                task.primary_output = candidate
                taken.add(candidate.lower())
            graph.diagnostics.append(
                Diagnostic(
                    DiagnosticSeverity.ERROR,
                    f"{name} corresponds to the following files: {', '.join(sources)}",
                )
            )
            logger.error(f"{name} corresponds to {len(sources)} source files")

        return collisions


def find_first_source_in(graph: BuildGraph, directory: Path) -> Optional[str]:
    """Return the first compiled source located directly in directory."""
    target = directory.resolve()
    for task in graph.compile_tasks:
        if Path(task.inputs[0]).resolve().parent == target:
            return task.inputs[0]
    return None
