"""Dependency closure discovery.

After a successful build the validator records every file the sample
actually used, so that a later campaign can skip samples whose inputs did
not change. Two sources are combined:

1. The '.d' files GCC writes for every object (-MD), listing each header
   the translation unit included.
2. '.incbin' directives inside the sample sources, which pull binary
   resources (fonts, images, firmware blobs) into the image without the
   compiler reporting them as dependencies.
"""

import logging
import os
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

DEPENDENCY_FILE_PATTERN = "*.d"

# Inline assembly as written in C sources: asm(".incbin \"path\"");
INCBIN_MARKER = '".incbin \\"'
INCBIN_END = '\\"'

# .incbin paths are relative to the vendor IDE project file, which sits an
# unknown number of directories below the sample's source directory. The
# search tries 0..MAX_PLACEHOLDER_DEPTH placeholder levels and keeps the first
# existing file; it is a heuristic, not a resolution algorithm.
MAX_PLACEHOLDER_DEPTH = 5
_PLACEHOLDER_DIR = "dummy"


def split_dependency_text(text: str) -> Iterator[str]:
    """Tokenize the contents of a make-style dependency file.

    Whitespace and backslashes between tokens are separators. A token in
    double quotes is returned without the quotes and may contain spaces. In
    an unquoted token, a backslash before a space or '#' escapes that
    character, and a backslash before a line break ends the token.
    """
    i = 0
    n = len(text)
    while i < n:
        while i < n and (text[i].isspace() or text[i] == "\\"):
            i += 1
        if i >= n:
            break

        if text[i] == '"':
            end = text.find('"', i + 1)
            if end == -1:
                end = n
            yield text[i + 1 : end]
            i = end + 1
            continue

        token: list[str] = []
        while i < n and not text[i].isspace():
            c = text[i]
            if c == "\\" and i + 1 < n and text[i + 1] in " #":
                token.append(text[i + 1])
                i += 2
                continue
            if c == "\\" and (i + 1 >= n or text[i + 1] in "\r\n"):
                break
            token.append(c)
            i += 1
        yield "".join(token)


def dependency_tokens(text: str) -> list[str]:
    """Dependency paths in a dependency file, without target markers."""
    return [t for t in split_dependency_text(text) if t and not t.endswith(":")]


def _absolute(path: str, relative_to: Path) -> str:
    return os.path.normpath(os.path.join(os.path.abspath(relative_to), path))


def find_included_resources(source_file: Path) -> list[str]:
    """Find binary resources referenced by '.incbin' directives.

    Args:
        source_file: Source file to scan

    Returns:
        Absolute paths of the resources that exist on disk
    """
    resources: list[str] = []
    if not source_file.is_file():
        logger.debug(f"Skipping resource scan of missing file {source_file}")
        return resources

    source_dir = os.path.dirname(os.path.abspath(source_file))
    with open(source_file, "r", encoding="utf-8", errors="replace") as f:
        for line in f:
            idx = line.find(INCBIN_MARKER)
            if idx == -1:
                continue
            idx += len(INCBIN_MARKER)
            end = line.find(INCBIN_END, idx)
            if end == -1:
                continue

            relative = line[idx:end].replace("\\\\", "/").replace("\\", "/")
            resolved = _resolve_with_placeholders(source_dir, relative)
            if resolved is not None:
                resources.append(resolved)
            else:
                logger.debug(f"{source_file}: cannot locate .incbin resource {relative}")

    return resources


def _resolve_with_placeholders(source_dir: str, relative: str) -> Optional[str]:
    for depth in range(MAX_PLACEHOLDER_DEPTH + 1):
        candidate = os.path.normpath(os.path.join(source_dir, *([_PLACEHOLDER_DIR] * depth), relative))
        if os.path.isfile(candidate):
            return os.path.abspath(candidate)
    return None


class DependencyDiscoverer:
    """Computes the dependency closure of a successfully built cell.

    Args:
        working_dir: Cell directory holding the '.d' files
        base_dir: Sample base directory, used to resolve relative source paths
    """

    def __init__(self, working_dir: Path, base_dir: Optional[Path] = None):
        self.working_dir = working_dir
        self.base_dir = base_dir

    def header_dependencies(self) -> set[str]:
        """Headers listed by the compiler-generated dependency files."""
        headers: set[str] = set()
        for dep_file in sorted(self.working_dir.glob(DEPENDENCY_FILE_PATTERN)):
            text = dep_file.read_text(encoding="utf-8", errors="replace")
            headers.update(_absolute(t, self.working_dir) for t in dependency_tokens(text))
        return headers

    def resource_dependencies(self, source_files: Iterable[str]) -> set[str]:
        """Binary resources pulled in by the sample sources."""
        resources: set[str] = set()
        for source in source_files:
            path = Path(source)
            if not path.is_absolute() and self.base_dir is not None:
                path = self.base_dir / path
            resources.update(find_included_resources(path))
        return resources

    def discover(self, source_files: Iterable[str]) -> frozenset[str]:
        """Deduplicated union of header and resource dependencies."""
        closure = frozenset(self.header_dependencies() | self.resource_dependencies(source_files))
        logger.debug(f"{self.working_dir.name}: {len(closure)} dependencies")
        return closure
