"""Dependency closure discovery for built samples."""

from .discovery import (
    MAX_PLACEHOLDER_DEPTH,
    DependencyDiscoverer,
    dependency_tokens,
    find_included_resources,
    split_dependency_text,
)

__all__ = [
    "MAX_PLACEHOLDER_DEPTH",
    "DependencyDiscoverer",
    "dependency_tokens",
    "find_included_resources",
    "split_dependency_text",
]
