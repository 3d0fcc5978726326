"""
Exception taxonomy for bspvalidator.

Configuration and workspace errors are fatal and unwind the whole campaign.
Build graph errors are caught per cell and recorded as a failed test.
Tool failures (non-zero compiler/linker exits) are never raised; the
scheduler reports them through its boolean result instead.
"""


class BSPValidatorError(Exception):
    """Base class for all bspvalidator errors."""

    pass


class ConfigurationError(BSPValidatorError):
    """Raised when the job, BSP description or a sample cannot be resolved."""

    pass


class WorkspaceError(BSPValidatorError):
    """Raised when a cell working directory cannot be removed or created."""

    pass


class BuildGraphError(BSPValidatorError):
    """Raised when a build graph cannot be constructed for a cell."""

    pass


class NameCollisionError(BuildGraphError):
    """Raised when several sources map to the same object file name.

    Attributes:
        collisions: Mapping of the lowercased object name to the colliding source paths
    """

    def __init__(self, collisions: dict[str, list[str]]):
        names = ", ".join(sorted(collisions))
        super().__init__(f"Multiple source files with the same name found: {names}")
        self.collisions = collisions


class RegisterInjectionError(ConfigurationError):
    """Raised when register validation code cannot be appended to a source file."""

    pass
