from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    OK = 0
    VALIDATION_FAILED = 1
    CONFIG_ERROR = 2
    LOADER_ERROR = 3
    STORAGE_ERROR = 4
    RUNTIME_ERROR = 5


class GtsViewerError(Exception):
    """Base error for the viewer core."""


class ConfigError(GtsViewerError):
    """Raised for configuration or argument issues."""


class LoaderError(GtsViewerError):
    """Raised when a source directory cannot be read at all."""


class LayoutStorageError(GtsViewerError):
    """Raised when a layout snapshot cannot be read or written."""


class EntityNotFoundError(GtsViewerError):
    """Raised when a caller asks for an entity the registry does not hold."""

    def __init__(self, entity_id: str, suggestions: list[str] | None = None) -> None:
        self.entity_id = entity_id
        self.suggestions = list(suggestions or [])
        message = f"GTS entity not found: {entity_id}"
        if self.suggestions:
            message = f"{message} (did you mean: {', '.join(self.suggestions)})"
        super().__init__(message)


def as_exit_code(exc: BaseException) -> int:
    if isinstance(exc, (ConfigError, ValueError)):
        return int(ExitCode.CONFIG_ERROR)
    if isinstance(exc, LoaderError):
        return int(ExitCode.LOADER_ERROR)
    if isinstance(exc, LayoutStorageError):
        return int(ExitCode.STORAGE_ERROR)
    if isinstance(exc, GtsViewerError):
        return int(ExitCode.RUNTIME_ERROR)
    return 1
