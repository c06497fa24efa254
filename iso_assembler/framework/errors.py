"""Failure kinds raised by the assembly stages.

Each kind maps to a process exit status:

- ``InputError`` (1): a required input is missing, unreadable or invalid.
- ``FilesystemError`` (2): the staging tree could not be created or populated.
- ``ToolError`` (3): the image tool is unavailable or reported failure.
"""

from __future__ import annotations

EXIT_OK = 0
EXIT_INPUT_ERROR = 1
EXIT_FILESYSTEM_ERROR = 2
EXIT_TOOL_ERROR = 3


class AssemblyError(Exception):
    exit_code: int = EXIT_INPUT_ERROR
    default_stage: str = "assemble"

    def __init__(self, message: str, *, stage: str | None = None):
        super().__init__(message)
        self.message = message
        self.stage = stage or self.default_stage

    @property
    def kind(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict[str, object]:
        return {
            "kind": self.kind,
            "stage": self.stage,
            "message": self.message,
            "exit_code": self.exit_code,
        }


class InputError(AssemblyError):
    exit_code = EXIT_INPUT_ERROR
    default_stage = "request"


class MissingInputError(InputError):
    def __init__(self, path: str, *, role: str, reason: str = "does not exist", stage: str | None = None):
        super().__init__(f"{role} {path} {reason}", stage=stage)
        self.path = path
        self.role = role


class ConfigError(InputError):
    default_stage = "config"


class FilesystemError(AssemblyError):
    exit_code = EXIT_FILESYSTEM_ERROR


class StagingError(FilesystemError):
    default_stage = "staging"


class CopyError(FilesystemError):
    default_stage = "collect"

    def __init__(self, message: str, *, source: str, destination: str, stage: str | None = None):
        super().__init__(message, stage=stage)
        self.source = source
        self.destination = destination


class ToolError(AssemblyError):
    exit_code = EXIT_TOOL_ERROR
    default_stage = "image"

    def __init__(
        self,
        message: str,
        *,
        tool_exit_code: int | None = None,
        stderr: str = "",
        stage: str | None = None,
    ):
        super().__init__(message, stage=stage)
        self.tool_exit_code = tool_exit_code
        self.stderr = stderr

    def to_dict(self) -> dict[str, object]:
        payload = super().to_dict()
        payload["tool_exit_code"] = self.tool_exit_code
        payload["stderr"] = self.stderr
        return payload


class ToolInvocationError(ToolError):
    """The image tool could not be started."""


class ToolFailureError(ToolError):
    """The image tool ran but did not produce an image."""
