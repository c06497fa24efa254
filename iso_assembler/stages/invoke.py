from __future__ import annotations

import os
import shutil
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from iso_assembler.framework.errors import FilesystemError, ToolFailureError, ToolInvocationError

STAGE_NAME = "image"
BACKUP_SUFFIX = ".previous"

# Shell conventions for "cannot execute" and "not found".
EXIT_NOT_EXECUTABLE = 126
EXIT_NOT_FOUND = 127


@dataclass(frozen=True)
class ToolResult:
    command: tuple[str, ...]
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    output_path: str | None = None
    output_bytes: int = 0

    def to_dict(self) -> dict[str, object]:
        return {
            "command": list(self.command),
            "exit_code": self.exit_code,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "output_path": self.output_path,
            "output_bytes": self.output_bytes,
        }


def _decode(stream: str | bytes | None) -> str:
    if stream is None:
        return ""
    if isinstance(stream, bytes):
        return stream.decode("utf-8", "replace")
    return stream


class ImageInvoker:
    """Runs the external image tool as ``<tool> [extra args] -o <output> <staging root>``.

    An existing image at the output path is set aside while the tool runs. It
    is restored if the tool fails and dropped once a new non-empty image is in
    place.
    """

    def __init__(
        self,
        tool: str,
        *,
        extra_args: Sequence[str] = (),
        timeout_seconds: float | None = None,
    ):
        self.tool = tool
        self.extra_args = tuple(extra_args)
        self.timeout_seconds = timeout_seconds

    def preflight(self) -> str:
        """Resolve the tool on PATH, raising ToolInvocationError if absent."""

        resolved = shutil.which(self.tool)
        if resolved is None:
            raise ToolInvocationError(
                f"Image tool {self.tool!r} not found on PATH",
                tool_exit_code=None,
                stage=STAGE_NAME,
            )
        return resolved

    def command(self, root: str | os.PathLike[str], output_path: str | os.PathLike[str]) -> list[str]:
        return [self.tool, *self.extra_args, "-o", os.fspath(output_path), os.fspath(root)]

    def invoke(self, root: str | os.PathLike[str], output_path: str | os.PathLike[str]) -> ToolResult:
        output = Path(output_path)
        cmd = self.command(root, output)
        backup = self._set_aside(output) if output.is_file() else None

        try:
            result = self._run(cmd, output)
        except BaseException:
            output.unlink(missing_ok=True)
            if backup is not None:
                os.replace(backup, output)
            raise

        if backup is not None:
            backup.unlink(missing_ok=True)
        return result

    def _set_aside(self, output: Path) -> Path:
        """Move an existing image to a fresh hidden sibling and return its path."""

        try:
            fd, tmp_name = tempfile.mkstemp(dir=output.parent, prefix=f".{output.name}.", suffix=BACKUP_SUFFIX)
            os.close(fd)
        except OSError as exc:
            raise FilesystemError(f"Cannot set aside existing image {output}: {exc}", stage=STAGE_NAME) from exc
        backup = Path(tmp_name)
        try:
            os.replace(output, backup)
        except OSError as exc:
            backup.unlink(missing_ok=True)
            raise FilesystemError(f"Cannot set aside existing image {output}: {exc}", stage=STAGE_NAME) from exc
        return backup

    def _run(self, cmd: list[str], output: Path) -> ToolResult:
        try:
            completed = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                errors="replace",
                timeout=self.timeout_seconds,
                check=False,
            )
        except FileNotFoundError as exc:
            raise ToolInvocationError(
                f"Image tool {self.tool!r} not found: {exc}",
                tool_exit_code=EXIT_NOT_FOUND,
                stderr=str(exc),
                stage=STAGE_NAME,
            ) from exc
        except PermissionError as exc:
            raise ToolInvocationError(
                f"Image tool {self.tool!r} is not executable: {exc}",
                tool_exit_code=EXIT_NOT_EXECUTABLE,
                stderr=str(exc),
                stage=STAGE_NAME,
            ) from exc
        except subprocess.TimeoutExpired as exc:
            raise ToolFailureError(
                f"Image tool {self.tool!r} timed out after {self.timeout_seconds}s",
                tool_exit_code=None,
                stderr=_decode(exc.stderr),
                stage=STAGE_NAME,
            ) from exc

        if completed.returncode != 0:
            raise ToolFailureError(
                f"Image tool {self.tool!r} exited with status {completed.returncode}",
                tool_exit_code=completed.returncode,
                stderr=completed.stderr or "",
                stage=STAGE_NAME,
            )

        if not output.is_file() or output.stat().st_size == 0:
            raise ToolFailureError(
                f"Image tool {self.tool!r} exited 0 but produced no image at {output}",
                tool_exit_code=completed.returncode,
                stderr=completed.stderr or "",
                stage=STAGE_NAME,
            )

        return ToolResult(
            command=tuple(cmd),
            exit_code=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
            output_path=str(output),
            output_bytes=output.stat().st_size,
        )
