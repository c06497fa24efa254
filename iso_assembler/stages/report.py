from __future__ import annotations

import sys
from typing import TextIO

from iso_assembler.framework.errors import EXIT_OK, AssemblyError, ToolError
from iso_assembler.framework.runtime import BuildOutcome

STAGE_NAME = "report"


def describe_failure(exc: Exception) -> str:
    """One terminating message naming the failing stage and the cause."""

    if isinstance(exc, AssemblyError):
        stage = getattr(exc, "pipeline_step", None) or exc.stage
        message = f"{exc.kind} in stage {stage}: {exc.message}"
        if isinstance(exc, ToolError):
            stderr = exc.stderr.strip()
            if stderr:
                message += "\n" + stderr
        return message
    stage = getattr(exc, "pipeline_step", None) or "assemble"
    return f"{type(exc).__name__} in stage {stage}: {exc}"


class ResultReporter:
    """Prints the outcome of a build and maps it to a process exit status."""

    def __init__(self, *, stdout: TextIO | None = None, stderr: TextIO | None = None):
        self._stdout = stdout
        self._stderr = stderr

    def report(self, outcome: BuildOutcome) -> int:
        stdout = self._stdout or sys.stdout
        stderr = self._stderr or sys.stderr

        if outcome.ok:
            print(str(outcome.output_path), file=stdout)
            return EXIT_OK

        exc = outcome.error
        assert exc is not None
        print(f"ERROR: {describe_failure(exc)}", file=stderr)
        return exc.exit_code
