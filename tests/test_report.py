import io
from pathlib import Path

from iso_assembler.framework.errors import (
    CopyError,
    MissingInputError,
    StagingError,
    ToolFailureError,
    ToolInvocationError,
)
from iso_assembler.framework.runtime import BuildOutcome
from iso_assembler.stages.report import ResultReporter, describe_failure


def _report(outcome):
    out, err = io.StringIO(), io.StringIO()
    code = ResultReporter(stdout=out, stderr=err).report(outcome)
    return code, out.getvalue(), err.getvalue()


def test_success_prints_output_path():
    code, out, err = _report(BuildOutcome(build_id="b", output_path=Path("/work/k.iso")))

    assert code == 0
    assert out == "/work/k.iso\n"
    assert err == ""


def test_failure_kinds_have_distinct_exit_codes():
    codes = {
        "input": _report(BuildOutcome("b", None, MissingInputError("/k", role="kernel")))[0],
        "staging": _report(BuildOutcome("b", None, StagingError("no room")))[0],
        "copy": _report(BuildOutcome("b", None, CopyError("short", source="a", destination="b")))[0],
        "missing_tool": _report(BuildOutcome("b", None, ToolInvocationError("gone")))[0],
        "tool_failed": _report(BuildOutcome("b", None, ToolFailureError("bad", tool_exit_code=1)))[0],
    }

    assert codes == {"input": 1, "staging": 2, "copy": 2, "missing_tool": 3, "tool_failed": 3}


def test_failure_message_names_stage_and_includes_tool_stderr():
    exc = ToolFailureError(
        "Image tool 'grub-mkrescue' exited with status 1",
        tool_exit_code=1,
        stderr="xorriso : FAILURE : Cannot write\n",
        stage="image",
    )

    code, out, err = _report(BuildOutcome("b", None, exc))

    assert code == 3
    assert out == ""
    assert err.startswith("ERROR: ToolFailureError in stage image: Image tool 'grub-mkrescue' exited with status 1\n")
    assert "xorriso : FAILURE : Cannot write" in err


def test_describe_failure_prefers_pipeline_step():
    exc = MissingInputError("/k", role="kernel")
    exc.pipeline_step = "request"

    assert describe_failure(exc) == "MissingInputError in stage request: kernel /k does not exist"
