import logging
from dataclasses import dataclass, field
from typing import Any

import pytest

from iso_assembler.foundation.pipeline import ActionStep, Block, StageRunner


@dataclass
class _Ctx:
    logger: logging.Logger
    outputs: dict[str, Any] = field(default_factory=dict)
    steps: list[dict[str, Any]] = field(default_factory=list)


def _make_ctx() -> _Ctx:
    logger = logging.getLogger("test.stage_runner")
    logger.handlers.clear()
    logger.addHandler(logging.NullHandler())
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    return _Ctx(logger=logger)


def test_action_steps_run_in_order_and_record():
    ctx = _make_ctx()
    order: list[str] = []

    def _first(inner_ctx):
        order.append("first")
        return {"ok": "yes"}

    def _second(inner_ctx):
        order.append("second")
        inner_ctx.outputs["seen"] = list(order)

    root = Block(
        name="pipeline",
        nodes=[
            ActionStep(name="first", fn=_first),
            ActionStep(name="second", fn=_second, meta={"doc": "second step"}),
        ],
    )

    StageRunner().run(ctx, root)

    assert order == ["first", "second"]
    assert ctx.outputs["seen"] == ["first", "second"]
    assert [step["path"] for step in ctx.steps] == ["pipeline/first", "pipeline/second"]
    assert ctx.steps[0]["result"] == {"ok": "yes"}
    assert "result" not in ctx.steps[1]
    assert ctx.steps[1]["meta"]["doc"] == "second step"
    assert ctx.steps[1]["meta"]["source"].endswith("_second")


def test_first_failure_aborts_remaining_steps():
    ctx = _make_ctx()
    calls: list[str] = []

    def _ok(inner_ctx):
        calls.append("ok")

    def _boom(inner_ctx):
        calls.append("boom")
        raise RuntimeError("disk on fire")

    def _never(inner_ctx):
        calls.append("never")

    root = Block(
        name="pipeline",
        nodes=[
            ActionStep(name="ok", fn=_ok),
            ActionStep(name="boom", fn=_boom),
            ActionStep(name="never", fn=_never),
        ],
    )

    with pytest.raises(RuntimeError, match="disk on fire") as excinfo:
        StageRunner().run(ctx, root)

    assert calls == ["ok", "boom"]
    assert excinfo.value.pipeline_path == "pipeline/boom"
    assert excinfo.value.pipeline_step == "boom"
    assert ctx.steps[-1]["path"] == "pipeline/boom"
    assert ctx.steps[-1]["error"] == {"type": "RuntimeError", "message": "disk on fire"}


def test_duplicate_step_names_raise_before_running():
    ctx = _make_ctx()
    calls: list[str] = []
    root = Block(
        name="pipeline",
        nodes=[
            ActionStep(name="a", fn=lambda c: calls.append("a")),
            ActionStep(name="a", fn=lambda c: calls.append("a")),
        ],
    )

    with pytest.raises(ValueError, match="Duplicate step name"):
        StageRunner().run(ctx, root)
    assert calls == []


@pytest.mark.parametrize("name", ["", "  ", "a/b"])
def test_invalid_step_names_raise(name):
    with pytest.raises(ValueError):
        ActionStep(name=name, fn=lambda c: None)


def test_block_rejects_non_action_nodes():
    with pytest.raises(TypeError, match="must be ActionStep"):
        Block(name="pipeline", nodes=[Block(name="inner")])  # type: ignore[list-item]


def test_non_callable_action_raises():
    with pytest.raises(TypeError, match="must be callable"):
        ActionStep(name="x", fn="not callable")  # type: ignore[arg-type]


def test_recorder_must_implement_protocol():
    class _Partial:
        def on_step_start(self, ctx, path, **metrics):
            return None

    with pytest.raises(TypeError, match="missing required method: on_step_end"):
        StageRunner(recorder=_Partial())  # type: ignore[arg-type]
