"""Execution engine for ordered stage pipelines.

This module must not import `iso_assembler.framework`, `iso_assembler.stages`
or `iso_assembler.app`.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Protocol


def utc_now_iso8601() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


class FlowContext(Protocol):
    logger: logging.Logger
    outputs: dict[str, Any]
    steps: list[dict[str, Any]]


def _normalize_name(value: Any, *, kind: str) -> str:
    if not isinstance(value, str):
        raise TypeError(f"{kind} name must be a string (type={type(value).__name__})")
    name = value.strip()
    if not name:
        raise ValueError(f"{kind} name cannot be empty")
    if "/" in name:
        raise ValueError(f"{kind} name cannot contain '/': {name!r}")
    return name


@dataclass(frozen=True)
class ActionStep:
    """A named unit of work run against the flow context."""

    name: str
    fn: Callable[[FlowContext], Any]
    meta: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "name", _normalize_name(self.name, kind="Action"))

        if not callable(self.fn):
            raise TypeError(f"Action fn must be callable (type={type(self.fn).__name__})")

        if not isinstance(self.meta, dict):
            raise TypeError(f"Action meta must be a dict (type={type(self.meta).__name__})")


@dataclass(frozen=True)
class Block:
    """A named, ordered sequence of action steps."""

    name: str
    nodes: list[ActionStep] = field(default_factory=list)

    def __post_init__(self) -> None:
        object.__setattr__(self, "name", _normalize_name(self.name, kind="Block"))
        for node in self.nodes:
            if not isinstance(node, ActionStep):
                raise TypeError(f"Block nodes must be ActionStep (type={type(node).__name__})")


class StepRecorder(Protocol):
    def on_step_start(self, ctx: FlowContext, path: str, **metrics: Any) -> None:
        ...

    def on_step_end(self, ctx: FlowContext, record: dict[str, Any]) -> None:
        ...

    def on_step_error(self, ctx: FlowContext, path: str, step_name: str, exc: Exception) -> None:
        ...


class DefaultStepRecorder:
    def on_step_start(self, ctx: FlowContext, path: str, **metrics: Any) -> None:
        doc = metrics.get("doc")
        if isinstance(doc, str) and doc.strip():
            ctx.logger.info("Step: %s (%s)", path, doc.strip())
        else:
            ctx.logger.info("Step: %s", path)

    def on_step_end(self, ctx: FlowContext, record: dict[str, Any]) -> None:
        ctx.steps.append(record)
        path = record.get("path", "<unknown>")
        elapsed = record.get("elapsed_s")
        if isinstance(elapsed, (int, float)):
            ctx.logger.info("Completed step %s in %.3fs", path, elapsed)
        else:
            ctx.logger.info("Completed step %s", path)

    def on_step_error(self, ctx: FlowContext, path: str, step_name: str, exc: Exception) -> None:
        ctx.steps.append(
            {
                "type": "action",
                "name": step_name,
                "path": path,
                "created_at": utc_now_iso8601(),
                "error": {"type": type(exc).__name__, "message": str(exc)},
            }
        )
        ctx.logger.error("Step failed: %s (%s)", path, exc)


class StageRunner:
    """Runs the action steps of a block in order.

    The first failing step aborts the run. The exception is re-raised with
    ``pipeline_path`` and ``pipeline_step`` attributes naming the failed step.
    """

    def __init__(self, *, recorder: StepRecorder | None = None):
        self._recorder = recorder or DefaultStepRecorder()
        self._validate_recorder(self._recorder)

    def run(self, ctx: FlowContext, block: Block) -> None:
        seen: set[str] = set()
        duplicates: set[str] = set()
        for action in block.nodes:
            if action.name in seen:
                duplicates.add(action.name)
            seen.add(action.name)
        if duplicates:
            raise ValueError(f"Duplicate step name(s) in block {block.name}: {', '.join(sorted(duplicates))}")

        for action in block.nodes:
            self._execute_action(ctx, action, pipeline_path=f"{block.name}/{action.name}")

    def _callable_source(self, fn: Any) -> str:
        module = getattr(fn, "__module__", None) or "<unknown_module>"
        qualname = getattr(fn, "__qualname__", None) or getattr(fn, "__name__", None) or "<callable>"
        return f"{module}.{qualname}"

    def _json_safe(self, value: Any, *, max_depth: int = 4, max_items: int = 25) -> Any:
        if max_depth <= 0:
            return "<max_depth>"
        if value is None or isinstance(value, (bool, int, float, str)):
            return value
        if isinstance(value, (list, tuple)):
            items = list(value)
            out = [
                self._json_safe(item, max_depth=max_depth - 1, max_items=max_items)
                for item in items[:max_items]
            ]
            if len(items) > max_items:
                out.append(f"<{len(items) - max_items} more>")
            return out
        if isinstance(value, dict):
            result: dict[str, Any] = {}
            for idx, (k, v) in enumerate(value.items()):
                if idx >= max_items:
                    result["<more>"] = f"<{len(value) - max_items} more>"
                    break
                result[str(k)] = self._json_safe(v, max_depth=max_depth - 1, max_items=max_items)
            return result
        if hasattr(value, "__fspath__"):
            return str(value)
        to_dict = getattr(value, "to_dict", None)
        if callable(to_dict):
            return self._json_safe(to_dict(), max_depth=max_depth - 1, max_items=max_items)
        return repr(value)

    def _validate_recorder(self, recorder: StepRecorder) -> None:
        for name in ("on_step_start", "on_step_end", "on_step_error"):
            method = getattr(recorder, name, None)
            if method is None or not callable(method):
                raise TypeError(f"Step recorder missing required method: {name}")

    def _attach_pipeline_error(self, exc: Exception, *, pipeline_path: str, step_name: str) -> None:
        for attr, value in (("pipeline_path", pipeline_path), ("pipeline_step", step_name)):
            if not hasattr(exc, attr):
                try:
                    setattr(exc, attr, value)
                except AttributeError:
                    pass

    def _execute_action(self, ctx: FlowContext, action: ActionStep, *, pipeline_path: str) -> None:
        try:
            record_meta = dict(action.meta)
            record_meta.setdefault("source", self._callable_source(action.fn))

            self._recorder.on_step_start(
                ctx,
                pipeline_path,
                node_type="action",
                source=record_meta.get("source"),
                doc=record_meta.get("doc"),
            )

            started = time.monotonic()
            result = action.fn(ctx)
            elapsed = time.monotonic() - started

            record: dict[str, Any] = {
                "type": "action",
                "name": action.name,
                "path": pipeline_path,
                "created_at": utc_now_iso8601(),
                "elapsed_s": round(elapsed, 6),
                "meta": self._json_safe(record_meta),
            }
            if result is not None:
                record["result"] = self._json_safe(result)

            self._recorder.on_step_end(ctx, record)
        except Exception as exc:
            if not hasattr(exc, "pipeline_path"):
                try:
                    self._recorder.on_step_error(ctx, pipeline_path, action.name, exc)
                except Exception:
                    ctx.logger.exception(
                        "Step recorder failed during error handling for %s", pipeline_path
                    )
            self._attach_pipeline_error(exc, pipeline_path=pipeline_path, step_name=action.name)
            raise
