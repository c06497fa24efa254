"""Build record helpers (per-build JSON record and the JSONL builds index)."""

from __future__ import annotations

import json
import os
import uuid
from datetime import datetime
from typing import Any, Mapping

from iso_assembler.foundation.pipeline import utc_now_iso8601
from iso_assembler.framework.runtime import BuildContext

BUILD_RECORD_SCHEMA_VERSION = 1
BUILDS_INDEX_FILENAME = "builds_index.jsonl"


def generate_build_id() -> str:
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    return f"{timestamp}_{uuid.uuid4().hex[:8]}"


def generate_file_location(directory: str, build_id: str, suffix: str) -> str:
    if not directory or not isinstance(directory, str):
        raise ValueError("directory must be a non-empty string")
    if not build_id or not isinstance(build_id, str):
        raise ValueError("build_id must be a non-empty string")
    if not suffix or not isinstance(suffix, str):
        raise ValueError("suffix must be a non-empty string")

    return os.path.join(directory, build_id + suffix)


def build_record(ctx: BuildContext) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "schema_version": BUILD_RECORD_SCHEMA_VERSION,
        "build_id": ctx.build_id,
        "created_at": ctx.created_at,
        "finished_at": utc_now_iso8601(),
        "request": ctx.request.to_dict(),
        "layout": ctx.layout.to_dict(),
        "tool": {
            "name": ctx.cfg.tool_name,
            "extra_args": list(ctx.cfg.tool_extra_args),
        },
        "steps": list(ctx.steps),
        "status": "failed" if ctx.error is not None else "ok",
    }
    if ctx.staging_root is not None:
        payload["staging_root"] = str(ctx.staging_root)
    tool_result = ctx.outputs.get("tool_result")
    if tool_result is not None:
        payload["tool_result"] = tool_result.to_dict() if hasattr(tool_result, "to_dict") else tool_result
    if ctx.error is not None:
        payload["error"] = ctx.error
    return payload


def write_build_record(path: str, ctx: BuildContext) -> None:
    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    with open(path, "w", encoding="utf-8") as handle:
        json.dump(build_record(ctx), handle, ensure_ascii=False, indent=2)
        handle.write("\n")


def append_build_index_entry(path: str, entry: Mapping[str, Any]) -> None:
    """Append a single JSON object to a JSONL builds index file."""

    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    with open(path, "a", encoding="utf-8") as handle:
        handle.write(json.dumps(dict(entry), ensure_ascii=False))
        handle.write("\n")


def read_build_index(path: str) -> list[dict[str, Any]]:
    if not os.path.exists(path):
        return []
    entries: list[dict[str, Any]] = []
    with open(path, "r", encoding="utf-8") as handle:
        for lineno, line in enumerate(handle, start=1):
            if not line.strip():
                continue
            try:
                entry = json.loads(line)
            except json.JSONDecodeError as exc:
                raise ValueError(f"Invalid JSON in {path} line {lineno}: {exc}") from exc
            if not isinstance(entry, dict):
                raise ValueError(f"Expected a JSON object in {path} line {lineno}")
            entries.append(entry)
    return entries
