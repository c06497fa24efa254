from __future__ import annotations

import argparse
import logging
import os
import sys
from dataclasses import replace
from collections.abc import Sequence
from typing import Any

from iso_assembler.foundation.config_io import find_repo_root, load_config
from iso_assembler.foundation.logging_utils import close_logger, setup_operational_logger
from iso_assembler.foundation.pipeline import ActionStep, Block, StageRunner, utc_now_iso8601
from iso_assembler.framework.artifacts import (
    BUILDS_INDEX_FILENAME,
    append_build_index_entry,
    generate_build_id,
    generate_file_location,
    write_build_record,
)
from iso_assembler.framework.config import BuildConfig
from iso_assembler.framework.errors import (
    AssemblyError,
    ConfigError,
    FilesystemError,
    InputError,
    StagingError,
)
from iso_assembler.framework.request import BuildRequest
from iso_assembler.framework.runtime import BuildContext, BuildOutcome
from iso_assembler.stages import ArtifactCollector, ImageInvoker, ResultReporter, StagingTreeBuilder


def load_build_config(
    config_path: str | os.PathLike[str] | None = None,
) -> tuple[BuildConfig, list[str], dict[str, Any]]:
    """Load YAML settings and parse them into a BuildConfig.

    Raises:
        ConfigError: the file is unreadable or a value is invalid.
    """

    try:
        cfg_dict, meta = load_config(config_path=config_path)
    except (OSError, ValueError) as exc:
        raise ConfigError(f"Cannot load config: {exc}") from exc

    base_dir = meta.get("repo_root")
    if base_dir is None:
        try:
            base_dir = find_repo_root()
        except FileNotFoundError:
            paths = meta.get("paths") or []
            base_dir = os.path.dirname(paths[0]) if paths else None

    try:
        cfg, warnings = BuildConfig.from_dict(cfg_dict, base_dir=base_dir)
    except ValueError as exc:
        raise ConfigError(str(exc)) from exc
    return cfg, warnings, meta


def _log_config_meta(logger: logging.Logger, meta: dict[str, Any] | None) -> None:
    if not meta:
        return
    mode = meta.get("mode")
    paths = meta.get("paths") or []
    if mode in {"env", "explicit"} and paths:
        label = f"env {meta.get('env_var')}" if mode == "env" else "explicit path"
        logger.info("Loaded config from %s=%s", label, paths[0])
    elif len(paths) > 1:
        logger.info("Loaded config base=%s local=%s", paths[0], paths[1])
    elif paths:
        logger.info("Loaded config base=%s", paths[0])
    else:
        logger.info("No config file found; using built-in defaults")


def validate_request_step(ctx: BuildContext) -> dict[str, str]:
    ctx.request.validate()
    return ctx.request.to_dict()


def preflight_step(ctx: BuildContext) -> str:
    resolved = _invoker(ctx).preflight()
    ctx.logger.debug("Resolved image tool %s -> %s", ctx.cfg.tool_name, resolved)
    return resolved


def staging_step(ctx: BuildContext) -> str:
    root, owned = StagingTreeBuilder.create_root(ctx.cfg)
    ctx.staging_root = root
    ctx.staging_owned = owned
    StagingTreeBuilder(ctx.layout).build(root)
    ctx.logger.info("Staging tree ready at %s", root)
    return str(root)


def collect_step(ctx: BuildContext) -> dict[str, str]:
    assert ctx.staging_root is not None
    collected = ArtifactCollector(ctx.layout).collect(ctx.request, ctx.staging_root)
    missing = ctx.layout.missing(ctx.staging_root)
    if missing:
        raise StagingError(
            f"Staging tree {ctx.staging_root} is missing {', '.join(missing)}",
            stage="collect",
        )
    for artifact, destination in collected.items():
        ctx.logger.debug("Staged %s at %s", artifact, destination)
    return {artifact: str(path) for artifact, path in collected.items()}


def image_step(ctx: BuildContext) -> dict[str, Any]:
    assert ctx.staging_root is not None
    try:
        ctx.request.output_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise FilesystemError(f"Cannot create output directory: {exc}", stage="image") from exc
    result = _invoker(ctx).invoke(ctx.staging_root, ctx.request.output_path)
    ctx.outputs["tool_result"] = result
    if result.stderr.strip():
        ctx.logger.debug("Image tool diagnostics:\n%s", result.stderr.rstrip())
    ctx.logger.info("Wrote image %s (%d bytes)", result.output_path, result.output_bytes)
    return {"output_path": result.output_path, "output_bytes": result.output_bytes}


def _invoker(ctx: BuildContext) -> ImageInvoker:
    return ImageInvoker(
        ctx.cfg.tool_name,
        extra_args=ctx.cfg.tool_extra_args,
        timeout_seconds=ctx.cfg.tool_timeout_seconds,
    )


def build_pipeline(cfg: BuildConfig) -> Block:
    nodes = [ActionStep(name="request", fn=validate_request_step, meta={"doc": "validate inputs"})]
    if cfg.tool_preflight:
        nodes.append(ActionStep(name="preflight", fn=preflight_step, meta={"doc": "locate image tool"}))
    nodes.extend(
        [
            ActionStep(name="staging", fn=staging_step, meta={"doc": "create staging tree"}),
            ActionStep(name="collect", fn=collect_step, meta={"doc": "copy artifacts"}),
            ActionStep(name="image", fn=image_step, meta={"doc": "run image tool"}),
        ]
    )
    return Block(name="pipeline", nodes=nodes)


def _finalize(ctx: BuildContext) -> None:
    if ctx.staging_root is not None and ctx.staging_owned:
        if ctx.cfg.staging_keep:
            ctx.logger.info("Keeping staging tree %s", ctx.staging_root)
        else:
            StagingTreeBuilder.cleanup(ctx.staging_root)
            ctx.logger.debug("Removed staging tree %s", ctx.staging_root)

    if not ctx.cfg.log_dir:
        return
    log_dir = str(ctx.cfg.resolve_path(ctx.cfg.log_dir))
    record_path = generate_file_location(log_dir, ctx.build_id, "_build.json")
    try:
        write_build_record(record_path, ctx)
        append_build_index_entry(
            os.path.join(log_dir, BUILDS_INDEX_FILENAME),
            {
                "schema_version": 1,
                "build_id": ctx.build_id,
                "created_at": ctx.created_at,
                "kernel_path": str(ctx.request.kernel_path),
                "output_path": str(ctx.request.output_path),
                "status": "failed" if ctx.error is not None else "ok",
                "error_kind": (ctx.error or {}).get("kind"),
                "record_path": record_path,
            },
        )
    except OSError as exc:
        ctx.logger.error("Cannot write build record %s: %s", record_path, exc)
        return
    ctx.logger.info("Wrote build record %s", record_path)


def run_assembly(
    kernel_path: str | os.PathLike[str],
    cfg: BuildConfig,
    *,
    build_id: str | None = None,
    output_path: str | os.PathLike[str] | None = None,
    config_meta: dict[str, Any] | None = None,
    config_warnings: Sequence[str] = (),
    runner: StageRunner | None = None,
) -> tuple[BuildOutcome, BuildContext]:
    """Run request validation, staging, collection and imaging for one kernel.

    Assembly failures are returned in the outcome; any other exception
    propagates after the staging tree is cleaned up and the build record is
    written.
    """

    build_id = build_id or generate_build_id()
    log_dir = str(cfg.resolve_path(cfg.log_dir)) if cfg.log_dir else None
    try:
        logger, _log_file = setup_operational_logger(
            build_id, log_dir=log_dir, level=getattr(logging, cfg.log_level)
        )
    except OSError as exc:
        raise FilesystemError(f"Cannot open build log in {log_dir}: {exc}", stage="logging") from exc
    try:
        _log_config_meta(logger, config_meta)
        for warning in config_warnings:
            logger.warning("%s", warning)

        request = BuildRequest.from_kernel_path(kernel_path, cfg, output_path=output_path)
        try:
            layout = cfg.layout_for(request.kernel_path)
        except ValueError as exc:
            raise InputError(f"Kernel {request.kernel_path} cannot be staged: {exc}", stage="request") from exc
        ctx = BuildContext(
            build_id=build_id,
            cfg=cfg,
            logger=logger,
            request=request,
            layout=layout,
            created_at=utc_now_iso8601(),
        )
        logger.info("Build %s started for kernel %s", build_id, request.kernel_path)

        runner = runner or StageRunner()
        outcome: BuildOutcome
        try:
            runner.run(ctx, build_pipeline(cfg))
            outcome = BuildOutcome(build_id=build_id, output_path=request.output_path)
            logger.info("Build %s finished: %s", build_id, request.output_path)
        except AssemblyError as exc:
            ctx.error = {**exc.to_dict(), "pipeline_path": getattr(exc, "pipeline_path", None)}
            outcome = BuildOutcome(build_id=build_id, output_path=None, error=exc)
            logger.error("Build %s failed: %s", build_id, exc)
        except Exception as exc:
            ctx.error = {
                "kind": type(exc).__name__,
                "message": str(exc),
                "pipeline_path": getattr(exc, "pipeline_path", None),
            }
            raise
        finally:
            _finalize(ctx)
        return outcome, ctx
    finally:
        close_logger(logger)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="build-grub-image",
        description="Assemble a bootable GRUB ISO image for a compiled kernel.",
    )
    parser.add_argument("kernel", help="Path to the compiled kernel binary")
    return parser


def assemble_main(
    kernel_path: str,
    *,
    config_path: str | None = None,
    output_path: str | None = None,
    keep_staging: bool = False,
    reporter: ResultReporter | None = None,
) -> int:
    reporter = reporter or ResultReporter()
    try:
        cfg, warnings, meta = load_build_config(config_path)
    except InputError as exc:
        return reporter.report(BuildOutcome(build_id="-", output_path=None, error=exc))

    if keep_staging and not cfg.staging_keep:
        cfg = replace(cfg, staging_keep=True)

    try:
        outcome, _ctx = run_assembly(
            kernel_path,
            cfg,
            output_path=output_path,
            config_meta=meta,
            config_warnings=warnings,
        )
    except AssemblyError as exc:
        outcome = BuildOutcome(build_id="-", output_path=None, error=exc)
    return reporter.report(outcome)


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(list(argv) if argv is not None else None)
    return assemble_main(args.kernel)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main(sys.argv[1:]))
