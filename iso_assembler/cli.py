from __future__ import annotations

import argparse
import sys
from collections.abc import Sequence

from iso_assembler.framework.errors import EXIT_OK, AssemblyError


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="iso_assembler", add_help=True)
    parser.add_argument("--config", default=None, help="Load this YAML config file instead of config/config.yaml")
    sub = parser.add_subparsers(dest="command", required=True)

    build = sub.add_parser("build", help="Assemble a bootable ISO image for a kernel binary")
    build.add_argument("kernel", help="Path to the compiled kernel binary")
    build.add_argument("-o", "--output", default=None, help="Image path (default: <kernel><output.suffix>)")
    build.add_argument("--keep-staging", action="store_true", help="Leave the staging tree in place")

    sub.add_parser("preflight", help="Check that the image tool is available")
    sub.add_parser("layout", help="Print the boot media layout")

    return parser


def _print_error(exc: AssemblyError) -> int:
    from .stages.report import describe_failure

    print(f"ERROR: {describe_failure(exc)}", file=sys.stderr)
    return exc.exit_code


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(list(argv) if argv is not None else None)

    if args.command == "build":
        from .app.assemble import assemble_main

        return assemble_main(
            args.kernel,
            config_path=args.config,
            output_path=args.output,
            keep_staging=args.keep_staging,
        )

    from .app.assemble import load_build_config

    try:
        cfg, warnings, _meta = load_build_config(args.config)
    except AssemblyError as exc:
        return _print_error(exc)
    for warning in warnings:
        print(f"WARNING: {warning}", file=sys.stderr)

    if args.command == "preflight":
        from .stages.invoke import ImageInvoker

        try:
            resolved = ImageInvoker(cfg.tool_name).preflight()
        except AssemblyError as exc:
            return _print_error(exc)
        print(f"{cfg.tool_name}: {resolved}")
        return EXIT_OK

    if args.command == "layout":
        kernel_name = cfg.layout_kernel_name or "<kernel file name>"
        print(f"{kernel_name}\t<- kernel")
        print(f"{cfg.layout_config_dest}\t<- {cfg.config_source}")
        print(f"{cfg.layout_ramdisk_name}\t<- {cfg.ramdisk_source}")
        return EXIT_OK

    raise AssertionError(f"Unhandled command: {args.command}")


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main(sys.argv[1:]))
