from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

from iso_assembler.framework.layout import (
    DEFAULT_CONFIG_DEST,
    DEFAULT_KERNEL_NAME,
    DEFAULT_RAMDISK_NAME,
    BootMediaLayout,
    normalize_relative,
)

DEFAULT_CONFIG_SOURCE = "build/grub/conf/grub.cfg"
DEFAULT_RAMDISK_SOURCE = "regression/build/ramdisk.cpio.gz"
DEFAULT_OUTPUT_SUFFIX = ".iso"
DEFAULT_TOOL = "grub-mkrescue"
LOG_LEVELS: tuple[str, ...] = ("DEBUG", "INFO", "WARNING", "ERROR")


def parse_bool(value: Any, path: str) -> bool:
    """
    Strict boolean parsing to avoid bool('false') footguns.

    Accepts True/False, 0/1 and the strings true/false/1/0/yes/no
    (case-insensitive, surrounding whitespace ignored).
    """

    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        if value in (0, 1):
            return bool(value)
        raise ValueError(f"Invalid boolean for {path}: {value!r}")
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in {"true", "1", "yes"}:
            return True
        if normalized in {"false", "0", "no"}:
            return False
    raise ValueError(f"Invalid boolean for {path}: {value!r}")


def parse_float(value: Any, path: str) -> float:
    if value is None:
        raise ValueError(f"Invalid config value for {path}: None")
    if isinstance(value, bool):
        raise ValueError(f"Invalid config type for {path}: expected float, got bool")
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        if not value.strip():
            raise ValueError(f"Invalid config value for {path}: must be a float")
        try:
            return float(value.strip())
        except ValueError as exc:
            raise ValueError(f"Invalid config value for {path}: must be a float") from exc
    raise ValueError(f"Invalid config type for {path}: expected float")


def parse_optional_str(value: Any, path: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"Invalid config type for {path}: expected string, got {type(value).__name__}")
    return value.strip() or None


def parse_str(value: Any, path: str) -> str:
    parsed = parse_optional_str(value, path)
    if parsed is None:
        raise ValueError(f"Invalid config value for {path}: must be a non-empty string")
    return parsed


def parse_str_list(value: Any, path: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        raise ValueError(f"Invalid config type for {path}: expected a list of strings")
    if not isinstance(value, (list, tuple)):
        raise ValueError(f"Invalid config type for {path}: expected list, got {type(value).__name__}")
    items: list[str] = []
    for idx, item in enumerate(value):
        if isinstance(item, bool) or not isinstance(item, (str, int, float)):
            raise ValueError(f"Invalid config type for {path}[{idx}]: expected string")
        items.append(str(item))
    return tuple(items)


def _section(cfg: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    raw = cfg.get(name)
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise ValueError(f"Invalid config type for {name}: expected mapping, got {type(raw).__name__}")
    return raw


_SCHEMA: Mapping[str, Mapping[str, Any]] = {
    "project": {"root": None},
    "sources": {"config_path": None, "ramdisk_path": None},
    "layout": {"kernel_name": None, "config_dest": None, "ramdisk_name": None},
    "output": {"suffix": None},
    "staging": {"root": None, "keep": None},
    "tool": {"name": None, "extra_args": None, "preflight": None, "timeout_seconds": None},
    "logging": {"log_dir": None, "level": None},
}


@dataclass(frozen=True)
class BuildConfig:
    project_root: str | None

    config_source: str
    ramdisk_source: str

    layout_kernel_name: str | None
    layout_config_dest: str
    layout_ramdisk_name: str

    output_suffix: str

    staging_root: str | None
    staging_keep: bool

    tool_name: str
    tool_extra_args: tuple[str, ...]
    tool_preflight: bool
    tool_timeout_seconds: float | None

    log_dir: str | None
    log_level: str

    @staticmethod
    def from_dict(
        cfg: Mapping[str, Any], *, base_dir: str | os.PathLike[str] | None = None
    ) -> tuple["BuildConfig", list[str]]:
        """
        Parse and validate configuration, returning (BuildConfig, warnings).

        Relative ``project.root`` values are resolved against ``base_dir``
        (the directory of the loaded config file, or the repo root).

        Raises:
            ValueError: if a key is invalid, or unknown keys are present and
            ``strict`` is true.
        """

        if not isinstance(cfg, Mapping):
            raise ValueError("Config must be a mapping")

        warnings: list[str] = []

        strict_unknown_keys = False
        if "strict" in cfg:
            strict_unknown_keys = parse_bool(cfg.get("strict"), "strict")

        unknown_keys: list[str] = []
        for key, value in cfg.items():
            if not isinstance(key, str) or key == "strict":
                continue
            if key not in _SCHEMA:
                unknown_keys.append(key)
                continue
            if isinstance(value, Mapping):
                unknown_keys.extend(
                    f"{key}.{sub}" for sub in value if isinstance(sub, str) and sub not in _SCHEMA[key]
                )
        if unknown_keys:
            unknown_keys = sorted(set(unknown_keys))
            if strict_unknown_keys:
                raise ValueError("Unknown config keys: " + ", ".join(unknown_keys))
            warnings.extend(f"Unknown config key: {key}" for key in unknown_keys)

        project = _section(cfg, "project")
        sources = _section(cfg, "sources")
        layout = _section(cfg, "layout")
        output = _section(cfg, "output")
        staging = _section(cfg, "staging")
        tool = _section(cfg, "tool")
        logging_cfg = _section(cfg, "logging")

        project_root = parse_optional_str(project.get("root"), "project.root")
        if project_root is not None:
            expanded = os.path.expanduser(os.path.expandvars(project_root))
            if not os.path.isabs(expanded) and base_dir is not None:
                expanded = os.path.join(os.fspath(base_dir), expanded)
            project_root = os.path.abspath(expanded)
        elif base_dir is not None:
            project_root = os.path.abspath(os.fspath(base_dir))

        config_source = parse_str(sources.get("config_path", DEFAULT_CONFIG_SOURCE), "sources.config_path")
        ramdisk_source = parse_str(
            sources.get("ramdisk_path", DEFAULT_RAMDISK_SOURCE), "sources.ramdisk_path"
        )

        if "kernel_name" in layout:
            layout_kernel_name = parse_optional_str(layout.get("kernel_name"), "layout.kernel_name")
        else:
            layout_kernel_name = DEFAULT_KERNEL_NAME
        if layout_kernel_name is not None:
            layout_kernel_name = normalize_relative(layout_kernel_name, "layout.kernel_name")
        layout_config_dest = normalize_relative(
            parse_str(layout.get("config_dest", DEFAULT_CONFIG_DEST), "layout.config_dest"),
            "layout.config_dest",
        )
        layout_ramdisk_name = normalize_relative(
            parse_str(layout.get("ramdisk_name", DEFAULT_RAMDISK_NAME), "layout.ramdisk_name"),
            "layout.ramdisk_name",
        )
        # Fail early on collisions and nested root-level names.
        BootMediaLayout(
            kernel_name=layout_kernel_name or "kernel",
            config_dest=layout_config_dest,
            ramdisk_name=layout_ramdisk_name,
        )

        output_suffix = parse_str(output.get("suffix", DEFAULT_OUTPUT_SUFFIX), "output.suffix")
        if "/" in output_suffix or "\\" in output_suffix:
            raise ValueError(f"Invalid config value for output.suffix: {output_suffix!r}")

        staging_root = parse_optional_str(staging.get("root"), "staging.root")
        staging_keep = parse_bool(staging.get("keep", False), "staging.keep")

        tool_name = parse_str(tool.get("name", DEFAULT_TOOL), "tool.name")
        tool_extra_args = parse_str_list(tool.get("extra_args"), "tool.extra_args")
        if "-o" in tool_extra_args:
            raise ValueError("Invalid config value for tool.extra_args: '-o' is set from the output path")
        tool_preflight = parse_bool(tool.get("preflight", True), "tool.preflight")
        tool_timeout_seconds: float | None = None
        if tool.get("timeout_seconds") is not None:
            tool_timeout_seconds = parse_float(tool.get("timeout_seconds"), "tool.timeout_seconds")
            if tool_timeout_seconds <= 0:
                raise ValueError("Invalid config value for tool.timeout_seconds: must be > 0")

        log_dir = parse_optional_str(logging_cfg.get("log_dir"), "logging.log_dir")
        log_level = parse_str(logging_cfg.get("level", "INFO"), "logging.level").upper()
        if log_level not in LOG_LEVELS:
            raise ValueError(
                f"Invalid config value for logging.level: {log_level!r} (expected one of {', '.join(LOG_LEVELS)})"
            )

        return (
            BuildConfig(
                project_root=project_root,
                config_source=config_source,
                ramdisk_source=ramdisk_source,
                layout_kernel_name=layout_kernel_name,
                layout_config_dest=layout_config_dest,
                layout_ramdisk_name=layout_ramdisk_name,
                output_suffix=output_suffix,
                staging_root=staging_root,
                staging_keep=staging_keep,
                tool_name=tool_name,
                tool_extra_args=tool_extra_args,
                tool_preflight=tool_preflight,
                tool_timeout_seconds=tool_timeout_seconds,
                log_dir=log_dir,
                log_level=log_level,
            ),
            warnings,
        )

    def resolve_path(self, value: str) -> Path:
        """Resolve a configured path against ``project_root`` (or the cwd when unset)."""

        expanded = Path(os.path.expanduser(os.path.expandvars(value)))
        if not expanded.is_absolute():
            base = Path(self.project_root) if self.project_root else Path.cwd()
            expanded = base / expanded
        return Path(os.path.abspath(expanded))

    def layout_for(self, kernel_path: str | os.PathLike[str]) -> BootMediaLayout:
        kernel_name = self.layout_kernel_name or Path(kernel_path).name
        return BootMediaLayout(
            kernel_name=kernel_name,
            config_dest=self.layout_config_dest,
            ramdisk_name=self.layout_ramdisk_name,
        )
