from __future__ import annotations

import os
from pathlib import Path
from collections.abc import Mapping
from typing import Any

import yaml

DEFAULT_CONFIG_ENV_VAR = "ISO_ASSEMBLER_CONFIG"
REPO_ROOT_MARKERS: tuple[str, ...] = ("pyproject.toml", "Cargo.toml", ".git")


def find_repo_root(start: str | os.PathLike[str] | None = None) -> str:
    start_path = Path(start or os.getcwd()).resolve()
    if start_path.is_file():
        start_path = start_path.parent

    for candidate in (start_path, *start_path.parents):
        for marker in REPO_ROOT_MARKERS:
            if (candidate / marker).exists():
                return str(candidate)

    raise FileNotFoundError(
        "Cannot locate repo root: searched from "
        f"{start_path} for {', '.join(REPO_ROOT_MARKERS)}"
    )


def _read_mapping(path: str) -> dict[str, Any]:
    text = Path(path).read_text(encoding="utf-8")
    try:
        payload = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ValueError(f"Invalid YAML in {path}: {exc}") from exc
    if payload is None:
        return {}
    if not isinstance(payload, Mapping):
        raise ValueError(f"Config file must contain a YAML mapping: {path}")
    return dict(payload)


def _apply_overlay(base: Mapping[str, Any], overlay: Mapping[str, Any], prefix: str = "") -> dict[str, Any]:
    """Merge ``config.local.yaml`` onto the base settings.

    Sections merge key by key. Any other value, ``null`` included, replaces
    the base value.
    """

    merged = dict(base)
    for key, value in overlay.items():
        where = f"{prefix}.{key}" if prefix else str(key)
        current = merged.get(key)
        if value is None or current is None:
            merged[key] = value
        elif isinstance(current, Mapping) and isinstance(value, Mapping):
            merged[key] = _apply_overlay(current, value, where)
        elif isinstance(current, Mapping) or isinstance(value, Mapping):
            raise ValueError(
                f"Invalid config overlay merge at {where}: cannot replace "
                f"{type(current).__name__} with {type(value).__name__}"
            )
        else:
            merged[key] = value
    return merged


def load_config(
    *,
    config_path: str | os.PathLike[str] | None = None,
    env_var: str | None = DEFAULT_CONFIG_ENV_VAR,
    config_rel_path: str = "config",
    config_name: str = "config",
    start_dir: str | os.PathLike[str] | None = None,
    required: bool = False,
) -> tuple[dict[str, Any], dict[str, Any]]:
    """
    Load build settings from YAML.

    An explicit ``config_path`` (or the file named by ``env_var``) is loaded on
    its own. Otherwise ``<repo_root>/config/config.yaml`` is loaded and
    ``config.local.yaml`` from the same directory is deep-merged on top.

    When no base file exists and ``required`` is false, an empty mapping is
    returned with ``meta["mode"] == "defaults"``.
    """

    explicit_path = None
    if config_path is not None:
        explicit_path = str(config_path).strip() or None
    elif env_var:
        raw_env = os.environ.get(str(env_var), "")
        explicit_path = raw_env.strip() or None

    if explicit_path:
        expanded = os.path.abspath(os.path.expandvars(os.path.expanduser(explicit_path)))
        cfg = _read_mapping(expanded)
        meta = {
            "mode": "env" if config_path is None else "explicit",
            "paths": [expanded],
            "env_var": env_var,
            "repo_root": None,
        }
        return cfg, meta

    repo_root: str | None
    if os.path.isabs(config_rel_path):
        config_directory = config_rel_path
        repo_root = None
    else:
        try:
            repo_root = find_repo_root(start_dir)
        except FileNotFoundError:
            if required:
                raise
            return {}, {"mode": "defaults", "paths": [], "env_var": env_var, "repo_root": None}
        config_directory = os.path.join(repo_root, config_rel_path)
    base_config_path = os.path.join(config_directory, config_name + ".yaml")
    local_overlay_path = os.path.join(config_directory, config_name + ".local.yaml")

    if not os.path.exists(base_config_path):
        if required:
            raise FileNotFoundError(f"Missing base config file: {base_config_path}")
        return {}, {"mode": "defaults", "paths": [], "env_var": env_var, "repo_root": repo_root}

    cfg = _read_mapping(base_config_path)
    loaded_paths = [os.path.abspath(base_config_path)]
    mode = "base"

    if os.path.exists(local_overlay_path):
        overlay = _read_mapping(local_overlay_path)
        cfg = _apply_overlay(cfg, overlay)
        loaded_paths.append(os.path.abspath(local_overlay_path))
        mode = "base+local"

    meta = {"mode": mode, "paths": loaded_paths, "env_var": env_var, "repo_root": repo_root}
    return cfg, meta
