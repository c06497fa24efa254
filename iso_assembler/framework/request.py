from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from iso_assembler.framework.config import BuildConfig
from iso_assembler.framework.errors import InputError, MissingInputError


def _absolute(path: str | os.PathLike[str]) -> Path:
    return Path(os.path.abspath(os.path.expanduser(os.fspath(path))))


def check_readable_file(path: Path, *, role: str, stage: str | None = None) -> None:
    if not path.exists():
        raise MissingInputError(str(path), role=role, stage=stage)
    if not path.is_file():
        raise MissingInputError(str(path), role=role, reason="is not a regular file", stage=stage)
    if not os.access(path, os.R_OK):
        raise MissingInputError(str(path), role=role, reason="is not readable", stage=stage)


@dataclass(frozen=True)
class BuildRequest:
    kernel_path: Path
    config_path: Path
    ramdisk_path: Path
    output_path: Path

    def __post_init__(self) -> None:
        for attr in ("kernel_path", "config_path", "ramdisk_path", "output_path"):
            object.__setattr__(self, attr, _absolute(getattr(self, attr)))

    @classmethod
    def from_kernel_path(
        cls,
        kernel_path: str | os.PathLike[str],
        cfg: BuildConfig,
        *,
        output_path: str | os.PathLike[str] | None = None,
    ) -> "BuildRequest":
        """Derive a request from the kernel path, the configured sources and suffix."""

        raw_kernel = os.fspath(kernel_path)
        if not raw_kernel.strip():
            raise InputError("Kernel path must be a non-empty string")
        kernel = _absolute(raw_kernel)
        if not kernel.name:
            raise InputError(f"Kernel path {raw_kernel!r} does not name a file")
        output = _absolute(output_path) if output_path is not None else Path(str(kernel) + cfg.output_suffix)
        return cls(
            kernel_path=kernel,
            config_path=cfg.resolve_path(cfg.config_source),
            ramdisk_path=cfg.resolve_path(cfg.ramdisk_source),
            output_path=output,
        )

    def inputs(self) -> dict[str, Path]:
        return {
            "kernel": self.kernel_path,
            "config": self.config_path,
            "ramdisk": self.ramdisk_path,
        }

    def validate(self) -> None:
        """Check inputs are readable files and the output location is usable.

        Raises:
            MissingInputError: an input is absent or unreadable.
            InputError: the output path cannot be written.
        """

        for role, path in self.inputs().items():
            check_readable_file(path, role=role)

        if self.output_path.is_dir():
            raise InputError(f"Output path {self.output_path} is a directory")
        if self.output_path in self.inputs().values():
            raise InputError(f"Output path {self.output_path} would overwrite an input")

        parent = self.output_path.parent
        for candidate in (parent, *parent.parents):
            if candidate.exists():
                if not candidate.is_dir():
                    raise InputError(f"Output directory {candidate} is not a directory")
                if not os.access(candidate, os.W_OK | os.X_OK):
                    raise InputError(f"Output directory {candidate} is not writable")
                break

    def to_dict(self) -> dict[str, str]:
        return {
            "kernel_path": str(self.kernel_path),
            "config_path": str(self.config_path),
            "ramdisk_path": str(self.ramdisk_path),
            "output_path": str(self.output_path),
        }
