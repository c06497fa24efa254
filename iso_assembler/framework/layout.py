from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path, PurePosixPath

ARTIFACT_KERNEL = "kernel"
ARTIFACT_CONFIG = "config"
ARTIFACT_RAMDISK = "ramdisk"
ARTIFACTS: tuple[str, ...] = (ARTIFACT_KERNEL, ARTIFACT_CONFIG, ARTIFACT_RAMDISK)

DEFAULT_KERNEL_NAME = "jinux"
DEFAULT_CONFIG_DEST = "boot/grub/grub.cfg"
DEFAULT_RAMDISK_NAME = "ramdisk.cpio.gz"


def normalize_relative(value: str, path: str) -> str:
    """Validate a staging-relative POSIX path and return it normalized.

    Rejects absolute paths and any ``..`` component so that every destination
    stays inside the staging root.
    """

    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Invalid layout path for {path}: must be a non-empty string")
    candidate = PurePosixPath(value.strip())
    if candidate.is_absolute():
        raise ValueError(f"Invalid layout path for {path}: must be relative ({value!r})")
    parts = [part for part in candidate.parts if part not in ("", ".")]
    if not parts:
        raise ValueError(f"Invalid layout path for {path}: {value!r}")
    if ".." in parts:
        raise ValueError(f"Invalid layout path for {path}: must not contain '..' ({value!r})")
    return "/".join(parts)


@dataclass(frozen=True)
class BootMediaLayout:
    """Relative paths the bootloader config and the image tool expect.

    ``kernel_name`` and ``ramdisk_name`` sit at the staging root. The grub
    config hardcodes both names, so changing them here means changing the
    shipped ``grub.cfg`` too.
    """

    kernel_name: str = DEFAULT_KERNEL_NAME
    config_dest: str = DEFAULT_CONFIG_DEST
    ramdisk_name: str = DEFAULT_RAMDISK_NAME

    def __post_init__(self) -> None:
        for attr in ("kernel_name", "ramdisk_name"):
            value = normalize_relative(getattr(self, attr), f"layout.{attr}")
            if "/" in value:
                raise ValueError(f"Invalid layout path for layout.{attr}: must be a root-level name ({value!r})")
            object.__setattr__(self, attr, value)
        object.__setattr__(self, "config_dest", normalize_relative(self.config_dest, "layout.config_dest"))

        relpaths = self.relative_paths()
        if len(set(relpaths.values())) != len(relpaths):
            raise ValueError(f"Layout destinations must be distinct: {relpaths}")

    def relative_paths(self) -> dict[str, str]:
        return {
            ARTIFACT_KERNEL: self.kernel_name,
            ARTIFACT_CONFIG: self.config_dest,
            ARTIFACT_RAMDISK: self.ramdisk_name,
        }

    def directories(self) -> tuple[str, ...]:
        """Relative directories that must exist, parents before children."""

        dirs: set[str] = set()
        for relpath in self.relative_paths().values():
            parent = PurePosixPath(relpath).parent
            while str(parent) not in ("", "."):
                dirs.add(str(parent))
                parent = parent.parent
        return tuple(sorted(dirs, key=lambda item: (item.count("/"), item)))

    def destinations(self, root: str | Path) -> dict[str, Path]:
        base = Path(root)
        return {name: base.joinpath(*relpath.split("/")) for name, relpath in self.relative_paths().items()}

    def missing(self, root: str | Path) -> list[str]:
        """Relative paths of artifacts not present as regular files under ``root``."""

        relpaths = self.relative_paths()
        return [
            relpaths[name]
            for name, dest in self.destinations(root).items()
            if not dest.is_file()
        ]

    def to_dict(self) -> dict[str, str]:
        return self.relative_paths()
