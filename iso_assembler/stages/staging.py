from __future__ import annotations

import os
import shutil
import tempfile
from pathlib import Path

from iso_assembler.framework.config import BuildConfig
from iso_assembler.framework.errors import StagingError
from iso_assembler.framework.layout import BootMediaLayout

STAGE_NAME = "staging"
TEMP_PREFIX = "iso_root_"


class StagingTreeBuilder:
    """Creates the directory skeleton of a BootMediaLayout under a staging root."""

    def __init__(self, layout: BootMediaLayout):
        self.layout = layout

    @staticmethod
    def create_root(cfg: BuildConfig) -> tuple[Path, bool]:
        """Allocate the staging root for one invocation.

        Returns ``(root, owned)``. ``owned`` is true for a fresh temporary
        directory that the caller may delete afterwards.
        """

        if cfg.staging_root:
            return cfg.resolve_path(cfg.staging_root), False
        try:
            return Path(tempfile.mkdtemp(prefix=TEMP_PREFIX)), True
        except OSError as exc:
            raise StagingError(f"Cannot create temporary staging directory: {exc}") from exc

    def build(self, root: str | os.PathLike[str]) -> Path:
        root_path = Path(root)
        targets = [root_path, *(root_path.joinpath(*rel.split("/")) for rel in self.layout.directories())]
        for target in targets:
            try:
                target.mkdir(parents=True, exist_ok=True)
            except FileExistsError as exc:
                raise StagingError(f"Cannot create staging directory {target}: a file is in the way") from exc
            except OSError as exc:
                raise StagingError(f"Cannot create staging directory {target}: {exc}") from exc
        return root_path

    @staticmethod
    def cleanup(root: str | os.PathLike[str]) -> None:
        shutil.rmtree(root, ignore_errors=True)
