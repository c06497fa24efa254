from __future__ import annotations

import os
import shutil
import tempfile
from pathlib import Path

from iso_assembler.framework.errors import CopyError
from iso_assembler.framework.layout import ARTIFACTS, BootMediaLayout
from iso_assembler.framework.request import BuildRequest, check_readable_file

STAGE_NAME = "collect"


def copy_atomic(source: Path, destination: Path) -> int:
    """Copy ``source`` over ``destination`` content and mode bits.

    The data is written to a temporary sibling and renamed into place, so the
    destination either holds the complete copy or is left as it was.
    Returns the number of bytes copied.
    """

    fd, tmp_name = tempfile.mkstemp(prefix=f".{destination.name}.", suffix=".part", dir=destination.parent)
    os.close(fd)
    tmp_path = Path(tmp_name)
    try:
        shutil.copyfile(source, tmp_path)
        shutil.copymode(source, tmp_path)
        expected = source.stat().st_size
        written = tmp_path.stat().st_size
        if written != expected:
            raise CopyError(
                f"Short copy of {source} to {destination}: {written} of {expected} bytes",
                source=str(source),
                destination=str(destination),
            )
        os.replace(tmp_path, destination)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise
    return written


class ArtifactCollector:
    """Copies kernel, bootloader config and ramdisk into the staging tree."""

    def __init__(self, layout: BootMediaLayout):
        self.layout = layout

    def collect(self, request: BuildRequest, root: str | os.PathLike[str]) -> dict[str, Path]:
        sources = request.inputs()
        destinations = self.layout.destinations(root)
        collected: dict[str, Path] = {}
        for artifact in ARTIFACTS:
            source = sources[artifact]
            destination = destinations[artifact]
            check_readable_file(source, role=artifact, stage=STAGE_NAME)
            try:
                copy_atomic(source, destination)
            except CopyError:
                raise
            except OSError as exc:
                raise CopyError(
                    f"Cannot copy {artifact} {source} to {destination}: {exc}",
                    source=str(source),
                    destination=str(destination),
                ) from exc
            collected[artifact] = destination
        return collected
