import os
import stat
import tempfile
from pathlib import Path

import pytest

FAKE_TOOL = """#!/bin/sh
printf '%s\\n' "$*" >> "$FAKE_TOOL_LOG"
out=""
dir=""
while [ $# -gt 0 ]; do
  case "$1" in
    -o) out="$2"; shift 2 ;;
    *) dir="$1"; shift ;;
  esac
done
if [ -n "$FAKE_TOOL_FAIL" ]; then
  echo "fake tool failure: $FAKE_TOOL_FAIL" >&2
  exit 3
fi
(cd "$dir" && find . -type f | LC_ALL=C sort) > "$out"
cat "$dir/boot/grub/grub.cfg" >> "$out"
echo "fake tool wrote $out" >&2
"""


def _make_executable(path: Path) -> None:
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)


@pytest.fixture
def build_inputs(tmp_path):
    """Kernel, grub.cfg and ramdisk laid out like a kernel source tree."""

    project = tmp_path / "project"
    (project / "build" / "grub" / "conf").mkdir(parents=True)
    (project / "regression" / "build").mkdir(parents=True)

    kernel = project / "target" / "x86_64-custom" / "debug" / "k"
    kernel.parent.mkdir(parents=True)
    kernel.write_bytes(b"\x7fELF" + bytes(range(256)) * 4)
    _make_executable(kernel)

    grub_cfg = project / "build" / "grub" / "conf" / "grub.cfg"
    grub_cfg.write_text(
        'menuentry "jinux" {\n  multiboot2 /jinux\n  module2 /ramdisk.cpio.gz\n}\n',
        encoding="utf-8",
    )

    ramdisk = project / "regression" / "build" / "ramdisk.cpio.gz"
    ramdisk.write_bytes(b"\x1f\x8b" + b"\x00" * 512)

    return {"project": project, "kernel": kernel, "config": grub_cfg, "ramdisk": ramdisk}


@pytest.fixture
def fake_tool(tmp_path_factory, monkeypatch):
    """Put a grub-mkrescue stand-in first on PATH; returns its invocation log."""

    tool_home = tmp_path_factory.mktemp("fake_tool")
    bin_dir = tool_home / "bin"
    bin_dir.mkdir()
    tool = bin_dir / "grub-mkrescue"
    tool.write_text(FAKE_TOOL, encoding="utf-8")
    _make_executable(tool)

    log_path = tool_home / "fake_tool.log"
    monkeypatch.setenv("PATH", f"{bin_dir}{os.pathsep}{os.environ.get('PATH', '')}")
    monkeypatch.setenv("FAKE_TOOL_LOG", str(log_path))
    monkeypatch.delenv("FAKE_TOOL_FAIL", raising=False)
    return log_path


@pytest.fixture
def temp_root(tmp_path, monkeypatch):
    """Redirect tempfile.mkdtemp into the test's tmp_path."""

    root = tmp_path / "tmp"
    root.mkdir()
    monkeypatch.setattr(tempfile, "tempdir", str(root))
    return root
