import os
import stat

import pytest

from iso_assembler.framework.config import BuildConfig
from iso_assembler.framework.errors import CopyError, MissingInputError
from iso_assembler.framework.layout import BootMediaLayout
from iso_assembler.framework.request import BuildRequest
from iso_assembler.stages import collect as collect_module
from iso_assembler.stages.collect import ArtifactCollector
from iso_assembler.stages.staging import StagingTreeBuilder


def _request(build_inputs):
    cfg, _warnings = BuildConfig.from_dict({"project": {"root": str(build_inputs["project"])}})
    return BuildRequest.from_kernel_path(build_inputs["kernel"], cfg)


def _staged_root(tmp_path, layout):
    return StagingTreeBuilder(layout).build(tmp_path / "iso_root")


def test_collect_copies_all_artifacts_byte_for_byte(build_inputs, tmp_path):
    layout = BootMediaLayout(kernel_name="k")
    root = _staged_root(tmp_path, layout)

    collected = ArtifactCollector(layout).collect(_request(build_inputs), root)

    assert collected == {
        "kernel": root / "k",
        "config": root / "boot" / "grub" / "grub.cfg",
        "ramdisk": root / "ramdisk.cpio.gz",
    }
    for role, destination in collected.items():
        assert destination.read_bytes() == build_inputs[role].read_bytes()
    assert layout.missing(root) == []
    assert sorted(p.name for p in root.rglob("*") if p.is_file()) == ["grub.cfg", "k", "ramdisk.cpio.gz"]


def test_kernel_stays_executable(build_inputs, tmp_path):
    layout = BootMediaLayout()
    root = _staged_root(tmp_path, layout)

    ArtifactCollector(layout).collect(_request(build_inputs), root)

    mode = (root / "jinux").stat().st_mode
    assert mode & stat.S_IXUSR
    assert stat.S_IMODE(mode) == stat.S_IMODE(build_inputs["kernel"].stat().st_mode)


def test_collect_overwrites_stale_artifacts(build_inputs, tmp_path):
    layout = BootMediaLayout()
    root = _staged_root(tmp_path, layout)
    (root / "jinux").write_bytes(b"stale kernel from a previous build")

    ArtifactCollector(layout).collect(_request(build_inputs), root)

    assert (root / "jinux").read_bytes() == build_inputs["kernel"].read_bytes()


def test_missing_source_aborts_before_later_copies(build_inputs, tmp_path):
    layout = BootMediaLayout()
    root = _staged_root(tmp_path, layout)
    build_inputs["config"].unlink()

    with pytest.raises(MissingInputError) as excinfo:
        ArtifactCollector(layout).collect(_request(build_inputs), root)

    assert excinfo.value.role == "config"
    assert excinfo.value.stage == "collect"
    assert (root / "jinux").is_file()
    assert not (root / "boot" / "grub" / "grub.cfg").exists()
    assert not (root / "ramdisk.cpio.gz").exists()


def test_failed_copy_leaves_no_partial_destination(build_inputs, tmp_path, monkeypatch):
    layout = BootMediaLayout()
    root = _staged_root(tmp_path, layout)
    real_copyfile = collect_module.shutil.copyfile

    def _failing_copyfile(src, dst, *args, **kwargs):
        if str(src).endswith("ramdisk.cpio.gz"):
            with open(dst, "wb") as handle:
                handle.write(b"\x1f\x8b partial")
            raise OSError(28, "No space left on device")
        return real_copyfile(src, dst, *args, **kwargs)

    monkeypatch.setattr(collect_module.shutil, "copyfile", _failing_copyfile)

    with pytest.raises(CopyError, match="No space left on device") as excinfo:
        ArtifactCollector(layout).collect(_request(build_inputs), root)

    assert excinfo.value.exit_code == 2
    assert excinfo.value.destination == str(root / "ramdisk.cpio.gz")
    assert not (root / "ramdisk.cpio.gz").exists()
    assert [p.name for p in root.iterdir() if p.name.endswith(".part")] == []


def test_short_copy_is_a_copy_error(build_inputs, tmp_path, monkeypatch):
    layout = BootMediaLayout()
    root = _staged_root(tmp_path, layout)

    def _truncating_copyfile(src, dst, *args, **kwargs):
        with open(src, "rb") as source, open(dst, "wb") as target:
            target.write(source.read()[:10])
        return dst

    monkeypatch.setattr(collect_module.shutil, "copyfile", _truncating_copyfile)

    with pytest.raises(CopyError, match="Short copy"):
        ArtifactCollector(layout).collect(_request(build_inputs), root)

    assert not (root / "jinux").exists()
    assert os.listdir(root) == ["boot"]


def test_missing_destination_directory_is_a_copy_error(build_inputs, tmp_path):
    layout = BootMediaLayout()
    root = tmp_path / "unstaged"
    root.mkdir()

    with pytest.raises(CopyError):
        ArtifactCollector(layout).collect(_request(build_inputs), root)
