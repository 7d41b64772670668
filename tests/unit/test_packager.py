"""
Cat-Scale Test Suite - Packager Tests
=====================================
Tests for archive creation, verification and staging cleanup.
"""

import filecmp
import shutil
import tarfile
from unittest.mock import patch

from catscale.core.schema import Category
from catscale.core.utils import hash_file
from catscale.forensics.packager import Packager


def populate(workspace):
    workspace.record_metadata("solaris", date_line="Mon Oct 19 09:30:00 2026 +00:00")
    workspace.artifact_path(Category.LOGS, "who.txt").write_text("root console\n")
    workspace.artifact_path(Category.MISC, "blob.bin").write_bytes(bytes(range(256)) * 64)


class TestPackager:
    """Tests for Packager.package."""

    def test_round_trip(self, workspace, out_root, temp_dir):
        """Extracting the archive reproduces the staging tree byte for byte."""
        populate(workspace)
        copy = temp_dir / "copy"
        shutil.copytree(workspace.path, copy / "testout")
        archive = out_root / "demo_sample.tar.gz"

        result = Packager().package(workspace, archive)

        assert result.success
        assert result.staging_removed
        assert not workspace.path.exists()
        assert result.sha256 == hash_file(archive)
        assert result.archive_size_bytes == archive.stat().st_size

        extract = temp_dir / "extract"
        with tarfile.open(archive, "r:gz") as tar:
            tar.extractall(extract)

        cmp = filecmp.dircmp(copy / "testout", extract / "testout")
        assert cmp.left_only == [] and cmp.right_only == []
        for rel in ("Logs/sample-who.txt", "Misc/sample-blob.bin", "sample-console-error-log.txt"):
            assert (extract / "testout" / rel).read_bytes() == (copy / "testout" / rel).read_bytes()

    def test_archive_root_is_staging_dir(self, workspace, out_root):
        populate(workspace)
        archive = out_root / "demo_sample.tar.gz"

        Packager().package(workspace, archive)

        with tarfile.open(archive) as tar:
            names = tar.getnames()
        assert all(n == "testout" or n.startswith("testout/") for n in names)
        assert "testout/Process_and_Network" in names

    def test_compression_failure_keeps_staging(self, workspace, temp_dir):
        populate(workspace)
        archive = temp_dir / "missing-dir" / "x.tar.gz"

        result = Packager().package(workspace, archive)

        assert not result.success
        assert not archive.exists()
        assert not result.staging_removed
        assert workspace.path.exists()
        assert str(workspace.path) in result.warning
        assert result.error_message

    def test_verification_failure_keeps_staging(self, workspace, out_root):
        populate(workspace)

        with patch("catscale.forensics.packager.tarfile.is_tarfile", return_value=False):
            result = Packager().package(workspace, out_root / "demo_sample.tar.gz")

        assert not result.success
        assert not (out_root / "demo_sample.tar.gz").exists()
        assert workspace.path.exists()
        assert "not a readable tar" in result.error_message
        assert str(workspace.path) in result.warning

    def test_disk_full_removes_partial_archive(self, workspace, out_root):
        """A write error mid-archive leaves no file under the archive name."""
        populate(workspace)
        archive = out_root / "demo_sample.tar.gz"

        with patch("tarfile.TarFile.add", side_effect=OSError(28, "No space left on device")):
            result = Packager().package(workspace, archive)

        assert not result.success
        assert "No space left on device" in result.error_message
        assert not archive.exists()
        assert [p.name for p in out_root.iterdir()] == [workspace.path.name]
        assert (workspace.path / "sample-console-error-log.txt").is_file()
