"""
Cat-Scale Test Suite - Workspace Tests
======================================
Tests for the staging directory and the shared error log.
"""

import stat
import threading
from pathlib import Path
from unittest.mock import patch

import pytest

from catscale.core.schema import Category
from catscale.core.workspace import (
    ERROR_BANNER,
    ErrorLog,
    OutputWorkspace,
    WorkspaceExistsError,
)


class TestOutputWorkspace:
    """Tests for OutputWorkspace creation and naming."""

    def test_creates_exact_category_dirs(self, out_root):
        """Staging dir holds exactly the category subdirectories."""
        ws = OutputWorkspace.create(out_root, "testout", "sample")

        names = sorted(p.name for p in ws.path.iterdir() if p.is_dir())
        assert names == sorted(c.value for c in Category)
        assert "Process_and_Network" in names
        assert "User_Files" in names

    def test_staging_is_owner_only(self, out_root):
        ws = OutputWorkspace.create(out_root, "testout", "sample")

        assert stat.S_IMODE(ws.path.stat().st_mode) == 0o700

    def test_existing_dir_untouched(self, out_root):
        """A pre-existing staging directory is neither merged nor modified."""
        existing = out_root / "testout"
        existing.mkdir()
        sentinel = existing / "evidence.txt"
        sentinel.write_text("from an earlier run")

        with pytest.raises(WorkspaceExistsError):
            OutputWorkspace.create(out_root, "testout", "sample")

        assert sentinel.read_text() == "from an earlier run"
        assert [p.name for p in existing.iterdir()] == ["evidence.txt"]

    def test_missing_root_raises_oserror(self, temp_dir):
        with pytest.raises(OSError):
            OutputWorkspace.create(temp_dir / "nope", "testout", "sample")

    def test_partial_tree_rolled_back(self, out_root):
        """A category directory that cannot be created removes the whole staging dir."""
        real_mkdir = Path.mkdir
        created = []

        def mkdir(path, *args, **kwargs):
            if path.parent.name == "testout":
                created.append(path.name)
                if len(created) == 3:
                    raise OSError(28, "No space left on device")
            return real_mkdir(path, *args, **kwargs)

        with patch.object(Path, "mkdir", mkdir):
            with pytest.raises(OSError, match="No space left"):
                OutputWorkspace.create(out_root, "testout", "sample")

        assert len(created) == 3
        assert not (out_root / "testout").exists()
        assert list(out_root.iterdir()) == []

    def test_artifact_naming(self, out_root):
        ws = OutputWorkspace.create(out_root, "testout", "sample")

        path = ws.artifact_path(Category.LOGS, "who.txt")
        assert path == out_root / "testout" / "Logs" / "sample-who.txt"
        assert ws.error_log_path == out_root / "testout" / "sample-console-error-log.txt"
        assert ws.top_level_path("run-manifest.json").name == "sample-run-manifest.json"
        assert ws.category_path(Category.VIRSH) == out_root / "testout" / "Virsh"

    def test_record_metadata(self, out_root):
        ws = OutputWorkspace.create(out_root, "testout", "sample")

        date_line = ws.record_metadata("solaris", date_line="Mon Oct 19 09:30:00 2026 +00:00")

        log = ws.error_log.read().splitlines()
        assert log[0] == "oscheck: solaris"
        assert log[1] == f"Date : {date_line}"
        assert log[2] == ERROR_BANNER

        date_file = ws.artifact_path(Category.SYSTEM_INFO, "host-date-timezone.txt")
        assert date_file.read_text() == "Date : Mon Oct 19 09:30:00 2026 +00:00\n"

    def test_default_date_line_is_utc(self, out_root):
        ws = OutputWorkspace.create(out_root, "testout", "sample")

        assert ws.record_metadata("linux").endswith("+00:00")


class TestErrorLog:
    """Tests for the job-tagged error log."""

    def test_tagged_block(self, temp_dir):
        log = ErrorLog(temp_dir / "errors.txt")

        log.append("lsof-list-open-files", "FAILED: lsof exited with status 1", "lsof: WARNING\nsecond line\n")

        lines = log.read().splitlines()
        assert "[lsof-list-open-files] FAILED: lsof exited with status 1" in lines[0]
        assert lines[1:] == ["    lsof: WARNING", "    second line"]

    def test_read_missing_file(self, temp_dir):
        assert ErrorLog(temp_dir / "absent.txt").read() == ""

    def test_concurrent_appends_do_not_interleave(self, temp_dir):
        log = ErrorLog(temp_dir / "errors.txt")

        def worker(n):
            for i in range(50):
                log.append(f"job-{n}", "stderr", f"job-{n} line {i}")

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        lines = log.read().splitlines()
        assert len(lines) == 8 * 50 * 2
        for header, body in zip(lines[0::2], lines[1::2]):
            job = header.split("] [")[1].split("]")[0]
            assert body.startswith(f"    {job} line")
