"""
Cat-Scale Integration Tests
Full collection runs against a fake host filesystem.
"""

import json
import tarfile

import pytest
from click.testing import CliRunner
from unittest.mock import patch

from catscale.cli import cli
from catscale.core.schema import Category


pytestmark = pytest.mark.integration


def run_cli(args):
    with patch("catscale.cli.is_privileged", return_value=True):
        return CliRunner().invoke(cli, args)


class TestEndToEnd:
    """A complete run produces one archive and no staging directory."""

    @pytest.fixture
    def archive(self, out_root, fake_host):
        result = run_cli([
            "-d", "testout", "-f", "sample", "-o", str(out_root), "-p", "demo_",
            "--host-root", str(fake_host), "--platform", "solaris",
        ])
        assert result.exit_code == 0, result.output
        return out_root / "demo_sample.tar.gz"

    def test_archive_replaces_staging(self, archive, out_root):
        assert archive.is_file()
        assert not (out_root / "testout").exists()
        assert sorted(p.name for p in out_root.iterdir()) == ["demo_sample.tar.gz"]

    def test_archive_layout(self, archive):
        with tarfile.open(archive) as tar:
            names = set(tar.getnames())

        for category in Category:
            assert f"testout/{category.value}" in names
        assert "testout/sample-console-error-log.txt" in names
        assert "testout/sample-run-manifest.json" in names
        assert "testout/System_Info/sample-host-date-timezone.txt" in names
        assert "testout/User_Files/sample-hidden-user-home-dir.tar.gz" in names
        assert "testout/Misc/sample-full-timeline.csv" in names

    def test_manifest(self, archive):
        with tarfile.open(archive) as tar:
            manifest = json.load(tar.extractfile("testout/sample-run-manifest.json"))

        results = {r["job_name"]: r for r in manifest["results"]}
        assert manifest["platform_id"] == "solaris"
        assert manifest["outfile"] == "sample"
        assert manifest["cancelled"] is False

        # Live-host commands cannot run against an image.
        assert results["processes-ef"]["status"] == "skipped"
        assert results["virsh-list-all"]["status"] == "skipped"
        assert results["hidden-user-home-dir"]["status"] == "succeeded"
        assert results["pot-webshell-hashes"]["status"] == "succeeded"

    def test_collected_content(self, archive):
        with tarfile.open(archive) as tar:
            hidden = tar.extractfile("testout/User_Files/sample-hidden-user-home-dir.tar.gz")
            with tarfile.open(fileobj=hidden, mode="r:gz") as inner:
                inner_names = inner.getnames()
            webshells = tar.extractfile("testout/Misc/sample-pot-webshell-hashes.txt").read().decode()
            error_log = tar.extractfile("testout/sample-console-error-log.txt").read().decode()

        assert "home/alice/.bashrc" in inner_names
        assert "home/bob/.bashrc" not in inner_names
        assert "shell.PHP" in webshells
        assert error_log.startswith("oscheck: solaris\nDate : ")

    def test_parallel_run(self, out_root, fake_host):
        result = run_cli([
            "-d", "testout", "-f", "parallel", "-o", str(out_root),
            "--host-root", str(fake_host), "--platform", "linux", "-w", "4",
        ])

        assert result.exit_code == 0, result.output
        assert (out_root / "catscale_parallel.tar.gz").is_file()
        assert not (out_root / "testout").exists()


class TestPreExistingStaging:
    """A leftover staging directory aborts the run without an archive."""

    def test_abort(self, out_root, fake_host):
        leftover = out_root / "testout"
        leftover.mkdir()
        (leftover / "previous.txt").write_text("earlier evidence")

        result = run_cli([
            "-d", "testout", "-f", "sample", "-o", str(out_root), "-p", "demo_",
            "--host-root", str(fake_host),
        ])

        assert result.exit_code == 1
        assert not (out_root / "demo_sample.tar.gz").exists()
        assert [p.name for p in leftover.iterdir()] == ["previous.txt"]

    def test_distinct_outfiles_do_not_collide(self, out_root, fake_host):
        for outfile, outdir in (("first", "stage1"), ("second", "stage2")):
            result = run_cli([
                "-d", outdir, "-f", outfile, "-o", str(out_root),
                "--host-root", str(fake_host), "--platform", "solaris",
            ])
            assert result.exit_code == 0, result.output

        assert sorted(p.name for p in out_root.iterdir()) == [
            "catscale_first.tar.gz",
            "catscale_second.tar.gz",
        ]
