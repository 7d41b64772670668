"""
Cat-Scale Test Suite - Configuration Tests
==========================================
Tests for CollectionConfig, YAML loading and run schemas.
"""

from datetime import datetime
from pathlib import Path

import pytest

from catscale.core.config import (
    CollectionConfig,
    ConfigError,
    build_config,
    load_config_file,
)
from catscale.core.schema import Category, JobResult, JobStatus, RunManifest
from catscale.core.utils import safe_filename, utc_date_line


class TestCollectionConfig:
    """Tests for CollectionConfig defaults and derived names."""

    def test_defaults(self):
        config = CollectionConfig(hostname="web01", started=datetime(2026, 10, 19, 9, 5))

        assert config.outdir == "catscale_out"
        assert config.outfile_prefix == "catscale_"
        assert config.workers == 1
        assert config.outfile_name == "web01-20261019-0905"
        assert config.archive_path == Path(".") / "catscale_web01-20261019-0905.tar.gz"

    def test_explicit_outfile(self):
        config = CollectionConfig(outfile="sample", outroot="/tmp", outfile_prefix="demo_")

        assert config.archive_path == Path("/tmp/demo_sample.tar.gz")
        assert config.staging_path == Path("/tmp/catscale_out")

    def test_host_path_mapping(self, temp_dir):
        config = CollectionConfig(host_root=str(temp_dir))

        assert config.host_path("/etc/passwd") == temp_dir / "etc" / "passwd"
        assert not config.is_live_host
        assert CollectionConfig().is_live_host

    @pytest.mark.parametrize("kwargs", [
        {"workers": 0},
        {"job_timeout_s": -1},
        {"head_lines": 0},
        {"outdir": "a/b"},
        {"outdir": ""},
    ])
    def test_invalid_values(self, kwargs):
        with pytest.raises(ConfigError):
            CollectionConfig(**kwargs)

    def test_with_overrides_ignores_none(self):
        config = CollectionConfig(workers=2)

        updated = config.with_overrides(workers=None, head_lines=10)

        assert updated.workers == 2
        assert updated.head_lines == 10


class TestConfigFile:
    """Tests for YAML configuration files."""

    def test_load(self, temp_dir):
        path = temp_dir / "catscale.yaml"
        path.write_text(
            "workers: 4\n"
            "job_timeout_s: 120\n"
            "interactive_shells: [bash, zsh]\n"
            "disabled_jobs: full-timeline\n"
        )

        settings = load_config_file(str(path))

        assert settings["workers"] == 4
        assert settings["interactive_shells"] == ("bash", "zsh")
        assert settings["disabled_jobs"] == ("full-timeline",)

    def test_unknown_key(self, temp_dir):
        path = temp_dir / "catscale.yaml"
        path.write_text("wokers: 4\n")

        with pytest.raises(ConfigError, match="wokers"):
            load_config_file(str(path))

    def test_invalid_yaml(self, temp_dir):
        path = temp_dir / "catscale.yaml"
        path.write_text("workers: [4\n")

        with pytest.raises(ConfigError):
            load_config_file(str(path))

    def test_missing_file(self, temp_dir):
        with pytest.raises(ConfigError):
            load_config_file(str(temp_dir / "absent.yaml"))

    def test_cli_overrides_file(self, temp_dir):
        path = temp_dir / "catscale.yaml"
        path.write_text("workers: 4\nhead_lines: 50\n")

        config = build_config(str(path), workers=2, outfile=None)

        assert config.workers == 2
        assert config.head_lines == 50
        assert config.outfile is None

    def test_empty_file(self, temp_dir):
        path = temp_dir / "catscale.yaml"
        path.write_text("")

        assert build_config(str(path)).workers == 1


class TestSchema:
    """Tests for job results and the run manifest."""

    def test_manifest_summary(self):
        manifest = RunManifest(
            hostname="web01",
            platform_id="solaris",
            outfile="sample",
            started_utc="2026-10-19T09:30:00Z",
        )
        manifest.add(JobResult("who", Category.LOGS, JobStatus.SUCCEEDED, outputs=("who.txt",)))
        manifest.add(JobResult("lsof", Category.PROCESS_AND_NETWORK, JobStatus.FAILED, reason="boom"))
        manifest.add(JobResult("virsh-list-all", Category.VIRSH, JobStatus.SKIPPED, reason="command not available: virsh"))

        data = manifest.to_dict()

        assert data["summary"] == {"total": 3, "succeeded": 1, "failed": 1, "skipped": 1}
        assert data["results"][0]["category"] == "Logs"
        assert data["results"][1]["status"] == "failed"
        assert manifest.get("lsof").reason == "boom"
        assert manifest.get("missing") is None

    def test_result_is_immutable(self):
        result = JobResult("who", Category.LOGS, JobStatus.SUCCEEDED)

        with pytest.raises(Exception):
            result.status = JobStatus.FAILED

    def test_category_labels(self):
        assert all(c.label for c in Category)


class TestUtils:
    """Tests for small helpers."""

    def test_safe_filename(self):
        assert safe_filename("abc123") == "abc123"
        assert safe_filename("my vm/../x") == "my_vm_.._x"
        assert safe_filename("  ") == "_"

    def test_utc_date_line(self):
        from datetime import timezone

        line = utc_date_line(datetime(2026, 10, 19, 9, 30, tzinfo=timezone.utc))

        assert line.endswith("+00:00")
        assert "2026" in line
