"""
Cat-Scale Utilities
Common utilities for timing, subprocess management, file I/O, and host inspection.
"""

import json
import os
import re
import subprocess
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
import logging

logger = logging.getLogger(__name__)


def get_monotonic_ns() -> int:
    """Get monotonic clock time in nanoseconds."""
    return time.monotonic_ns()


def ns_to_s(ns: int) -> float:
    """Convert nanoseconds to seconds."""
    return ns / 1_000_000_000


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string with a trailing Z."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def utc_date_line(now: Optional[datetime] = None) -> str:
    """UTC date in `date +'%c %:z'` form, e.g. 'Mon Oct 19 09:14:02 2026 +00:00'."""
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).strftime("%c") + " +00:00"


def is_privileged() -> bool:
    """True when running with an effective uid of 0."""
    geteuid = getattr(os, "geteuid", None)
    if geteuid is None:
        return False
    return geteuid() == 0


def run_command(
    cmd: List[str],
    timeout: int = 30,
    cwd: Optional[str] = None,
    env: Optional[Dict[str, str]] = None,
    capture_stderr: bool = True,
) -> Optional[str]:
    """
    Run a command and return stdout.
    Returns None on failure.
    """
    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=timeout,
            cwd=cwd,
            env=env or os.environ.copy(),
            stdin=subprocess.DEVNULL,
        )
        if result.returncode == 0:
            return result.stdout
        else:
            if capture_stderr:
                logger.debug(f"Command failed: {cmd}\nstderr: {result.stderr}")
            return None
    except subprocess.TimeoutExpired:
        logger.warning(f"Command timed out: {cmd}")
        return None
    except FileNotFoundError:
        logger.debug(f"Command not found: {cmd[0]}")
        return None
    except OSError as e:
        logger.debug(f"Command error: {cmd}, {e}")
        return None


def safe_json_dump(data: Any, path: Union[str, Path], indent: int = 2) -> None:
    """Safely write JSON to file with atomic write pattern."""
    path = Path(path)
    temp_path = path.with_suffix(".tmp")

    try:
        with open(temp_path, "w") as f:
            json.dump(data, f, indent=indent, default=str)
        temp_path.replace(path)
    except Exception as e:
        logger.error(f"Failed to write JSON to {path}: {e}")
        if temp_path.exists():
            temp_path.unlink()
        raise


_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


def safe_filename(text: str) -> str:
    """Reduce an arbitrary identifier (container id, domain name) to a filename fragment."""
    cleaned = _UNSAFE_CHARS.sub("_", text.strip())
    return cleaned or "_"


def format_size(bytes: int) -> str:
    """Format bytes as human-readable string."""
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if abs(bytes) < 1024.0:
            return f"{bytes:.1f} {unit}"
        bytes /= 1024.0
    return f"{bytes:.1f} PB"


def format_duration(seconds: float) -> str:
    """Format duration as human-readable string."""
    if seconds < 1:
        return f"{seconds * 1000:.0f} ms"
    elif seconds < 60:
        return f"{seconds:.1f} s"
    elif seconds < 3600:
        return f"{seconds / 60:.1f} min"
    else:
        return f"{seconds / 3600:.1f} h"


def hash_file(path: Union[str, Path], algorithm: str = "sha256") -> str:
    """Compute hash of a file."""
    import hashlib

    h = hashlib.new(algorithm)
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            h.update(chunk)
    return h.hexdigest()


class Timer:
    """Context manager for timing code blocks."""

    def __init__(self, name: str = ""):
        self.name = name
        self.start_ns = 0
        self.end_ns = 0
        self.duration_ns = 0
        self.duration_s = 0.0

    def __enter__(self) -> "Timer":
        self.start_ns = get_monotonic_ns()
        return self

    def __exit__(self, *args) -> None:
        self.end_ns = get_monotonic_ns()
        self.duration_ns = self.end_ns - self.start_ns
        self.duration_s = ns_to_s(self.duration_ns)

        if self.name:
            logger.debug(f"{self.name}: {self.duration_s:.3f} s")
