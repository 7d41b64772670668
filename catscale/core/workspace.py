"""
Cat-Scale Output Workspace
Owns the staging directory tree, the artifact naming convention and the
shared console error log.
"""

import logging
import os
import shutil
import threading
from pathlib import Path
from typing import Dict, Optional

from catscale.core.schema import Category
from catscale.core.utils import utc_date_line, utc_now_iso

logger = logging.getLogger(__name__)

STAGING_MODE = 0o700
ERROR_LOG_SUFFIX = "console-error-log.txt"
ERROR_BANNER = "=" * 32 + " Console Errors " + "=" * 32


class WorkspaceExistsError(FileExistsError):
    """The staging directory already exists; a prior run must not be merged into."""


class ErrorLog:
    """
    Append-only, job-tagged error log shared by every job.
    Appends are serialised so concurrent jobs never interleave lines.
    """

    def __init__(self, path: Path):
        self.path = path
        self._lock = threading.Lock()

    def write_header(self, lines) -> None:
        with self._lock:
            with open(self.path, "w") as f:
                for line in lines:
                    f.write(f"{line}\n")

    def append(self, job_name: str, headline: str, text: str = "") -> None:
        """Append one tagged block: a headline plus indented captured stderr."""
        block = [f"[{utc_now_iso()}] [{job_name}] {headline}"]
        for line in text.rstrip("\n").splitlines():
            block.append(f"    {line}")

        with self._lock:
            with open(self.path, "a") as f:
                f.write("\n".join(block) + "\n")

    def read(self) -> str:
        with self._lock:
            if not self.path.exists():
                return ""
            return self.path.read_text(errors="replace")


class OutputWorkspace:
    """
    Staging directory for one collection run.

    Layout:
        <root>/<dir_name>/
            <prefix>-console-error-log.txt
            Process_and_Network/ Logs/ System_Info/ Persistence/
            User_Files/ Misc/ Docker/ Podman/ Virsh/
    """

    def __init__(self, root: Path, dir_name: str, file_prefix: str):
        self.root_path = Path(root)
        self.staging_dir_name = dir_name
        self.file_prefix = file_prefix
        self.path = self.root_path / dir_name
        self.category_dirs: Dict[Category, Path] = {
            category: self.path / category.value for category in Category
        }
        self.error_log = ErrorLog(self.path / f"{file_prefix}-{ERROR_LOG_SUFFIX}")

    @classmethod
    def create(cls, root, dir_name: str, file_prefix: str) -> "OutputWorkspace":
        """
        Create the staging tree.

        Raises:
            WorkspaceExistsError: if root/dir_name already exists. The existing
                directory is left untouched.
        """
        workspace = cls(Path(root), dir_name, file_prefix)

        try:
            workspace.path.mkdir()
        except FileExistsError as e:
            raise WorkspaceExistsError(
                f"Output path directory ({workspace.path}) already exists"
            ) from e

        try:
            os.chmod(workspace.path, STAGING_MODE)
            for category_dir in workspace.category_dirs.values():
                category_dir.mkdir()
        except OSError:
            # Only this call created the tree, so removing it is safe.
            shutil.rmtree(workspace.path, ignore_errors=True)
            raise

        logger.debug(f"Created workspace {workspace.path}")
        return workspace

    @property
    def error_log_path(self) -> Path:
        return self.error_log.path

    def category_path(self, category: Category) -> Path:
        return self.category_dirs[category]

    def artifact_path(self, category: Category, name: str) -> Path:
        """Full path of a per-job artifact: <category dir>/<prefix>-<name>."""
        return self.category_dirs[category] / f"{self.file_prefix}-{name}"

    def top_level_path(self, name: str) -> Path:
        return self.path / f"{self.file_prefix}-{name}"

    def record_metadata(self, platform_id: str, date_line: Optional[str] = None) -> str:
        """Write the OS identity and UTC date into the error log and System_Info."""
        date_line = date_line or utc_date_line()

        self.error_log.write_header(
            [
                f"oscheck: {platform_id}",
                f"Date : {date_line}",
                ERROR_BANNER,
            ]
        )

        date_file = self.artifact_path(Category.SYSTEM_INFO, "host-date-timezone.txt")
        with open(date_file, "w") as f:
            f.write(f"Date : {date_line}\n")

        return date_line

    def exists(self) -> bool:
        return self.path.is_dir()
