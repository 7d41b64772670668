"""
Cat-Scale Packager

Turns the staging directory into a single gzip tarball. The staging tree is
removed only once the archive has been verified, so a failed compression
never loses collected evidence.
"""

import logging
import os
import shutil
import tarfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Union

from catscale.core.utils import hash_file
from catscale.core.workspace import OutputWorkspace

logger = logging.getLogger(__name__)


@dataclass
class PackageResult:
    """Result of packaging a workspace."""

    success: bool = False
    archive_path: str = ""
    archive_size_bytes: int = 0
    sha256: str = ""
    staging_removed: bool = False
    package_time_s: float = 0.0
    warning: str = ""
    error_message: str = ""


class Packager:
    """Compress, verify, then clean up the staging directory."""

    def package(self, workspace: OutputWorkspace, output_path: Union[str, Path]) -> PackageResult:
        """
        Archive the workspace into output_path.

        Args:
            workspace: Staging workspace to package
            output_path: Destination .tar.gz path

        Returns:
            Package result; I/O errors are reported here, never raised
        """
        start_time = time.time()
        output_path = Path(output_path)
        result = PackageResult(archive_path=str(output_path))

        try:
            with tarfile.open(output_path, "w:gz") as tar:
                tar.add(str(workspace.path), arcname=workspace.staging_dir_name)
        except (OSError, tarfile.TarError) as e:
            result.error_message = f"Compression failed: {e}"
            result.warning = self._keep_warning(workspace)
            self._discard(output_path)
            logger.error(result.error_message)
            result.package_time_s = time.time() - start_time
            return result

        verify_error = self._verify(output_path)
        if verify_error:
            result.error_message = verify_error
            result.warning = self._keep_warning(workspace)
            self._discard(output_path)
            logger.error(verify_error)
            result.package_time_s = time.time() - start_time
            return result

        result.success = True
        result.archive_size_bytes = os.path.getsize(output_path)
        result.sha256 = hash_file(output_path)
        logger.info(f"Archive {output_path} ({result.archive_size_bytes} bytes) sha256 {result.sha256}")

        shutil.rmtree(workspace.path, ignore_errors=True)
        result.staging_removed = not workspace.path.exists()
        if not result.staging_removed:
            result.warning = f"Archive created but staging directory {workspace.path} could not be fully removed"
            logger.warning(result.warning)

        result.package_time_s = time.time() - start_time
        return result

    def _verify(self, output_path: Path) -> str:
        """Empty string when the archive exists and reads back as a tar."""
        if not output_path.is_file():
            return f"Archive {output_path} was not created"
        try:
            if not tarfile.is_tarfile(str(output_path)):
                return f"Archive {output_path} is not a readable tar file"
            with tarfile.open(output_path, "r:gz") as tar:
                tar.getmembers()
        except (OSError, tarfile.TarError, EOFError) as e:
            return f"Archive {output_path} failed verification: {e}"
        return ""

    @staticmethod
    def _discard(output_path: Path) -> None:
        """Remove a partial or unreadable archive so a re-run may reuse its name."""
        try:
            output_path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove incomplete archive {output_path}: {e}")

    @staticmethod
    def _keep_warning(workspace: OutputWorkspace) -> str:
        return f"Collected data left uncompressed in {workspace.path}"
