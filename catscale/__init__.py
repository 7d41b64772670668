"""
Cat-Scale Forensic Triage Collector

Collects volatile state, logs, configuration, persistence mechanisms and
user artifacts from Unix hosts into a single timestamped archive for
offline analysis.
"""

__version__ = "1.0.0"

from catscale.core.schema import Category, JobStatus, JobResult, RunManifest
from catscale.core.config import CollectionConfig, ConfigError, build_config
from catscale.core.workspace import OutputWorkspace, WorkspaceExistsError

from catscale.collectors import (
    Catalogue,
    CapabilityProbe,
    FileQuery,
    Job,
    build_catalogue,
    detect_platform,
)

from catscale.forensics import (
    Orchestrator,
    Packager,
    PackageResult,
)

__all__ = [
    # Core
    "Category",
    "JobStatus",
    "JobResult",
    "RunManifest",
    "CollectionConfig",
    "ConfigError",
    "build_config",
    "OutputWorkspace",
    "WorkspaceExistsError",
    # Collectors
    "Catalogue",
    "CapabilityProbe",
    "FileQuery",
    "Job",
    "build_catalogue",
    "detect_platform",
    # Forensics
    "Orchestrator",
    "Packager",
    "PackageResult",
    # Version
    "__version__",
]
