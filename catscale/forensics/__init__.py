"""
Cat-Scale Forensic Run

Job orchestration and evidence packaging.
"""

from .orchestrator import Orchestrator, results_by_category
from .packager import Packager, PackageResult

__all__ = [
    "Orchestrator",
    "results_by_category",
    "Packager",
    "PackageResult",
]
