"""
Cat-Scale Data Schema Definitions
Dataclasses for run artifacts - output categories, job results and the run manifest.
"""

from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional, Tuple
from enum import Enum


class Category(Enum):
    """Output categories. Values are the staging subdirectory names."""

    PROCESS_AND_NETWORK = "Process_and_Network"
    LOGS = "Logs"
    SYSTEM_INFO = "System_Info"
    PERSISTENCE = "Persistence"
    USER_FILES = "User_Files"
    MISC = "Misc"
    DOCKER = "Docker"
    PODMAN = "Podman"
    VIRSH = "Virsh"

    @property
    def label(self) -> str:
        return CATEGORY_LABELS[self]


CATEGORY_LABELS = {
    Category.PROCESS_AND_NETWORK: "Process and network info",
    Category.LOGS: "Logs",
    Category.SYSTEM_INFO: "System info",
    Category.PERSISTENCE: "Persistence (services and crontabs)",
    Category.USER_FILES: "User files",
    Category.MISC: "Timeline and suspicious files",
    Category.DOCKER: "Docker info",
    Category.PODMAN: "Podman info",
    Category.VIRSH: "Virtual machine info",
}


class JobStatus(Enum):
    """Outcome of a single collection job."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class JobResult:
    """Result of running (or skipping) one job."""

    job_name: str
    category: Category
    status: JobStatus
    reason: str = ""
    stderr: str = ""
    started_utc: str = ""
    duration_s: float = 0.0
    outputs: Tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return self.status == JobStatus.SUCCEEDED

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["category"] = self.category.value
        data["status"] = self.status.value
        data["outputs"] = list(self.outputs)
        return data


@dataclass
class RunManifest:
    """Ordered job results plus run metadata."""

    hostname: str
    platform_id: str
    outfile: str
    started_utc: str
    date_line: str = ""
    finished_utc: str = ""
    cancelled: bool = False
    results: List[JobResult] = field(default_factory=list)

    def add(self, result: JobResult) -> None:
        self.results.append(result)

    def by_status(self, status: JobStatus) -> List[JobResult]:
        return [r for r in self.results if r.status == status]

    def get(self, job_name: str) -> Optional[JobResult]:
        for result in self.results:
            if result.job_name == job_name:
                return result
        return None

    @property
    def succeeded(self) -> int:
        return len(self.by_status(JobStatus.SUCCEEDED))

    @property
    def failed(self) -> int:
        return len(self.by_status(JobStatus.FAILED))

    @property
    def skipped(self) -> int:
        return len(self.by_status(JobStatus.SKIPPED))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hostname": self.hostname,
            "platform_id": self.platform_id,
            "outfile": self.outfile,
            "started_utc": self.started_utc,
            "finished_utc": self.finished_utc,
            "date": self.date_line,
            "cancelled": self.cancelled,
            "summary": {
                "total": len(self.results),
                "succeeded": self.succeeded,
                "failed": self.failed,
                "skipped": self.skipped,
            },
            "results": [r.to_dict() for r in self.results],
        }
