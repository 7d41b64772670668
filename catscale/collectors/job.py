"""
Cat-Scale Job Abstraction

A Job is a declarative, immutable description of one collection task: a name,
an output category and an action. Actions receive a JobContext that resolves
output paths, buffers stderr and enforces deadline/cancellation.
"""

import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

from catscale.core.config import CollectionConfig
from catscale.core.schema import Category
from catscale.core.workspace import OutputWorkspace


class JobError(Exception):
    """Base class for per-job failures. Never aborts a run."""


class CommandFailed(JobError):
    """A collection command exited non-zero."""

    def __init__(self, argv, returncode: int):
        self.argv = list(argv)
        self.returncode = returncode
        super().__init__(f"{' '.join(self.argv)} exited with status {returncode}")


class JobTimeout(JobError):
    """A job exceeded its deadline."""


class JobCancelled(JobError):
    """The run was cancelled while the job was in flight."""


class Action:
    """
    Base class for job actions.

    Subclasses implement run() and declare the executables they need (checked
    once by the capability probe) and the artifact names they produce.
    """

    executables: Tuple[str, ...] = ()
    outputs: Tuple[str, ...] = ()
    live_only: bool = False

    def run(self, ctx: "JobContext") -> None:
        raise NotImplementedError


@dataclass(frozen=True)
class Job:
    """One independent unit of collection with a fixed output destination."""

    name: str
    category: Category
    action: Action
    description: str = ""
    timeout_s: Optional[float] = None

    @property
    def executables(self) -> Tuple[str, ...]:
        return tuple(self.action.executables)

    @property
    def outputs(self) -> Tuple[str, ...]:
        return tuple(self.action.outputs)


@dataclass
class JobContext:
    """Per-execution view of the workspace handed to an action."""

    job: Job
    workspace: OutputWorkspace
    config: CollectionConfig
    cancel_event: threading.Event = field(default_factory=threading.Event)
    deadline: Optional[float] = None
    stderr: List[str] = field(default_factory=list)

    def output_path(self, name: str) -> Path:
        return self.workspace.artifact_path(self.job.category, name)

    def host_path(self, path: str) -> Path:
        return self.config.host_path(path)

    def note(self, text: str) -> None:
        """Buffer stderr-style text for the shared error log."""
        text = text.rstrip("\n")
        if text:
            self.stderr.append(text)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    @property
    def expired(self) -> bool:
        return self.deadline is not None and time.monotonic() >= self.deadline

    def check(self) -> None:
        """Raise if the run was cancelled or the job ran past its deadline."""
        if self.cancelled:
            raise JobCancelled("cancelled")
        if self.expired:
            raise JobTimeout("timed out")
