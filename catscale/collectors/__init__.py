"""
Cat-Scale Collectors

Jobs, actions, file-set queries and the platform job catalogues.
"""

from .job import (
    Action,
    CommandFailed,
    Job,
    JobCancelled,
    JobContext,
    JobError,
    JobTimeout,
)
from .filesets import FileQuery, read_interactive_users
from .actions import (
    CommandCapture,
    FileHeadCapture,
    FileSetArchive,
    FileSetListing,
    HomeDirectoryQuery,
    PerItemCommand,
    ProcessSnapshot,
    TimelineCapture,
)
from .catalogue import (
    Catalogue,
    CapabilityProbe,
    build_catalogue,
    detect_platform,
)

__all__ = [
    # Jobs
    "Action",
    "CommandFailed",
    "Job",
    "JobCancelled",
    "JobContext",
    "JobError",
    "JobTimeout",
    # File sets
    "FileQuery",
    "read_interactive_users",
    # Actions
    "CommandCapture",
    "FileHeadCapture",
    "FileSetArchive",
    "FileSetListing",
    "HomeDirectoryQuery",
    "PerItemCommand",
    "ProcessSnapshot",
    "TimelineCapture",
    # Catalogue
    "Catalogue",
    "CapabilityProbe",
    "build_catalogue",
    "detect_platform",
]
