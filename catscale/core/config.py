"""
Cat-Scale Run Configuration
Explicit configuration object threaded through catalogue building, orchestration
and packaging. Optionally loaded from a YAML file and overridden by CLI flags.
"""

import logging
import platform
from dataclasses import dataclass, field, fields, replace
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml


logger = logging.getLogger(__name__)

DEFAULT_OUTDIR = "catscale_out"
DEFAULT_OUTROOT = "."
DEFAULT_PREFIX = "catscale_"

# Login shells treated as interactive when selecting user home directories.
DEFAULT_INTERACTIVE_SHELLS = ("bash", "sh", "ksh", "ksh93", "zsh", "csh", "tcsh", "dash", "fish")

DEFAULT_WEBSHELL_EXTENSIONS = ("jsp", "asp", "aspx", "php")

# Keys accepted from a YAML config file.
FILE_KEYS = (
    "outdir",
    "outroot",
    "outfile_prefix",
    "platform_id",
    "host_root",
    "workers",
    "job_timeout_s",
    "interactive_shells",
    "modified_within_days",
    "webshell_extensions",
    "head_lines",
    "disabled_jobs",
    "write_manifest",
)


class ConfigError(ValueError):
    """Raised for unreadable or invalid configuration files."""


@dataclass(frozen=True)
class CollectionConfig:
    """Configuration for one collection run."""

    # Output naming
    outdir: str = DEFAULT_OUTDIR
    outfile: Optional[str] = None
    outroot: str = DEFAULT_OUTROOT
    outfile_prefix: str = DEFAULT_PREFIX

    # Target
    platform_id: Optional[str] = None
    host_root: str = "/"

    # Execution
    workers: int = 1
    job_timeout_s: Optional[float] = None

    # Collection parameters
    interactive_shells: Tuple[str, ...] = DEFAULT_INTERACTIVE_SHELLS
    modified_within_days: int = 90
    webshell_extensions: Tuple[str, ...] = DEFAULT_WEBSHELL_EXTENSIONS
    head_lines: int = 1000
    disabled_jobs: Tuple[str, ...] = ()
    write_manifest: bool = True

    # Identity, captured once at start
    hostname: str = field(default_factory=platform.node)
    started: datetime = field(default_factory=datetime.now)

    def __post_init__(self):
        if self.workers < 1:
            raise ConfigError(f"workers must be at least 1, got {self.workers}")
        if self.job_timeout_s is not None and self.job_timeout_s <= 0:
            raise ConfigError(f"job_timeout_s must be positive, got {self.job_timeout_s}")
        if self.head_lines < 1:
            raise ConfigError(f"head_lines must be at least 1, got {self.head_lines}")
        if not self.outdir or "/" in self.outdir:
            raise ConfigError(f"outdir must be a single directory name, got {self.outdir!r}")

    @property
    def outfile_name(self) -> str:
        """Base name for the archive and per-file prefixes."""
        if self.outfile:
            return self.outfile
        return f"{self.hostname or 'localhost'}-{self.started.strftime('%Y%m%d-%H%M')}"

    @property
    def staging_path(self) -> Path:
        return Path(self.outroot) / self.outdir

    @property
    def archive_path(self) -> Path:
        return Path(self.outroot) / f"{self.outfile_prefix}{self.outfile_name}.tar.gz"

    @property
    def is_live_host(self) -> bool:
        return Path(self.host_root).resolve() == Path("/")

    def host_path(self, path: str) -> Path:
        """Map an absolute host path onto the configured host root."""
        return Path(self.host_root) / path.lstrip("/")

    def with_overrides(self, **overrides: Any) -> "CollectionConfig":
        """Return a copy with every non-None override applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes)


def load_config_file(path: str) -> Dict[str, Any]:
    """
    Load collection settings from a YAML file.

    Returns:
        Mapping of CollectionConfig field names to values
    """
    config_path = Path(path)

    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Cannot read {config_path}: {e.strerror}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"{config_path}: top level must be a mapping")

    unknown = sorted(set(data) - set(FILE_KEYS))
    if unknown:
        raise ConfigError(f"{config_path}: unknown keys: {', '.join(unknown)}")

    settings = dict(data)
    for key in ("interactive_shells", "webshell_extensions", "disabled_jobs"):
        if key in settings:
            value = settings[key]
            if isinstance(value, str):
                value = [value]
            settings[key] = tuple(str(v) for v in value)

    logger.debug(f"Loaded config from {config_path}: {sorted(settings)}")
    return settings


def build_config(config_path: Optional[str] = None, **overrides: Any) -> CollectionConfig:
    """Build a config from defaults, an optional YAML file, then CLI overrides."""
    settings: Dict[str, Any] = {}
    if config_path:
        settings.update(load_config_file(config_path))
    settings.update({k: v for k, v in overrides.items() if v is not None})

    known = {f.name for f in fields(CollectionConfig)}
    try:
        return CollectionConfig(**{k: v for k, v in settings.items() if k in known})
    except TypeError as e:
        raise ConfigError(str(e)) from e
