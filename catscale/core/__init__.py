"""
Cat-Scale Core Module - Schemas, configuration, workspace and utilities.
"""

from catscale.core.schema import *
from catscale.core.config import CollectionConfig, ConfigError, build_config, load_config_file
from catscale.core.workspace import ErrorLog, OutputWorkspace, WorkspaceExistsError

__all__ = [
    "CollectionConfig",
    "ConfigError",
    "build_config",
    "load_config_file",
    "ErrorLog",
    "OutputWorkspace",
    "WorkspaceExistsError",
]
