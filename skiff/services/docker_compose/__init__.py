"""
Docker Compose integration services.

Loads compose sources into the structural Source Model used for parameter inference.
"""

from .loader import ComposeLoader, env_file_config_name, find_default_compose_files
from .source import DeploySpec, HealthcheckSpec, PortSpec, SourceModel, SourceService, SourceVolume

__all__ = [
    "ComposeLoader",
    "env_file_config_name",
    "find_default_compose_files",
    "DeploySpec",
    "HealthcheckSpec",
    "PortSpec",
    "SourceModel",
    "SourceService",
    "SourceVolume",
]
