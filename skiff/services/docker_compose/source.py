"""Structural representation of the canonical compose description."""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from skiff.models.entity import Exposure
from skiff.models.parameters import EXTENSION_KEY, LABEL_PREFIX, SERVICE_EXPOSE


@dataclass
class PortSpec:
    """A published port of a service."""
    target: str
    published: Optional[str] = None
    protocol: str = "tcp"
    mode: str = "ingress"


@dataclass
class HealthcheckSpec:
    """Healthcheck block, values kept as declared."""
    test: List[str] = field(default_factory=list)
    interval: Any = None
    timeout: Any = None
    retries: Any = None
    start_period: Any = None
    disable: bool = False


@dataclass
class DeploySpec:
    """The parts of the deploy block parameter inference looks at."""
    mode: Optional[str] = None
    replicas: Any = None
    restart_condition: Optional[str] = None


def _hints_from(labels: Dict[str, str], extensions: Dict[str, Any]) -> Dict[str, str]:
    """Collect explicit parameter hints: skiff.* labels, then the x-skiff block."""
    hints: Dict[str, str] = {}
    for label, value in labels.items():
        if label.startswith(LABEL_PREFIX):
            hints[label[len(LABEL_PREFIX):]] = value

    block = extensions.get(EXTENSION_KEY) or {}
    if isinstance(block, dict):
        for key, value in block.items():
            if value is None:
                continue
            if isinstance(value, bool):
                value = "true" if value else "false"
            elif isinstance(value, (list, tuple)) and key == SERVICE_EXPOSE:
                value = ",".join(str(v) for v in value)
            hints[str(key)] = str(value)
    return hints


@dataclass
class SourceService:
    """A service from the compose source.

    Attributes:
        name: Service name
        raw: Merged compose mapping for the service (used as the structural copy)
        ports: Declared ports
        mounts: Declared volume mounts (short or long syntax)
        healthcheck: Healthcheck block if declared
        deploy: Deploy block if declared
        environment: Directly declared variables (None = unassigned)
        env_files: Config name -> variables loaded from that env file
        labels: Service labels
        extensions: x-* extension fields of the service
    """
    name: str
    raw: Dict[str, Any] = field(default_factory=dict)
    image: Optional[str] = None
    ports: List[PortSpec] = field(default_factory=list)
    mounts: List[Any] = field(default_factory=list)
    healthcheck: Optional[HealthcheckSpec] = None
    deploy: Optional[DeploySpec] = None
    environment: Dict[str, Optional[str]] = field(default_factory=dict)
    env_files: Dict[str, Dict[str, Optional[str]]] = field(default_factory=dict)
    labels: Dict[str, str] = field(default_factory=dict)
    extensions: Dict[str, Any] = field(default_factory=dict)
    exposure: Exposure = field(default_factory=Exposure.disabled)

    def __post_init__(self):
        raw_exposure = self.hints().get(SERVICE_EXPOSE)
        if raw_exposure is not None:
            self.exposure = Exposure.parse(raw_exposure)

    def hints(self) -> Dict[str, str]:
        """Explicit parameter values declared in the source for this service."""
        return _hints_from(self.labels, self.extensions)


@dataclass
class SourceVolume:
    """A top-level named volume from the compose source."""
    name: str
    raw: Dict[str, Any] = field(default_factory=dict)
    labels: Dict[str, str] = field(default_factory=dict)
    extensions: Dict[str, Any] = field(default_factory=dict)

    def hints(self) -> Dict[str, str]:
        return _hints_from(self.labels, self.extensions)


@dataclass
class SourceModel:
    """Parsed, merged compose sources. Read-only for everything downstream."""
    version: str = ""
    files: List[str] = field(default_factory=list)
    services: Dict[str, SourceService] = field(default_factory=dict)
    volumes: Dict[str, SourceVolume] = field(default_factory=dict)
    secrets: Dict[str, Any] = field(default_factory=dict)
    configs: Dict[str, Any] = field(default_factory=dict)
    networks: Dict[str, Any] = field(default_factory=dict)

    def service_names(self) -> List[str]:
        return list(self.services)

    def volume_names(self) -> List[str]:
        return list(self.volumes)

    def declared_secrets(self) -> Set[str]:
        return set(self.secrets)

    def declared_configs(self) -> Set[str]:
        """Top-level configs plus configs implied by services' env files."""
        names = set(self.configs)
        for service in self.services.values():
            names.update(service.env_files)
        return names
