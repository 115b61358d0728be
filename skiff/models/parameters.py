"""Catalog of recognized deployment parameters and their merge policy.

Every recognized key has exactly one policy:

- DERIVED keys encode a structural fact of the compose source and are
  recomputed (and overwritten) on every reconciliation.
- TUNABLE keys are inferred only as a default the first time an entity is
  seen in an environment; afterwards the stored value is left alone.

Keys outside the catalog are passed through untouched.
"""
import json
import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional

from skiff.models.errors import ValidationError

# Prefix used when parameters are persisted as compose labels
LABEL_PREFIX = "skiff."

# Compose extension block carrying explicit parameter hints in the source
EXTENSION_KEY = "x-skiff"


class Policy(Enum):
    DERIVED = "derived"
    TUNABLE = "tunable"


class EntityKind:
    """Entity kinds used across the catalog and reports."""

    SERVICE = "service"
    VOLUME = "volume"


# Service parameter keys
WORKLOAD_TYPE = "workload.type"
WORKLOAD_REPLICAS = "workload.replicas"
WORKLOAD_RESTART_POLICY = "workload.restart-policy"
WORKLOAD_LIVENESS_PROBE_TYPE = "workload.liveness-probe-type"
WORKLOAD_LIVENESS_PROBE_COMMAND = "workload.liveness-probe-command"
WORKLOAD_LIVENESS_PROBE_TIMEOUT = "workload.liveness-probe-timeout"
WORKLOAD_LIVENESS_PROBE_FAILURE_THRESHOLD = "workload.liveness-probe-failure-threshold"
WORKLOAD_LIVENESS_PROBE_INITIAL_DELAY = "workload.liveness-probe-initial-delay"
WORKLOAD_LIVENESS_PROBE_PERIOD = "workload.liveness-probe-period"
WORKLOAD_READINESS_PROBE_TYPE = "workload.readiness-probe-type"
WORKLOAD_IMAGE_PULL_POLICY = "workload.image-pull-policy"
WORKLOAD_IMAGE_PULL_SECRET = "workload.image-pull-secret"
WORKLOAD_SERVICE_ACCOUNT_NAME = "workload.service-account-name"
WORKLOAD_ROLLING_UPDATE_MAX_SURGE = "workload.rolling-update-max-surge"
WORKLOAD_CPU = "workload.cpu"
WORKLOAD_MAX_CPU = "workload.max-cpu"
WORKLOAD_MEMORY = "workload.memory"
WORKLOAD_MAX_MEMORY = "workload.max-memory"
WORKLOAD_SECURITY_CONTEXT_RUN_AS_USER = "workload.security-context-run-as-user"
WORKLOAD_SECURITY_CONTEXT_RUN_AS_GROUP = "workload.security-context-run-as-group"
WORKLOAD_SECURITY_CONTEXT_FS_GROUP = "workload.security-context-fs-group"
SERVICE_TYPE = "service.type"
SERVICE_NODEPORT_PORT = "service.nodeport.port"
SERVICE_EXPOSE = "service.expose"
SERVICE_EXPOSE_TLS_SECRET = "service.expose.tls-secret"

# Volume parameter keys
VOLUME_SIZE = "volume.size"
VOLUME_STORAGE_CLASS = "volume.storage-class"
VOLUME_SELECTOR = "volume.selector"

# Workload types
DEPLOYMENT_WORKLOAD = "Deployment"
STATEFULSET_WORKLOAD = "StatefulSet"
DAEMONSET_WORKLOAD = "DaemonSet"
JOB_WORKLOAD = "Job"
POD_WORKLOAD = "Pod"

# Service exposure types
NO_SERVICE = "None"
CLUSTERIP_SERVICE = "ClusterIP"
NODEPORT_SERVICE = "NodePort"
LOADBALANCER_SERVICE = "LoadBalancer"
HEADLESS_SERVICE = "Headless"

# Restart policies
RESTART_POLICY_ALWAYS = "Always"
RESTART_POLICY_ON_FAILURE = "OnFailure"
RESTART_POLICY_NEVER = "Never"

# Probe types
PROBE_TYPE_EXEC = "exec"
PROBE_TYPE_HTTP = "http"
PROBE_TYPE_TCP = "tcp"
PROBE_TYPE_NONE = "none"

# Fixed defaults
DEFAULT_REPLICAS = "1"
DEFAULT_PROBE_TIMEOUT = "10s"
DEFAULT_PROBE_FAILURE_THRESHOLD = "3"
DEFAULT_PROBE_INITIAL_DELAY = "1m0s"
DEFAULT_PROBE_PERIOD = "1m0s"
DEFAULT_VOLUME_SIZE = "100Mi"
DEFAULT_STORAGE_CLASS = "standard"

DURATION_RE = re.compile(r"^(\d+(\.\d+)?(ns|us|µs|ms|s|m|h))+$")
_CPU_RE = re.compile(r"^\d+(\.\d+)?m?$")
_QUANTITY_RE = re.compile(r"^\d+(\.\d+)?(Ei|Pi|Ti|Gi|Mi|Ki|E|P|T|G|M|K|k)?$")
_DOMAIN_RE = re.compile(
    r"^([a-z0-9]([a-z0-9-]*[a-z0-9])?\.)+[a-z]{2,}(/[^\s,]*)?$", re.IGNORECASE
)
_SELECTOR_RE = re.compile(r"^[A-Za-z0-9]([A-Za-z0-9._/-]*[A-Za-z0-9])?$")

Check = Callable[[str], Optional[str]]


def _positive_int(value: str) -> Optional[str]:
    if not value.isdigit() or int(value) <= 0:
        return "must be a positive integer"
    return None


def _non_negative_int(value: str) -> Optional[str]:
    if not value.isdigit():
        return "must be a non-negative integer"
    return None


def _duration(value: str) -> Optional[str]:
    if not DURATION_RE.match(value):
        return "must be a duration such as 30s, 1m30s or 500ms"
    return None


def _cpu(value: str) -> Optional[str]:
    if not _CPU_RE.match(value):
        return "must be a CPU quantity such as 0.5 or 250m"
    return None


def _quantity(value: str) -> Optional[str]:
    if not _QUANTITY_RE.match(value):
        return "must be a quantity such as 100Mi, 1Gi or 50M"
    return None


def _non_empty(value: str) -> Optional[str]:
    if not value.strip():
        return "must not be empty"
    return None


def _command(value: str) -> Optional[str]:
    try:
        parsed = json.loads(value)
    except ValueError:
        return "must be a JSON list of strings"
    if not isinstance(parsed, list) or not all(isinstance(p, str) for p in parsed):
        return "must be a JSON list of strings"
    return None


def _exposure(value: str) -> Optional[str]:
    if value.strip().lower() in ("", "false", "true"):
        return None
    for domain in value.split(","):
        if not _DOMAIN_RE.match(domain.strip()):
            return f"must be true, false or a comma separated list of domains ('{domain.strip()}' is invalid)"
    return None


def _selector(value: str) -> Optional[str]:
    if not _SELECTOR_RE.match(value):
        return "must be a label value"
    return None


def _one_of(*allowed: str) -> Check:
    def check(value: str) -> Optional[str]:
        if value not in allowed:
            return f"must be one of: {', '.join(allowed)}"
        return None

    return check


@dataclass(frozen=True)
class ParameterSpec:
    """A recognized parameter key, its policy and its value constraint."""

    key: str
    kind: str
    policy: Policy
    check: Check
    default: Optional[str] = None
    description: str = ""

    @property
    def label(self) -> str:
        return f"{LABEL_PREFIX}{self.key}"

    def validate(self, value: str) -> None:
        """Raise ValidationError if value violates this key's constraint."""
        if not isinstance(value, str):
            raise ValidationError(self.key, value, "must be a string", kind=self.kind)
        problem = self.check(value)
        if problem:
            raise ValidationError(self.key, value, problem, kind=self.kind)


def _service(key, policy, check, default=None, description=""):
    return ParameterSpec(key, EntityKind.SERVICE, policy, check, default, description)


def _volume(key, policy, check, default=None, description=""):
    return ParameterSpec(key, EntityKind.VOLUME, policy, check, default, description)


_SPECS: List[ParameterSpec] = [
    _service(WORKLOAD_TYPE, Policy.TUNABLE,
             _one_of(DEPLOYMENT_WORKLOAD, STATEFULSET_WORKLOAD, DAEMONSET_WORKLOAD,
                     JOB_WORKLOAD, POD_WORKLOAD),
             description="Workload kind"),
    _service(WORKLOAD_REPLICAS, Policy.TUNABLE, _positive_int, DEFAULT_REPLICAS,
             "Number of replicas per workload"),
    _service(WORKLOAD_RESTART_POLICY, Policy.TUNABLE,
             _one_of(RESTART_POLICY_ALWAYS, RESTART_POLICY_ON_FAILURE, RESTART_POLICY_NEVER),
             RESTART_POLICY_ALWAYS, "Restart policy"),
    _service(WORKLOAD_LIVENESS_PROBE_TYPE, Policy.TUNABLE,
             _one_of(PROBE_TYPE_EXEC, PROBE_TYPE_HTTP, PROBE_TYPE_TCP, PROBE_TYPE_NONE),
             description="Liveness probe type"),
    _service(WORKLOAD_LIVENESS_PROBE_COMMAND, Policy.TUNABLE, _command,
             description="Liveness probe exec command"),
    _service(WORKLOAD_LIVENESS_PROBE_TIMEOUT, Policy.TUNABLE, _duration,
             description="Liveness probe timeout"),
    _service(WORKLOAD_LIVENESS_PROBE_FAILURE_THRESHOLD, Policy.TUNABLE, _positive_int,
             description="Liveness probe failure threshold"),
    _service(WORKLOAD_LIVENESS_PROBE_INITIAL_DELAY, Policy.TUNABLE, _duration,
             description="Liveness probe initial delay"),
    _service(WORKLOAD_LIVENESS_PROBE_PERIOD, Policy.TUNABLE, _duration,
             description="Liveness probe period"),
    _service(WORKLOAD_READINESS_PROBE_TYPE, Policy.TUNABLE,
             _one_of(PROBE_TYPE_EXEC, PROBE_TYPE_HTTP, PROBE_TYPE_TCP, PROBE_TYPE_NONE),
             PROBE_TYPE_NONE, "Readiness probe type"),
    _service(WORKLOAD_IMAGE_PULL_POLICY, Policy.TUNABLE,
             _one_of("IfNotPresent", "Always", "Never"), "IfNotPresent",
             "Image pull policy"),
    _service(WORKLOAD_IMAGE_PULL_SECRET, Policy.TUNABLE, _non_empty,
             description="Private registry pull secret"),
    _service(WORKLOAD_SERVICE_ACCOUNT_NAME, Policy.TUNABLE, _non_empty, "default",
             "Service account name"),
    _service(WORKLOAD_ROLLING_UPDATE_MAX_SURGE, Policy.TUNABLE, _non_negative_int, "1",
             "Maximum number of containers updated at a time"),
    _service(WORKLOAD_CPU, Policy.TUNABLE, _cpu, "0.1", "CPU request"),
    _service(WORKLOAD_MAX_CPU, Policy.TUNABLE, _cpu, "0.2", "CPU limit"),
    _service(WORKLOAD_MEMORY, Policy.TUNABLE, _quantity, "50M", "Memory request"),
    _service(WORKLOAD_MAX_MEMORY, Policy.TUNABLE, _quantity, "100M", "Memory limit"),
    _service(WORKLOAD_SECURITY_CONTEXT_RUN_AS_USER, Policy.TUNABLE, _non_negative_int,
             description="Pod security context runAsUser"),
    _service(WORKLOAD_SECURITY_CONTEXT_RUN_AS_GROUP, Policy.TUNABLE, _non_negative_int,
             description="Pod security context runAsGroup"),
    _service(WORKLOAD_SECURITY_CONTEXT_FS_GROUP, Policy.TUNABLE, _non_negative_int,
             description="Pod security context fsGroup"),
    _service(SERVICE_TYPE, Policy.DERIVED,
             _one_of(NO_SERVICE, CLUSTERIP_SERVICE, NODEPORT_SERVICE,
                     LOADBALANCER_SERVICE, HEADLESS_SERVICE),
             description="Service exposure type, derived from published ports"),
    _service(SERVICE_NODEPORT_PORT, Policy.TUNABLE, _positive_int,
             description="Node port used with NodePort services"),
    _service(SERVICE_EXPOSE, Policy.TUNABLE, _exposure, "false",
             "Ingress exposure: false, true or comma separated domains"),
    _service(SERVICE_EXPOSE_TLS_SECRET, Policy.TUNABLE, _non_empty,
             description="TLS secret used by the ingress"),
    _volume(VOLUME_SIZE, Policy.TUNABLE, _quantity, DEFAULT_VOLUME_SIZE, "Volume size"),
    _volume(VOLUME_STORAGE_CLASS, Policy.TUNABLE, _non_empty, DEFAULT_STORAGE_CLASS,
            "Storage class"),
    _volume(VOLUME_SELECTOR, Policy.TUNABLE, _selector, description="PV selector label"),
]

CATALOG: Dict[str, Dict[str, ParameterSpec]] = {
    EntityKind.SERVICE: {s.key: s for s in _SPECS if s.kind == EntityKind.SERVICE},
    EntityKind.VOLUME: {s.key: s for s in _SPECS if s.kind == EntityKind.VOLUME},
}


def specs_for(kind: str) -> Iterable[ParameterSpec]:
    """Return the catalog entries for an entity kind, in declaration order."""
    return CATALOG[kind].values()


def get_spec(kind: str, key: str) -> Optional[ParameterSpec]:
    return CATALOG.get(kind, {}).get(key)


def is_recognized(kind: str, key: str) -> bool:
    return key in CATALOG.get(kind, {})


def derived_keys(kind: str) -> List[str]:
    return [s.key for s in specs_for(kind) if s.policy is Policy.DERIVED]


def tunable_keys(kind: str) -> List[str]:
    return [s.key for s in specs_for(kind) if s.policy is Policy.TUNABLE]


def validate_parameters(kind: str, parameters: Dict[str, str]) -> None:
    """Validate every recognized key in a parameter set.

    Unrecognized keys are not checked.

    Raises:
        ValidationError: For the first offending key
    """
    for key, value in parameters.items():
        spec = get_spec(kind, key)
        if spec is not None:
            spec.validate(value)
