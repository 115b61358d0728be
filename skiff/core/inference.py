"""Parameter inference from compose source facts.

Pure functions of the Source Model: given a service or volume, produce its
full parameter set (derived values plus tunable defaults). Inference either
returns a complete, valid parameter set or raises; it never half-applies.
"""
import json
from typing import Dict, List, Optional

from skiff.core.logger import get_logger
from skiff.models import parameters as p
from skiff.models.entity import EnvBinding
from skiff.models.errors import ValidationError
from skiff.services.docker_compose.source import SourceService, SourceVolume

logger = get_logger(__name__)

PLACEHOLDER_PROBE_COMMAND = "Define healthcheck command for service {name}"


def workload_type_from_compose(service: SourceService) -> str:
    """Daemon-style for global deploy mode, stateful when mounts exist, else stateless."""
    if service.deploy is not None and service.deploy.mode == "global":
        return p.DAEMONSET_WORKLOAD

    if service.mounts:
        return p.STATEFULSET_WORKLOAD

    return p.DEPLOYMENT_WORKLOAD


def replicas_from_compose(service: SourceService) -> str:
    if service.deploy is None or service.deploy.replicas is None:
        return p.DEFAULT_REPLICAS

    return _positive_int("deploy.replicas", service.deploy.replicas, service.name)


def restart_policy_from_compose(service: SourceService) -> str:
    if service.deploy is None or not service.deploy.restart_condition:
        return p.RESTART_POLICY_ALWAYS

    condition = service.deploy.restart_condition
    if condition == "on-failure":
        return p.RESTART_POLICY_ON_FAILURE
    if condition == "none":
        return p.RESTART_POLICY_NEVER
    return p.RESTART_POLICY_ALWAYS


def service_type_from_compose(service: SourceService) -> str:
    """Exposure type from published ports: host mode ports need a node port."""
    if not service.ports:
        return p.NO_SERVICE

    if any(port.mode == "host" for port in service.ports):
        return p.NODEPORT_SERVICE

    return p.CLUSTERIP_SERVICE


def liveness_probe_from_healthcheck(service: SourceService) -> Dict[str, str]:
    """Liveness probe parameters from the healthcheck block.

    Without a healthcheck a placeholder exec probe referencing the service is
    returned. A disabled healthcheck yields a probe of type none.
    """
    healthcheck = service.healthcheck

    if healthcheck is None:
        return {
            p.WORKLOAD_LIVENESS_PROBE_TYPE: p.PROBE_TYPE_EXEC,
            p.WORKLOAD_LIVENESS_PROBE_COMMAND: _command(
                ["echo", PLACEHOLDER_PROBE_COMMAND.format(name=service.name)]
            ),
            p.WORKLOAD_LIVENESS_PROBE_TIMEOUT: p.DEFAULT_PROBE_TIMEOUT,
            p.WORKLOAD_LIVENESS_PROBE_FAILURE_THRESHOLD: p.DEFAULT_PROBE_FAILURE_THRESHOLD,
            p.WORKLOAD_LIVENESS_PROBE_INITIAL_DELAY: p.DEFAULT_PROBE_INITIAL_DELAY,
            p.WORKLOAD_LIVENESS_PROBE_PERIOD: p.DEFAULT_PROBE_PERIOD,
        }

    if healthcheck.disable:
        return {p.WORKLOAD_LIVENESS_PROBE_TYPE: p.PROBE_TYPE_NONE}

    test = list(healthcheck.test)
    if test and test[0].lower() == "cmd":
        test = test[1:]

    probe = {
        p.WORKLOAD_LIVENESS_PROBE_TYPE: p.PROBE_TYPE_EXEC,
        p.WORKLOAD_LIVENESS_PROBE_COMMAND: _command(test),
        p.WORKLOAD_LIVENESS_PROBE_TIMEOUT: p.DEFAULT_PROBE_TIMEOUT,
        p.WORKLOAD_LIVENESS_PROBE_FAILURE_THRESHOLD: p.DEFAULT_PROBE_FAILURE_THRESHOLD,
        p.WORKLOAD_LIVENESS_PROBE_INITIAL_DELAY: p.DEFAULT_PROBE_INITIAL_DELAY,
        p.WORKLOAD_LIVENESS_PROBE_PERIOD: p.DEFAULT_PROBE_PERIOD,
    }

    if healthcheck.timeout is not None:
        probe[p.WORKLOAD_LIVENESS_PROBE_TIMEOUT] = _duration(
            "healthcheck.timeout", healthcheck.timeout, service.name
        )
    if healthcheck.retries is not None:
        probe[p.WORKLOAD_LIVENESS_PROBE_FAILURE_THRESHOLD] = _positive_int(
            "healthcheck.retries", healthcheck.retries, service.name
        )
    if healthcheck.start_period is not None:
        probe[p.WORKLOAD_LIVENESS_PROBE_INITIAL_DELAY] = _duration(
            "healthcheck.start_period", healthcheck.start_period, service.name
        )
    if healthcheck.interval is not None:
        probe[p.WORKLOAD_LIVENESS_PROBE_PERIOD] = _duration(
            "healthcheck.interval", healthcheck.interval, service.name
        )

    return probe


def infer_service_parameters(service: SourceService) -> Dict[str, str]:
    """Full derived + tunable-default parameter set for a compose service.

    Raises:
        ValidationError: If a source fact is malformed or an explicit hint is invalid
    """
    params: Dict[str, str] = {
        p.WORKLOAD_TYPE: workload_type_from_compose(service),
        p.WORKLOAD_REPLICAS: replicas_from_compose(service),
        p.WORKLOAD_RESTART_POLICY: restart_policy_from_compose(service),
    }
    params.update(liveness_probe_from_healthcheck(service))
    params[p.SERVICE_TYPE] = service_type_from_compose(service)
    params[p.SERVICE_EXPOSE] = str(service.exposure)

    for spec in p.specs_for(p.EntityKind.SERVICE):
        if spec.key not in params and spec.default is not None:
            params[spec.key] = spec.default

    _apply_hints(params, service.hints(), p.EntityKind.SERVICE, service.name)
    _validate(params, p.EntityKind.SERVICE, service.name)
    return params


def infer_volume_parameters(volume: SourceVolume) -> Dict[str, str]:
    """Full parameter set for a top-level compose volume.

    Raises:
        ValidationError: If an explicit hint is invalid
    """
    params = {
        spec.key: spec.default
        for spec in p.specs_for(p.EntityKind.VOLUME)
        if spec.default is not None
    }
    _apply_hints(params, volume.hints(), p.EntityKind.VOLUME, volume.name)
    _validate(params, p.EntityKind.VOLUME, volume.name)
    return params


def infer_environment(service: SourceService) -> Dict[str, EnvBinding]:
    """Declared env vars with their bindings.

    Variables loaded from an env_file are bound to the config derived from that
    file and take precedence over a direct declaration of the same name.
    """
    merged: Dict[str, EnvBinding] = {
        name: EnvBinding.parse(value) for name, value in service.environment.items()
    }
    for config_name, variables in service.env_files.items():
        for name in variables:
            merged[name] = EnvBinding.config_ref(config_name, name)
    return merged


def _apply_hints(params: Dict[str, str], hints: Dict[str, str], kind: str, name: str) -> None:
    """Explicit source values replace inferred ones, key by key."""
    for key, value in hints.items():
        if not p.is_recognized(kind, key):
            logger.debug(f"{kind} '{name}': ignoring unknown parameter hint '{key}'")
            continue
        if key == p.SERVICE_EXPOSE:
            continue  # already decoded into the exposure variant
        params[key] = value


def _validate(params: Dict[str, str], kind: str, name: str) -> None:
    try:
        p.validate_parameters(kind, params)
    except ValidationError as e:
        raise e.with_context(entity=name, kind=kind) from None


def _command(parts: List[str]) -> str:
    return json.dumps(parts)


def _positive_int(field: str, value, service: str) -> str:
    text = _as_text(value)
    if text is None or not text.isdigit() or int(text) <= 0:
        raise ValidationError(field, value, "must be a positive integer", entity=service)
    return str(int(text))


def _duration(field: str, value, service: str) -> str:
    text = _as_text(value)
    if text is None or not p.DURATION_RE.match(text):
        raise ValidationError(field, value, "must be a duration such as 30s or 1m30s", entity=service)
    return text


def _as_text(value) -> Optional[str]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str):
        return value.strip()
    return None
