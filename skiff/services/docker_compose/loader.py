"""
Docker Compose source loader.

Reads one or more compose files, merges them the way compose does for
override files, and builds the structural Source Model used for parameter
inference:
- Services with ports, mounts, healthcheck and deploy facts
- Environment variables, including those pulled in through env_file
- Top-level volumes, secrets, configs and networks
- The declared compose version
"""

import copy
import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from skiff.core.logger import get_logger
from skiff.models.errors import ParseError
from skiff.services.docker_compose.source import (
    DeploySpec,
    HealthcheckSpec,
    PortSpec,
    SourceModel,
    SourceService,
    SourceVolume,
)

logger = get_logger(__name__)

DEFAULT_COMPOSE_FILES = ["docker-compose.yml", "docker-compose.yaml"]
DEFAULT_OVERRIDE_FILES = ["docker-compose.override.yml", "docker-compose.override.yaml"]

# Service keys whose list values are appended when merging override files
_APPENDED_KEYS = {"ports", "volumes", "env_file", "expose", "dns", "cap_add", "cap_drop"}
# Service keys normalized to mappings and merged key by key
_MAPPED_KEYS = {"environment", "labels"}

_INTERPOLATION_RE = re.compile(
    r"\$\$|\$\{(?P<braced>[A-Za-z_][A-Za-z0-9_]*)(?:(?P<sep>:?-)(?P<default>[^}]*))?\}"
    r"|\$(?P<named>[A-Za-z_][A-Za-z0-9_]*)"
)


def _scalar(value: Any) -> Optional[str]:
    """Render a YAML scalar as the string compose would see."""
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _version_text(content: str, parsed: Any) -> str:
    """Source text of the top-level version scalar, so `3.10` is not read as 3.1."""
    try:
        root = yaml.compose(content, Loader=yaml.SafeLoader)
    except yaml.YAMLError:
        return str(parsed)
    if isinstance(root, yaml.MappingNode):
        for key, value in root.value:
            if key.value == "version" and isinstance(value, yaml.ScalarNode):
                return value.value
    return str(parsed)


def find_default_compose_files(working_dir: str = ".") -> List[str]:
    """Return the default compose file and its override file, if present.

    Raises:
        ParseError: If no default compose file exists in working_dir
    """
    base = Path(working_dir)
    found = []
    for candidates in (DEFAULT_COMPOSE_FILES, DEFAULT_OVERRIDE_FILES):
        for name in candidates:
            if (base / name).exists():
                found.append(name)
                break

    if not found or found[0] not in DEFAULT_COMPOSE_FILES:
        raise ParseError(
            base.resolve(),
            f"no compose file found (looked for {', '.join(DEFAULT_COMPOSE_FILES)})",
        )
    return found


def env_file_config_name(path: str) -> str:
    """Name of the config object an env file's variables are bound to.

    Examples:
        env_file -> env-file
        ./config/app.env -> app-env
    """
    name = re.sub(r"[^a-z0-9]+", "-", Path(path).name.lower()).strip("-")
    return name or "env"


def parse_env_file(path: Path) -> Dict[str, Optional[str]]:
    """Parse KEY=VALUE lines from an env file (KEY alone means unassigned)."""
    variables: Dict[str, Optional[str]] = {}
    for line in path.read_text().splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export "):].strip()

        if "=" not in line:
            variables[line] = None
            continue

        key, value = line.split("=", 1)
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
            value = value[1:-1]
        variables[key.strip()] = value
    return variables


class ComposeLoader:
    """
    Loads compose sources into a SourceModel.

    Example:
        loader = ComposeLoader(working_dir="/srv/app")
        source = loader.load(["docker-compose.yaml", "docker-compose.override.yaml"])
        source.services["db"].ports
    """

    def __init__(self, working_dir: str = ".", environ: Optional[Dict[str, str]] = None):
        """
        Args:
            working_dir: Directory compose paths are resolved against
            environ: Variables used for ${VAR} interpolation (defaults to .env + os.environ)
        """
        self.working_dir = Path(working_dir)
        self._environ = environ

    def load(self, paths: List[str]) -> SourceModel:
        """
        Load and merge compose files.

        Args:
            paths: Compose file paths, in override order

        Returns:
            SourceModel built from the merged documents

        Raises:
            ParseError: If a file is missing or not a well-formed compose document
        """
        if not paths:
            raise ParseError(self.working_dir, "no compose sources given")

        documents = []
        for path in paths:
            documents.append((path, self._read(path)))

        base_dir = self._resolve(paths[0]).parent
        model = self._build(documents, base_dir)
        model.files = list(paths)
        logger.debug(
            f"Loaded compose sources {paths}: "
            f"{len(model.services)} service(s), {len(model.volumes)} volume(s)"
        )
        return model

    def load_dict(self, compose: Dict[str, Any], base_dir: Optional[str] = None) -> SourceModel:
        """Build a SourceModel from an already parsed compose mapping."""
        label = "<memory>"
        self._check_document(label, compose)
        return self._build([(label, compose)], Path(base_dir) if base_dir else self.working_dir)

    # ----------------------------
    # Reading
    # ----------------------------

    def _resolve(self, path: str) -> Path:
        candidate = Path(path)
        if not candidate.is_absolute():
            candidate = self.working_dir / candidate
        return candidate

    def _read(self, path: str) -> Dict[str, Any]:
        resolved = self._resolve(path)
        try:
            content = resolved.read_text()
        except OSError as e:
            raise ParseError(path, f"cannot read compose file: {e}") from e

        try:
            document = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise ParseError(path, f"invalid YAML: {e}") from e

        if document is None:
            document = {}
        self._check_document(path, document)

        version = document.get("version")
        if version is not None and not isinstance(version, str):
            document["version"] = _version_text(content, version)
            logger.debug(f"Unquoted version in {path}, read as '{document['version']}'")
        return self._interpolate(document, self._environment())

    @staticmethod
    def _check_document(path: str, document: Any) -> None:
        if not isinstance(document, dict):
            raise ParseError(path, "compose document must be a mapping")
        services = document.get("services", {})
        if services is not None and not isinstance(services, dict):
            raise ParseError(path, "'services' must be a mapping")
        for name, service in (services or {}).items():
            if service is not None and not isinstance(service, dict):
                raise ParseError(path, f"service '{name}' must be a mapping")
        for section in ("volumes", "secrets", "configs", "networks"):
            value = document.get(section)
            if value is not None and not isinstance(value, dict):
                raise ParseError(path, f"'{section}' must be a mapping")

    def _environment(self) -> Dict[str, str]:
        if self._environ is not None:
            return self._environ

        env: Dict[str, str] = {}
        dotenv = self.working_dir / ".env"
        if dotenv.exists():
            env.update({k: v for k, v in parse_env_file(dotenv).items() if v is not None})
        env.update(os.environ)
        return env

    def _interpolate(self, value: Any, env: Dict[str, str]) -> Any:
        """Substitute ${VAR}, ${VAR:-default}, ${VAR-default} and $VAR in string values."""
        if isinstance(value, dict):
            return {k: self._interpolate(v, env) for k, v in value.items()}
        if isinstance(value, list):
            return [self._interpolate(v, env) for v in value]
        if not isinstance(value, str) or "$" not in value:
            return value

        def substitute(match: re.Match) -> str:
            if match.group(0) == "$$":
                return "$"
            name = match.group("braced") or match.group("named")
            sep = match.group("sep")
            current = env.get(name)
            if sep == ":-" and not current:
                return match.group("default")
            if sep == "-" and current is None:
                return match.group("default")
            return current or ""

        return _INTERPOLATION_RE.sub(substitute, value)

    # ----------------------------
    # Merging
    # ----------------------------

    def _build(self, documents: List[tuple], base_dir: Path) -> SourceModel:
        merged = self._merge_documents(documents)

        if not merged["services"]:
            raise ParseError(documents[0][0], "no services section found")

        model = SourceModel(
            version=merged["version"],
            secrets=merged["secrets"],
            configs=merged["configs"],
            networks=merged["networks"],
        )

        source_path = documents[0][0]
        for name, raw in merged["services"].items():
            model.services[name] = self._build_service(name, raw, base_dir, source_path)

        for name, raw in merged["volumes"].items():
            raw = raw or {}
            model.volumes[name] = SourceVolume(
                name=name,
                raw=raw,
                labels=self._normalize_labels(raw.get("labels"), source_path, name),
                extensions={k: v for k, v in raw.items() if str(k).startswith("x-")},
            )
        return model

    def _merge_documents(self, documents: List[tuple]) -> Dict[str, Any]:
        merged: Dict[str, Any] = {
            "version": "",
            "services": {},
            "volumes": {},
            "secrets": {},
            "configs": {},
            "networks": {},
        }

        for path, document in documents:
            if not merged["version"] and document.get("version") is not None:
                merged["version"] = str(document["version"])

            for name, service in (document.get("services") or {}).items():
                service = copy.deepcopy(service or {})
                if name in merged["services"]:
                    merged["services"][name] = self._merge_service(
                        merged["services"][name], service, path, name
                    )
                else:
                    merged["services"][name] = service

            for section in ("volumes", "secrets", "configs", "networks"):
                for name, value in (document.get(section) or {}).items():
                    merged[section][name] = copy.deepcopy(value) if value is not None else {}

        return merged

    def _merge_service(self, base: Dict, override: Dict, path: str, name: str) -> Dict:
        result = dict(base)
        for key, value in override.items():
            if key in _MAPPED_KEYS:
                normalize = self._normalize_environment if key == "environment" else self._normalize_labels
                combined = normalize(base.get(key), path, name)
                combined.update(normalize(value, path, name))
                result[key] = combined
            elif key in _APPENDED_KEYS and isinstance(value, list):
                existing = base.get(key) or []
                if not isinstance(existing, list):
                    existing = [existing]
                result[key] = existing + [v for v in value if v not in existing]
            elif isinstance(value, dict) and isinstance(base.get(key), dict):
                nested = dict(base[key])
                nested.update(value)
                result[key] = nested
            else:
                result[key] = value
        return result

    # ----------------------------
    # Service facts
    # ----------------------------

    def _build_service(self, name: str, raw: Dict, base_dir: Path, path: str) -> SourceService:
        return SourceService(
            name=name,
            raw=raw,
            image=raw.get("image"),
            ports=[self._parse_port(p, path, name) for p in raw.get("ports") or []],
            mounts=list(raw.get("volumes") or []),
            healthcheck=self._parse_healthcheck(raw.get("healthcheck"), path, name),
            deploy=self._parse_deploy(raw.get("deploy"), path, name),
            environment=self._normalize_environment(raw.get("environment"), path, name),
            env_files=self._load_env_files(raw.get("env_file"), base_dir, path, name),
            labels=self._normalize_labels(raw.get("labels"), path, name),
            extensions={k: v for k, v in raw.items() if str(k).startswith("x-")},
        )

    @staticmethod
    def _parse_port(port: Any, path: str, service: str) -> PortSpec:
        """Parse short ("8080:80/udp", "80") or long ({target, published, mode}) syntax."""
        if isinstance(port, int):
            return PortSpec(target=str(port))

        if isinstance(port, str):
            spec, _, protocol = port.partition("/")
            parts = spec.split(":")
            return PortSpec(
                target=parts[-1],
                published=parts[-2] if len(parts) >= 2 else None,
                protocol=protocol or "tcp",
            )

        if isinstance(port, dict) and "target" in port:
            published = port.get("published")
            return PortSpec(
                target=str(port["target"]),
                published=str(published) if published is not None else None,
                protocol=port.get("protocol", "tcp"),
                mode=port.get("mode", "ingress"),
            )

        raise ParseError(path, f"service '{service}': invalid port declaration {port!r}")

    @staticmethod
    def _parse_healthcheck(raw: Any, path: str, service: str) -> Optional[HealthcheckSpec]:
        if raw is None:
            return None
        if not isinstance(raw, dict):
            raise ParseError(path, f"service '{service}': healthcheck must be a mapping")

        test = raw.get("test", [])
        if isinstance(test, str):
            test = ["CMD-SHELL", test]
        elif not isinstance(test, list):
            raise ParseError(path, f"service '{service}': healthcheck.test must be a list or string")

        disable = bool(raw.get("disable", False)) or [str(t).upper() for t in test] == ["NONE"]
        return HealthcheckSpec(
            test=[str(t) for t in test],
            interval=raw.get("interval"),
            timeout=raw.get("timeout"),
            retries=raw.get("retries"),
            start_period=raw.get("start_period"),
            disable=disable,
        )

    @staticmethod
    def _parse_deploy(raw: Any, path: str, service: str) -> Optional[DeploySpec]:
        if raw is None:
            return None
        if not isinstance(raw, dict):
            raise ParseError(path, f"service '{service}': deploy must be a mapping")

        restart = raw.get("restart_policy") or {}
        if not isinstance(restart, dict):
            raise ParseError(path, f"service '{service}': deploy.restart_policy must be a mapping")

        return DeploySpec(
            mode=raw.get("mode"),
            replicas=raw.get("replicas"),
            restart_condition=restart.get("condition"),
        )

    @staticmethod
    def _normalize_environment(raw: Any, path: str, service: str) -> Dict[str, Optional[str]]:
        """Return {KEY: value-or-None} from list ("K=V", "K") or mapping syntax."""
        if raw is None:
            return {}

        if isinstance(raw, dict):
            return {str(k): _scalar(v) for k, v in raw.items()}

        if isinstance(raw, list):
            env: Dict[str, Optional[str]] = {}
            for entry in raw:
                entry = str(entry)
                if "=" in entry:
                    key, value = entry.split("=", 1)
                    env[key] = value
                else:
                    env[entry] = None
            return env

        raise ParseError(path, f"service '{service}': environment must be a list or mapping")

    @staticmethod
    def _normalize_labels(raw: Any, path: str, owner: str) -> Dict[str, str]:
        if raw is None:
            return {}
        if isinstance(raw, dict):
            return {str(k): _scalar(v) or "" for k, v in raw.items()}
        if isinstance(raw, list):
            labels = {}
            for entry in raw:
                key, _, value = str(entry).partition("=")
                labels[key] = value
            return labels
        raise ParseError(path, f"'{owner}': labels must be a list or mapping")

    def _load_env_files(
        self, raw: Any, base_dir: Path, path: str, service: str
    ) -> Dict[str, Dict[str, Optional[str]]]:
        if raw is None:
            return {}

        entries = raw if isinstance(raw, list) else [raw]
        env_files: Dict[str, Dict[str, Optional[str]]] = {}
        for entry in entries:
            required = True
            if isinstance(entry, dict):
                required = entry.get("required", True)
                entry = entry.get("path")
            if not isinstance(entry, str):
                raise ParseError(path, f"service '{service}': invalid env_file entry {entry!r}")

            env_path = Path(entry)
            if not env_path.is_absolute():
                env_path = base_dir / env_path

            if not env_path.exists():
                if not required:
                    continue
                raise ParseError(entry, f"env_file for service '{service}' not found")

            env_files.setdefault(env_file_config_name(entry), {}).update(parse_env_file(env_path))
        return env_files
