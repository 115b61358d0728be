"""Persistence of per-environment override documents.

An override document mirrors the compose description: a structural copy of
each service and volume, with deployment parameters stored as labels in the
``skiff.`` namespace and env var bindings under ``environment``.
"""
import copy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from skiff.core.logger import get_logger
from skiff.models.entity import EnvBinding, Entity
from skiff.models.errors import ParseError, ProjectError
from skiff.models.parameters import LABEL_PREFIX, EntityKind

logger = get_logger(__name__)

# Top-level keys owned by the compose source and refreshed on reconcile
SOURCE_OWNED_SECTIONS = ("networks", "secrets", "configs")


@dataclass
class Environment:
    """One environment's override: version plus services and volumes by name.

    Attributes:
        name: Environment name from the manifest
        file: Override document path, relative to the project directory
        version: Stored compose schema version
        services: Service entities, in document order
        volumes: Volume entities, in document order
        extras: Other top-level keys, kept verbatim
    """

    name: str
    file: str
    version: str = ""
    services: Dict[str, Entity] = field(default_factory=dict)
    volumes: Dict[str, Entity] = field(default_factory=dict)
    extras: Dict[str, Any] = field(default_factory=dict)

    def entities(self, kind: str) -> Dict[str, Entity]:
        return self.services if kind == EntityKind.SERVICE else self.volumes

    def copy(self) -> "Environment":
        return copy.deepcopy(self)


def default_override_file(env_name: str) -> str:
    return f"docker-compose.skiff.{env_name}.yaml"


class OverrideStore:
    """Reads and writes environment override documents under a project directory."""

    def __init__(self, working_dir: Path = Path(".")):
        self.working_dir = Path(working_dir)

    def path_for(self, env: Environment) -> Path:
        return self.working_dir / env.file

    def exists(self, file: str) -> bool:
        return (self.working_dir / file).exists()

    def load(self, name: str, file: str) -> Environment:
        """Load an environment override document.

        Raises:
            ParseError: If the document is missing or not well-formed
        """
        path = self.working_dir / file
        if not path.exists():
            raise ParseError(path, "override document not found")

        try:
            with open(path, "r") as f:
                document = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ParseError(path, f"invalid YAML: {e}") from e

        if document is None:
            document = {}
        if not isinstance(document, dict):
            raise ParseError(path, "override document must be a mapping")

        env = self.from_document(name, file, document, path=path)
        logger.debug(
            f"Loaded environment '{name}' from {path} "
            f"({len(env.services)} services, {len(env.volumes)} volumes)"
        )
        return env

    def save(self, env: Environment) -> Path:
        """Write an environment override atomically (temp file, then rename)."""
        path = self.path_for(env)
        document = self.to_document(env)

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            temp_file = path.with_name(path.name + ".tmp")
            with open(temp_file, "w") as f:
                yaml.safe_dump(document, f, sort_keys=False, default_flow_style=False)
            temp_file.replace(path)
        except OSError as e:
            logger.error(f"Failed to write override for '{env.name}': {e}")
            raise ProjectError(f"Cannot write {path}: {e}") from e

        logger.debug(f"Saved environment '{env.name}' to {path}")
        return path

    # ----------------------------
    # Document conversion
    # ----------------------------

    def to_document(self, env: Environment) -> Dict[str, Any]:
        document: Dict[str, Any] = {}
        if env.version:
            document["version"] = env.version

        document["services"] = {
            name: self._entity_to_document(entity) for name, entity in env.services.items()
        }
        if env.volumes:
            document["volumes"] = {
                name: self._entity_to_document(entity) for name, entity in env.volumes.items()
            }

        for key, value in env.extras.items():
            document[key] = copy.deepcopy(value)
        return document

    def from_document(
        self, name: str, file: str, document: Dict[str, Any], path: Optional[Path] = None
    ) -> Environment:
        where = path or file
        env = Environment(name=name, file=file)

        version = document.get("version")
        env.version = "" if version is None else str(version)

        for section, kind in (("services", EntityKind.SERVICE), ("volumes", EntityKind.VOLUME)):
            entries = document.get(section) or {}
            if not isinstance(entries, dict):
                raise ParseError(where, f"'{section}' must be a mapping")
            target = env.entities(kind)
            for entity_name, body in entries.items():
                target[str(entity_name)] = self._entity_from_document(
                    str(entity_name), kind, body, where
                )

        env.extras = {
            key: copy.deepcopy(value)
            for key, value in document.items()
            if key not in ("version", "services", "volumes")
        }
        return env

    def _entity_from_document(self, name: str, kind: str, body: Any, where) -> Entity:
        if body is None:
            body = {}
        if not isinstance(body, dict):
            raise ParseError(where, f"{kind} '{name}' must be a mapping")

        entity = Entity(name=name, kind=kind)
        for label, value in _labels_as_mapping(body.get("labels"), where, name).items():
            if label.startswith(LABEL_PREFIX):
                entity.parameters[label[len(LABEL_PREFIX):]] = value
            else:
                entity.labels[label] = value

        if kind == EntityKind.SERVICE:
            for var, raw in _environment_as_mapping(body.get("environment"), where, name).items():
                entity.environment[var] = EnvBinding.parse(raw)

        entity.structure = {
            key: copy.deepcopy(value)
            for key, value in body.items()
            if key not in ("labels", "environment")
        }
        return entity

    def _entity_to_document(self, entity: Entity) -> Dict[str, Any]:
        body: Dict[str, Any] = copy.deepcopy(entity.structure)

        labels: Dict[str, str] = {
            f"{LABEL_PREFIX}{key}": value for key, value in entity.parameters.items()
        }
        labels.update(entity.labels)
        if labels:
            body["labels"] = labels

        if entity.environment:
            body["environment"] = {
                var: binding.to_raw() for var, binding in entity.environment.items()
            }
        return body


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _labels_as_mapping(raw: Any, where, entity: str) -> Dict[str, str]:
    if raw is None:
        return {}
    if isinstance(raw, dict):
        return {str(k): _text(v) for k, v in raw.items()}
    if isinstance(raw, list):
        labels = {}
        for item in raw:
            key, _, value = str(item).partition("=")
            labels[key] = value
        return labels
    raise ParseError(where, f"labels of '{entity}' must be a mapping or a list")


def _environment_as_mapping(raw: Any, where, entity: str) -> Dict[str, Optional[str]]:
    if raw is None:
        return {}
    if isinstance(raw, dict):
        return {str(k): (None if v is None else _text(v)) for k, v in raw.items()}
    if isinstance(raw, list):
        variables: Dict[str, Optional[str]] = {}
        for item in raw:
            key, sep, value = str(item).partition("=")
            variables[key] = value if sep else None
        return variables
    raise ParseError(where, f"environment of '{entity}' must be a mapping or a list")
