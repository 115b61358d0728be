"""Project manifest (skiff.yaml): compose sources and declared environments."""
import re
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as SchemaError

from skiff.models.errors import ParseError, ProjectError

ENV_NAME_RE = re.compile(r"^[a-z0-9]([a-z0-9_-]*[a-z0-9])?$")


class ManifestDocument(BaseModel):
    """Schema of the manifest document."""

    model_config = ConfigDict(extra='forbid')

    compose: List[str] = Field(..., min_length=1, description="Canonical compose files, in merge order")
    environments: Dict[str, str] = Field(
        default_factory=dict, description="Environment name -> override document"
    )
    build: Optional[str] = Field(None, description="Downstream build/dev loop configuration file")

    @field_validator('environments')
    @classmethod
    def validate_environments(cls, v):
        """Validate environment names and that override files are distinct."""
        for name in v:
            if not ENV_NAME_RE.match(name):
                raise ValueError(
                    f"Environment name '{name}' is invalid. "
                    "Use lowercase letters, numbers, hyphens and underscores."
                )
        files = list(v.values())
        if len(set(files)) != len(files):
            raise ValueError("Each environment needs its own override file")
        return v


class Manifest:
    """A loaded manifest plus the environments reconciled against it.

    Attributes:
        path: Location of skiff.yaml
        document: Validated manifest content
        environments: Environment objects by name, populated by project workflows
    """

    def __init__(self, path: Path, document: ManifestDocument):
        self.path = Path(path)
        self.document = document
        self.environments: Dict[str, Any] = {}

    @classmethod
    def create(
        cls,
        path: Path,
        compose: List[str],
        environments: Dict[str, str],
        build: Optional[str] = None,
    ) -> "Manifest":
        try:
            document = ManifestDocument(compose=compose, environments=environments, build=build)
        except SchemaError as e:
            raise ProjectError(f"Invalid manifest: {_first_error(e)}") from e
        return cls(path, document)

    @classmethod
    def load(cls, path: Path) -> "Manifest":
        """Load and validate a manifest.

        Raises:
            ProjectError: If the manifest does not exist
            ParseError: If it is not valid YAML or does not match the schema
        """
        path = Path(path)
        if not path.exists():
            raise ProjectError(f"No manifest found at {path}. Run 'skiff init' first.")

        try:
            with open(path, 'r') as f:
                raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ParseError(path, f"invalid YAML: {e}") from e

        if not isinstance(raw, dict):
            raise ParseError(path, "manifest must be a mapping")

        try:
            document = ManifestDocument.model_validate(raw)
        except SchemaError as e:
            raise ParseError(path, _first_error(e)) from e
        return cls(path, document)

    def save(self) -> None:
        data = self.document.model_dump(exclude_none=True)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, 'w') as f:
            yaml.safe_dump(data, f, sort_keys=False, default_flow_style=False)

    @property
    def working_dir(self) -> Path:
        return self.path.parent

    @property
    def compose_files(self) -> List[str]:
        return list(self.document.compose)

    def environment_names(self) -> List[str]:
        return list(self.document.environments)

    def select(self, names: Optional[Iterable[str]] = None) -> List[Tuple[str, str]]:
        """Return (name, override file) pairs in declaration order.

        Raises:
            ProjectError: If a requested environment is not declared
        """
        declared = self.document.environments
        if not names:
            return list(declared.items())

        wanted = list(dict.fromkeys(names))
        unknown = [n for n in wanted if n not in declared]
        if unknown:
            raise ProjectError(
                f"Unknown environment(s): {', '.join(unknown)}. "
                f"Declared: {', '.join(declared) or 'none'}"
            )
        return [(name, file) for name, file in declared.items() if name in wanted]


def _first_error(error: SchemaError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ())) or "manifest"
    return f"{location}: {first.get('msg')}"
