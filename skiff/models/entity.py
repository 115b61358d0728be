"""Entities held by an environment override: services, volumes and env var bindings."""
import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Tuple

from skiff.models.parameters import EntityKind


class ExposureKind(Enum):
    NONE = "none"
    ENABLED = "enabled"
    DOMAINS = "domains"


@dataclass(frozen=True)
class Exposure:
    """Ingress exposure of a service.

    The raw value may be a boolean, a domain name or a list of domain names;
    it is decoded once into one of three variants.
    """

    kind: ExposureKind = ExposureKind.NONE
    domains: Tuple[str, ...] = ()

    @classmethod
    def disabled(cls) -> "Exposure":
        return cls(ExposureKind.NONE)

    @classmethod
    def enabled(cls) -> "Exposure":
        return cls(ExposureKind.ENABLED)

    @classmethod
    def for_domains(cls, domains: Iterable[str]) -> "Exposure":
        cleaned = tuple(d.strip() for d in domains if d and d.strip())
        if not cleaned:
            return cls.disabled()
        return cls(ExposureKind.DOMAINS, cleaned)

    @classmethod
    def parse(cls, raw: Any) -> "Exposure":
        """Decode a raw exposure value (bool, string or list)."""
        if raw is None or raw is False:
            return cls.disabled()
        if raw is True:
            return cls.enabled()
        if isinstance(raw, (list, tuple)):
            return cls.for_domains(str(d) for d in raw)

        text = str(raw).strip()
        if text.lower() in ("", "false", "no"):
            return cls.disabled()
        if text.lower() in ("true", "yes"):
            return cls.enabled()
        return cls.for_domains(text.split(","))

    def __str__(self) -> str:
        if self.kind is ExposureKind.ENABLED:
            return "true"
        if self.kind is ExposureKind.DOMAINS:
            return ",".join(self.domains)
        return "false"


class BindingKind(Enum):
    LITERAL = "literal"
    SECRET = "secret"
    CONFIG = "config"
    UNASSIGNED = "unassigned"


@dataclass(frozen=True)
class EnvBinding:
    """Value binding of a single environment variable.

    Symbolic forms:
        secret.{secret-name}.{secret-key}  - value stored in a secret key
        config.{config-name}.{config-key}  - value stored in a config key
        anything else                      - literal value
        null                               - declared but unassigned
    """

    kind: BindingKind
    value: Optional[str] = None
    ref_name: Optional[str] = None
    ref_key: Optional[str] = None

    @classmethod
    def literal(cls, value: str) -> "EnvBinding":
        return cls(BindingKind.LITERAL, value=value)

    @classmethod
    def secret_ref(cls, name: str, key: str) -> "EnvBinding":
        return cls(BindingKind.SECRET, ref_name=name, ref_key=key)

    @classmethod
    def config_ref(cls, name: str, key: str) -> "EnvBinding":
        return cls(BindingKind.CONFIG, ref_name=name, ref_key=key)

    @classmethod
    def unassigned(cls) -> "EnvBinding":
        return cls(BindingKind.UNASSIGNED)

    @classmethod
    def parse(cls, raw: Any) -> "EnvBinding":
        if raw is None:
            return cls.unassigned()
        if isinstance(raw, bool):
            return cls.literal("true" if raw else "false")

        text = str(raw)
        for prefix, kind in (("secret.", BindingKind.SECRET), ("config.", BindingKind.CONFIG)):
            if text.startswith(prefix):
                parts = text.split(".", 2)
                if len(parts) == 3 and parts[1] and parts[2]:
                    return cls(kind, ref_name=parts[1], ref_key=parts[2])
        return cls.literal(text)

    @property
    def is_reference(self) -> bool:
        return self.kind in (BindingKind.SECRET, BindingKind.CONFIG)

    def to_raw(self) -> Optional[str]:
        """Serialize back to the form stored in an override document."""
        if self.kind is BindingKind.UNASSIGNED:
            return None
        if self.is_reference:
            return f"{self.kind.value}.{self.ref_name}.{self.ref_key}"
        return self.value

    def __str__(self) -> str:
        raw = self.to_raw()
        return "<unassigned>" if raw is None else raw


@dataclass
class Entity:
    """A service or volume as persisted in an environment override.

    Attributes:
        name: Unique name within its kind
        kind: EntityKind.SERVICE or EntityKind.VOLUME
        parameters: Namespaced parameter key -> string value, in stored order
        environment: Env var name -> binding (services only)
        labels: Labels outside the parameter namespace, kept verbatim
        structure: Structural copy of the compose source plus any override-only keys
    """

    name: str
    kind: str = EntityKind.SERVICE
    parameters: Dict[str, str] = field(default_factory=dict)
    environment: Dict[str, EnvBinding] = field(default_factory=dict)
    labels: Dict[str, str] = field(default_factory=dict)
    structure: Dict[str, Any] = field(default_factory=dict)

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self.parameters.get(key, default)

    def copy(self) -> "Entity":
        return copy.deepcopy(self)
