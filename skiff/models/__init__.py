"""Data model: errors, entities, the parameter catalog and the manifest schema."""

from .entity import BindingKind, Entity, EnvBinding, Exposure, ExposureKind
from .errors import (
    ConflictError,
    LockError,
    MissingReferenceError,
    ParseError,
    ProjectError,
    ReconcileError,
    SkiffError,
    ValidationError,
)
from .manifest import Manifest, ManifestDocument
from .parameters import CATALOG, EntityKind, ParameterSpec, Policy

__all__ = [
    "BindingKind",
    "Entity",
    "EnvBinding",
    "Exposure",
    "ExposureKind",
    "ConflictError",
    "LockError",
    "MissingReferenceError",
    "ParseError",
    "ProjectError",
    "ReconcileError",
    "SkiffError",
    "ValidationError",
    "Manifest",
    "ManifestDocument",
    "CATALOG",
    "EntityKind",
    "ParameterSpec",
    "Policy",
]
