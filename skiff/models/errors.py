"""Error taxonomy shared across Skiff."""
from typing import Any, Dict, Optional


class SkiffError(Exception):
    """Base class for all Skiff errors."""


class ParseError(SkiffError):
    """A compose source, override or manifest document is not well-formed."""

    def __init__(self, path, message: str):
        self.path = str(path)
        self.reason = message
        super().__init__(f"{self.path}: {message}")


class ValidationError(SkiffError):
    """A parameter value violates its declared constraint."""

    def __init__(
        self,
        field: str,
        value: Any,
        message: str,
        environment: Optional[str] = None,
        entity: Optional[str] = None,
        kind: str = "service",
    ):
        self.field = field
        self.value = value
        self.reason = message
        self.environment = environment
        self.entity = entity
        self.kind = kind
        super().__init__(self._format())

    def _format(self) -> str:
        where = []
        if self.environment:
            where.append(f"[{self.environment}]")
        if self.entity:
            where.append(f"{self.kind} '{self.entity}':")
        prefix = " ".join(where)
        text = f"{self.field}: {self.reason} (got {self.value!r})"
        return f"{prefix} {text}" if prefix else text

    def with_context(
        self,
        environment: Optional[str] = None,
        entity: Optional[str] = None,
        kind: Optional[str] = None,
    ) -> "ValidationError":
        """Return a copy carrying environment/entity attribution."""
        return ValidationError(
            self.field,
            self.value,
            self.reason,
            environment=environment or self.environment,
            entity=entity or self.entity,
            kind=kind or self.kind,
        )


class MissingReferenceError(SkiffError):
    """An env var binding points at a secret or config that is not declared.

    Never fatal: the referent may be declared in another layer, so the
    reconciler records it as a report warning instead of raising.
    """

    def __init__(self, service: str, variable: str, ref_kind: str, ref_name: str):
        self.service = service
        self.variable = variable
        self.ref_kind = ref_kind
        self.ref_name = ref_name
        super().__init__(
            f"env var [{variable}] of service [{service}] references "
            f"undeclared {ref_kind} '{ref_name}'"
        )


class ConflictError(SkiffError):
    """Reserved for cross-environment constraints; not raised today."""


class ReconcileError(SkiffError):
    """One or more environments failed to reconcile."""

    def __init__(self, failures: Dict[str, ValidationError]):
        self.failures = dict(failures)
        details = "\n".join(f"  {env}: {err}" for env, err in self.failures.items())
        super().__init__(
            f"Reconciliation failed for {len(self.failures)} environment(s):\n{details}"
        )


class ProjectError(SkiffError):
    """Project level problem: missing manifest, unknown environment, etc."""


class LockError(SkiffError):
    """Raised when unable to acquire the project lock."""
