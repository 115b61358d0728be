"""Change report produced by a reconciliation pass, and the sinks it renders to."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Protocol

from rich.console import Console

NOTHING_TO_UPDATE = "nothing to update"


class ChangeKind(Enum):
    ADDED = "added"
    UPDATED = "updated"
    DELETED = "deleted"
    UNCHANGED = "unchanged"


class ChangeScope:
    """What part of an environment a change touches."""

    VERSION = "version"
    ENTITY = "entity"
    PARAMETER = "parameter"
    ENV_VAR = "env var"


_MARKERS = {
    ChangeKind.ADDED: "+",
    ChangeKind.UPDATED: "~",
    ChangeKind.DELETED: "-",
    ChangeKind.UNCHANGED: "=",
}


@dataclass
class Change:
    """A single report entry."""

    environment: str
    kind: ChangeKind
    scope: str
    entity_kind: Optional[str] = None
    entity: Optional[str] = None
    field: Optional[str] = None
    old: Optional[str] = None
    new: Optional[str] = None

    def describe(self) -> str:
        if self.scope == ChangeScope.VERSION:
            return f"version {self.kind.value}: {self.old or '<none>'} -> {self.new}"

        subject = f"{self.entity_kind} [{self.entity}]"
        if self.scope == ChangeScope.ENTITY:
            return f"{subject} {self.kind.value}"

        target = f"{subject}, {self.scope} [{self.field}]"
        if self.kind is ChangeKind.UPDATED:
            return f"{target} updated: {self.old} -> {self.new}"
        if self.kind is ChangeKind.ADDED:
            return f"{target} added: {self.new}" if self.new is not None else f"{target} added"
        if self.kind is ChangeKind.DELETED:
            return f"{target} deleted"
        if self.new is not None and self.new != self.old:
            return f"{target} {NOTHING_TO_UPDATE} (kept {self.old}, inferred {self.new})"
        return f"{target} {NOTHING_TO_UPDATE}"


@dataclass
class EnvironmentChanges:
    """Entries, warnings and the failure (if any) of one environment."""

    name: str
    changes: List[Change] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    error: Optional[Exception] = None

    def record(
        self,
        kind: ChangeKind,
        scope: str,
        entity_kind: Optional[str] = None,
        entity: Optional[str] = None,
        field: Optional[str] = None,
        old: Optional[str] = None,
        new: Optional[str] = None,
    ) -> Change:
        change = Change(self.name, kind, scope, entity_kind, entity, field, old, new)
        self.changes.append(change)
        return change

    def warn(self, message: str) -> None:
        self.warnings.append(message)

    @property
    def effective(self) -> List[Change]:
        return [c for c in self.changes if c.kind is not ChangeKind.UNCHANGED]

    def is_empty(self) -> bool:
        return not self.effective


@dataclass
class ChangeReport:
    """Per-environment change log, kept in environment declaration order."""

    environments: Dict[str, EnvironmentChanges] = field(default_factory=dict)

    def environment(self, name: str) -> EnvironmentChanges:
        if name not in self.environments:
            self.environments[name] = EnvironmentChanges(name)
        return self.environments[name]

    def commit(self, changes: EnvironmentChanges) -> None:
        """Attach the staged changes of an environment that reconciled successfully."""
        target = self.environment(changes.name)
        target.changes.extend(changes.changes)
        target.warnings.extend(changes.warnings)

    def fail(self, name: str, error: Exception) -> None:
        self.environment(name).error = error

    def entries(self, include_unchanged: bool = False) -> List[Change]:
        result = []
        for env in self.environments.values():
            source = env.changes if include_unchanged else env.effective
            result.extend(source)
        return result

    def is_empty(self) -> bool:
        return all(env.is_empty() for env in self.environments.values())

    def has_errors(self) -> bool:
        return any(env.error is not None for env in self.environments.values())

    def summary(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for change in self.entries():
            counts[change.kind.value] = counts.get(change.kind.value, 0) + 1
        return counts

    def render(self, verbose: bool = False) -> str:
        """One block per environment; a block without changes reads 'nothing to update'."""
        return "".join(self.render_environment(name, verbose) for name in self.environments)

    def render_environment(self, name: str, verbose: bool = False) -> str:
        env = self.environment(name)
        lines = [f"Environment [{env.name}]"]
        if env.error is not None:
            lines.append(f"  ! failed: {env.error}")
            return "\n".join(lines) + "\n"

        if env.is_empty():
            lines.append(f"  {NOTHING_TO_UPDATE}")
        for change in env.changes if verbose else env.effective:
            lines.append(f"  {_MARKERS[change.kind]} {change.describe()}")
        for warning in env.warnings:
            lines.append(f"  ! {warning}")
        return "\n".join(lines) + "\n"

    def write_to(self, sink: "Reporter", verbose: bool = False) -> None:
        sink.write(self.render(verbose=verbose))


class Reporter(Protocol):
    """Anything with a write(str) method: a file, io.StringIO, or the wrappers below."""

    def write(self, text: str) -> object:
        ...


class ConsoleReporter:
    """Writes report text to a rich Console."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def write(self, text: str) -> None:
        self.console.print(text.rstrip("\n"), markup=False, highlight=False, soft_wrap=True)


class NullReporter:
    """Discards everything."""

    def write(self, text: str) -> None:
        pass
