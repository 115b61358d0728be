"""Detection of literal env var values that look like secrets."""
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Pattern

from skiff.core.logger import get_logger
from skiff.core.override_store import Environment
from skiff.models.entity import BindingKind
from skiff.services.docker_compose.source import SourceModel

logger = get_logger(__name__)


@dataclass(frozen=True)
class SecretMatcher:
    """Flags a variable when its name or its value matches a pattern."""

    description: str
    name_pattern: Optional[Pattern] = None
    value_pattern: Optional[Pattern] = None

    def matches(self, name: str, value: str) -> bool:
        if self.name_pattern is not None and self.name_pattern.search(name):
            return True
        if self.value_pattern is not None and self.value_pattern.search(value):
            return True
        return False


DEFAULT_MATCHERS: List[SecretMatcher] = [
    SecretMatcher("password", name_pattern=re.compile(r"passw(or)?d|(^|_)(pass|pwd)(_|$)", re.IGNORECASE)),
    SecretMatcher("secret", name_pattern=re.compile(r"secret", re.IGNORECASE)),
    SecretMatcher("token", name_pattern=re.compile(r"token", re.IGNORECASE)),
    SecretMatcher("API key", name_pattern=re.compile(r"api[_-]?key|access[_-]?key", re.IGNORECASE)),
    SecretMatcher("credentials", name_pattern=re.compile(r"credential", re.IGNORECASE)),
    SecretMatcher(
        "private key",
        name_pattern=re.compile(r"private[_-]?key", re.IGNORECASE),
        value_pattern=re.compile(r"-----BEGIN ([A-Z ]+ )?PRIVATE KEY-----"),
    ),
    SecretMatcher("AWS access key", value_pattern=re.compile(r"\bAKIA[0-9A-Z]{16}\b")),
    SecretMatcher("GitHub token", value_pattern=re.compile(r"\bgh[pousr]_[A-Za-z0-9]{36,}\b")),
    SecretMatcher("Slack token", value_pattern=re.compile(r"\bxox[baprs]-[A-Za-z0-9-]{10,}")),
]


@dataclass
class SecretFinding:
    """A variable holding what looks like a secret as a literal value."""

    service: str
    variable: str
    description: str
    location: str

    def suggestion(self) -> str:
        return f"secret.{self.service}.{self.variable.lower().replace('_', '-')}"

    def message(self) -> str:
        return (
            f"{self.location}: env var [{self.variable}] of service [{self.service}] "
            f"looks like a {self.description}. Consider binding it to a secret, "
            f"e.g. {self.variable}: {self.suggestion()}"
        )


def _match(name: str, value: Optional[str], matchers: Iterable[SecretMatcher]) -> Optional[SecretMatcher]:
    if not value:
        return None
    for matcher in matchers:
        if matcher.matches(name, value):
            return matcher
    return None


def scan_source(
    source: SourceModel, matchers: Iterable[SecretMatcher] = DEFAULT_MATCHERS
) -> List[SecretFinding]:
    """Scan direct declarations and env file values of the compose source."""
    matchers = list(matchers)
    location = ", ".join(source.files) or "compose source"
    findings: List[SecretFinding] = []

    for service in source.services.values():
        for name, value in service.environment.items():
            if value and (value.startswith("secret.") or value.startswith("config.")):
                continue
            matcher = _match(name, value, matchers)
            if matcher:
                findings.append(SecretFinding(service.name, name, matcher.description, location))

        for config_name, variables in service.env_files.items():
            for name, value in variables.items():
                matcher = _match(name, value, matchers)
                if matcher:
                    findings.append(
                        SecretFinding(service.name, name, matcher.description, f"env file {config_name}")
                    )

    return findings


def scan_environment(
    env: Environment, matchers: Iterable[SecretMatcher] = DEFAULT_MATCHERS
) -> List[SecretFinding]:
    """Scan literal bindings stored in an environment override."""
    matchers = list(matchers)
    findings: List[SecretFinding] = []
    for service in env.services.values():
        for name, binding in service.environment.items():
            if binding.kind is not BindingKind.LITERAL:
                continue
            matcher = _match(name, binding.value, matchers)
            if matcher:
                findings.append(SecretFinding(service.name, name, matcher.description, env.file))
    return findings


def log_findings(findings: Iterable[SecretFinding]) -> int:
    count = 0
    for finding in findings:
        logger.warning(finding.message())
        count += 1
    return count
