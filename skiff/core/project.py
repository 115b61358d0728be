"""Project level workflows: init, reconcile and secret detection.

These are the entry points used by the CLI and the dev loop. They tie the
manifest, the compose loader, the override store and the reconciler together
and own all disk writes.
"""
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from skiff.core.change_report import ChangeReport, Reporter
from skiff.core.config import get_config
from skiff.core.lock import project_lock
from skiff.core.logger import get_logger
from skiff.core.override_store import Environment, OverrideStore, default_override_file
from skiff.core.reconciler import Reconciler
from skiff.core.secrets_detector import (
    SecretFinding,
    log_findings,
    scan_environment,
    scan_source,
)
from skiff.models.errors import ProjectError, ReconcileError, ValidationError
from skiff.models.manifest import Manifest
from skiff.services.docker_compose import ComposeLoader, find_default_compose_files
from skiff.services.docker_compose.source import SourceModel

logger = get_logger(__name__)


@dataclass
class ReconcileResult:
    """Outcome of reconciling a set of environments.

    Attributes:
        manifest: The manifest, with environments holding their current state
        report: Changes per environment, in declaration order
        failures: Environment name -> error for environments left untouched
        written: Override documents rewritten by this run
    """

    manifest: Manifest
    report: ChangeReport
    failures: Dict[str, ValidationError] = field(default_factory=dict)
    written: List[Path] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    def raise_for_errors(self) -> None:
        if self.failures:
            raise ReconcileError(self.failures)


def manifest_path(working_dir: Path = Path(".")) -> Path:
    return Path(working_dir) / get_config().manifest_name


def load_source(manifest: Manifest) -> SourceModel:
    return ComposeLoader(working_dir=str(manifest.working_dir)).load(manifest.compose_files)


def init_project(
    working_dir: Path = Path("."),
    compose_files: Optional[Iterable[str]] = None,
    envs: Optional[Iterable[str]] = None,
) -> Manifest:
    """Create the manifest and one fully inferred override per environment.

    Args:
        working_dir: Project directory
        compose_files: Compose sources; detected when not given
        envs: Environment names; the configured default environment when not given

    Raises:
        ProjectError: If the project is already initialised or a source is missing
        ParseError: If a compose source is not well-formed
        ValidationError: If inference fails for any entity
    """
    working_dir = Path(working_dir)
    config = get_config()
    path = manifest_path(working_dir)
    if path.exists():
        raise ProjectError(f"{path} already exists, the project is already initialised")

    files = list(compose_files) if compose_files else find_default_compose_files(str(working_dir))
    missing = [f for f in files if not (working_dir / f).exists()]
    if missing:
        raise ProjectError(f"Compose source(s) not found: {', '.join(missing)}")

    names = list(dict.fromkeys(envs)) if envs else [config.default_env]
    manifest = Manifest.create(path, files, {name: default_override_file(name) for name in names})

    store = OverrideStore(working_dir)
    existing = [file for _, file in manifest.select() if store.exists(file)]
    if existing:
        raise ProjectError(
            f"Override document(s) already exist: {', '.join(existing)}. "
            "Remove them or pick other environment names."
        )

    source = load_source(manifest)
    log_findings(scan_source(source))

    reconciler = Reconciler(source)
    minted = [reconciler.mint_environment(name, file) for name, file in manifest.select()]

    with project_lock(working_dir, timeout=config.lock_timeout):
        for env in minted:
            store.save(env)
        manifest.save()

    manifest.environments = {env.name: env for env in minted}
    logger.info(f"Initialised project with environment(s): {', '.join(names)}")
    return manifest


def reconcile(
    working_dir: Path = Path("."),
    envs: Optional[Iterable[str]] = None,
    reporter: Optional[Reporter] = None,
    verbose: bool = False,
) -> ReconcileResult:
    """Reconcile the selected environments (all when none given) with the compose source.

    Environments that fail validation are reported in the result and left
    untouched on disk; the others are written.

    Raises:
        ProjectError: If the manifest is missing or an environment is unknown
        ParseError: If a compose source or override document is not well-formed
        LockError: If another run holds the project lock
    """
    working_dir = Path(working_dir)
    config = get_config()
    manifest = Manifest.load(manifest_path(working_dir))
    selected = manifest.select(envs)

    with project_lock(working_dir, timeout=config.lock_timeout):
        source = load_source(manifest)
        store = OverrideStore(working_dir)
        environments = [store.load(name, file) for name, file in selected]

        report = ChangeReport()
        reconciler = Reconciler(source, reporter=reporter, verbose=verbose)
        reconciled, failures = reconciler.reconcile_all(environments, report)

        written = []
        for env in environments:
            updated = reconciled.get(env.name)
            if updated is None:
                manifest.environments[env.name] = env
                continue
            manifest.environments[env.name] = updated
            if store.to_document(updated) != store.to_document(env):
                written.append(store.save(updated))

    logger.debug(f"Reconciled {len(reconciled)} environment(s), wrote {len(written)} file(s)")
    return ReconcileResult(manifest=manifest, report=report, failures=failures, written=written)


def load_environments(
    working_dir: Path = Path("."), envs: Optional[Iterable[str]] = None
) -> List[Environment]:
    manifest = Manifest.load(manifest_path(working_dir))
    store = OverrideStore(working_dir)
    return [store.load(name, file) for name, file in manifest.select(envs)]


def detect_secrets(working_dir: Path = Path(".")) -> List[SecretFinding]:
    """Scan compose sources and every environment override for literal secrets.

    Findings are logged as warnings and returned.
    """
    working_dir = Path(working_dir)
    manifest = Manifest.load(manifest_path(working_dir))
    findings = scan_source(load_source(manifest))
    for env in load_environments(working_dir):
        findings.extend(scan_environment(env))

    log_findings(findings)
    return findings
