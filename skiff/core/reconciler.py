"""Reconciliation of environment overrides against the compose source.

For each environment the reconciler runs four phases on a working copy:

1. version sync
2. entity diff per kind (added / removed / common)
3. parameter merge for common entities, per key policy
4. env var diff for common services

Structural copies, passthrough labels and the top-level networks, secrets and
configs sections mirror the source. Anything it no longer declares is dropped.

The working copy is returned only when every phase succeeded; the caller
decides whether to persist it. Nothing is carried between invocations
besides the override documents themselves.
"""
import copy
from typing import Dict, List, Optional, Tuple

from skiff.core.change_report import (
    ChangeKind,
    ChangeReport,
    ChangeScope,
    EnvironmentChanges,
    NullReporter,
    Reporter,
)
from skiff.core.inference import (
    infer_environment,
    infer_service_parameters,
    infer_volume_parameters,
)
from skiff.core.logger import get_logger
from skiff.core.override_store import SOURCE_OWNED_SECTIONS, Environment
from skiff.models import parameters as p
from skiff.models.entity import BindingKind, Entity
from skiff.models.errors import MissingReferenceError, ValidationError
from skiff.models.parameters import EntityKind, Policy
from skiff.services.docker_compose.source import SourceModel

logger = get_logger(__name__)

# Keys of a source entity that are not copied into the override structure
_NON_STRUCTURAL_KEYS = ("labels", "environment", p.EXTENSION_KEY)


class Reconciler:
    """Merge freshly inferred parameters into environment overrides."""

    def __init__(
        self,
        source: SourceModel,
        reporter: Optional[Reporter] = None,
        verbose: bool = False,
    ):
        self.source = source
        self.reporter = reporter or NullReporter()
        self.verbose = verbose
        self._inferred: Dict[Tuple[str, str], Dict[str, str]] = {}

    # ----------------------------
    # Entry points
    # ----------------------------

    def mint_environment(self, name: str, file: str) -> Environment:
        """Create a new environment with every entity fully inferred.

        Raises:
            ValidationError: If inference fails for any entity
        """
        env = Environment(name=name, file=file, version=self.source.version)
        try:
            for kind in (EntityKind.SERVICE, EntityKind.VOLUME):
                target = env.entities(kind)
                for entity_name in self._source_entities(kind):
                    target[entity_name] = self._new_entity(kind, entity_name)
        except ValidationError as e:
            raise e.with_context(environment=name) from None

        self._refresh_top_level(env)
        logger.debug(
            f"Minted environment '{name}' with {len(env.services)} services "
            f"and {len(env.volumes)} volumes"
        )
        return env

    def reconcile(self, env: Environment, report: ChangeReport) -> Environment:
        """Reconcile one environment and return the updated working copy.

        The given environment is never mutated. Changes are committed to the
        report only when reconciliation succeeds.

        Raises:
            ValidationError: Attributed to the environment and entity at fault
        """
        working = env.copy()
        changes = EnvironmentChanges(env.name)

        try:
            self._sync_version(working, changes)
            for kind in (EntityKind.SERVICE, EntityKind.VOLUME):
                self._reconcile_entities(working, kind, changes)
        except ValidationError as e:
            raise e.with_context(environment=env.name) from None

        self._check_references(working, changes)
        self._refresh_top_level(working)

        report.commit(changes)
        logger.info(
            f"Environment '{env.name}': "
            f"{len(changes.effective)} change(s), {len(changes.warnings)} warning(s)"
        )
        return working

    def reconcile_all(
        self, environments: List[Environment], report: ChangeReport
    ) -> Tuple[Dict[str, Environment], Dict[str, ValidationError]]:
        """Reconcile environments in order; a failure in one does not stop the others.

        Returns:
            (reconciled environments by name, failures by environment name)
        """
        reconciled: Dict[str, Environment] = {}
        failures: Dict[str, ValidationError] = {}

        for env in environments:
            try:
                reconciled[env.name] = self.reconcile(env, report)
            except ValidationError as e:
                logger.error(f"Environment '{env.name}' failed to reconcile: {e}")
                failures[env.name] = e
                report.fail(env.name, e)
            self.reporter.write(report.render_environment(env.name, verbose=self.verbose))

        return reconciled, failures

    # ----------------------------
    # Phases
    # ----------------------------

    def _sync_version(self, env: Environment, changes: EnvironmentChanges) -> None:
        if not self.source.version or env.version == self.source.version:
            return
        changes.record(
            ChangeKind.UPDATED, ChangeScope.VERSION, old=env.version, new=self.source.version
        )
        env.version = self.source.version

    def _reconcile_entities(
        self, env: Environment, kind: str, changes: EnvironmentChanges
    ) -> None:
        stored = env.entities(kind)
        sources = self._source_entities(kind)

        for name in stored:
            if name not in sources:
                logger.debug(f"[{env.name}] {kind} '{name}' no longer in source")
                changes.record(ChangeKind.DELETED, ChangeScope.ENTITY, kind, name)

        merged: Dict[str, Entity] = {}
        for name in sources:
            if name in stored:
                entity = stored[name]
                self._merge_parameters(entity, changes)
                if kind == EntityKind.SERVICE:
                    self._merge_environment(entity, changes)
                self._refresh_structure(entity)
            else:
                logger.debug(f"[{env.name}] {kind} '{name}' is new")
                entity = self._new_entity(kind, name)
                changes.record(ChangeKind.ADDED, ChangeScope.ENTITY, kind, name)
            merged[name] = entity

        stored.clear()
        stored.update(merged)

    def _merge_parameters(self, entity: Entity, changes: EnvironmentChanges) -> None:
        """Field-by-field merge: derived keys overwrite, tunable keys only fill gaps."""
        inferred = self._infer(entity.kind, entity.name)
        staged = dict(entity.parameters)

        for spec in p.specs_for(entity.kind):
            if spec.key not in inferred:
                continue
            new = inferred[spec.key]
            old = staged.get(spec.key)

            if old is None:
                staged[spec.key] = new
                changes.record(
                    ChangeKind.ADDED, ChangeScope.PARAMETER, entity.kind, entity.name,
                    spec.key, new=new,
                )
            elif old == new:
                continue
            elif spec.policy is Policy.DERIVED:
                staged[spec.key] = new
                changes.record(
                    ChangeKind.UPDATED, ChangeScope.PARAMETER, entity.kind, entity.name,
                    spec.key, old=old, new=new,
                )
            else:
                changes.record(
                    ChangeKind.UNCHANGED, ChangeScope.PARAMETER, entity.kind, entity.name,
                    spec.key, old=old, new=new,
                )

        try:
            p.validate_parameters(entity.kind, staged)
        except ValidationError as e:
            raise e.with_context(entity=entity.name, kind=entity.kind) from None

        entity.parameters = staged

    def _merge_environment(self, entity: Entity, changes: EnvironmentChanges) -> None:
        """Diff env vars by name; stored bindings always win for kept variables."""
        declared = infer_environment(self.source.services[entity.name])
        stored = entity.environment

        for var, binding in stored.items():
            if var not in declared:
                changes.record(
                    ChangeKind.DELETED, ChangeScope.ENV_VAR, entity.kind, entity.name,
                    var, old=str(binding),
                )

        merged = {}
        for var, binding in declared.items():
            if var in stored:
                merged[var] = stored[var]
                changes.record(
                    ChangeKind.UNCHANGED, ChangeScope.ENV_VAR, entity.kind, entity.name,
                    var, old=str(stored[var]),
                )
            else:
                merged[var] = binding
                changes.record(
                    ChangeKind.ADDED, ChangeScope.ENV_VAR, entity.kind, entity.name,
                    var, new=str(binding),
                )
        entity.environment = merged

    def _check_references(self, env: Environment, changes: EnvironmentChanges) -> None:
        secrets = self.source.declared_secrets()
        configs = self.source.declared_configs()

        for service in env.services.values():
            for var, binding in service.environment.items():
                if binding.kind is BindingKind.SECRET and binding.ref_name not in secrets:
                    missing = MissingReferenceError(service.name, var, "secret", binding.ref_name)
                elif binding.kind is BindingKind.CONFIG and binding.ref_name not in configs:
                    missing = MissingReferenceError(service.name, var, "config", binding.ref_name)
                else:
                    continue
                logger.warning(f"[{env.name}] {missing}")
                changes.warn(str(missing))

    # ----------------------------
    # Entity construction and structure
    # ----------------------------

    def _new_entity(self, kind: str, name: str) -> Entity:
        entity = Entity(name=name, kind=kind, parameters=dict(self._infer(kind, name)))
        if kind == EntityKind.SERVICE:
            entity.environment = infer_environment(self.source.services[name])
        self._refresh_structure(entity)
        return entity

    def _refresh_structure(self, entity: Entity) -> None:
        """Replace the structural copy and passthrough labels with the source's."""
        source = self._source_entities(entity.kind)[entity.name]
        entity.structure = {
            key: copy.deepcopy(value)
            for key, value in source.raw.items()
            if key not in _NON_STRUCTURAL_KEYS
        }
        entity.labels = {
            label: value
            for label, value in source.labels.items()
            if not label.startswith(p.LABEL_PREFIX)
        }

    def _refresh_top_level(self, env: Environment) -> None:
        for section in SOURCE_OWNED_SECTIONS:
            declared = getattr(self.source, section)
            if declared:
                env.extras[section] = copy.deepcopy(declared)
            else:
                env.extras.pop(section, None)

    # ----------------------------
    # Helpers
    # ----------------------------

    def _source_entities(self, kind: str):
        return self.source.services if kind == EntityKind.SERVICE else self.source.volumes

    def _infer(self, kind: str, name: str) -> Dict[str, str]:
        key = (kind, name)
        if key not in self._inferred:
            if kind == EntityKind.SERVICE:
                self._inferred[key] = infer_service_parameters(self.source.services[name])
            else:
                self._inferred[key] = infer_volume_parameters(self.source.volumes[name])
        return self._inferred[key]
