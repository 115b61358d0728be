"""Tests for the reconciler: per-key merge policy, entity and env var diffs."""
import io

import pytest

from skiff.core.change_report import ChangeKind, ChangeReport, ChangeScope
from skiff.core.inference import infer_service_parameters
from skiff.core.override_store import OverrideStore
from skiff.core.reconciler import Reconciler
from skiff.models.entity import BindingKind, EnvBinding
from skiff.models.errors import ValidationError


@pytest.fixture
def minted(source_of, compose_doc):
    """Environment 'dev' freshly minted from the base compose description."""
    return Reconciler(source_of(compose_doc)).mint_environment("dev", "docker-compose.skiff.dev.yaml")


def reconcile(source, env, **kwargs):
    report = ChangeReport()
    updated = Reconciler(source, **kwargs).reconcile(env, report)
    return updated, report


def changes_for(report, env="dev", scope=None):
    changes = report.environment(env).changes
    if scope is not None:
        changes = [c for c in changes if c.scope == scope]
    return changes


class TestMint:

    def test_every_entity_is_fully_inferred(self, minted, source_of, compose_doc):
        source = source_of(compose_doc)
        assert list(minted.services) == ["db", "wordpress"]
        assert list(minted.volumes) == ["db_data"]
        assert minted.version == "3.7"
        assert minted.services["wordpress"].parameters == infer_service_parameters(
            source.services["wordpress"]
        )
        assert minted.services["db"].get("workload.type") == "StatefulSet"
        assert minted.volumes["db_data"].get("volume.size") == "100Mi"

    def test_environment_bindings(self, minted):
        assert minted.services["wordpress"].environment == {
            "WORDPRESS_DB_HOST": EnvBinding.literal("db:3306")
        }

    def test_structure_excludes_labels_and_environment(self, source_of, compose_doc):
        compose_doc["services"]["db"]["labels"] = {"com.example.team": "data"}
        env = Reconciler(source_of(compose_doc)).mint_environment("dev", "dev.yaml")

        db = env.services["db"]
        assert db.structure["image"] == "mysql:5.7"
        assert "environment" not in db.structure
        assert "labels" not in db.structure
        assert db.labels == {"com.example.team": "data"}

    def test_invalid_source_fact_names_environment(self, source_of, compose_doc):
        compose_doc["services"]["wordpress"]["deploy"]["replicas"] = "many"
        with pytest.raises(ValidationError) as exc:
            Reconciler(source_of(compose_doc)).mint_environment("prod", "prod.yaml")
        assert exc.value.environment == "prod"
        assert exc.value.entity == "wordpress"


class TestIdempotence:

    def test_reconcile_after_mint_is_empty(self, minted, source_of, compose_doc):
        updated, report = reconcile(source_of(compose_doc), minted)

        assert report.is_empty()
        assert report.render() == "Environment [dev]\n  nothing to update\n"
        store = OverrideStore()
        assert store.to_document(updated) == store.to_document(minted)

    def test_second_pass_is_empty(self, minted, source_of, compose_doc):
        compose_doc["services"]["cache"] = {"image": "redis"}
        source = source_of(compose_doc)

        once, first = reconcile(source, minted)
        _, second = reconcile(source, once)

        assert not first.is_empty()
        assert second.is_empty()


class TestParameterPolicy:

    def test_tunable_value_is_kept(self, minted, source_of, compose_doc):
        minted.services["wordpress"].parameters["workload.cpu"] = "0.5"

        updated, report = reconcile(source_of(compose_doc), minted)

        assert updated.services["wordpress"].get("workload.cpu") == "0.5"
        assert report.is_empty()

    def test_kept_tunable_reports_inferred_value_when_verbose(self, minted, source_of, compose_doc):
        compose_doc["services"]["wordpress"]["deploy"]["replicas"] = 5

        updated, report = reconcile(source_of(compose_doc), minted)

        assert updated.services["wordpress"].get("workload.replicas") == "2"
        assert report.is_empty()
        kept = [c for c in changes_for(report, scope=ChangeScope.PARAMETER)]
        assert len(kept) == 1
        assert kept[0].kind is ChangeKind.UNCHANGED
        assert (kept[0].old, kept[0].new) == ("2", "5")
        verbose = report.render(verbose=True)
        assert "parameter [workload.replicas] nothing to update (kept 2, inferred 5)" in verbose
        assert "kept 2" not in report.render()

    def test_derived_value_is_overwritten(self, minted, source_of, compose_doc):
        minted.services["wordpress"].parameters["service.type"] = "LoadBalancer"

        updated, report = reconcile(source_of(compose_doc), minted)

        assert updated.services["wordpress"].get("service.type") == "ClusterIP"
        (change,) = report.entries()
        assert change.kind is ChangeKind.UPDATED
        assert change.describe() == (
            "service [wordpress], parameter [service.type] updated: LoadBalancer -> ClusterIP"
        )

    def test_host_mode_port_switches_service_type(self, minted, source_of, compose_doc):
        compose_doc["services"]["wordpress"]["ports"] = [
            {"target": 80, "published": 8000, "mode": "host"}
        ]

        updated, report = reconcile(source_of(compose_doc), minted)

        assert updated.services["wordpress"].get("service.type") == "NodePort"
        assert [c.field for c in report.entries()] == ["service.type"]

    def test_missing_key_is_added(self, minted, source_of, compose_doc):
        del minted.services["db"].parameters["workload.memory"]

        updated, report = reconcile(source_of(compose_doc), minted)

        assert updated.services["db"].get("workload.memory") == "50M"
        (change,) = report.entries()
        assert change.kind is ChangeKind.ADDED
        assert change.describe() == "service [db], parameter [workload.memory] added: 50M"

    def test_unknown_parameter_passes_through(self, minted, source_of, compose_doc):
        minted.services["db"].parameters["custom.flag"] = "on"

        updated, report = reconcile(source_of(compose_doc), minted)

        assert updated.services["db"].get("custom.flag") == "on"
        assert report.is_empty()

    def test_stored_order_is_kept(self, minted, source_of, compose_doc):
        params = minted.services["db"].parameters
        reordered = dict(reversed(list(params.items())))
        minted.services["db"].parameters = reordered

        updated, _ = reconcile(source_of(compose_doc), minted)

        assert list(updated.services["db"].parameters) == list(reordered)


class TestEntities:

    def test_service_added_with_full_inference(self, minted, source_of, compose_doc):
        compose_doc["services"]["cache"] = {"image": "redis", "ports": ["6379"]}
        source = source_of(compose_doc)

        updated, report = reconcile(source, minted)

        assert list(updated.services) == ["db", "wordpress", "cache"]
        assert updated.services["cache"].parameters == infer_service_parameters(
            source.services["cache"]
        )
        (change,) = report.entries()
        assert (change.kind, change.scope) == (ChangeKind.ADDED, ChangeScope.ENTITY)
        assert change.describe() == "service [cache] added"

    def test_service_and_volume_removed(self, minted, source_of, compose_doc):
        del compose_doc["services"]["db"]
        del compose_doc["volumes"]

        updated, report = reconcile(source_of(compose_doc), minted)

        assert list(updated.services) == ["wordpress"]
        assert updated.volumes == {}
        assert [c.describe() for c in report.entries()] == [
            "service [db] deleted",
            "volume [db_data] deleted",
        ]

    def test_volume_added(self, minted, source_of, compose_doc):
        compose_doc["volumes"]["uploads"] = {"x-skiff": {"volume.size": "5Gi"}}

        updated, report = reconcile(source_of(compose_doc), minted)

        assert updated.volumes["uploads"].get("volume.size") == "5Gi"
        assert [c.describe() for c in report.entries()] == ["volume [uploads] added"]

    def test_entities_follow_source_order(self, minted, source_of, compose_doc):
        minted.services = dict(reversed(list(minted.services.items())))

        updated, _ = reconcile(source_of(compose_doc), minted)

        assert list(updated.services) == ["db", "wordpress"]

    def test_structure_refreshed_from_source(self, minted, source_of, compose_doc):
        compose_doc["services"]["db"]["image"] = "mysql:8.0"
        compose_doc["services"]["db"]["x-notes"] = "primary"

        updated, report = reconcile(source_of(compose_doc), minted)

        db = updated.services["db"]
        assert db.structure["image"] == "mysql:8.0"
        assert db.structure["x-notes"] == "primary"
        assert report.is_empty()

    def test_extension_dropped_from_source_is_removed(self, source_of, compose_doc):
        compose_doc["services"]["db"]["x-notes"] = "old"
        env = Reconciler(source_of(compose_doc)).mint_environment("dev", "dev.yaml")
        del compose_doc["services"]["db"]["x-notes"]

        updated, report = reconcile(source_of(compose_doc), env)

        assert "x-notes" not in updated.services["db"].structure
        assert report.is_empty()

    def test_label_dropped_from_source_is_removed(self, source_of, compose_doc):
        compose_doc["services"]["db"]["labels"] = {
            "com.example.team": "data",
            "com.example.tier": "backend",
        }
        env = Reconciler(source_of(compose_doc)).mint_environment("dev", "dev.yaml")
        compose_doc["services"]["db"]["labels"] = {"com.example.tier": "storage"}

        updated, _ = reconcile(source_of(compose_doc), env)

        assert updated.services["db"].labels == {"com.example.tier": "storage"}
        assert updated.services["db"].get("workload.type") == "StatefulSet"

    def test_top_level_sections_follow_source(self, source_of, compose_doc):
        compose_doc["secrets"] = {"db": {"file": "./db_password.txt"}}
        compose_doc["networks"] = {"backend": {}, "frontend": {}}
        env = Reconciler(source_of(compose_doc)).mint_environment("dev", "dev.yaml")
        env.extras["x-owner"] = "platform"
        del compose_doc["secrets"]
        compose_doc["networks"] = {"backend": {}}

        updated, _ = reconcile(source_of(compose_doc), env)

        assert "secrets" not in updated.extras
        assert updated.extras["networks"] == {"backend": {}}
        assert updated.extras["x-owner"] == "platform"


class TestVersion:

    def test_version_propagated(self, minted, source_of, compose_doc):
        compose_doc["version"] = "3.9"

        updated, report = reconcile(source_of(compose_doc), minted)

        assert updated.version == "3.9"
        (change,) = report.entries()
        assert change.describe() == "version updated: 3.7 -> 3.9"

    def test_source_without_version_leaves_it(self, minted, source_of, compose_doc):
        del compose_doc["version"]

        updated, report = reconcile(source_of(compose_doc), minted)

        assert updated.version == "3.7"
        assert report.is_empty()


class TestEnvironmentVariables:

    def test_new_variable_added(self, minted, source_of, compose_doc):
        compose_doc["services"]["db"]["environment"]["DEBUG"] = None

        updated, report = reconcile(source_of(compose_doc), minted)

        assert updated.services["db"].environment["DEBUG"].kind is BindingKind.UNASSIGNED
        (change,) = report.entries()
        assert change.describe() == "service [db], env var [DEBUG] added: <unassigned>"

    def test_removed_variable_deleted(self, minted, source_of, compose_doc):
        del compose_doc["services"]["db"]["environment"]["MYSQL_USER"]

        updated, report = reconcile(source_of(compose_doc), minted)

        assert "MYSQL_USER" not in updated.services["db"].environment
        (change,) = report.entries()
        assert change.describe() == "service [db], env var [MYSQL_USER] deleted"

    def test_stored_binding_wins(self, minted, source_of, compose_doc):
        minted.services["db"].environment["MYSQL_DATABASE"] = EnvBinding.config_ref("db", "name")
        compose_doc["configs"] = {"db": {"file": "./db.conf"}}

        updated, report = reconcile(source_of(compose_doc), minted)

        assert updated.services["db"].environment["MYSQL_DATABASE"] == EnvBinding.config_ref("db", "name")
        assert report.is_empty()
        assert report.environment("dev").warnings == []

    def test_undeclared_secret_is_a_warning(self, minted, source_of, compose_doc):
        compose_doc["services"]["db"]["environment"]["MYSQL_PASSWORD"] = "secret.db.password"

        updated, report = reconcile(source_of(compose_doc), minted)

        assert updated.services["db"].environment["MYSQL_PASSWORD"] == EnvBinding.secret_ref("db", "password")
        assert report.environment("dev").warnings == [
            "env var [MYSQL_PASSWORD] of service [db] references undeclared secret 'db'"
        ]
        assert "! env var [MYSQL_PASSWORD]" in report.render()

    def test_declared_secret_is_copied_to_override(self, minted, source_of, compose_doc):
        compose_doc["services"]["db"]["environment"]["MYSQL_PASSWORD"] = "secret.db.password"
        compose_doc["secrets"] = {"db": {"file": "./db_password.txt"}}

        updated, report = reconcile(source_of(compose_doc), minted)

        assert report.environment("dev").warnings == []
        assert updated.extras["secrets"] == {"db": {"file": "./db_password.txt"}}

    def test_secret_removed_from_source_is_a_warning(self, source_of, compose_doc):
        compose_doc["services"]["db"]["environment"]["MYSQL_PASSWORD"] = "secret.db.password"
        compose_doc["secrets"] = {"db": {"file": "./db_password.txt"}}
        env = Reconciler(source_of(compose_doc)).mint_environment("dev", "dev.yaml")
        del compose_doc["secrets"]

        updated, report = reconcile(source_of(compose_doc), env)

        assert "secrets" not in updated.extras
        assert report.environment("dev").warnings == [
            "env var [MYSQL_PASSWORD] of service [db] references undeclared secret 'db'"
        ]

    def test_verbose_lists_kept_variables(self, minted, source_of, compose_doc):
        _, report = reconcile(source_of(compose_doc), minted)
        assert "env var [MYSQL_USER] nothing to update" in report.render(verbose=True)


class TestFailures:

    def test_malformed_source_fact(self, minted, source_of, compose_doc):
        compose_doc["version"] = "3.9"
        compose_doc["services"]["wordpress"]["deploy"]["replicas"] = -1
        report = ChangeReport()

        with pytest.raises(ValidationError) as exc:
            Reconciler(source_of(compose_doc)).reconcile(minted, report)

        assert exc.value.environment == "dev"
        assert exc.value.entity == "wordpress"
        assert exc.value.field == "deploy.replicas"
        assert minted.version == "3.7"
        assert "dev" not in report.environments

    def test_invalid_stored_value(self, minted, source_of, compose_doc):
        minted.services["db"].parameters["workload.cpu"] = "lots"

        with pytest.raises(ValidationError) as exc:
            reconcile(source_of(compose_doc), minted)

        assert exc.value.field == "workload.cpu"
        assert exc.value.entity == "db"
        assert "[dev]" in str(exc.value)

    def test_original_is_not_mutated(self, minted, source_of, compose_doc):
        compose_doc["services"]["cache"] = {"image": "redis"}
        reconcile(source_of(compose_doc), minted)
        assert "cache" not in minted.services


class TestReconcileAll:

    def test_failure_isolated_to_one_environment(self, source_of, compose_doc):
        base = Reconciler(source_of(compose_doc))
        dev = base.mint_environment("dev", "dev.yaml")
        prod = base.mint_environment("prod", "prod.yaml")
        prod.services["db"].parameters["workload.memory"] = "plenty"
        compose_doc["services"]["cache"] = {"image": "redis"}

        sink = io.StringIO()
        report = ChangeReport()
        reconciled, failures = Reconciler(source_of(compose_doc), reporter=sink).reconcile_all(
            [dev, prod], report
        )

        assert list(reconciled) == ["dev"]
        assert list(failures) == ["prod"]
        assert "cache" in reconciled["dev"].services
        assert report.has_errors()
        assert report.environment("prod").error is failures["prod"]

        output = sink.getvalue()
        assert output.index("Environment [dev]") < output.index("Environment [prod]")
        assert "+ service [cache] added" in output
        assert "! failed: [prod] service 'db': workload.memory" in output

    def test_report_keeps_declaration_order(self, source_of, compose_doc):
        base = Reconciler(source_of(compose_doc))
        envs = [base.mint_environment(name, f"{name}.yaml") for name in ("prod", "dev", "qa")]

        report = ChangeReport()
        Reconciler(source_of(compose_doc)).reconcile_all(envs, report)

        assert list(report.environments) == ["prod", "dev", "qa"]
        assert report.is_empty()
