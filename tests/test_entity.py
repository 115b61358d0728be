"""Tests for exposure and env var binding value types."""
import pytest

from skiff.models.entity import BindingKind, EnvBinding, Exposure, ExposureKind


class TestExposure:

    @pytest.mark.parametrize("raw", [None, False, "", "false", "no"])
    def test_disabled(self, raw):
        assert Exposure.parse(raw).kind is ExposureKind.NONE

    @pytest.mark.parametrize("raw", [True, "true", "yes"])
    def test_enabled(self, raw):
        exposure = Exposure.parse(raw)
        assert exposure.kind is ExposureKind.ENABLED
        assert str(exposure) == "true"

    def test_domain_list(self):
        exposure = Exposure.parse(["a.example.com", " b.example.com "])
        assert exposure.domains == ("a.example.com", "b.example.com")
        assert str(exposure) == "a.example.com,b.example.com"

    def test_comma_separated_string(self):
        assert Exposure.parse("a.example.com,b.example.com").domains == (
            "a.example.com", "b.example.com"
        )

    def test_empty_list_is_disabled(self):
        assert Exposure.parse([]) == Exposure.disabled()


class TestEnvBinding:

    def test_secret_reference(self):
        binding = EnvBinding.parse("secret.db.password")
        assert binding == EnvBinding.secret_ref("db", "password")
        assert binding.is_reference
        assert binding.to_raw() == "secret.db.password"

    def test_config_key_may_contain_dots(self):
        binding = EnvBinding.parse("config.app.log.level")
        assert (binding.ref_name, binding.ref_key) == ("app", "log.level")

    @pytest.mark.parametrize("raw", ["secret.", "secret.db", "config..key", "secretive"])
    def test_incomplete_reference_is_literal(self, raw):
        assert EnvBinding.parse(raw) == EnvBinding.literal(raw)

    def test_unassigned(self):
        binding = EnvBinding.parse(None)
        assert binding.kind is BindingKind.UNASSIGNED
        assert binding.to_raw() is None
        assert str(binding) == "<unassigned>"

    def test_boolean_literal(self):
        assert EnvBinding.parse(True) == EnvBinding.literal("true")
