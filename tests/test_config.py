"""Tests for runtime configuration."""
from skiff.core.config import SkiffConfig, get_config, set_config


def test_defaults():
    config = get_config()
    assert config.manifest_name == "skiff.yaml"
    assert config.default_env == "dev"
    assert config.dev_poll_interval == 1.0
    assert config.dev_queue_size == 50
    assert config.lock_timeout == 0


def test_from_environment(monkeypatch):
    monkeypatch.setenv("SKIFF_MANIFEST", "project.yaml")
    monkeypatch.setenv("SKIFF_DEV_POLL_INTERVAL", "0.25")
    monkeypatch.setenv("SKIFF_DEV_QUEUE_SIZE", "10")
    monkeypatch.setenv("SKIFF_LOCK_TIMEOUT", "5")

    config = SkiffConfig.from_env()

    assert config.manifest_name == "project.yaml"
    assert config.dev_poll_interval == 0.25
    assert config.dev_queue_size == 10
    assert config.lock_timeout == 5


def test_set_config_overrides_environment(monkeypatch):
    monkeypatch.setenv("SKIFF_DEFAULT_ENV", "staging")
    set_config(SkiffConfig(default_env="qa"))
    assert get_config().default_env == "qa"

    set_config(None)
    assert get_config().default_env == "staging"


def test_manifest_name_used_by_init(project, monkeypatch):
    from skiff.core.project import init_project

    monkeypatch.setenv("SKIFF_MANIFEST", "envs.yaml")
    init_project(project)

    assert (project / "envs.yaml").exists()
    assert not (project / "skiff.yaml").exists()
