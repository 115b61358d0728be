"""Shared test fixtures for Skiff tests."""
import copy
from pathlib import Path

import pytest
import yaml

from skiff.core.config import set_config
from skiff.core.project import init_project
from skiff.services.docker_compose import ComposeLoader

# Canonical two-service description used across tests
BASE_COMPOSE = {
    "version": "3.7",
    "services": {
        "db": {
            "image": "mysql:5.7",
            "volumes": ["db_data:/var/lib/mysql"],
            "environment": {
                "MYSQL_DATABASE": "wordpress",
                "MYSQL_USER": "wordpress",
            },
        },
        "wordpress": {
            "image": "wordpress:latest",
            "ports": ["8000:80"],
            "deploy": {"replicas": 2},
            "environment": ["WORDPRESS_DB_HOST=db:3306"],
        },
    },
    "volumes": {"db_data": None},
}


def _write_yaml(path: Path, data) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        yaml.safe_dump(data, f, sort_keys=False)
    return path


def _read_yaml(path: Path):
    with open(path) as f:
        return yaml.safe_load(f)


@pytest.fixture
def compose_doc():
    """Fresh deep copy of the base compose description."""
    return copy.deepcopy(BASE_COMPOSE)


@pytest.fixture
def write_yaml():
    return _write_yaml


@pytest.fixture
def read_yaml():
    return _read_yaml


@pytest.fixture(autouse=True)
def fresh_config(monkeypatch):
    """Each test starts from default configuration."""
    for name in (
        "SKIFF_MANIFEST",
        "SKIFF_DEFAULT_ENV",
        "SKIFF_DEV_POLL_INTERVAL",
        "SKIFF_DEV_QUEUE_SIZE",
        "SKIFF_LOCK_TIMEOUT",
        "SKIFF_CONFIG_DIR",
    ):
        monkeypatch.delenv(name, raising=False)
    set_config(None)
    yield
    set_config(None)


@pytest.fixture
def source_of():
    """Build a SourceModel from an in-memory compose mapping."""
    def _build(document: dict):
        return ComposeLoader(environ={}).load_dict(copy.deepcopy(document))
    return _build


@pytest.fixture
def project(tmp_path, compose_doc):
    """Project directory holding the base docker-compose.yaml."""
    _write_yaml(tmp_path / "docker-compose.yaml", compose_doc)
    return tmp_path


@pytest.fixture
def initialised(project):
    """Project initialised with dev and prod environments."""
    init_project(project, envs=["dev", "prod"])
    return project
