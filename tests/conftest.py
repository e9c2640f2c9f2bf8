"""
Shared pytest fixtures for engine tests.
"""

from types import SimpleNamespace
from unittest.mock import Mock

import pytest

from chaos_docker.client import reset_connections
from chaos_docker.config import EngineConfig
from chaos_docker.lifecycle import LifecycleController
from tests.utils import SIDECAR_IMAGE, FakeDockerAPI


@pytest.fixture(autouse=True)
def _clean_connections():
    reset_connections()
    yield
    reset_connections()


@pytest.fixture
def fake_api() -> FakeDockerAPI:
    """Fake daemon with the sidecar image already present."""
    api = FakeDockerAPI()
    api.images.add(SIDECAR_IMAGE)
    return api


@pytest.fixture
def engine_config() -> EngineConfig:
    return EngineConfig(readiness_timeout=0.5, readiness_interval=0.01)


@pytest.fixture
def connection_factory(fake_api):
    """Connection factory handing every executor the fake daemon."""
    factory = Mock(side_effect=lambda endpoint, config: SimpleNamespace(api=fake_api))
    return factory


@pytest.fixture
def lifecycle(fake_api, engine_config) -> LifecycleController:
    return LifecycleController(fake_api, engine_config)


@pytest.fixture
def tool_archive(tmp_path):
    """A local file standing in for the tool archive."""
    archive = tmp_path / "chaosblade-1.7.2.tar.gz"
    archive.write_bytes(b"\x1f\x8b fake archive")
    return str(archive)
