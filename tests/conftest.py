"""Global pytest configuration and fixtures for devserve tests.

This module provides shared fixtures used across all test modules, including
settings reset for test isolation and a throwaway project layout.
"""

import sys
import socket
from pathlib import Path
from typing import Generator

import pytest

from devserve.backend import BackendConfig


@pytest.fixture(autouse=True, scope="function")
def reset_settings_fixture() -> Generator[None, None, None]:
    """Automatically clear setting overrides before and after each test.

    Yields:
        Generator: Control to the test function
    """
    from devserve.config import effective_settings

    effective_settings.clear_overrides()
    yield
    effective_settings.clear_overrides()


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    """Points every devserve path setting into a temporary project directory.

    External build commands are disabled so tasks never shell out to `go`.

    Returns:
        Path: The temporary project root
    """
    from devserve.config import effective_settings

    app_dir = tmp_path / "src" / "app"
    effective_settings.override(
        BASE_DIR=tmp_path,
        SERVE_DIR=tmp_path / ".tmp" / "serve",
        DIST_DIR=tmp_path / "dist",
        APP_DIR=app_dir,
        FRONTEND_SRC_DIR=app_dir / "frontend",
        BACKEND_SRC_DIR=app_dir / "backend",
        BOWER_COMPONENTS_DIR=tmp_path / "bower_components",
        I18N_DIR=tmp_path / "i18n",
        BACKEND_BUILD_COMMAND="",
        BACKEND_PROD_BUILD_COMMAND="",
        BUILD_FRONTEND_COMMAND="",
        INDEX_COMMAND="",
        STYLES_COMMAND="",
        SCRIPTS_COMMAND="",
        TEMPLATES_COMMAND="",
    )
    return tmp_path


@pytest.fixture
def backend_config() -> BackendConfig:
    """A backend configuration with distinct dev and prod ports."""
    return BackendConfig(
        heapster_host="h",
        tls_cert_file="c.pem",
        tls_key_file="k.pem",
        dev_port=8000,
        prod_port=9090,
        apiserver_host="api.local",
    )


@pytest.fixture
def python_exe() -> str:
    """The interpreter used to spawn stand-in backend processes."""
    return sys.executable


@pytest.fixture
def busy_port() -> Generator[int, None, None]:
    """A local port that another socket is already listening on.

    Yields:
        int: The occupied port number
    """
    holder = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    holder.bind(("127.0.0.1", 0))
    holder.listen()
    yield holder.getsockname()[1]
    holder.close()
