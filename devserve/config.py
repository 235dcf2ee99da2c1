import os
import logging
import importlib
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import devserve.settings as default_settings
from devserve.backend.args import BackendConfig

log = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Raised when there's an issue with the devserve configuration."""


class MergedSettings:
    """
    A singleton class that exposes the settings module through attribute access.

    Values follow a clear precedence:
    1. Base values from `settings.py`.
    2. Overrides from the environment and the `.env` file (handled by
       `python-dotenv` in settings.py).
    3. Explicit overrides passed to `override()`, used by tests and the CLI.
    """

    def __init__(self) -> None:
        self._overrides: Dict[str, Any] = {}
        self._load_defaults()

    def _load_defaults(self) -> None:
        """Loads all uppercase attributes from the settings module as defaults."""
        for key in dir(default_settings):
            if key.isupper():
                setattr(self, key, getattr(default_settings, key))

    def reload(self) -> None:
        """
        Re-reads the settings module so that environment changes made after
        import are picked up. Explicit overrides are re-applied on top.
        """
        importlib.reload(default_settings)
        self._load_defaults()
        for key, value in self._overrides.items():
            setattr(self, key, value)
        log.debug("Settings reloaded from environment.")

    def override(self, **values: Any) -> None:
        """
        Overrides one or more settings for the lifetime of this object.

        :raises ConfigurationError: If a key is not a known setting.
        """
        for key, value in values.items():
            if not hasattr(default_settings, key):
                raise ConfigurationError(f"Unknown setting '{key}'.")
            original_value = getattr(default_settings, key)
            # Coerce path strings back to Path objects
            if isinstance(original_value, Path) and isinstance(value, str):
                value = Path(value)
            self._overrides[key] = value
            setattr(self, key, value)
            log.debug(f"Overridden setting: {key} = {value}")

    def clear_overrides(self) -> None:
        self._overrides.clear()
        self._load_defaults()


# A singleton instance to be imported by other modules
effective_settings = MergedSettings()


def load_backend_config(environ: Optional[Mapping[str, str]] = None) -> BackendConfig:
    """
    Builds the backend launch configuration from the settings and the environment.

    The kubeconfig path and the API server host override are looked up in the
    environment on every call, so a restarted backend picks up new values.

    :param environ: Environment mapping to read; defaults to `os.environ`.
    :return BackendConfig: The configuration for the next backend launch.
    """
    environ = os.environ if environ is None else environ
    config = effective_settings
    return BackendConfig(
        heapster_host=config.HEAPSTER_SERVER_HOST,
        tls_cert_file=config.BACKEND_TLS_CERT,
        tls_key_file=config.BACKEND_TLS_KEY,
        dev_port=config.DEV_SERVER_PORT,
        prod_port=config.FRONTEND_SERVER_PORT,
        apiserver_host=config.APISERVER_HOST,
        env_apiserver_host=environ.get(config.ENV_APISERVER_HOST_VAR) or None,
        kubeconfig=environ.get(config.ENV_KUBECONFIG_VAR) or None,
    )
