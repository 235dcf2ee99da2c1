from enum import Enum
from typing import List, Optional, Union
from dataclasses import dataclass


class InvalidModeError(ValueError):
    """Raised when backend arguments are requested for an unknown mode."""


class Mode(str, Enum):
    """Deployment context that selects ports and file roots."""
    DEVELOPMENT = "development"
    PRODUCTION = "production"


@dataclass(frozen=True)
class BackendConfig:
    """Inputs for a single backend launch. Built fresh before each launch."""
    heapster_host: str
    tls_cert_file: str
    tls_key_file: str
    dev_port: int
    prod_port: int
    apiserver_host: str
    env_apiserver_host: Optional[str] = None
    kubeconfig: Optional[str] = None


def coerce_mode(mode: Union[Mode, str]) -> Mode:
    """
    Converts a mode name to a Mode member.

    :raises InvalidModeError: If the value is neither development nor production.
    """
    if isinstance(mode, Mode):
        return mode
    try:
        return Mode(mode)
    except ValueError:
        raise InvalidModeError(
            f"Unknown backend mode {mode!r}; expected one of: {', '.join(m.value for m in Mode)}"
        ) from None


def build_backend_args(mode: Union[Mode, str], config: BackendConfig) -> List[str]:
    """
    Builds the command-line arguments for the backend process.

    :param mode: Development or production.
    :param config: The backend launch configuration.
    :return list: Ordered list of `--flag=value` arguments.
    :raises InvalidModeError: If the mode is not recognized.
    """
    mode = coerce_mode(mode)
    args = [
        f"--heapster-host={config.heapster_host}",
        f"--tls-cert-file={config.tls_cert_file}",
        f"--tls-key-file={config.tls_key_file}",
    ]

    if mode is Mode.PRODUCTION:
        args.append(f"--insecure-port={config.prod_port}")
    else:
        args.append(f"--insecure-port={config.dev_port}")

    if config.kubeconfig:
        args.append(f"--kubeconfig={config.kubeconfig}")
    else:
        args.append(f"--apiserver-host={config.env_apiserver_host or config.apiserver_host}")

    return args
