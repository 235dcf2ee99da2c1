"""
The backend package.
Builds launch arguments for the backend binary and supervises its process.
"""
from .args import BackendConfig, InvalidModeError, Mode, build_backend_args
from .supervisor import BackendAlreadyRunningError, BackendSpawnError, BackendSupervisor, ProcessHandle

__all__ = [
    'BackendConfig', 'InvalidModeError', 'Mode', 'build_backend_args',
    'BackendAlreadyRunningError', 'BackendSpawnError', 'BackendSupervisor', 'ProcessHandle',
]
