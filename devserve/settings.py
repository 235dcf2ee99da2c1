"""
This module contains the default configuration settings for devserve.
It defines paths, backend launch settings, web server settings and the
external commands used by the rebuild tasks. Values can be overridden
through environment variables or a `.env` file.
"""

import os
import pathlib
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _env_flag(name: str, default: str = "False") -> bool:
    return os.getenv(name, default).lower() in ('true', '1', 't', 'yes', 'y')


#* --- Core Paths ---
BASE_DIR = pathlib.Path(os.getenv("DEVSERVE_BASE_DIR", os.getcwd())).resolve()
SERVE_DIR = BASE_DIR / ".tmp" / "serve"
DIST_DIR = BASE_DIR / "dist"
APP_DIR = BASE_DIR / "src" / "app"
FRONTEND_SRC_DIR = APP_DIR / "frontend"
BACKEND_SRC_DIR = APP_DIR / "backend"
BOWER_COMPONENTS_DIR = BASE_DIR / "bower_components"
I18N_DIR = BASE_DIR / "i18n"

#* --- Backend Settings ---
BACKEND_BINARY_NAME = os.getenv("BACKEND_BINARY_NAME", "dashboard")
BACKEND_PACKAGE = os.getenv("BACKEND_PACKAGE", "./src/app/backend")
HEAPSTER_SERVER_HOST = os.getenv("HEAPSTER_SERVER_HOST", "")
BACKEND_TLS_CERT = os.getenv("BACKEND_TLS_CERT", "")
BACKEND_TLS_KEY = os.getenv("BACKEND_TLS_KEY", "")
DEV_SERVER_PORT = int(os.getenv("DEV_SERVER_PORT", "9091"))
SECURE_DEV_SERVER_PORT = int(os.getenv("SECURE_DEV_SERVER_PORT", "8443"))
APISERVER_HOST = os.getenv("APISERVER_HOST", "http://localhost:8080")

# Read at every launch, not at import time. See config.load_backend_config().
ENV_APISERVER_HOST_VAR = "KUBE_DASHBOARD_APISERVER_HOST"
ENV_KUBECONFIG_VAR = "KUBE_DASHBOARD_KUBECONFIG"

# Seconds to wait for the backend after SIGTERM before killing it.
# Unset means wait until it exits, however long that takes.
_kill_timeout = os.getenv("BACKEND_KILL_TIMEOUT", "")
BACKEND_KILL_TIMEOUT = float(_kill_timeout) if _kill_timeout else None

#* --- Web Server Settings ---
FRONTEND_SERVER_HOST = os.getenv("FRONTEND_SERVER_HOST", "0.0.0.0")
# Also the backend's insecure port in production, where it serves the frontend itself.
FRONTEND_SERVER_PORT = int(os.getenv("FRONTEND_SERVER_PORT", "9090"))
SERVE_HTTPS = _env_flag("SERVE_HTTPS")
FRONTEND_TLS_CERT = os.getenv("FRONTEND_TLS_CERT", "")
FRONTEND_TLS_KEY = os.getenv("FRONTEND_TLS_KEY", "")
API_ROUTE = "/api"
COMPONENTS_ROUTE = "/bower_components"
PROXY_TIMEOUT_SECONDS = float(os.getenv("PROXY_TIMEOUT_SECONDS", "60"))

#* --- Watcher Settings ---
WATCH_DEBOUNCE_SECONDS = float(os.getenv("WATCH_DEBOUNCE_SECONDS", "0.5"))

#* --- Logging ---
LOG_FILE_PATH = os.getenv("LOG_FILE_PATH", "")
LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUP_COUNT = 3

#* --- External Build Commands ---
# Formatted with serve_dir, dist_dir, binary, backend_package and base_dir.
# An empty command turns the task into a no-op.
BACKEND_BUILD_COMMAND = os.getenv(
    "BACKEND_BUILD_COMMAND", "go build -o {serve_dir}/{binary} {backend_package}"
)
BACKEND_PROD_BUILD_COMMAND = os.getenv(
    "BACKEND_PROD_BUILD_COMMAND",
    "go build -a -installsuffix cgo -o {dist_dir}/{binary} {backend_package}"
)
BACKEND_PROD_BUILD_ENV = {"CGO_ENABLED": "0"}
BUILD_FRONTEND_COMMAND = os.getenv("BUILD_FRONTEND_COMMAND", "")
INDEX_COMMAND = os.getenv("INDEX_COMMAND", "")
STYLES_COMMAND = os.getenv("STYLES_COMMAND", "")
SCRIPTS_COMMAND = os.getenv("SCRIPTS_COMMAND", "")
TEMPLATES_COMMAND = os.getenv("TEMPLATES_COMMAND", "")
