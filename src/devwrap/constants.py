"""Application-wide constants for devwrap.

Constants that define application behavior.
For user-configurable settings per machine, see config.py.
"""

__all__ = [
    # Application identity
    "APP_NAME",
    # State document
    "STATE_SCHEMA_VERSION",
    "STATE_FILE_NAME",
    "STATE_LOCK_FILE_NAME",
    "DAEMON_PID_FILE_NAME",
    "DAEMON_LOG_FILE_NAME",
    "DAEMON_CONFIG_FILE_NAME",
    "EVENT_LOG_FILE_NAME",
    # App port allocation
    "APP_PORT_MIN",
    "APP_PORT_MAX",
    "LOOPBACK_HOST",
    # Control plane
    "DEFAULT_ADMIN_URL",
    "DEFAULT_ADMIN_TIMEOUT_SECONDS",
    "MIN_ADMIN_TIMEOUT_SECONDS",
    "MAX_ADMIN_TIMEOUT_SECONDS",
    "ADMIN_READY_INITIAL_DELAY_SECONDS",
    "ADMIN_READY_MAX_DELAY_SECONDS",
    "DAEMON_READY_TIMEOUT_SECONDS",
    "PROXY_START_TIMEOUT_SECONDS",
    "DEFAULT_CA_ID",
    # Ownership markers
    "MANAGED_HTTP_SERVER",
    "MANAGED_HTTPS_SERVER",
    "OWNED_ROUTE_PREFIX",
    "OWNED_TLS_POLICY_ID",
    "INTERNAL_ISSUER_MODULE",
    # Default listener ports
    "DEFAULT_HTTP_PORT",
    "DEFAULT_HTTPS_PORT",
    "PRIVILEGED_PORT_PAIRS",
    "UNPRIVILEGED_PORT_PAIRS",
    # Daemon shutdown
    "DAEMON_STOP_TIMEOUT_SECONDS",
    "DAEMON_POLL_INTERVAL_SECONDS",
    # Child process environment
    "PORT_TEMPLATE",
    "ENV_PORT",
    "ENV_APP",
    "ENV_HOST",
]

# ============================================================================
# Application Identity
# ============================================================================

# Application name used for directory names, logger names, etc.
APP_NAME: str = "devwrap"

# ============================================================================
# State Document
# ============================================================================

# Bump only together with a migration in state/store.py
STATE_SCHEMA_VERSION: int = 1

STATE_FILE_NAME: str = "state.json"
STATE_LOCK_FILE_NAME: str = "state.lock"
DAEMON_PID_FILE_NAME: str = "daemon.pid"
DAEMON_LOG_FILE_NAME: str = "daemon.log"
DAEMON_CONFIG_FILE_NAME: str = "caddy.json"
EVENT_LOG_FILE_NAME: str = "events.jsonl"

# ============================================================================
# App Port Allocation
# ============================================================================

# Inclusive range scanned in ascending order for app ports
APP_PORT_MIN: int = 11000
APP_PORT_MAX: int = 19999

LOOPBACK_HOST: str = "127.0.0.1"

# ============================================================================
# Control Plane (Caddy admin API)
# ============================================================================

DEFAULT_ADMIN_URL: str = "http://127.0.0.1:2019"

# Client-side timeout for every admin API call (seconds)
DEFAULT_ADMIN_TIMEOUT_SECONDS: float = 4.0
MIN_ADMIN_TIMEOUT_SECONDS: float = 0.5
MAX_ADMIN_TIMEOUT_SECONDS: float = 60.0

# Readiness polling: exponential backoff 100ms -> 1s cap
ADMIN_READY_INITIAL_DELAY_SECONDS: float = 0.1
ADMIN_READY_MAX_DELAY_SECONDS: float = 1.0

# Budget for a freshly started caddy process to answer on the admin API
DAEMON_READY_TIMEOUT_SECONDS: float = 3.0

# Budget for `proxy start` to see the daemon answering
PROXY_START_TIMEOUT_SECONDS: float = 5.0

DEFAULT_CA_ID: str = "local"

# ============================================================================
# Ownership Markers
# ============================================================================

# Server names used by the self-managed proxy. Their presence identifies
# a self-managed topology.
MANAGED_HTTP_SERVER: str = "devwrap-http"
MANAGED_HTTPS_SERVER: str = "devwrap-https"

# Every route we own carries "@id": "devwrap-<app name>"
OWNED_ROUTE_PREFIX: str = "devwrap-"

OWNED_TLS_POLICY_ID: str = "devwrap-internal-policy"

INTERNAL_ISSUER_MODULE: str = "internal"

# ============================================================================
# Listener Ports
# ============================================================================

DEFAULT_HTTP_PORT: int = 80
DEFAULT_HTTPS_PORT: int = 443

# Candidate (http, https) pairs for the self-managed proxy, in order
PRIVILEGED_PORT_PAIRS: tuple[tuple[int, int], ...] = ((80, 443), (8080, 8443))
UNPRIVILEGED_PORT_PAIRS: tuple[tuple[int, int], ...] = ((8080, 8443), (9080, 9443))

# ============================================================================
# Daemon Shutdown
# ============================================================================

DAEMON_STOP_TIMEOUT_SECONDS: float = 5.0
DAEMON_POLL_INTERVAL_SECONDS: float = 1.0

# ============================================================================
# Child Process Environment
# ============================================================================

# Placeholder replaced by the allocated port in command arguments
PORT_TEMPLATE: str = "@PORT"

ENV_PORT: str = "PORT"
ENV_APP: str = "DEVWRAP_APP"
ENV_HOST: str = "DEVWRAP_HOST"
