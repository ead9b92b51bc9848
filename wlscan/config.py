"""Scanner-wide settings. Each value can be overridden from the environment."""

import os


def _env_float(name, default):
    value = os.environ.get(name)
    return float(value) if value not in (None, "") else default


def _env_int(name, default):
    value = os.environ.get(name)
    return int(value) if value not in (None, "") else default


def _env_flag(name, default):
    value = os.environ.get(name)
    if value in (None, ""):
        return default
    return value not in ("0", "false", "False", "no")


# ==============================
# NETWORK TIMEOUTS (seconds)
# ==============================
CONNECT_TIMEOUT = _env_float("WLSCAN_CONNECT_TIMEOUT", 3.0)
STATUS_READ_TIMEOUT = _env_float("WLSCAN_STATUS_READ_TIMEOUT", 5.0)
LOGIN_READ_TIMEOUT = _env_float("WLSCAN_LOGIN_READ_TIMEOUT", 2.0)

# ==============================
# SCAN DEFAULTS
# ==============================
DEFAULT_PORT = 25565
DEFAULT_PORT_COUNT = 100
DEFAULT_PROFILE = "FAST"
MAX_ADDRESS_MULTIPLIER = 4
CANCEL_GRACE_SECONDS = 0.5
# How often the coordinating thread re-checks the cancel flag while waiting
WAIT_POLL_SECONDS = 0.1

# Login probe identity; usernames are capped at 16 characters by the game
PROBE_USERNAME_PREFIX = "WLTest_"
MAX_USERNAME_LENGTH = 16
# None tries every candidate protocol
MAX_LOGIN_ATTEMPTS = _env_int("WLSCAN_MAX_LOGIN_ATTEMPTS", None)

# ==============================
# PROTOCOL CATALOG
# ==============================
PROTOCOL_AUTO_UPDATE = _env_flag("WLSCAN_PROTOCOL_AUTO_UPDATE", False)
PROTOCOL_CACHE_PATH = os.environ.get(
    "WLSCAN_PROTOCOL_CACHE",
    os.path.join(os.path.expanduser("~"), ".cache", "wlscan", "protocol_cache.json"),
)
PROTOCOL_CACHE_TTL_SECONDS = 7 * 24 * 3600  # 7 days
REMOTE_PROTOCOL_URLS = [
    "https://raw.githubusercontent.com/PrismarineJS/minecraft-data/master/data/pc/common/protocolVersions.json",
]

# ==============================
# OUTPUT
# ==============================
LOG_FILE = os.environ.get("WLSCAN_LOG_FILE", "wlscan.log")
OUTPUT_FILENAME = "wlscan_results.txt"
