# farepass_cli/core/config.py
from pathlib import Path
import os

# FarePass backend URL
BASE_URL = os.environ.get("FAREPASS_URL", "http://localhost:8000")

# HTTP timeout (seconds) and bounded retries for idempotent calls
REQUEST_TIMEOUT = float(os.environ.get("FAREPASS_TIMEOUT", "5"))
MAX_NETWORK_ATTEMPTS = int(os.environ.get("FAREPASS_NETWORK_ATTEMPTS", "3"))

# Local device data (keys, session state, cached server key)
APP_DIR = Path(os.environ.get("FAREPASS_HOME", str(Path.home() / ".farepass")))

SESSION_FILE = APP_DIR / "session.json"
DEVICE_KEY_FILE = APP_DIR / "device_key.pem"
SERVER_KEY_FILE = APP_DIR / "backend_public.pem"

# Beacon advertised by the vehicle
BEACON_NAME = os.environ.get("FAREPASS_BEACON_NAME", "BUS_4711")

# Proximity thresholds
RSSI_THRESHOLD = int(os.environ.get("FAREPASS_RSSI_THRESHOLD", "-65"))  # dBm
STABLE_DURATION = float(os.environ.get("FAREPASS_STABLE_DURATION", "10"))  # seconds
LOSS_TIMEOUT = float(os.environ.get("FAREPASS_LOSS_TIMEOUT", "20"))  # seconds
TICK_INTERVAL = float(os.environ.get("FAREPASS_TICK_INTERVAL", "1"))  # seconds

# Radio start retries: RADIO_RETRY_BASE * 2**attempt, RADIO_MAX_ATTEMPTS times
RADIO_RETRY_BASE = float(os.environ.get("FAREPASS_RADIO_RETRY_BASE", "3"))
RADIO_MAX_ATTEMPTS = int(os.environ.get("FAREPASS_RADIO_MAX_ATTEMPTS", "5"))

# Rotating proof slot width
SLOT_SECONDS = 30


def ensure_app_dir() -> Path:
    APP_DIR.mkdir(parents=True, exist_ok=True)
    return APP_DIR
