from .config import DEVICE_KEY_FILE, SESSION_FILE, ensure_app_dir
from .controller import SessionController
from .keystore import DeviceKeystore
from .store import SessionStore


def open_store() -> SessionStore:
    ensure_app_dir()
    return SessionStore(SESSION_FILE)


def open_keystore() -> DeviceKeystore:
    ensure_app_dir()
    return DeviceKeystore(DEVICE_KEY_FILE)


def build_controller() -> SessionController:
    """
    The device's controller, wired to the local store, the keystore and the backend API.
    """
    return SessionController(open_store(), open_keystore())
