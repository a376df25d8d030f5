# farepass_cli/core/store.py
import json
import threading
import uuid
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Optional

from .config import SESSION_FILE


@dataclass
class ActiveSession:
    session_id: str
    token: str
    vehicle_id: str
    started_at: int


class SessionStore:
    """
    Device-local record of the device id, its registration and the active session.

    Backed by a JSON file. One instance is built at startup and handed to the
    controller and the commands that need it.
    """

    def __init__(self, path: Path = SESSION_FILE):
        self.path = Path(path)
        self._lock = threading.RLock()

    def _load(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError):
            # An unreadable file is treated as an empty store
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self, data: dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f)
        tmp_path.replace(self.path)

    def get_or_create_device_id(self) -> str:
        with self._lock:
            data = self._load()
            device_id = data.get("device_id")
            if not device_id:
                device_id = "dev-" + uuid.uuid4().hex[:8]
                data["device_id"] = device_id
                self._save(data)
            return device_id

    def is_registered(self) -> bool:
        with self._lock:
            return bool(self._load().get("registered"))

    def set_registered(self, registered: bool) -> None:
        with self._lock:
            data = self._load()
            data["registered"] = registered
            self._save(data)

    def active_session(self) -> Optional[ActiveSession]:
        with self._lock:
            raw = self._load().get("session")
            if not raw:
                return None
            try:
                return ActiveSession(**raw)
            except TypeError:
                return None

    def save_session(self, session: ActiveSession) -> None:
        with self._lock:
            data = self._load()
            data["session"] = asdict(session)
            self._save(data)

    def clear_session(self) -> None:
        with self._lock:
            data = self._load()
            if data.pop("session", None) is not None:
                self._save(data)
