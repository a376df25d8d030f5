"""Shared fixtures for the test modules (keys, fake backend, in-memory database)."""
import threading
import time
from functools import lru_cache

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from jose import jwt
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine

from farepass.core.crypto import generate_rsa_keypair
from farepass.models.Device import Device  # noqa: F401 registers the table
from farepass.models.RideSession import RideSession  # noqa: F401
from farepass_cli.core.errors import DeviceNotRegistered, SessionAlreadyActive, SessionNotFound


@lru_cache(maxsize=1)
def server_keys() -> tuple[str, str]:
    private_pem, public_pem = generate_rsa_keypair()
    return private_pem.decode("utf-8"), public_pem.decode("utf-8")


def device_public_pem(private_key: ec.EllipticCurvePrivateKey) -> str:
    return private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("utf-8")


def make_credential(device_public_key_pem: str, valid_until: int, private_pem: str | None = None, **overrides) -> str:
    claims = {
        "iss": "farepass-backend",
        "sessionId": "sess-1",
        "vehicleId": "BUS_4711",
        "deviceId": "dev-test",
        "validUntil": valid_until,
        "devicePubKey": device_public_key_pem,
        "dayKey": valid_until // 86400,
    }
    claims.update(overrides)
    return jwt.encode(claims, private_pem or server_keys()[0], algorithm="RS256")


def memory_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    return engine


class FakeBackend:
    """
    Stands in for farepass_cli.core.api: same function names, in-memory state.
    """

    def __init__(self, start_delay: float = 0.0):
        self.start_delay = start_delay
        self.registered: dict[str, str] = {}
        self.sessions: dict[str, dict] = {}
        self.start_calls = 0
        self.register_calls = 0
        self.end_calls = 0
        self.fail_start_with: list[Exception] = []
        self.fail_end_with: list[Exception] = []
        self.issue_before_failing = False
        self._lock = threading.Lock()
        self._counter = 0

    def api_register_device(self, device_id, public_key_pem):
        with self._lock:
            self.register_calls += 1
            self.registered[device_id] = public_key_pem

    def _issue(self, device_id, vehicle_id):
        self._counter += 1
        session_id = f"sess-{self._counter}"
        self.sessions[session_id] = {
            "deviceId": device_id,
            "vehicleId": vehicle_id,
            "token": f"token-{self._counter}",
            "ended": False,
        }
        return {"token": f"token-{self._counter}", "sessionId": session_id, "vehicleId": vehicle_id}

    def _open_session(self, device_id):
        for session_id, s in self.sessions.items():
            if s["deviceId"] == device_id and not s["ended"]:
                return {"token": s["token"], "sessionId": session_id, "vehicleId": s["vehicleId"]}
        return None

    def api_start_session(self, device_id, vehicle_id):
        with self._lock:
            self.start_calls += 1
            failure = self.fail_start_with.pop(0) if self.fail_start_with else None
        if self.start_delay:
            time.sleep(self.start_delay)
        with self._lock:
            if failure is not None:
                if self.issue_before_failing:
                    self._issue(device_id, vehicle_id)
                raise failure
            if device_id not in self.registered:
                raise DeviceNotRegistered(f"Device {device_id} is not registered")
            open_session = self._open_session(device_id)
            if open_session and open_session["vehicleId"] != vehicle_id:
                raise SessionAlreadyActive(f"Cannot start on {vehicle_id}: session is active on another vehicle")
            return open_session or self._issue(device_id, vehicle_id)

    def api_get_active_session(self, device_id):
        with self._lock:
            open_session = self._open_session(device_id)
            return dict(open_session, startTime=0) if open_session else None

    def api_end_session(self, session_id):
        with self._lock:
            self.end_calls += 1
            if self.fail_end_with:
                raise self.fail_end_with.pop(0)
            session = self.sessions.get(session_id)
            if session is None:
                raise SessionNotFound(f"Session {session_id} not found")
            if session["ended"]:
                return {"ok": True, "alreadyEnded": True}
            session["ended"] = True
            ended = sum(1 for s in self.sessions.values() if s["ended"])
            return {"ok": True, "totalCents": min(ended * 300, 800), "capped": ended * 300 > 800}
