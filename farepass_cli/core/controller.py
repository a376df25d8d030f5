"""Ride session lifecycle on the rider device.

NO_SESSION -> STARTING -> ACTIVE -> ENDING -> NO_SESSION, with START_FAILED
when a start attempt fails (the next start leaves it again).

Every start and end for a device runs under one per-device mutex, so an
automatic start from the proximity monitor and a manual start from the user
can never both obtain a credential.
"""
import logging
import threading
import time
from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from . import api as default_api
from .config import MAX_NETWORK_ATTEMPTS
from .errors import (
    DeviceNotRegistered,
    FarePassError,
    NetworkUnavailable,
    SessionAlreadyActive,
    SessionNotFound,
)
from .keystore import DeviceKeystore
from .store import ActiveSession, SessionStore

logger = logging.getLogger(__name__)

_device_locks: defaultdict[str, threading.Lock] = defaultdict(threading.Lock)
_device_locks_guard = threading.Lock()


def _lock_for(device_id: str) -> threading.Lock:
    with _device_locks_guard:
        return _device_locks[device_id]


class SessionState(str, Enum):
    NO_SESSION = "NO_SESSION"
    STARTING = "STARTING"
    ACTIVE = "ACTIVE"
    ENDING = "ENDING"
    START_FAILED = "START_FAILED"


@dataclass(frozen=True)
class EndResult:
    ok: bool
    already_ended: bool = False
    total_cents: Optional[int] = None
    capped: Optional[bool] = None


StateListener = Callable[[SessionState, Optional[str]], None]


class SessionController:

    def __init__(
        self,
        store: SessionStore,
        keystore: DeviceKeystore,
        api=default_api,
        max_attempts: int = MAX_NETWORK_ATTEMPTS,
        retry_delay: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.keystore = keystore
        self.api = api
        self.max_attempts = max(1, max_attempts)
        self.retry_delay = retry_delay
        self.sleep = sleep

        self.device_id = store.get_or_create_device_id()
        self._lock = _lock_for(self.device_id)
        self._state = SessionState.ACTIVE if store.active_session() else SessionState.NO_SESSION
        self._listeners: list[StateListener] = []
        self.last_error: Optional[FarePassError] = None

    @property
    def state(self) -> SessionState:
        return self._state

    def active_session_id(self) -> Optional[str]:
        session = self.store.active_session()
        return session.session_id if session else None

    def active_token(self) -> Optional[str]:
        session = self.store.active_session()
        return session.token if session else None

    def add_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def _set_state(self, state: SessionState, session_id: Optional[str] = None) -> None:
        logger.debug("Session state %s -> %s", self._state.value, state.value)
        self._state = state
        for listener in self._listeners:
            listener(state, session_id)

    # ------------------------------------------------------------------
    # Start
    # ------------------------------------------------------------------

    def start(self, vehicle_id: str, trigger: str = "manual") -> str:
        """
        Starts a session on the vehicle and returns its id.

        If a session is already active on the vehicle its id is returned and no
        credential is requested; an active session on another vehicle raises
        SessionAlreadyActive. Raises a FarePassError (DeviceNotRegistered,
        NetworkUnavailable, ...) when the start fails.
        """
        with self._lock:
            existing = self.store.active_session()
            if existing:
                if existing.vehicle_id != vehicle_id:
                    raise SessionAlreadyActive(
                        f"Session {existing.session_id} is active on {existing.vehicle_id}; end it first"
                    )
                logger.info("Start (%s) ignored, session %s already active", trigger, existing.session_id)
                return existing.session_id

            self._set_state(SessionState.STARTING)
            logger.info("Starting session on %s (trigger=%s)...", vehicle_id, trigger)
            try:
                credential = self._request_credential(vehicle_id)
            except FarePassError as e:
                self.last_error = e
                logger.error("Session start failed: %s", e)
                self._set_state(SessionState.START_FAILED)
                raise

            session = ActiveSession(
                session_id=credential["sessionId"],
                token=credential["token"],
                vehicle_id=credential["vehicleId"],
                started_at=int(time.time()),
            )
            self.store.save_session(session)
            self.last_error = None
            self._set_state(SessionState.ACTIVE, session.session_id)
            logger.info("Session started: %s", session.session_id)
            return session.session_id

    def _register(self) -> None:
        public_key_pem = self.keystore.public_key_pem()
        self._with_retry(lambda: self.api.api_register_device(self.device_id, public_key_pem))
        self.store.set_registered(True)
        logger.info("Device registered: %s", self.device_id)

    def _request_credential(self, vehicle_id: str) -> dict:
        if not self.store.is_registered():
            self._register()

        reregistered = False
        retrying = False
        attempt = 0
        while True:
            try:
                if retrying:
                    # The previous request may have reached the server; adopt what it issued
                    active = self.api.api_get_active_session(self.device_id)
                    if active and active["vehicleId"] != vehicle_id:
                        raise SessionAlreadyActive(
                            f"Session {active['sessionId']} is active on {active['vehicleId']}; end it first"
                        )
                    if active:
                        logger.info("Adopting session %s issued by an earlier attempt", active["sessionId"])
                        return active
                return self.api.api_start_session(self.device_id, vehicle_id)
            except DeviceNotRegistered:
                if reregistered:
                    raise
                logger.warning("Backend does not know device %s, registering again", self.device_id)
                self.store.set_registered(False)
                self._register()
                reregistered = True
            except NetworkUnavailable as e:
                attempt += 1
                logger.warning("Session start attempt %d/%d failed: %s", attempt, self.max_attempts, e)
                if attempt >= self.max_attempts:
                    raise
                retrying = True
                self.sleep(self.retry_delay * 2 ** (attempt - 1))

    # ------------------------------------------------------------------
    # End
    # ------------------------------------------------------------------

    def end(self, session_id: Optional[str] = None, trigger: str = "manual") -> EndResult:
        """
        Ends the given session (default: the active one).

        Ending a session twice is not an error: the second call returns
        already_ended=True. Raises SessionNotFound for unknown sessions.
        """
        with self._lock:
            local = self.store.active_session()
            if session_id is None:
                if local is None:
                    raise SessionNotFound("No active session")
                session_id = local.session_id
            ours = local is not None and local.session_id == session_id

            previous = self._state
            if ours:
                self._set_state(SessionState.ENDING, session_id)
            logger.info("Ending session %s (trigger=%s)...", session_id, trigger)
            try:
                response = self._with_retry(lambda: self.api.api_end_session(session_id))
            except SessionNotFound:
                if ours:
                    # The backend has no record of it; drop the stale local copy
                    self.store.clear_session()
                    self._set_state(SessionState.NO_SESSION, session_id)
                raise
            except FarePassError as e:
                logger.error("Session end failed: %s", e)
                if ours:
                    self._set_state(previous, session_id)
                raise

            if ours:
                self.store.clear_session()
                self._set_state(SessionState.NO_SESSION, session_id)

        result = EndResult(
            ok=bool(response.get("ok")),
            already_ended=bool(response.get("alreadyEnded", False)),
            total_cents=response.get("totalCents"),
            capped=response.get("capped"),
        )
        if result.already_ended:
            logger.info("Session %s was already ended", session_id)
        else:
            logger.info("Session ended. Fare today: %s cents, capped: %s", result.total_cents, result.capped)
        return result

    def _with_retry(self, call):
        """
        Bounded retry for idempotent backend calls.
        """
        for attempt in range(self.max_attempts):
            try:
                return call()
            except NetworkUnavailable as e:
                if attempt + 1 >= self.max_attempts:
                    raise
                logger.warning("Network error (attempt %d/%d): %s", attempt + 1, self.max_attempts, e)
                self.sleep(self.retry_delay * 2 ** attempt)
