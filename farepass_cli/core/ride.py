import logging
from typing import Callable, Optional

from .controller import SessionController, SessionState
from .errors import FarePassError
from .proof import ProofGenerator
from .proximity import ProximityEntered, ProximityEvent, ProximityLost, ProximityMonitor

logger = logging.getLogger(__name__)


class RideCoordinator:
    """
    Connects the proximity monitor to the session controller and keeps the
    proof generator running exactly while a session is active.
    """

    def __init__(
        self,
        controller: SessionController,
        monitor: ProximityMonitor,
        generator: ProofGenerator,
        vehicle_id: Optional[str] = None,
        on_status: Callable[[str], None] | None = None,
    ):
        self.controller = controller
        self.monitor = monitor
        self.generator = generator
        self.vehicle_id = vehicle_id or monitor.settings.beacon_name
        self.on_status = on_status

        monitor.on_event = self.handle_event
        controller.add_listener(self._on_state)

    def _report(self, status: str) -> None:
        if self.on_status:
            self.on_status(status)

    def start(self) -> None:
        session_id = self.controller.active_session_id()
        if session_id:
            self.monitor.bind_session(session_id)
            self.generator.start()
        self.monitor.start()

    def stop(self) -> None:
        """
        Stops scanning and proof rotation. The session itself stays open.
        """
        self.monitor.stop()
        self.generator.stop()

    def handle_event(self, event: ProximityEvent) -> None:
        if isinstance(event, ProximityEntered):
            try:
                session_id = self.controller.start(self.vehicle_id, trigger="proximity")
            except FarePassError as e:
                self.monitor.release_session()
                self._report(f"Session start failed: {e.message}")
                return
            self._report(f"Session started: {session_id}")

        elif isinstance(event, ProximityLost):
            session_id = self.controller.active_session_id()
            if not session_id:
                return
            try:
                result = self.controller.end(session_id, trigger="proximity")
            except FarePassError as e:
                logger.error("Automatic end of session %s failed: %s", session_id, e)
                self._report(f"Beacon lost but session end failed: {e.message}. End the ride manually.")
                return
            if result.already_ended:
                self._report("Beacon lost. Session was already ended.")
            else:
                self._report(f"Beacon lost. Session ended. Fare today: {result.total_cents} cents"
                             + (" (capped)" if result.capped else ""))

    def _on_state(self, state: SessionState, session_id: Optional[str]) -> None:
        if state == SessionState.ACTIVE and session_id:
            self.monitor.bind_session(session_id)
            self.generator.start()
        elif state in (SessionState.NO_SESSION, SessionState.START_FAILED):
            self.generator.stop()
            self.monitor.release_session()
