"""Beacon proximity detection.

Turns a noisy stream of radio advertisements into two events: the rider has
been close to the vehicle beacon long enough (ProximityEntered), and the
beacon has been silent long enough (ProximityLost).
"""
import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional, Union

from . import config
from .errors import RadioError
from .radio import RadioScanner

logger = logging.getLogger(__name__)


class ProximityPhase(str, Enum):
    IDLE = "IDLE"  # nothing heard since the last reset
    TRACKING = "TRACKING"  # beacon heard, but below the threshold
    STABLE = "STABLE"  # at or above the threshold, stability timer running
    ACTIVE = "ACTIVE"  # entered or bound to a session


@dataclass
class ProximityConfig:
    beacon_name: str = field(default_factory=lambda: config.BEACON_NAME)
    rssi_threshold: int = field(default_factory=lambda: config.RSSI_THRESHOLD)
    stable_duration: float = field(default_factory=lambda: config.STABLE_DURATION)
    loss_timeout: float = field(default_factory=lambda: config.LOSS_TIMEOUT)
    tick_interval: float = field(default_factory=lambda: config.TICK_INTERVAL)
    radio_retry_base: float = field(default_factory=lambda: config.RADIO_RETRY_BASE)
    radio_max_attempts: int = field(default_factory=lambda: config.RADIO_MAX_ATTEMPTS)
    queue_size: int = 256


@dataclass
class ProximityState:
    last_seen_time: Optional[float] = None  # any matching advertisement
    last_signal_time: Optional[float] = None  # last advertisement at or above the threshold
    stable_since: Optional[float] = None
    current_session_id: Optional[str] = None
    entered: bool = False


@dataclass(frozen=True)
class ProximityEntered:
    beacon_name: str
    rssi: int
    at: float


@dataclass(frozen=True)
class ProximityLost:
    at: float
    silent_for: float


ProximityEvent = Union[ProximityEntered, ProximityLost]


@dataclass(frozen=True)
class _Observation:
    name: str
    rssi: int
    at: float


class ProximityMonitor:
    """
    Debounced beacon presence state machine.

    observe() and tick() hold the whole transition logic and take the current
    time as an argument. start() runs them from a radio scanner: a consumer
    thread drains a bounded queue of advertisements and a ticker thread checks
    the loss timeout every `tick_interval`, whether or not anything arrives.
    """

    def __init__(
        self,
        settings: ProximityConfig | None = None,
        on_event: Callable[[ProximityEvent], None] | None = None,
        on_status: Callable[[str], None] | None = None,
        scanner: RadioScanner | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings or ProximityConfig()
        self.on_event = on_event
        self.on_status = on_status
        self.scanner = scanner
        self.clock = clock
        self.state = ProximityState()

        self._lock = threading.Lock()
        self._queue: queue.Queue[_Observation] = queue.Queue(maxsize=self.settings.queue_size)
        self._stopping = threading.Event()
        self._threads: list[threading.Thread] = []
        self._scanner_started = False

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    @property
    def phase(self) -> ProximityPhase:
        with self._lock:
            if self._engaged():
                return ProximityPhase.ACTIVE
            if self.state.stable_since is not None:
                return ProximityPhase.STABLE
            if self.state.last_seen_time is not None:
                return ProximityPhase.TRACKING
            return ProximityPhase.IDLE

    def _engaged(self) -> bool:
        return self.state.entered or self.state.current_session_id is not None

    def observe(self, device_name: str, rssi: int, now: float) -> Optional[ProximityEntered]:
        """
        Feeds one advertisement. Returns (and dispatches) ProximityEntered when
        the beacon has been at or above the threshold for `stable_duration`.
        """
        settings = self.settings
        if settings.beacon_name.lower() not in device_name.lower():
            return None

        event = None
        with self._lock:
            state = self.state
            state.last_seen_time = now

            if rssi < settings.rssi_threshold:
                state.stable_since = None
                logger.debug("Beacon too far away (rssi=%d < %d)", rssi, settings.rssi_threshold)
                return None

            state.last_signal_time = now
            if state.stable_since is None:
                state.stable_since = now
                logger.info("Strong beacon detected (rssi=%d), starting stability timer", rssi)

            if now - state.stable_since >= settings.stable_duration and not self._engaged():
                logger.info("Beacon stable for %.1fs, entering", now - state.stable_since)
                state.entered = True
                state.stable_since = None
                event = ProximityEntered(beacon_name=device_name, rssi=rssi, at=now)

        self._dispatch(event)
        return event

    def tick(self, now: float) -> Optional[ProximityLost]:
        """
        Checks the loss timeout. Returns (and dispatches) ProximityLost once
        the beacon has been silent for more than `loss_timeout`.
        """
        event = None
        with self._lock:
            state = self.state
            if self._engaged() and state.last_signal_time is not None:
                silent_for = now - state.last_signal_time
            else:
                silent_for = 0.0
            if silent_for > self.settings.loss_timeout:
                logger.info("Beacon lost (silent for %.1fs)", silent_for)
                event = ProximityLost(at=now, silent_for=silent_for)
                self.state = ProximityState()

        self._dispatch(event)
        return event

    def bind_session(self, session_id: str) -> None:
        """
        Marks a session as active so no further ProximityEntered is emitted.
        """
        with self._lock:
            self.state.current_session_id = session_id
            self.state.entered = True

    def release_session(self) -> None:
        """
        Forgets the session and resets to IDLE; a new stable signal is needed to enter again.
        """
        with self._lock:
            self.state = ProximityState()

    def _dispatch(self, event: Optional[ProximityEvent]) -> None:
        if event is None or self.on_event is None:
            return
        try:
            self.on_event(event)
        except Exception:
            logger.exception("Proximity event handler failed for %s", event)

    def _report(self, status: str) -> None:
        logger.info("Proximity status: %s", status)
        if self.on_status:
            self.on_status(status)

    # ------------------------------------------------------------------
    # Runtime
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return bool(self._threads)

    def push(self, device_name: Optional[str], rssi: Optional[int]) -> None:
        """
        Radio callback. Malformed results and results that do not fit in the queue are dropped.
        """
        if not isinstance(device_name, str) or not device_name:
            return
        if isinstance(rssi, bool) or not isinstance(rssi, int):
            return
        try:
            self._queue.put_nowait(_Observation(device_name, rssi, self.clock()))
        except queue.Full:
            logger.debug("Observation queue full, dropping advertisement")

    def start(self) -> None:
        if self.running:
            return
        if self.scanner is None:
            raise RadioError("No radio scanner configured")

        self._stopping.clear()
        self._threads = [
            threading.Thread(target=self._start_radio, name="proximity-radio", daemon=True),
            threading.Thread(target=self._consume, name="proximity-consumer", daemon=True),
            threading.Thread(target=self._tick_loop, name="proximity-tick", daemon=True),
        ]
        for thread in self._threads:
            thread.start()

    def stop(self) -> None:
        """
        Halts both loops, releases the scanner and resets the state.
        An active session is left as it is.
        """
        if not self.running:
            return
        self._stopping.set()

        current = threading.current_thread()
        for thread in self._threads:
            if thread is not current:
                thread.join()
        self._threads = []

        # The radio thread has exited, so the flag no longer changes under us
        if self._scanner_started:
            self.scanner.stop()
            self._scanner_started = False

        while not self._queue.empty():
            self._queue.get_nowait()
        with self._lock:
            self.state = ProximityState()
        self._report("stopped")

    def _start_radio(self) -> None:
        settings = self.settings
        for attempt in range(settings.radio_max_attempts):
            if self._stopping.is_set():
                return
            try:
                self.scanner.start(self.push)
            except (RadioError, OSError) as e:
                if attempt + 1 >= settings.radio_max_attempts:
                    break
                delay = settings.radio_retry_base * 2 ** attempt
                self._report(
                    f"Radio error: {e}. Retrying in {delay:g}s "
                    f"(attempt {attempt + 1}/{settings.radio_max_attempts})"
                )
                if self._stopping.wait(delay):
                    return
                continue

            if self._stopping.is_set():
                # stop() arrived while the radio was starting
                self.scanner.stop()
                return
            self._scanner_started = True
            self._report(f"Scanning for {settings.beacon_name}...")
            return

        self._report(f"fatal: radio unavailable after {settings.radio_max_attempts} attempts")

    def _consume(self) -> None:
        while not self._stopping.is_set():
            try:
                observation = self._queue.get(timeout=0.1)
            except queue.Empty:
                continue
            self.observe(observation.name, observation.rssi, observation.at)

    def _tick_loop(self) -> None:
        while not self._stopping.wait(self.settings.tick_interval):
            self.tick(self.clock())
