import json
import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Iterable, Optional

from .errors import RadioError

logger = logging.getLogger(__name__)

# (device name, rssi); either may be None when the radio stack reports a partial result
ScanCallback = Callable[[Optional[str], Optional[int]], None]


class RadioScanner(ABC):
    """
    Adapter over a platform radio stack.

    start() registers a callback that the stack invokes from its own thread
    for every advertisement it sees. It raises RadioError when the stack
    cannot be started (adapter off, missing permission, ...).
    """

    @abstractmethod
    def start(self, on_result: ScanCallback) -> None:
        ...

    @abstractmethod
    def stop(self) -> None:
        ...


class ReplayScanner(RadioScanner):
    """
    Replays recorded advertisements from JSON lines:

        {"name": "BUS_4711", "rssi": -60, "after": 1.0}

    `after` is the delay in seconds before the record is delivered.
    """

    def __init__(self, records: Iterable[str]):
        self._records = list(records)
        self._thread: threading.Thread | None = None
        self._stopping = threading.Event()

    @classmethod
    def from_file(cls, path: Path) -> "ReplayScanner":
        try:
            with open(path, "r", encoding="utf-8") as f:
                return cls(f.readlines())
        except OSError as e:
            raise RadioError(f"Cannot open scan feed {path}: {e}")

    def start(self, on_result: ScanCallback) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stopping.clear()
        self._thread = threading.Thread(
            target=self._run, args=(on_result,), name="replay-scanner", daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        self._stopping.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None

    def _run(self, on_result: ScanCallback) -> None:
        for line in self._records:
            line = line.strip()
            if not line:
                continue
            try:
                record = json.loads(line)
                delay = float(record.get("after", 0))
            except (ValueError, AttributeError):
                logger.debug("Skipping malformed scan record: %r", line)
                continue
            if self._stopping.wait(max(delay, 0.0)):
                return
            on_result(record.get("name"), record.get("rssi"))
