import base64
import json
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from .config import SLOT_SECONDS
from .keystore import DeviceKeystore

logger = logging.getLogger(__name__)


def slot_for(timestamp: float, slot_seconds: int = SLOT_SECONDS) -> int:
    return int(timestamp // slot_seconds)


def proof_payload(token: str, slot: int) -> bytes:
    """
    The exact bytes the device signs: token + "|" + slot.
    """
    return f"{token}|{slot}".encode("utf-8")


@dataclass(frozen=True)
class RotatingProof:
    token: str
    slot: int
    signature: bytes

    def to_wire(self) -> dict:
        return {
            "token": self.token,
            "slot": self.slot,
            "sig": base64.b64encode(self.signature).decode("utf-8"),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_wire())

    @classmethod
    def from_json(cls, text: str) -> "RotatingProof":
        """
        Parses the scanned wire form. Raises ValueError on anything malformed.
        """
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ValueError(f"proof is not JSON: {e}")
        if not isinstance(data, dict):
            raise ValueError("proof must be a JSON object")

        token, slot, sig = data.get("token"), data.get("slot"), data.get("sig")
        if not isinstance(token, str) or not token:
            raise ValueError("proof token missing")
        if isinstance(slot, bool) or not isinstance(slot, int):
            raise ValueError("proof slot must be an integer")
        if not isinstance(sig, str) or not sig:
            raise ValueError("proof signature missing")
        try:
            signature = base64.b64decode(sig, validate=True)
        except (ValueError, TypeError) as e:
            raise ValueError(f"proof signature is not base64: {e}")
        return cls(token=token, slot=slot, signature=signature)


class ProofGenerator:
    """
    Regenerates the device's freshness proof at every slot boundary.

    Signing is local; only the latest proof is kept.
    """

    def __init__(
        self,
        keystore: DeviceKeystore,
        token_provider: Callable[[], Optional[str]],
        on_proof: Callable[[RotatingProof], None] | None = None,
        slot_seconds: int = SLOT_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.keystore = keystore
        self.token_provider = token_provider
        self.on_proof = on_proof
        self.slot_seconds = slot_seconds
        self.clock = clock

        self._current: Optional[RotatingProof] = None
        self._lock = threading.Lock()
        self._stopping = threading.Event()
        self._thread: threading.Thread | None = None

    def generate(self, now: float | None = None) -> Optional[RotatingProof]:
        """
        Signs token|slot for the slot containing `now`. Returns None when no session token is available.
        """
        token = self.token_provider()
        if not token:
            with self._lock:
                self._current = None
            return None

        now = self.clock() if now is None else now
        slot = slot_for(now, self.slot_seconds)
        proof = RotatingProof(token=token, slot=slot, signature=self.keystore.sign(proof_payload(token, slot)))
        with self._lock:
            self._current = proof
        logger.debug("Generated proof for slot %d", slot)
        return proof

    def current(self) -> Optional[RotatingProof]:
        with self._lock:
            return self._current

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stopping.clear()
        self._thread = threading.Thread(target=self._run, name="proof-generator", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stopping.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join()
        self._thread = None
        with self._lock:
            self._current = None

    def _run(self) -> None:
        while not self._stopping.is_set():
            proof = self.generate()
            if proof is not None and self.on_proof:
                try:
                    self.on_proof(proof)
                except Exception:
                    logger.exception("Proof display callback failed")

            # Sleep until the next slot boundary
            now = self.clock()
            next_boundary = (slot_for(now, self.slot_seconds) + 1) * self.slot_seconds
            if self._stopping.wait(max(next_boundary - now, 0.01)):
                return
