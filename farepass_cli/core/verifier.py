"""Offline verification of rotating proofs.

A proof is accepted only when three checks pass, in order:

1. the session credential carries a valid server signature and is not past
   its ``validUntil``;
2. the proof slot is within one slot of the inspector's clock;
3. the device signature over ``token|slot`` verifies with the public key
   embedded in the credential.

No network access happens here. The server key is fetched once (see
``load_trusted_server_key``) and reused for every scan.
"""
import logging
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import encode_dss_signature
from jose import JWTError, jwt

from .config import SERVER_KEY_FILE, SLOT_SECONDS
from .proof import RotatingProof, proof_payload, slot_for

logger = logging.getLogger(__name__)

SLOT_TOLERANCE = 1
RAW_P256_SIGNATURE_LENGTH = 64


class RejectReason(str, Enum):
    INVALID_SIGNATURE = "InvalidSignature"
    TOKEN_EXPIRED = "TokenExpired"
    SLOT_STALE = "SlotStale"
    MALFORMED_PROOF = "MalformedProof"


@dataclass(frozen=True)
class VerificationResult:
    accepted: bool
    reason: Optional[RejectReason] = None
    detail: str = ""
    session_id: Optional[str] = None
    device_id: Optional[str] = None
    vehicle_id: Optional[str] = None

    @classmethod
    def reject(cls, reason: RejectReason, detail: str) -> "VerificationResult":
        return cls(accepted=False, reason=reason, detail=detail)


def _der_signature(signature: bytes) -> bytes:
    # Browser WebCrypto emits raw r||s instead of DER
    if len(signature) == RAW_P256_SIGNATURE_LENGTH:
        half = RAW_P256_SIGNATURE_LENGTH // 2
        r = int.from_bytes(signature[:half], "big")
        s = int.from_bytes(signature[half:], "big")
        return encode_dss_signature(r, s)
    return signature


def verify_device_signature(device_public_key_pem: str, token: str, slot: int, signature: bytes) -> bool:
    try:
        public_key = serialization.load_pem_public_key(device_public_key_pem.encode("utf-8"))
    except ValueError:
        return False
    if not isinstance(public_key, ec.EllipticCurvePublicKey):
        return False

    try:
        public_key.verify(_der_signature(signature), proof_payload(token, slot), ec.ECDSA(hashes.SHA256()))
    except (InvalidSignature, ValueError):
        return False
    return True


class ProofVerifier:

    def __init__(
        self,
        server_public_key_pem: str,
        slot_seconds: int = SLOT_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.server_public_key_pem = server_public_key_pem
        self.slot_seconds = slot_seconds
        self.clock = clock

    def verify_scan(self, scanned: str, now: float | None = None) -> VerificationResult:
        """
        Verifies the scanned JSON text of a proof.
        """
        try:
            proof = RotatingProof.from_json(scanned)
        except ValueError as e:
            return VerificationResult.reject(RejectReason.MALFORMED_PROOF, str(e))
        return self.verify(proof, now)

    def verify(self, proof: RotatingProof, now: float | None = None) -> VerificationResult:
        now = self.clock() if now is None else now

        # 1. Credential: server signature, then validity window
        try:
            claims = jwt.decode(
                proof.token,
                self.server_public_key_pem,
                algorithms=["RS256"],
                options={"verify_aud": False},
            )
        except JWTError as e:
            return VerificationResult.reject(RejectReason.INVALID_SIGNATURE, f"credential signature invalid: {e}")

        valid_until = claims.get("validUntil")
        device_public_key = claims.get("devicePubKey")
        if not isinstance(valid_until, int) or not isinstance(device_public_key, str):
            return VerificationResult.reject(RejectReason.MALFORMED_PROOF, "credential claims incomplete")

        if now > valid_until:
            return VerificationResult.reject(RejectReason.TOKEN_EXPIRED, f"credential expired at {valid_until}")

        # 2. Slot freshness
        now_slot = slot_for(now, self.slot_seconds)
        if abs(proof.slot - now_slot) > SLOT_TOLERANCE:
            return VerificationResult.reject(
                RejectReason.SLOT_STALE, f"slot {proof.slot} outside {now_slot}±{SLOT_TOLERANCE}"
            )

        # 3. Device signature, with the key bound into the credential
        if not verify_device_signature(device_public_key, proof.token, proof.slot, proof.signature):
            return VerificationResult.reject(RejectReason.INVALID_SIGNATURE, "device signature invalid")

        return VerificationResult(
            accepted=True,
            session_id=claims.get("sessionId"),
            device_id=claims.get("deviceId"),
            vehicle_id=claims.get("vehicleId"),
        )


def load_trusted_server_key(
    fetch: Callable[[], str],
    key_file: Path = SERVER_KEY_FILE,
    refresh: bool = False,
) -> str:
    """
    Returns the cached server public key, fetching and caching it on first use.
    """
    key_file = Path(key_file)
    if key_file.exists() and not refresh:
        return key_file.read_text(encoding="utf-8")

    public_key_pem = fetch()
    serialization.load_pem_public_key(public_key_pem.encode("utf-8"))  # reject garbage before caching
    key_file.parent.mkdir(parents=True, exist_ok=True)
    key_file.write_text(public_key_pem, encoding="utf-8")
    logger.info("Cached backend public key in %s", key_file)
    return public_key_pem
