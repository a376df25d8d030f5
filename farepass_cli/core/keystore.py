import logging
import threading
from pathlib import Path

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import load_pem_private_key

from .config import DEVICE_KEY_FILE

logger = logging.getLogger(__name__)


def generate_ec_keypair() -> ec.EllipticCurvePrivateKey:
    """
    Generates an ECDSA P-256 private key.
    """
    return ec.generate_private_key(ec.SECP256R1())


def public_key_to_pem(public_key: ec.EllipticCurvePublicKey) -> str:
    return public_key.public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("utf-8")


class DeviceKeystore:
    """
    File-backed store for the device signing key.

    The private key never leaves this object: callers get the public key
    in PEM form and ask the keystore to sign.
    """

    def __init__(self, key_file: Path = DEVICE_KEY_FILE):
        self.key_file = Path(key_file)
        self._private_key: ec.EllipticCurvePrivateKey | None = None
        self._lock = threading.Lock()

    def get_or_create(self) -> None:
        with self._lock:
            if self._private_key is not None:
                return

            if self.key_file.exists():
                private_key = load_pem_private_key(self.key_file.read_bytes(), password=None)
                if not isinstance(private_key, ec.EllipticCurvePrivateKey):
                    raise ValueError(f"{self.key_file} does not hold an EC private key")
                self._private_key = private_key
                return

            logger.info("Generating new ECDSA P-256 device key...")
            private_key = generate_ec_keypair()
            self.key_file.parent.mkdir(parents=True, exist_ok=True)
            self.key_file.write_bytes(
                private_key.private_bytes(
                    encoding=serialization.Encoding.PEM,
                    format=serialization.PrivateFormat.PKCS8,
                    encryption_algorithm=serialization.NoEncryption(),
                )
            )
            self.key_file.chmod(0o600)
            self._private_key = private_key

    def public_key_pem(self) -> str:
        self.get_or_create()
        return public_key_to_pem(self._private_key.public_key())

    def sign(self, data: bytes) -> bytes:
        """
        ECDSA/SHA-256 signature over data, DER encoded.
        """
        self.get_or_create()
        return self._private_key.sign(data, ec.ECDSA(hashes.SHA256()))
