from pathlib import Path
from typing import Tuple

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa

from .settings import settings

PRIVATE_KEY_FILE = "private.pem"
PUBLIC_KEY_FILE = "public.pem"


def generate_rsa_keypair(key_size: int = 2048) -> Tuple[bytes, bytes]:
    """
    Generates the server signing key pair.
    Returns (private_pem, public_pem) as bytes.
    """
    private_key = rsa.generate_private_key(
        public_exponent=65537,
        key_size=key_size,
    )

    # Export private key in PEM format (PKCS8, unencrypted, file permissions protect it)
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )

    # Export public key in PEM format (SubjectPublicKeyInfo)
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )

    return private_pem, public_pem


def write_server_keys(keys_dir: Path) -> Tuple[str, str]:
    keys_dir.mkdir(parents=True, exist_ok=True)
    private_pem, public_pem = generate_rsa_keypair()
    private_path = keys_dir / PRIVATE_KEY_FILE
    private_path.write_bytes(private_pem)
    private_path.chmod(0o600)
    (keys_dir / PUBLIC_KEY_FILE).write_bytes(public_pem)
    return private_pem.decode("utf-8"), public_pem.decode("utf-8")


def load_server_keys() -> Tuple[str, str]:
    """
    Resolves the server key pair: explicit settings first, then the PEM files in KEYS_DIR.
    Raises FileNotFoundError when neither is available.
    """
    if settings.SERVER_PRIVATE_KEY and settings.SERVER_PUBLIC_KEY:
        return settings.SERVER_PRIVATE_KEY, settings.SERVER_PUBLIC_KEY

    keys_dir = Path(settings.KEYS_DIR)
    private_path = keys_dir / PRIVATE_KEY_FILE
    public_path = keys_dir / PUBLIC_KEY_FILE
    if not private_path.exists() or not public_path.exists():
        raise FileNotFoundError(f"Server keys not found in {keys_dir}")

    return private_path.read_text(encoding="utf-8"), public_path.read_text(encoding="utf-8")


def server_private_key() -> str:
    return load_server_keys()[0]


def server_public_key() -> str:
    return load_server_keys()[1]


def load_device_public_key(public_key_pem: str) -> ec.EllipticCurvePublicKey:
    """
    Parses a device public key (PEM SPKI) and checks it is ECDSA over P-256.
    Raises ValueError otherwise.
    """
    public_key = serialization.load_pem_public_key(public_key_pem.encode("utf-8"))
    if not isinstance(public_key, ec.EllipticCurvePublicKey):
        raise ValueError("device key must be an EC public key")
    if not isinstance(public_key.curve, ec.SECP256R1):
        raise ValueError(f"unsupported curve {public_key.curve.name}, expected secp256r1")
    return public_key
