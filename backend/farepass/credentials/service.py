import logging
import time
from uuid import uuid4

from fastapi import HTTPException, status
from jose import jwt
from sqlmodel import Session

from ..core.crypto import load_device_public_key, server_private_key
from ..core.settings import settings
from ..models.Credential import CredentialClaims, IssuedCredential
from ..models.Device import Device

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400


def day_key_for(timestamp: int) -> int:
    return timestamp // SECONDS_PER_DAY


def register_device(session: Session, device_id: str, public_key_pem: str, now: int | None = None) -> Device:
    """
    Idempotent upsert of a device and its ECDSA public key.
    """
    try:
        load_device_public_key(public_key_pem)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid device public key: {e}")

    registered_at = int(time.time()) if now is None else now
    device = session.get(Device, device_id)
    if device:
        device.public_key = public_key_pem
        device.registered_at = registered_at
    else:
        device = Device(device_id=device_id, public_key=public_key_pem, registered_at=registered_at)

    session.add(device)
    session.commit()
    session.refresh(device)
    logger.info("Device registered: %s", device_id)
    return device


def issue_credential(session: Session, device_id: str, vehicle_id: str, now: int | None = None) -> IssuedCredential:
    """
    Signs a session credential binding session, device and vehicle.

    The device's current public key is embedded in the claims so an inspector
    can check the rotating proof without a lookup.
    """
    device = session.get(Device, device_id)
    if not device:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="device not registered")

    issued_at = int(time.time()) if now is None else now
    claims = CredentialClaims(
        issuer=settings.TOKEN_ISSUER,
        sessionId=str(uuid4()),
        vehicleId=vehicle_id,
        deviceId=device_id,
        validUntil=issued_at + settings.CREDENTIAL_TTL_SECONDS,
        devicePublicKey=device.public_key,
        dayKey=day_key_for(issued_at),
    )

    token = jwt.encode(claims.to_jwt_claims(), server_private_key(), algorithm=settings.ALGORITHM)
    return IssuedCredential(token=token, sessionId=claims.sessionId, vehicleId=claims.vehicleId)
