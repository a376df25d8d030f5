from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse
from sqlmodel import Session

from ..core.crypto import server_public_key
from ..core.database import get_session
from ..credentials.service import register_device
from ..models.Device import DeviceRegister

router = APIRouter(tags=["devices"])

@router.post("/device/register")
def register(data: DeviceRegister, session: Session = Depends(get_session)):
    """
    Register (or re-register) a device public key.
    """
    register_device(session, data.deviceId, data.devicePubKeyPem)
    return {"ok": True}

@router.get("/.well-known/backend-public.pem", response_class=PlainTextResponse)
def backend_public_key():
    """
    Server signing key, unauthenticated so any inspector can bootstrap trust.
    """
    return PlainTextResponse(server_public_key(), media_type="application/x-pem-file")
