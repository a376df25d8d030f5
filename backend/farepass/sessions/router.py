from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlmodel import Session

from ..core.database import get_session
from ..models.RideSession import (
    ActiveSessionResponse,
    SessionEnd,
    SessionEndResponse,
    SessionStart,
    SessionStartResponse,
)
from . import service

router = APIRouter(prefix="/session", tags=["sessions"])

@router.post("/start", response_model=SessionStartResponse)
def start(data: SessionStart, session: Session = Depends(get_session)):
    """
    Start a ride session and receive its signed credential.
    """
    credential = service.start_session(session, data.deviceId, data.vehicleId)
    return SessionStartResponse(
        token=credential.token,
        sessionId=credential.sessionId,
        vehicleId=credential.vehicleId,
    )

@router.get("/active", response_model=ActiveSessionResponse)
def active(deviceId: str = Query(..., min_length=1), session: Session = Depends(get_session)):
    """
    The device's open session, if any. Lets a client confirm whether a start went through.
    """
    ride = service.get_active_session(session, deviceId)
    if not ride:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="no active session")
    return ActiveSessionResponse(
        token=ride.token,
        sessionId=ride.session_id,
        vehicleId=ride.vehicle_id,
        startTime=ride.start_time,
    )

@router.post("/end", response_model=SessionEndResponse, response_model_exclude_none=True)
def end(data: SessionEnd, session: Session = Depends(get_session)):
    """
    End a ride session. Ending an already ended session is a no-op.
    """
    return service.end_session(session, data.sessionId)
