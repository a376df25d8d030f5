import logging
import threading
import time
from collections import defaultdict

from fastapi import HTTPException, status
from sqlalchemy import update
from sqlmodel import Session, col, select

from ..credentials.service import day_key_for, issue_credential
from ..fares.service import fare_for_day
from ..models.Credential import IssuedCredential
from ..models.RideSession import RideSession, SessionEndResponse

logger = logging.getLogger(__name__)

# One in-flight start per device. The server runs as a single process.
_device_locks: defaultdict[str, threading.Lock] = defaultdict(threading.Lock)
_device_locks_guard = threading.Lock()


def _lock_for(device_id: str) -> threading.Lock:
    with _device_locks_guard:
        return _device_locks[device_id]


def get_active_session(session: Session, device_id: str) -> RideSession | None:
    statement = select(RideSession).where(
        RideSession.device_id == device_id,
        col(RideSession.end_time).is_(None),
    )
    return session.exec(statement).first()


def start_session(session: Session, device_id: str, vehicle_id: str, now: int | None = None) -> IssuedCredential:
    """
    Issues a credential and opens a session for the device.

    A device holds at most one open session: a repeated start on the same
    vehicle (a retry, or an automatic and a manual start racing) returns the
    open session's credential instead of issuing a new one. A start on another
    vehicle is refused with 409 until the open session is ended.
    """
    with _lock_for(device_id):
        active = get_active_session(session, device_id)
        if active:
            if active.vehicle_id != vehicle_id:
                logger.warning(
                    "Device %s asked for %s while session %s is active on %s",
                    device_id, vehicle_id, active.session_id, active.vehicle_id,
                )
                raise HTTPException(
                    status_code=status.HTTP_409_CONFLICT,
                    detail=f"session {active.session_id} is active on {active.vehicle_id}",
                )
            logger.info("Device %s already has active session %s", device_id, active.session_id)
            return IssuedCredential(token=active.token, sessionId=active.session_id, vehicleId=active.vehicle_id)

        started_at = int(time.time()) if now is None else now
        credential = issue_credential(session, device_id, vehicle_id, now=started_at)

        ride = RideSession(
            session_id=credential.sessionId,
            device_id=device_id,
            vehicle_id=vehicle_id,
            token=credential.token,
            start_time=started_at,
        )
        session.add(ride)
        session.commit()

    logger.info("Session started: %s (device=%s vehicle=%s)", ride.session_id, device_id, vehicle_id)
    return credential


def end_session(session: Session, session_id: str, now: int | None = None) -> SessionEndResponse:
    """
    Closes a session and reports the device's fare for the day.

    The end time is written with a conditional update, so concurrent ends of
    the same session close it once and the others see alreadyEnded.
    """
    ride = session.get(RideSession, session_id)
    if not ride:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="session not found")
    if ride.end_time is not None:
        return SessionEndResponse(ok=True, alreadyEnded=True)

    ended_at = int(time.time()) if now is None else now
    statement = (
        update(RideSession)
        .where(RideSession.session_id == session_id, col(RideSession.end_time).is_(None))
        .values(end_time=ended_at)
    )
    result = session.connection().execute(statement)
    session.commit()
    if result.rowcount == 0:
        return SessionEndResponse(ok=True, alreadyEnded=True)

    fare = fare_for_day(session, ride.device_id, day_key_for(ended_at))
    logger.info(
        "Session ended: %s. Fare today: %d cents (capped=%s)",
        session_id, fare.totalCents, fare.capped,
    )
    return SessionEndResponse(ok=True, totalCents=fare.totalCents, capped=fare.capped)
