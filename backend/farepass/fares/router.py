import logging

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from ..core.database import get_session
from ..models.Fare import DeleteTripsRequest, FareTodayResponse, TripsTodayResponse
from .service import delete_trips_started_on_day, fare_for_day, today_key, trips_for_day

logger = logging.getLogger(__name__)

router = APIRouter(tags=["fares"])
debug_router = APIRouter(prefix="/debug", tags=["debug"])

@router.get("/fare/today", response_model=FareTodayResponse)
def fare_today(deviceId: str = Query(..., min_length=1), session: Session = Depends(get_session)):
    """
    Today's total for a device, with the daily cap applied.
    """
    fare = fare_for_day(session, deviceId, today_key())
    return FareTodayResponse(totalCents=fare.totalCents, capped=fare.capped)

@router.get("/trips/today", response_model=TripsTodayResponse)
def trips_today(deviceId: str = Query(..., min_length=1), session: Session = Depends(get_session)):
    """
    Completed trips of today with the full fare breakdown.
    """
    day = today_key()
    trips = trips_for_day(session, deviceId, day)
    fare = fare_for_day(session, deviceId, day)
    return TripsTodayResponse(
        trips=trips,
        tripCount=fare.tripCount,
        pricePerTrip=fare.pricePerTrip,
        subtotalCents=fare.subtotalCents,
        totalCents=fare.totalCents,
        capped=fare.capped,
        dayCap=fare.dayCap,
    )

@debug_router.post("/delete-today-trips")
def delete_today_trips(data: DeleteTripsRequest, session: Session = Depends(get_session)):
    deleted = delete_trips_started_on_day(session, data.deviceId, today_key())
    logger.warning("DEBUG: deleted %d trips for device %s", deleted, data.deviceId)
    return {"ok": True, "deletedCount": deleted}
