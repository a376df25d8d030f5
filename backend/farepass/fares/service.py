import time
from typing import List, Tuple

from sqlalchemy import delete, func
from sqlmodel import Session, col, select

from ..core.settings import settings
from ..credentials.service import SECONDS_PER_DAY, day_key_for
from ..models.Fare import FareBreakdown, Trip
from ..models.RideSession import RideSession


def today_key() -> int:
    return day_key_for(int(time.time()))


def day_bounds(day_key: int) -> Tuple[int, int]:
    """
    UTC calendar day [start, end) in epoch seconds.
    """
    day_start = day_key * SECONDS_PER_DAY
    return day_start, day_start + SECONDS_PER_DAY


def compute_fare(trip_count: int, price_per_trip: int | None = None, day_cap: int | None = None) -> FareBreakdown:
    """
    Applies the per-trip price and the daily cap to a trip count.
    """
    price = settings.PRICE_PER_SESSION if price_per_trip is None else price_per_trip
    cap = settings.DAILY_CAP if day_cap is None else day_cap

    subtotal = trip_count * price
    return FareBreakdown(
        tripCount=trip_count,
        pricePerTrip=price,
        subtotalCents=subtotal,
        totalCents=min(subtotal, cap),
        capped=subtotal > cap,
        dayCap=cap,
    )


def _completed_on_day(device_id: str, day_key: int):
    day_start, day_end = day_bounds(day_key)
    return (
        RideSession.device_id == device_id,
        col(RideSession.end_time).is_not(None),
        RideSession.end_time >= day_start,
        RideSession.end_time < day_end,
    )


def fare_for_day(session: Session, device_id: str, day_key: int) -> FareBreakdown:
    """
    Counts the device's sessions that ended within the day and prices them.
    """
    statement = select(func.count()).select_from(RideSession).where(*_completed_on_day(device_id, day_key))
    trip_count = session.exec(statement).one()
    return compute_fare(trip_count)


def trips_for_day(session: Session, device_id: str, day_key: int) -> List[Trip]:
    statement = (
        select(RideSession)
        .where(*_completed_on_day(device_id, day_key))
        .order_by(RideSession.start_time)
    )
    return [
        Trip(sessionId=s.session_id, vehicleId=s.vehicle_id, startTime=s.start_time, endTime=s.end_time)
        for s in session.exec(statement).all()
    ]


def delete_trips_started_on_day(session: Session, device_id: str, day_key: int) -> int:
    day_start, day_end = day_bounds(day_key)
    statement = delete(RideSession).where(
        RideSession.device_id == device_id,
        RideSession.start_time >= day_start,
        RideSession.start_time < day_end,
    )
    result = session.connection().execute(statement)
    session.commit()
    return result.rowcount
