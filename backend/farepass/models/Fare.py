from sqlmodel import SQLModel

class FareBreakdown(SQLModel):
    tripCount: int
    pricePerTrip: int
    subtotalCents: int
    totalCents: int
    capped: bool
    dayCap: int

class FareTodayResponse(SQLModel):
    totalCents: int
    capped: bool

class Trip(SQLModel):
    sessionId: str
    vehicleId: str
    startTime: int
    endTime: int

class TripsTodayResponse(SQLModel):
    trips: list[Trip]
    tripCount: int
    pricePerTrip: int
    subtotalCents: int
    totalCents: int
    capped: bool
    dayCap: int

class DeleteTripsRequest(SQLModel):
    deviceId: str
