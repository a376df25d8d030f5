from typing import Optional
from uuid import uuid4

from sqlmodel import Field, SQLModel

class RideSession(SQLModel, table=True):
    __tablename__ = "sessions"

    session_id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    device_id: str = Field(index=True)
    vehicle_id: str
    token: str
    start_time: int
    end_time: Optional[int] = Field(default=None, index=True)  # set exactly once

# Properties to receive via API
class SessionStart(SQLModel):
    deviceId: str = Field(min_length=1, max_length=128)
    vehicleId: str = Field(min_length=1, max_length=128)

class SessionEnd(SQLModel):
    sessionId: str = Field(min_length=1)

# Properties to return via API
class SessionStartResponse(SQLModel):
    token: str
    sessionId: str
    vehicleId: str

class ActiveSessionResponse(SQLModel):
    token: str
    sessionId: str
    vehicleId: str
    startTime: int

class SessionEndResponse(SQLModel):
    ok: bool
    alreadyEnded: bool | None = None
    totalCents: int | None = None
    capped: bool | None = None
