from sqlmodel import Field, SQLModel

# ==========================================
# SQLModel (Database Entity)
# ==========================================
class Device(SQLModel, table=True):
    __tablename__ = "devices"

    device_id: str = Field(primary_key=True)
    public_key: str  # PEM SPKI, ECDSA P-256
    registered_at: int  # epoch seconds, refreshed on re-registration

# ==========================================
# Pydantic Models (DTOs)
# ==========================================

# Properties to receive via API on registration
class DeviceRegister(SQLModel):
    deviceId: str = Field(min_length=1, max_length=128)
    devicePubKeyPem: str = Field(min_length=1)
