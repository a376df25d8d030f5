from pydantic import BaseModel, ConfigDict, Field
from sqlmodel import SQLModel

class CredentialClaims(BaseModel):
    """
    Claim set of a session credential. Serialized with the JWT claim names
    (iss, devicePubKey) so any RS256 verifier can read it.
    """
    model_config = ConfigDict(populate_by_name=True)

    issuer: str = Field(alias="iss")
    sessionId: str
    vehicleId: str
    deviceId: str
    validUntil: int  # epoch seconds
    devicePublicKey: str = Field(alias="devicePubKey")
    dayKey: int

    def to_jwt_claims(self) -> dict:
        return self.model_dump(by_alias=True)

class IssuedCredential(SQLModel):
    token: str
    sessionId: str
    vehicleId: str
