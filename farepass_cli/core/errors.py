class FarePassError(Exception):
    """
    Base error for device-side operations. `code` names the failure kind.
    """
    code = "FarePassError"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.code)
        self.message = message or self.code


class DeviceNotRegistered(FarePassError):
    code = "DeviceNotRegistered"


class SessionAlreadyActive(FarePassError):
    code = "SessionAlreadyActive"


class SessionNotFound(FarePassError):
    code = "SessionNotFound"


class NetworkUnavailable(FarePassError):
    code = "NetworkUnavailable"


class StoreUnavailable(FarePassError):
    code = "StoreUnavailable"


class RadioError(FarePassError):
    code = "RadioError"
