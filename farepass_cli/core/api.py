import requests
from typing import Optional

from .config import BASE_URL, REQUEST_TIMEOUT
from .errors import (
    DeviceNotRegistered,
    FarePassError,
    NetworkUnavailable,
    SessionAlreadyActive,
    SessionNotFound,
    StoreUnavailable,
)


def _error_detail(resp: requests.Response) -> str:
    try:
        return str(resp.json().get("detail", resp.text))
    except ValueError:
        return resp.text


def _request(method: str, path: str, **kwargs) -> requests.Response:
    """
    Sends a request to the backend. Transport failures become NetworkUnavailable
    and 5xx answers become StoreUnavailable; other statuses are left to the caller.
    """
    url = f"{BASE_URL}{path}"
    try:
        resp = requests.request(method, url, timeout=REQUEST_TIMEOUT, **kwargs)
    except (requests.ConnectionError, requests.Timeout) as e:
        raise NetworkUnavailable(f"Backend unreachable ({url}): {e}")

    if resp.status_code >= 500:
        raise StoreUnavailable(f"Backend error {resp.status_code}: {_error_detail(resp)}")
    return resp


def _raise_for_status(resp: requests.Response) -> None:
    if resp.status_code >= 400:
        raise FarePassError(f"HTTP {resp.status_code} - {_error_detail(resp)}")


def api_register_device(device_id: str, public_key_pem: str) -> None:
    """
    Registers the device public key (idempotent on the server).
    """
    data = {"deviceId": device_id, "devicePubKeyPem": public_key_pem}
    resp = _request("POST", "/device/register", json=data)
    _raise_for_status(resp)


def api_start_session(device_id: str, vehicle_id: str) -> dict:
    """
    Starts a session. Returns {"token", "sessionId", "vehicleId"}.
    """
    data = {"deviceId": device_id, "vehicleId": vehicle_id}
    resp = _request("POST", "/session/start", json=data)
    if resp.status_code == 404:
        raise DeviceNotRegistered(f"Device {device_id} is not registered")
    if resp.status_code == 409:
        raise SessionAlreadyActive(f"Cannot start on {vehicle_id}: {_error_detail(resp)}")
    _raise_for_status(resp)
    return resp.json()


def api_get_active_session(device_id: str) -> Optional[dict]:
    """
    Returns the device's open session, or None if there is none.
    """
    resp = _request("GET", "/session/active", params={"deviceId": device_id})
    if resp.status_code == 404:
        return None
    _raise_for_status(resp)
    return resp.json()


def api_end_session(session_id: str) -> dict:
    """
    Ends a session. Returns {"ok", "totalCents", "capped"} or {"ok", "alreadyEnded"}.
    """
    resp = _request("POST", "/session/end", json={"sessionId": session_id})
    if resp.status_code == 404:
        raise SessionNotFound(f"Session {session_id} not found")
    _raise_for_status(resp)
    return resp.json()


def api_get_fare_today(device_id: str) -> dict:
    resp = _request("GET", "/fare/today", params={"deviceId": device_id})
    _raise_for_status(resp)
    return resp.json()


def api_get_trips_today(device_id: str) -> dict:
    resp = _request("GET", "/trips/today", params={"deviceId": device_id})
    _raise_for_status(resp)
    return resp.json()


def api_get_backend_public_key() -> str:
    """
    Fetches the server signing key from the well-known endpoint.
    """
    resp = _request("GET", "/.well-known/backend-public.pem")
    _raise_for_status(resp)
    return resp.text
