"""
Client HTTP du poste de scan vers l'API UniTrack.
"""

import logging
from typing import Optional

import httpx

from unitrack.scanner.geolocation import GeoCoordinate

logger = logging.getLogger(__name__)

# Le jeton lui-même est en cause : il faut en redemander un à l'enseignant
RESOLUTION_CODES = {"SESSION_NOT_FOUND", "SESSION_EXPIRED"}
CONFLICT_CODES = {"ALREADY_CHECKED_IN", "OUT_OF_RANGE", "NOT_GROUP_MEMBER"}


class CheckInFailed(Exception):
    """Réponse d'erreur de l'API (ou serveur injoignable)."""

    def __init__(self, code: str, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code

    @property
    def kind(self) -> str:
        if self.code in RESOLUTION_CODES:
            return "resolution"
        if self.code in CONFLICT_CODES:
            return "conflict"
        return "unexpected"

    @property
    def needs_new_token(self) -> bool:
        return self.kind == "resolution"


def _raise_for_error(response: httpx.Response) -> None:
    if response.is_success:
        return

    code = f"HTTP_{response.status_code}"
    message = "Le pointage a échoué."
    try:
        body = response.json()
    except ValueError:
        body = None
    detail = body.get("detail") if isinstance(body, dict) else None

    if isinstance(detail, dict):
        code = detail.get("code", code)
        message = detail.get("message", message)
    elif isinstance(detail, str):
        message = detail
    raise CheckInFailed(code, message, response.status_code)


class CheckInClient:

    def __init__(
        self,
        base_url: str,
        access_token: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={"Authorization": f"Bearer {access_token}"},
            timeout=timeout,
            transport=transport,
        )

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("API injoignable (%s %s) : %s", method, url, exc)
            raise CheckInFailed("NETWORK_ERROR", "Impossible de joindre le serveur. Réessayez.") from exc
        _raise_for_error(response)
        return response

    async def check_eligibility(self, token: str) -> bool:
        response = await self._request("GET", "/api/v1/attendance/eligibility", params={"token": token})
        return bool(response.json().get("eligible"))

    async def check_in(self, token: str, coordinate: GeoCoordinate) -> dict:
        response = await self._request("POST", "/api/v1/attendance/check-in", json={
            "qr_code_token": token,
            "student_latitude": coordinate.latitude,
            "student_longitude": coordinate.longitude,
        })
        return response.json()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "CheckInClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
