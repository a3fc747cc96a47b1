"""
Enchaînement du pointage côté poste de scan :
jeton (scan, saisie ou URL /attendance/scan?token=) → éligibilité → position → pointage.

Chaque échec laisse le flux réutilisable : on peut relancer la localisation ou
renvoyer le pointage sans tout recommencer. Seuls les jetons invalides ou expirés
exigent un nouveau code de l'enseignant.
"""

import logging
from typing import Optional

from unitrack.scanner.client import CheckInClient, CheckInFailed
from unitrack.scanner.geolocation import GeoCoordinate, GeolocationError, GeolocationProvider, LocationOptions
from unitrack.services.token_resolver import resolve_token

logger = logging.getLogger(__name__)


class SubmissionInProgress(Exception):
    """Un pointage est déjà en cours d'envoi."""


class ScanFlow:

    def __init__(
        self,
        client: CheckInClient,
        location_provider: GeolocationProvider,
        location_options: Optional[LocationOptions] = None,
    ):
        self.client = client
        self.location_provider = location_provider
        self.location_options = location_options
        self.token: Optional[str] = None
        self.location: Optional[GeoCoordinate] = None
        self.result: Optional[dict] = None
        self.error: Optional[str] = None
        self.error_kind: Optional[str] = None
        self.needs_new_token = False
        self._submitting = False

    @property
    def submitting(self) -> bool:
        return self._submitting

    @property
    def can_submit(self) -> bool:
        return bool(self.token) and self.location is not None and not self._submitting and self.result is None

    def _fail(self, kind: str, message: str) -> None:
        self.error_kind = kind
        self.error = message

    def _clear_error(self) -> None:
        self.error = None
        self.error_kind = None

    def accept_payload(self, payload: str) -> str:
        """Nouveau code scanné ou saisi : réinitialise le flux."""
        self.token = resolve_token(payload.strip())
        self.location = None
        self.result = None
        self.needs_new_token = False
        self._clear_error()
        return self.token

    async def check_eligibility(self) -> bool:
        try:
            eligible = await self.client.check_eligibility(self.token)
        except CheckInFailed as e:
            self._handle_api_error(e)
            return False
        if not eligible:
            self._fail("conflict", "Vous ne pouvez pas pointer pour cette session.")
        return eligible

    async def acquire_location(self) -> Optional[GeoCoordinate]:
        """Demande unique ; en cas d'échec le message est exposé et l'appel peut être relancé."""
        self._clear_error()
        try:
            self.location = await self.location_provider.get_current_location(self.location_options)
        except GeolocationError as e:
            self.location = None
            self._fail("input", e.message)
            return None
        return self.location

    async def submit(self) -> Optional[dict]:
        """Envoie le pointage. Lève SubmissionInProgress si un envoi est déjà en cours."""
        if self._submitting:
            raise SubmissionInProgress("Un pointage est déjà en cours d'envoi.")
        if not self.token or self.location is None:
            raise ValueError("Jeton et position requis avant l'envoi du pointage.")

        self._submitting = True
        self._clear_error()
        try:
            self.result = await self.client.check_in(self.token, self.location)
        except CheckInFailed as e:
            self._handle_api_error(e)
            return None
        finally:
            self._submitting = False

        logger.info("Pointage enregistré : %s", self.result.get("status"))
        return self.result

    async def run(self, payload: str) -> Optional[dict]:
        """Flux complet pour un contenu de QR code, une URL de scan ou un jeton saisi."""
        self.accept_payload(payload)
        if not await self.check_eligibility():
            return None
        if await self.acquire_location() is None:
            return None
        return await self.submit()

    def _handle_api_error(self, e: CheckInFailed) -> None:
        if e.kind == "unexpected":
            logger.error("Échec du pointage (%s) : %s", e.code, e.message)
        self.needs_new_token = e.needs_new_token
        self._fail(e.kind, e.message)
