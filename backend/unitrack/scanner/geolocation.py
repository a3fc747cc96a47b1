"""
Adaptateur de géolocalisation du poste de scan.

Demande unique (pas de flux continu), avec délai maximal et réutilisation
optionnelle d'une position récente (max_age_ms). Aucune reprise automatique :
après une erreur, c'est l'utilisateur qui relance la demande.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from unitrack.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GeoCoordinate:
    latitude: float
    longitude: float
    accuracy_meters: float = 0.0


@dataclass(frozen=True)
class LocationOptions:
    enable_high_accuracy: bool = True
    timeout_ms: int = 10000
    max_age_ms: int = 0

    @classmethod
    def from_settings(cls) -> "LocationOptions":
        return cls(
            timeout_ms=int(settings.GEOLOCATION_TIMEOUT_SECONDS * 1000),
            max_age_ms=int(settings.GEOLOCATION_MAX_AGE_SECONDS * 1000),
        )


class GeolocationError(Exception):
    code = 0
    default_message = "Impossible d'obtenir la position."

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class PermissionDenied(GeolocationError):
    code = 1
    default_message = "Accès à la localisation refusé. Autorisez la localisation puis réessayez."


class PositionUnavailable(GeolocationError):
    code = 2
    default_message = "Position indisponible. Vérifiez que la localisation est activée."


class Timeout(GeolocationError):
    code = 3
    default_message = "La demande de localisation a expiré. Réessayez."


class Unknown(GeolocationError):
    default_message = "Erreur de localisation inconnue."


_ERRORS_BY_CODE = {cls.code: cls for cls in (PermissionDenied, PositionUnavailable, Timeout)}


def error_from_code(code: int, message: Optional[str] = None) -> GeolocationError:
    """Codes W3C GeolocationPositionError : 1 refus, 2 indisponible, 3 délai."""
    return _ERRORS_BY_CODE.get(code, Unknown)(message)


class GeolocationProvider:
    """
    Base des fournisseurs de position. Les sous-classes implémentent `_acquire`,
    le délai, le cache max_age et la normalisation des erreurs sont gérés ici.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._last_fix: Optional[GeoCoordinate] = None
        self._last_fix_at = 0.0

    async def get_current_location(self, options: Optional[LocationOptions] = None) -> GeoCoordinate:
        options = options or LocationOptions.from_settings()

        if options.max_age_ms > 0 and self._last_fix is not None:
            age_ms = (self._clock() - self._last_fix_at) * 1000
            if age_ms <= options.max_age_ms:
                return self._last_fix

        try:
            fix = await asyncio.wait_for(self._acquire(options), timeout=options.timeout_ms / 1000)
        except asyncio.TimeoutError:
            raise Timeout()
        except GeolocationError:
            raise
        except Exception as exc:
            logger.warning("Échec de géolocalisation : %s", exc)
            raise Unknown() from exc

        self._last_fix = fix
        self._last_fix_at = self._clock()
        return fix

    async def _acquire(self, options: LocationOptions) -> GeoCoordinate:
        raise NotImplementedError


class StaticLocationProvider(GeolocationProvider):
    """Position fixe (poste de scan installé dans une salle, ou arguments CLI)."""

    def __init__(self, latitude: float, longitude: float, accuracy_meters: float = 0.0, **kwargs):
        super().__init__(**kwargs)
        self._coordinate = GeoCoordinate(latitude, longitude, accuracy_meters)

    async def _acquire(self, options: LocationOptions) -> GeoCoordinate:
        return self._coordinate


class CallbackLocationProvider(GeolocationProvider):
    """Délègue à une coroutine externe (pont vers le GPS de l'appareil)."""

    def __init__(self, callback: Callable[[LocationOptions], Awaitable[GeoCoordinate]], **kwargs):
        super().__init__(**kwargs)
        self._callback = callback

    async def _acquire(self, options: LocationOptions) -> GeoCoordinate:
        return await self._callback(options)
