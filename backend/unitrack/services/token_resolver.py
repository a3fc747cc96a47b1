"""
Extraction du jeton de session à partir du contenu d'un QR code.

Le QR code peut contenir soit le jeton brut, soit l'URL de la page de scan
(/attendance/scan?token=...). Aucune validation de forme ici : c'est le
service de pointage qui décide si le jeton correspond à une session.
"""

from typing import Optional
from urllib.parse import parse_qs, urlencode, urlsplit

from unitrack.config import settings

SCAN_PATH = "/attendance/scan"


def resolve_token(scanned_payload: str) -> str:
    """
    Retourne le paramètre `token` si le contenu est une URL absolue qui en porte un,
    sinon le contenu tel quel. Ne lève jamais d'exception.
    """
    try:
        parts = urlsplit(scanned_payload)
    except ValueError:
        return scanned_payload

    if not parts.scheme or not parts.netloc:
        return scanned_payload

    values = parse_qs(parts.query).get("token")
    if values and values[0]:
        return values[0]
    return scanned_payload


def build_scan_url(token: str, base_url: Optional[str] = None) -> str:
    """URL encodée dans le QR code ; l'ouvrir directement évite l'étape caméra."""
    base = (base_url or settings.PUBLIC_BASE_URL).rstrip("/")
    return f"{base}{SCAN_PATH}?{urlencode({'token': token})}"
