"""
Lecteur de QR code au-dessus d'une source d'images (caméra).

Contrat :
- start(device) / stop() ; la caméra est tenue en exclusivité tant que le lecteur tourne
- à la première image décodée avec un contenu non vide, le lecteur s'arrête PUIS
  appelle on_scan_success(payload) une seule fois
- les images sans QR code (ou illisibles) sont ignorées silencieusement
- sans caméra, submit_manual(text) alimente le même callback
- une caméra qui ne fournit plus d'images (max_empty_reads lectures vides de
  suite) arrête le lecteur et lève CameraUnavailable
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence

logger = logging.getLogger(__name__)

BACK_CAMERA_HINTS = ("back", "environment")

# Lectures vides consécutives avant de considérer la caméra comme perdue
MAX_EMPTY_READS = 50


@dataclass(frozen=True)
class CameraDevice:
    index: int
    label: str = ""


class ScannerError(Exception):
    pass


class CameraUnavailable(ScannerError):
    """Aucune caméra ou accès refusé : proposer la saisie manuelle du code."""


class ScannerBusy(ScannerError):
    """La caméra est déjà utilisée par ce lecteur."""


class FrameSource:
    """Interface d'une source d'images (implémentation OpenCV dans scanner.camera)."""

    def list_devices(self) -> List[CameraDevice]:
        raise NotImplementedError

    def open(self, device: CameraDevice) -> None:
        raise NotImplementedError

    def read(self) -> Optional[Any]:
        raise NotImplementedError

    def release(self) -> None:
        raise NotImplementedError


def select_camera(devices: Sequence[CameraDevice]) -> Optional[CameraDevice]:
    """Préfère la caméra arrière ("back" / "environment"), sinon la première."""
    if not devices:
        return None
    for device in devices:
        label = device.label.lower()
        if any(hint in label for hint in BACK_CAMERA_HINTS):
            return device
    return devices[0]


class QRScanner:

    def __init__(
        self,
        source: FrameSource,
        decode: Callable[[Any], Optional[str]],
        on_scan_success: Callable[[str], None],
        max_empty_reads: int = MAX_EMPTY_READS,
    ):
        self._source = source
        self._decode = decode
        self._on_scan_success = on_scan_success
        self._max_empty_reads = max_empty_reads
        self._running = False
        self.device: Optional[CameraDevice] = None

    @property
    def running(self) -> bool:
        return self._running

    def start(self, device: Optional[CameraDevice] = None) -> CameraDevice:
        """Ouvre la caméra choisie (ou la meilleure disponible). Lève CameraUnavailable."""
        if self._running:
            raise ScannerBusy("Le lecteur est déjà démarré.")

        if device is None:
            try:
                devices = self._source.list_devices()
            except Exception as exc:
                raise CameraUnavailable("Impossible d'énumérer les caméras.") from exc
            device = select_camera(devices)
        if device is None:
            raise CameraUnavailable("Aucune caméra disponible.")

        try:
            self._source.open(device)
        except CameraUnavailable:
            raise
        except Exception as exc:
            raise CameraUnavailable(f"Impossible d'ouvrir la caméra {device.index}.") from exc

        self.device = device
        self._running = True
        logger.debug("Lecteur démarré sur %s", device)
        return device

    def stop(self) -> None:
        """Libère la caméra. Sans effet si le lecteur est déjà arrêté."""
        if not self._running:
            return
        self._running = False
        self._source.release()
        logger.debug("Lecteur arrêté")

    def process_frame(self, frame: Any) -> bool:
        """Traite une image ; True si un code a été émis (le lecteur est alors arrêté)."""
        if not self._running or frame is None:
            return False
        try:
            payload = self._decode(frame)
        except Exception:
            return False
        if not payload:
            return False

        self.stop()
        self._on_scan_success(payload)
        return True

    def run(self, max_frames: Optional[int] = None) -> bool:
        """
        Boucle de lecture jusqu'au premier code, à stop() ou à max_frames images.
        Lève CameraUnavailable (lecteur arrêté) si la source ne renvoie plus rien.
        """
        frames = 0
        empty_reads = 0
        while self._running:
            if max_frames is not None and frames >= max_frames:
                return False
            frames += 1
            frame = self._source.read()
            if frame is None:
                empty_reads += 1
                if empty_reads >= self._max_empty_reads:
                    self.stop()
                    raise CameraUnavailable("La caméra ne fournit plus d'images.")
                continue
            empty_reads = 0
            if self.process_frame(frame):
                return True
        return False

    def submit_manual(self, text: str) -> bool:
        """Saisie manuelle du code ; même contrat que le scan caméra."""
        payload = (text or "").strip()
        if not payload:
            return False
        self.stop()
        self._on_scan_success(payload)
        return True
