"""
Source d'images OpenCV et décodage QR pour le poste de scan.
"""

import logging
from pathlib import Path
from typing import Any, List, Optional

import cv2

from unitrack.scanner.qr_decoder import CameraDevice, CameraUnavailable, FrameSource

logger = logging.getLogger(__name__)

_detector = cv2.QRCodeDetector()


def decode_frame(frame: Any) -> Optional[str]:
    """Contenu du QR code présent dans l'image, ou None."""
    data, _points, _ = _detector.detectAndDecode(frame)
    return data or None


def _device_label(index: int) -> str:
    # Sous Linux, v4l2 expose le nom du périphérique (ex. "Integrated Camera: Back")
    name_file = Path(f"/sys/class/video4linux/video{index}/name")
    try:
        return name_file.read_text().strip()
    except OSError:
        return f"Caméra {index}"


class OpenCVFrameSource(FrameSource):

    def __init__(self, max_devices: int = 4):
        self.max_devices = max_devices
        self._capture: Optional[cv2.VideoCapture] = None

    def list_devices(self) -> List[CameraDevice]:
        devices = []
        for index in range(self.max_devices):
            capture = cv2.VideoCapture(index)
            try:
                if capture.isOpened():
                    devices.append(CameraDevice(index=index, label=_device_label(index)))
            finally:
                capture.release()
        return devices

    def open(self, device: CameraDevice) -> None:
        capture = cv2.VideoCapture(device.index)
        if not capture.isOpened():
            capture.release()
            raise CameraUnavailable(f"Caméra {device.index} inaccessible (absente ou accès refusé).")
        self._capture = capture

    def read(self) -> Optional[Any]:
        if self._capture is None:
            return None
        ok, frame = self._capture.read()
        return frame if ok else None

    def release(self) -> None:
        if self._capture is not None:
            self._capture.release()
            self._capture = None
