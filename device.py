"""OpenCV camera backend: the only code that talks to cv2 directly."""

import logging
from typing import Any

import cv2

from errors import CaptureFailed, DeviceNotFound, DeviceOpenFailed, DeviceUnavailable
from models import DeviceInfo, Frame

logger = logging.getLogger(__name__)


def camera_support_available() -> bool:
    """True if this OpenCV build has at least one camera capture backend."""
    try:
        return bool(cv2.videoio_registry.getCameraBackends())
    except cv2.error as e:
        logger.warning("Could not query OpenCV camera backends: %s", e)
        return False


def format_device_info(index: int, capture: Any) -> DeviceInfo:
    """Describe an opened ``cv2.VideoCapture`` as a DeviceInfo."""
    try:
        backend = capture.getBackendName()
    except cv2.error:
        backend = "unknown backend"
    return DeviceInfo(
        index=index,
        name=f"Camera {index}",
        description=f"{backend} video capture device",
        available=True,
    )


class OpenCVBackend:
    """Enumerate, open, read and release local cameras through OpenCV."""

    def __init__(self, scan_limit: int = 10, jpeg_quality: int = 85):
        self.scan_limit = scan_limit
        self.jpeg_quality = jpeg_quality

    def enumerate(self, in_use: int | None = None) -> list[DeviceInfo]:
        """Scan indices ``0..scan_limit-1``.

        ``in_use`` is the index the caller already holds open; it is reported
        without being reopened.
        """
        if not camera_support_available():
            raise DeviceUnavailable("Local camera support is not available")

        devices: list[DeviceInfo] = []
        try:
            for index in range(self.scan_limit):
                if index == in_use:
                    devices.append(DeviceInfo(index=index, name=f"Camera {index}",
                                              description="currently open"))
                    continue
                capture = cv2.VideoCapture(index)
                try:
                    if capture.isOpened():
                        devices.append(format_device_info(index, capture))
                finally:
                    capture.release()
        except cv2.error as e:
            logger.warning("Failed to query devices: %s", e)
            return []

        logger.info("Found %d camera(s)", len(devices))
        return devices

    def open(self, index: int) -> Any:
        try:
            capture = cv2.VideoCapture(index)
        except cv2.error as e:
            raise DeviceOpenFailed(index, str(e)) from e
        if not capture.isOpened():
            capture.release()
            raise DeviceNotFound(index)
        return capture

    def read(self, handle: Any, index: int) -> Frame:
        try:
            ok, image = handle.read()
        except cv2.error as e:
            raise CaptureFailed(index, str(e), device_lost=not handle.isOpened()) from e
        if not ok or image is None:
            raise CaptureFailed(index, "no frame returned", device_lost=not handle.isOpened())

        height, width = image.shape[:2]
        ok, buffer = cv2.imencode(".jpg", image, [int(cv2.IMWRITE_JPEG_QUALITY), self.jpeg_quality])
        if not ok:
            raise CaptureFailed(index, "JPEG encoding failed")
        return Frame(width=width, height=height, data=buffer.tobytes(), mime_type="image/jpeg")

    def release(self, handle: Any) -> None:
        handle.release()
