"""Single-slot device session with a lock-guarded open/capture lifecycle."""

import base64
import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterator, Protocol

from errors import CaptureFailed, DeviceError, SessionPoisoned, WebcamError
from models import CaptureResult, DeviceInfo, Frame

logger = logging.getLogger(__name__)

DEFAULT_CAMERA_INDEX = 0


class SessionState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    CAPTURING = "capturing"


class DeviceBackend(Protocol):
    def enumerate(self, in_use: int | None = None) -> list[DeviceInfo]: ...

    def open(self, index: int) -> Any: ...

    def read(self, handle: Any, index: int) -> Frame: ...

    def release(self, handle: Any) -> None: ...


class DeviceSession:
    """Owns at most one open camera handle.

    State is only mutated by callers holding ``exclusive()``. The dispatcher
    keeps the lock for a whole open+capture sequence so concurrent tool calls
    never interleave on the device.
    """

    def __init__(self, backend: DeviceBackend):
        self._backend = backend
        self._handle: Any = None
        self._index: int | None = None
        self._state = SessionState.CLOSED
        self._lock = threading.Lock()
        self._poisoned = False

    @contextmanager
    def exclusive(self) -> Iterator["DeviceSession"]:
        """Hold the session lock.

        A non-domain exception escaping the block poisons the session: every
        later call raises SessionPoisoned, like a poisoned mutex.
        """
        with self._lock:
            if self._poisoned:
                raise SessionPoisoned("Device session is unusable after an internal error")
            try:
                yield self
            except WebcamError:
                raise
            except Exception:
                logger.exception("Internal error while holding the device session")
                self._poisoned = True
                raise

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def poisoned(self) -> bool:
        return self._poisoned

    def current(self) -> int | None:
        """Index of the open camera, or None."""
        return self._index if self._handle is not None else None

    def enumerate(self) -> list[DeviceInfo]:
        logger.info("Listing available cameras")
        return self._backend.enumerate(in_use=self.current())

    def open(self, index: int) -> None:
        if self._handle is not None and self._index == index:
            return

        if self._handle is not None:
            logger.debug("Closing camera %d before opening %d", self._index, index)
        self._release()

        logger.info("Opening camera %d", index)
        try:
            handle = self._backend.open(index)
        except DeviceError as e:
            logger.error("%s", e)
            raise

        self._handle = handle
        self._index = index
        self._state = SessionState.OPEN
        logger.info("Successfully opened camera %d", index)

    def capture(self, index: int | None = None) -> CaptureResult:
        target = DEFAULT_CAMERA_INDEX if index is None else index
        self.open(target)

        logger.info("Capturing frame from camera %d", target)
        self._state = SessionState.CAPTURING
        try:
            frame = self._backend.read(self._handle, target)
        except CaptureFailed as e:
            logger.error("%s", e)
            if e.device_lost:
                self._release()
            raise
        finally:
            if self._state is SessionState.CAPTURING:
                self._state = SessionState.OPEN

        logger.info("Successfully captured image: %dx%d from camera %d",
                    frame.width, frame.height, target)
        return CaptureResult(
            image_data=base64.b64encode(frame.data).decode("ascii"),
            mime_type=frame.mime_type,
            width=frame.width,
            height=frame.height,
            timestamp=datetime.now(timezone.utc).isoformat(),
            camera_index=target,
        )

    def close(self) -> None:
        """Release the open camera, if any."""
        self._release()

    def _release(self) -> None:
        handle, index = self._handle, self._index
        self._handle = None
        self._index = None
        self._state = SessionState.CLOSED
        if handle is None:
            return
        try:
            self._backend.release(handle)
        except Exception as e:
            logger.warning("Error releasing camera %s: %s", index, e)
