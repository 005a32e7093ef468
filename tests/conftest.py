"""Shared fixtures: a fake camera backend and Shodan/webcam HTTP fakes."""

import threading
import time

import httpx
import pytest

from errors import CaptureFailed, DeviceNotFound, DeviceOpenFailed, DeviceUnavailable
from models import DeviceInfo, Frame
from registry import CapabilityRegistry
from session import DeviceSession

FAKE_JPEG = b"\xff\xd8fake-jpeg\xff\xd9"


class FakeHandle:
    def __init__(self, index: int):
        self.index = index
        self.released = False


class FakeBackend:
    """In-memory camera backend that records every driver call."""

    def __init__(self, indices=(0, 1), read_delay: float = 0.0):
        self.indices = set(indices)
        self.read_delay = read_delay
        self.fail_open: set[int] = set()
        self.fail_read: str | None = None  # None, "retain" or "lost"
        self.unsupported = False
        self.events: list[tuple] = []
        self.handles: list[FakeHandle] = []
        self._lock = threading.Lock()

    def _record(self, *event):
        with self._lock:
            self.events.append(event)

    def enumerate(self, in_use=None):
        if self.unsupported:
            raise DeviceUnavailable("Local camera support is not available")
        self._record("enumerate", in_use)
        return [
            DeviceInfo(index=i, name=f"Fake camera {i}",
                       description="currently open" if i == in_use else "fake")
            for i in sorted(self.indices)
        ]

    def open(self, index):
        self._record("open", index)
        if index in self.fail_open:
            raise DeviceOpenFailed(index, "device busy")
        if index not in self.indices:
            raise DeviceNotFound(index)
        handle = FakeHandle(index)
        self.handles.append(handle)
        return handle

    def read(self, handle, index):
        assert not handle.released, "read from a released handle"
        self._record("read_start", index)
        if self.read_delay:
            time.sleep(self.read_delay)
        self._record("read_end", index)
        if self.fail_read == "retain":
            raise CaptureFailed(index, "frame timeout")
        if self.fail_read == "lost":
            raise CaptureFailed(index, "device disconnected", device_lost=True)
        return Frame(width=640, height=480, data=FAKE_JPEG)

    def release(self, handle):
        handle.released = True
        self._record("release", handle.index)


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def session(backend):
    return DeviceSession(backend)


@pytest.fixture
def local_registry():
    return CapabilityRegistry(remote_enabled=False)


@pytest.fixture
def remote_registry():
    return CapabilityRegistry(remote_enabled=True)


def shodan_match(ip: str, port: int, data: str = "", **extra) -> dict:
    """A raw Shodan host search match."""
    match = {
        "ip_str": ip,
        "ip": 16909060,
        "port": port,
        "data": data,
        "transport": "tcp",
        "timestamp": "2024-05-01T12:00:00.000000",
    }
    match.update(extra)
    return match


class RecordingShodan:
    """httpx handler serving canned (status, body) pairs per query and recording requests."""

    def __init__(self, responses=None, default=(200, {"matches": [], "total": 0})):
        self.responses = responses or {}
        self.default = default
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status, body = self.responses.get(request.url.params["query"], self.default)
        if isinstance(body, (dict, list)):
            return httpx.Response(status, json=body)
        return httpx.Response(status, text=body)

    @property
    def queries(self) -> list[str]:
        return [r.url.params["query"] for r in self.requests]

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)
