"""Tests for ToolDispatcher routing, envelopes and device serialization."""

import asyncio
import base64
from unittest.mock import AsyncMock

import httpx
import pytest

from conftest import FAKE_JPEG, FakeBackend
from discovery import DiscoveryPipeline
from dispatcher import ToolDispatcher, extract_parameters
from errors import InvalidParameter, MissingParameter, ProviderUnauthorized, SessionPoisoned
from fetch import RemoteFetcher
from models import AccessType, DiscoveryReport, FetchedPayload, RemoteDevice
from registry import CapabilityRegistry, ParameterSpec, ToolDefinition, ToolName
from session import DeviceSession


@pytest.fixture
def dispatcher(local_registry, session):
    return ToolDispatcher(local_registry, session)


def remote_dispatcher(session, discovery=None, fetcher=None) -> ToolDispatcher:
    return ToolDispatcher(
        CapabilityRegistry(remote_enabled=True),
        session,
        discovery=discovery or AsyncMock(spec=DiscoveryPipeline),
        fetcher=fetcher or AsyncMock(spec=RemoteFetcher),
    )


class TestRouting:

    @pytest.mark.asyncio
    async def test_unknown_tool(self, dispatcher):
        envelope = await dispatcher.dispatch("nonexistent_tool", {})

        assert envelope.error == "Tool not found"
        assert envelope.content[0].text == "Unknown tool: nonexistent_tool"
        assert envelope.metadata == {"error_type": "UnknownTool"}

    @pytest.mark.asyncio
    async def test_remote_tool_without_credential_is_unknown(self, dispatcher):
        envelope = await dispatcher.dispatch("search_webcams", {"limit": 5})

        assert envelope.error == "Tool not found"

    @pytest.mark.asyncio
    async def test_parameters_default_to_empty(self, dispatcher):
        envelope = await dispatcher.dispatch("list_cameras")

        assert envelope.error is None

    def test_remote_registry_requires_remote_components(self, session):
        with pytest.raises(ValueError):
            ToolDispatcher(CapabilityRegistry(remote_enabled=True), session)


class TestExtractParameters:

    definition = ToolDefinition(
        name=ToolName.CAPTURE_REMOTE_IMAGE,
        description="test",
        parameters={
            "url": ParameterSpec(type="string", description="u", required=True),
            "count": ParameterSpec(type="integer", description="c"),
        },
    )

    def test_declared_names_only(self):
        arguments = extract_parameters(self.definition, {"url": "http://x/", "extra": 1})

        assert arguments == {"url": "http://x/", "count": None}

    @pytest.mark.parametrize("parameters", [{}, {"url": None}, {"url": ""}])
    def test_required_parameter_missing(self, parameters):
        with pytest.raises(MissingParameter):
            extract_parameters(self.definition, parameters)

    @pytest.mark.parametrize("parameters", [
        {"url": 5},
        {"url": "http://x/", "count": "3"},
        {"url": "http://x/", "count": -1},
        {"url": "http://x/", "count": True},
        {"url": "http://x/", "count": 1.5},
    ])
    def test_type_follows_declaration(self, parameters):
        with pytest.raises(InvalidParameter):
            extract_parameters(self.definition, parameters)

    @pytest.mark.asyncio
    async def test_dispatch_checks_declared_type(self, session):
        envelope = await remote_dispatcher(session).dispatch("capture_remote_image", {"url": 5})

        assert envelope.error == "Invalid parameter url: expected a string"
        assert envelope.metadata["error_type"] == "InvalidParameter"


class TestLocalTools:

    @pytest.mark.asyncio
    async def test_list_cameras(self, dispatcher):
        envelope = await dispatcher.dispatch("list_cameras", {})

        assert envelope.content[0].text == "Found 2 camera(s)"
        assert [c["index"] for c in envelope.metadata["cameras"]] == [0, 1]

    @pytest.mark.asyncio
    async def test_list_cameras_unsupported(self, dispatcher, backend):
        backend.unsupported = True

        envelope = await dispatcher.dispatch("list_cameras", {})

        assert envelope.error == "Local camera support is not available"
        assert envelope.metadata["error_type"] == "DeviceUnavailable"

    @pytest.mark.asyncio
    async def test_capture_image_defaults_to_camera_zero(self, dispatcher):
        envelope = await dispatcher.dispatch("capture_image", {})

        image, text = envelope.content
        assert image.type == "image"
        assert base64.b64decode(image.data) == FAKE_JPEG
        assert text.text.startswith("Captured 640x480 image from camera 0 at ")
        assert envelope.metadata["camera_index"] == 0
        assert envelope.metadata["mime_type"] == "image/jpeg"

    @pytest.mark.asyncio
    async def test_envelope_serialization(self, dispatcher):
        envelope = await dispatcher.dispatch("capture_image", {"camera_index": 1})
        data = envelope.to_dict()

        assert data["content"][0]["mimeType"] == "image/jpeg"
        assert "error" not in data

    @pytest.mark.asyncio
    async def test_integral_float_index_accepted(self, dispatcher):
        envelope = await dispatcher.dispatch("capture_image", {"camera_index": 1.0})

        assert envelope.metadata["camera_index"] == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("value", ["one", -1, 1.5, True])
    async def test_invalid_camera_index(self, dispatcher, value):
        envelope = await dispatcher.dispatch("capture_image", {"camera_index": value})

        assert envelope.metadata["error_type"] == "InvalidParameter"
        assert envelope.error.startswith("Invalid parameter camera_index")

    @pytest.mark.asyncio
    async def test_capture_missing_camera_is_reported(self, dispatcher, session):
        envelope = await dispatcher.dispatch("capture_image", {"camera_index": 4})

        assert envelope.error == "Camera not found: 4"
        assert envelope.metadata["error_type"] == "DeviceNotFound"
        assert session.current() is None

    @pytest.mark.asyncio
    async def test_capture_failure_is_reported(self, dispatcher, backend, session):
        backend.fail_read = "lost"

        envelope = await dispatcher.dispatch("capture_image", {})

        assert envelope.metadata["error_type"] == "CaptureFailed"
        assert session.current() is None

    @pytest.mark.asyncio
    async def test_get_camera_info(self, dispatcher):
        await dispatcher.dispatch("capture_image", {"camera_index": 1})

        envelope = await dispatcher.dispatch("get_camera_info", {})

        assert envelope.metadata["current_camera"] == 1
        assert envelope.metadata["total_cameras"] == 2
        assert envelope.content[0].text == "Camera info: 2 total camera(s), current: 1"

    @pytest.mark.asyncio
    async def test_get_camera_info_when_closed(self, dispatcher):
        envelope = await dispatcher.dispatch("get_camera_info", {})

        assert envelope.metadata["current_camera"] is None
        assert envelope.content[0].text.endswith("current: none")


class TestDeviceSerialization:
    """Concurrent device calls never interleave on the session."""

    @pytest.mark.asyncio
    async def test_concurrent_captures_are_serialized(self, local_registry):
        backend = FakeBackend(read_delay=0.05)
        session = DeviceSession(backend)
        dispatcher = ToolDispatcher(local_registry, session)

        first, second = await asyncio.gather(
            dispatcher.dispatch("capture_image", {"camera_index": 0}),
            dispatcher.dispatch("capture_image", {"camera_index": 1}),
        )

        assert first.error is None and second.error is None
        assert first.metadata["camera_index"] == 0
        assert second.metadata["camera_index"] == 1

        zero_first = [("open", 0), ("read_start", 0), ("read_end", 0),
                      ("release", 0), ("open", 1), ("read_start", 1), ("read_end", 1)]
        one_first = [("open", 1), ("read_start", 1), ("read_end", 1),
                     ("release", 1), ("open", 0), ("read_start", 0), ("read_end", 0)]
        assert backend.events in (zero_first, one_first)
        assert session.current() == backend.events[-1][1]

    @pytest.mark.asyncio
    async def test_many_concurrent_captures(self, local_registry):
        backend = FakeBackend(read_delay=0.01)
        dispatcher = ToolDispatcher(local_registry, DeviceSession(backend))

        envelopes = await asyncio.gather(*(
            dispatcher.dispatch("capture_image", {"camera_index": i % 2}) for i in range(6)
        ))

        assert all(e.error is None for e in envelopes)
        reads = [e for e in backend.events if e[0].startswith("read")]
        for start, end in zip(reads[::2], reads[1::2]):
            assert start[0] == "read_start" and end == ("read_end", start[1])

    @pytest.mark.asyncio
    async def test_internal_fault_is_transport_level(self, local_registry):
        backend = FakeBackend()
        backend.read = lambda handle, index: 1 / 0
        dispatcher = ToolDispatcher(local_registry, DeviceSession(backend))

        with pytest.raises(ZeroDivisionError):
            await dispatcher.dispatch("capture_image", {})
        with pytest.raises(SessionPoisoned):
            await dispatcher.dispatch("list_cameras", {})

    @pytest.mark.asyncio
    async def test_close_releases_device(self, dispatcher, backend, session):
        await dispatcher.dispatch("capture_image", {})

        dispatcher.close()

        assert session.current() is None
        assert backend.events[-1] == ("release", 0)


class TestRemoteTools:

    @pytest.mark.asyncio
    async def test_search_webcams(self, session):
        discovery = AsyncMock(spec=DiscoveryPipeline)
        discovery.run.return_value = DiscoveryReport(
            devices=[RemoteDevice(address="1.2.3.4", port=8080, url="http://1.2.3.4:8080/",
                                  access_type=AccessType.HTTP)],
            queries_run=3,
        )
        dispatcher = remote_dispatcher(session, discovery=discovery)

        envelope = await dispatcher.dispatch("search_webcams", {"limit": 9})

        discovery.run.assert_awaited_once_with(9)
        assert envelope.content[0].text == "Found 1 remote webcam(s) via Shodan search"
        assert envelope.metadata["total"] == 1
        assert envelope.metadata["webcams"][0]["access_type"] == "HTTP"
        assert "warnings" not in envelope.metadata

    @pytest.mark.asyncio
    async def test_search_webcams_partial_failure_warns(self, session):
        discovery = AsyncMock(spec=DiscoveryPipeline)
        discovery.run.return_value = DiscoveryReport(devices=[], queries_run=3,
                                                     warnings=["Query 'x' failed: HTTP 500"])
        envelope = await remote_dispatcher(session, discovery=discovery).dispatch("search_webcams", {})

        discovery.run.assert_awaited_once_with(None)
        assert envelope.error is None
        assert envelope.metadata["warnings"] == ["Query 'x' failed: HTTP 500"]
        assert "(1 of 3 queries failed)" in envelope.content[0].text

    @pytest.mark.asyncio
    async def test_search_webcams_total_failure(self, session):
        discovery = AsyncMock(spec=DiscoveryPipeline)
        discovery.run.side_effect = ProviderUnauthorized()

        envelope = await remote_dispatcher(session, discovery=discovery).dispatch("search_webcams", {})

        assert envelope.error == "Unauthorized - check API key"
        assert envelope.metadata["error_type"] == "ProviderUnauthorized"

    @pytest.mark.asyncio
    async def test_capture_remote_image_requires_url(self, session):
        envelope = await remote_dispatcher(session).dispatch("capture_remote_image", {"ip": "1.2.3.4"})

        assert envelope.error == "Missing required parameter: url"
        assert envelope.metadata["error_type"] == "MissingParameter"

    @pytest.mark.asyncio
    async def test_capture_remote_image(self, session):
        transport = httpx.MockTransport(lambda request: httpx.Response(
            200, content=FAKE_JPEG, headers={"Content-Type": "image/jpeg"}))
        dispatcher = remote_dispatcher(session, fetcher=RemoteFetcher(transport=transport))

        envelope = await dispatcher.dispatch(
            "capture_remote_image", {"url": "http://1.2.3.4:8080/snapshot.jpg", "ip": "1.2.3.4", "port": 8080})

        image, text = envelope.content
        assert base64.b64decode(image.data) == FAKE_JPEG
        assert text.text == "Captured image from remote webcam: http://1.2.3.4:8080/snapshot.jpg"
        assert envelope.metadata["source"] == "remote_webcam"
        assert envelope.metadata["size_bytes"] == len(FAKE_JPEG)

    @pytest.mark.asyncio
    async def test_capture_remote_non_image(self, session):
        transport = httpx.MockTransport(lambda request: httpx.Response(
            200, text="<html></html>", headers={"Content-Type": "text/html; charset=utf-8"}))
        dispatcher = remote_dispatcher(session, fetcher=RemoteFetcher(transport=transport))

        envelope = await dispatcher.dispatch("capture_remote_image", {"url": "http://1.2.3.4/"})

        assert [block.type for block in envelope.content] == ["text"]
        assert envelope.metadata["mime_type"] == "text/html"

    @pytest.mark.asyncio
    async def test_capture_remote_timeout_is_reported(self, session):
        async def hang(request):
            await asyncio.sleep(5)

        fetcher = RemoteFetcher(timeout=0.05, transport=httpx.MockTransport(hang))
        dispatcher = remote_dispatcher(session, fetcher=fetcher)

        envelope = await dispatcher.dispatch("capture_remote_image", {"url": "http://1.2.3.4/"})

        assert envelope.metadata["error_type"] == "FetchFailed"
        assert "timed out" in envelope.error

    @pytest.mark.asyncio
    async def test_capture_remote_passes_device(self, session):
        fetcher = AsyncMock(spec=RemoteFetcher)
        fetcher.fetch.side_effect = lambda device: _payload(device.url)
        dispatcher = remote_dispatcher(session, fetcher=fetcher)

        await dispatcher.dispatch("capture_remote_image", {"url": "rtsp://1.2.3.4:554/"})

        device = fetcher.fetch.await_args.args[0]
        assert device.address == "unknown"
        assert device.port == 80
        assert device.access_type is AccessType.RTSP

    @pytest.mark.asyncio
    async def test_capture_remote_port_out_of_range(self, session):
        envelope = await remote_dispatcher(session).dispatch(
            "capture_remote_image", {"url": "http://1.2.3.4/", "port": 70000})

        assert envelope.metadata["error_type"] == "InvalidParameter"


def _payload(url):
    return FetchedPayload(url=url, data=FAKE_JPEG)
