"""Route tool calls to the device session or the discovery pipeline.

Every outcome is folded into an ``Envelope``. Domain errors become envelopes
with an ``error`` field; only ``SessionPoisoned`` escapes ``dispatch``.
"""

import asyncio
import base64
import logging
from datetime import datetime, timezone
from typing import Any, Callable, TypeVar

from discovery import DiscoveryPipeline
from errors import InvalidParameter, MissingParameter, SessionPoisoned, UnknownTool, WebcamError
from fetch import RemoteFetcher
from models import AccessType, Envelope, ImageBlock, RemoteDevice, TextBlock
from registry import CapabilityRegistry, ToolDefinition, ToolName
from session import DeviceSession

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_REMOTE_PORT = 80
MAX_PORT = 65535


def _as_int(name: str, value: Any) -> int:
    # JSON numbers may arrive as floats; bool is an int subclass.
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidParameter(name, "expected a non-negative integer")
    if isinstance(value, float) and not value.is_integer():
        raise InvalidParameter(name, "expected a non-negative integer")
    value = int(value)
    if value < 0:
        raise InvalidParameter(name, "expected a non-negative integer")
    return value


def _as_str(name: str, value: Any) -> str:
    if not isinstance(value, str):
        raise InvalidParameter(name, "expected a string")
    return value


_CONVERTERS: dict[str, Callable[[str, Any], Any]] = {
    "integer": _as_int,
    "string": _as_str,
}


def extract_parameters(definition: ToolDefinition, parameters: dict[str, Any]) -> dict[str, Any]:
    """Check ``parameters`` against the tool's declared parameters.

    Returns every declared name, with None for optional ones left out.
    Undeclared keys are dropped. A required parameter that is absent, null
    or an empty string raises MissingParameter.
    """
    arguments: dict[str, Any] = {}
    for name, spec in definition.parameters.items():
        value = parameters.get(name)
        if value is None or (spec.required and value == ""):
            if spec.required:
                raise MissingParameter(name)
            arguments[name] = None
            continue
        arguments[name] = _CONVERTERS[spec.type](name, value)
    return arguments


def _text(text: str, metadata: dict[str, Any] | None = None) -> Envelope:
    return Envelope(content=[TextBlock(text=text)], metadata=metadata)


def _error_envelope(tool: str, error: WebcamError) -> Envelope:
    if isinstance(error, UnknownTool):
        text = f"Unknown tool: {tool}"
    else:
        text = f"Error running {tool}: {error}"
    return Envelope(
        content=[TextBlock(text=text)],
        metadata={"error_type": type(error).__name__},
        error=str(error),
    )


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ToolDispatcher:
    """Closed routing over the registered tools.

    Local device tools run in a worker thread while holding the session lock
    for the whole operation, so concurrent calls are fully serialized.
    Remote tools are plain async I/O and need no coordination.
    """

    def __init__(
        self,
        registry: CapabilityRegistry,
        session: DeviceSession,
        discovery: DiscoveryPipeline | None = None,
        fetcher: RemoteFetcher | None = None,
    ):
        if ToolName.SEARCH_WEBCAMS in registry and discovery is None:
            raise ValueError("search_webcams is registered but no discovery pipeline was given")
        if ToolName.CAPTURE_REMOTE_IMAGE in registry and fetcher is None:
            raise ValueError("capture_remote_image is registered but no fetcher was given")
        self._registry = registry
        self._session = session
        self._discovery = discovery
        self._fetcher = fetcher

    @property
    def registry(self) -> CapabilityRegistry:
        return self._registry

    async def dispatch(self, name: str, parameters: dict[str, Any] | None = None) -> Envelope:
        parameters = parameters or {}
        logger.debug("Handling %s request with params: %s", name, parameters)
        try:
            definition = self._registry.get(name)
            if definition is None:
                logger.warning("Unknown tool requested: %s", name)
                raise UnknownTool(name)
            arguments = extract_parameters(definition, parameters)

            match definition.name:
                case ToolName.LIST_CAMERAS:
                    return await self._list_cameras()
                case ToolName.CAPTURE_IMAGE:
                    return await self._capture_image(arguments["camera_index"])
                case ToolName.GET_CAMERA_INFO:
                    return await self._get_camera_info()
                case ToolName.SEARCH_WEBCAMS:
                    return await self._search_webcams(arguments["limit"])
                case ToolName.CAPTURE_REMOTE_IMAGE:
                    return await self._capture_remote_image(**arguments)
                case _:
                    raise UnknownTool(name)
        except WebcamError as e:
            logger.error("%s failed: %s", name, e)
            return _error_envelope(name, e)

    def close(self) -> None:
        """Release the local device at shutdown."""
        try:
            with self._session.exclusive() as session:
                session.close()
        except SessionPoisoned:
            logger.warning("Releasing camera from a poisoned session")
            self._session.close()

    async def _with_session(self, operation: Callable[..., T], *args: Any) -> T:
        return await asyncio.to_thread(self._run_locked, operation, *args)

    def _run_locked(self, operation: Callable[..., T], *args: Any) -> T:
        with self._session.exclusive() as session:
            return operation(session, *args)

    # Local devices

    async def _list_cameras(self) -> Envelope:
        cameras = await self._with_session(DeviceSession.enumerate)
        return _text(
            f"Found {len(cameras)} camera(s)",
            {"cameras": [c.model_dump() for c in cameras]},
        )

    async def _capture_image(self, index: int | None) -> Envelope:
        result = await self._with_session(DeviceSession.capture, index)
        return Envelope(
            content=[
                ImageBlock(data=result.image_data, mime_type=result.mime_type),
                TextBlock(text=(
                    f"Captured {result.width}x{result.height} image from camera "
                    f"{result.camera_index} at {result.timestamp}"
                )),
            ],
            metadata={
                "width": result.width,
                "height": result.height,
                "camera_index": result.camera_index,
                "timestamp": result.timestamp,
                "mime_type": result.mime_type,
            },
        )

    async def _get_camera_info(self) -> Envelope:
        def snapshot(session: DeviceSession):
            return session.current(), session.enumerate()

        current, cameras = await self._with_session(snapshot)
        current_text = "none" if current is None else str(current)
        return _text(
            f"Camera info: {len(cameras)} total camera(s), current: {current_text}",
            {
                "available_cameras": [c.model_dump() for c in cameras],
                "current_camera": current,
                "total_cameras": len(cameras),
            },
        )

    # Remote devices

    async def _search_webcams(self, limit: int | None) -> Envelope:
        report = await self._discovery.run(limit)

        text = f"Found {len(report.devices)} remote webcam(s) via Shodan search"
        metadata: dict[str, Any] = {
            "webcams": [d.model_dump(mode="json") for d in report.devices],
            "total": len(report.devices),
        }
        if report.warnings:
            text += f" ({len(report.warnings)} of {report.queries_run} queries failed)"
            metadata["warnings"] = report.warnings
        return _text(text, metadata)

    async def _capture_remote_image(self, url: str, ip: str | None, port: int | None) -> Envelope:
        if port is not None and port > MAX_PORT:
            raise InvalidParameter("port", f"must be at most {MAX_PORT}")

        device = RemoteDevice(
            address=ip or "unknown",
            port=DEFAULT_REMOTE_PORT if port is None else port,
            url=url,
            last_seen=_now(),
            access_type=AccessType.RTSP if url.lower().startswith("rtsp://") else AccessType.HTTP,
        )
        payload = await self._fetcher.fetch(device)

        metadata = {
            "source": "remote_webcam",
            "url": url,
            "size_bytes": len(payload.data),
            "mime_type": payload.mime_type,
            "timestamp": _now(),
        }
        if not payload.mime_type.startswith("image/"):
            return _text(
                f"Remote webcam at {url} returned {payload.mime_type} "
                f"({len(payload.data)} bytes), not an image",
                metadata,
            )

        logger.info("Successfully captured remote image from %s", url)
        return Envelope(
            content=[
                ImageBlock(data=base64.b64encode(payload.data).decode("ascii"), mime_type=payload.mime_type),
                TextBlock(text=f"Captured image from remote webcam: {url}"),
            ],
            metadata=metadata,
        )
