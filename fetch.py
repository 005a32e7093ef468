"""Fetch a single image from a remote webcam endpoint."""

import asyncio
import logging

import httpx

from errors import FetchFailed
from models import FetchedPayload, RemoteDevice

logger = logging.getLogger(__name__)

FETCH_TIMEOUT = 10.0  # seconds, covers the whole request
MAX_STREAM_BYTES = 8 * 1024 * 1024

JPEG_START = b"\xff\xd8"


def parse_boundary(content_type: str) -> bytes | None:
    """The ``boundary`` parameter of a multipart Content-Type header."""
    for parameter in content_type.split(";")[1:]:
        key, _, value = parameter.partition("=")
        if key.strip().lower() == "boundary":
            value = value.strip().strip('"')
            return value.encode("latin-1") if value else None
    return None


def first_part(buffer: bytes, boundary: bytes, complete: bool = False) -> tuple[dict[str, str], bytes] | None:
    """Headers and body of the first part of a multipart ``buffer``.

    Returns None while the part is still incomplete. The body is sized by the
    part's Content-Length when present, otherwise it runs up to the next
    delimiter. ``complete`` marks the end of the stream, where a body with no
    closing delimiter runs to the end of the buffer.

    Many cameras announce ``boundary=--frame`` and then delimit parts with
    ``--frame``, so the bare boundary is accepted when the prefixed one is
    absent.
    """
    delimiter = b"--" + boundary
    start = buffer.find(delimiter)
    if start < 0:
        delimiter = boundary
        start = buffer.find(delimiter)
        if start < 0:
            return None

    eol = buffer.find(b"\n", start + len(delimiter))
    if eol < 0:
        return None
    position = eol + 1

    headers: dict[str, str] = {}
    while True:
        eol = buffer.find(b"\n", position)
        if eol < 0:
            return None
        line = bytes(buffer[position:eol]).rstrip(b"\r")
        position = eol + 1
        if not line:
            break
        name, _, value = line.decode("latin-1").partition(":")
        headers[name.strip().lower()] = value.strip()

    length = headers.get("content-length", "")
    if length.isdigit():
        end = position + int(length)
        if end > len(buffer):
            return None
        return headers, bytes(buffer[position:end])

    end = buffer.find(delimiter, position)
    if end < 0:
        if not complete:
            return None
        end = len(buffer)
    body = bytes(buffer[position:end])
    if body.endswith(b"\r\n"):
        body = body[:-2]
    elif body.endswith(b"\n"):
        body = body[:-1]
    return headers, body


class RemoteFetcher:
    """One GET per call, no retries.

    Stateless between calls. MJPEG endpoints answer with an endless
    ``multipart/x-mixed-replace`` stream, so for those only the first frame is
    read.
    """

    def __init__(self, timeout: float = FETCH_TIMEOUT, transport: httpx.AsyncBaseTransport | None = None):
        self._timeout = timeout
        self._transport = transport

    async def fetch(self, device: RemoteDevice) -> FetchedPayload:
        logger.debug("Fetching image from webcam: %s", device.url)
        try:
            payload = await asyncio.wait_for(self._get(device.url), self._timeout)
        except asyncio.TimeoutError:
            logger.warning("Timed out fetching %s", device.url)
            raise FetchFailed(device.url, f"timed out after {self._timeout:g}s") from None
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.warning("Failed to fetch image from %s: %s", device.url, e)
            raise FetchFailed(device.url, str(e) or type(e).__name__) from e

        logger.info("Successfully fetched %d bytes from %s", len(payload.data), device.url)
        return payload

    async def _get(self, url: str) -> FetchedPayload:
        async with httpx.AsyncClient(transport=self._transport, timeout=self._timeout,
                                     follow_redirects=True) as client:
            async with client.stream("GET", url) as response:
                if not response.is_success:
                    logger.warning("Failed to fetch image from %s: HTTP %d", url, response.status_code)
                    raise FetchFailed(url, f"HTTP {response.status_code}", status=response.status_code)

                content_type = response.headers.get("content-type", "")
                if content_type.lower().startswith("multipart/"):
                    data, mime_type = await self._first_frame(response, url, content_type)
                else:
                    data = await response.aread()
                    mime_type = content_type.split(";")[0].strip() or "image/jpeg"

        return FetchedPayload(url=url, data=data, mime_type=mime_type)

    async def _first_frame(self, response: httpx.Response, url: str, content_type: str) -> tuple[bytes, str]:
        boundary = parse_boundary(content_type)
        if boundary is None:
            raise FetchFailed(url, "multipart response without a boundary")

        buffer = bytearray()
        part = None
        async for chunk in response.aiter_bytes():
            buffer.extend(chunk)
            part = first_part(buffer, boundary)
            if part is not None:
                break
            if len(buffer) > MAX_STREAM_BYTES:
                raise FetchFailed(url, f"no complete frame in the first {MAX_STREAM_BYTES} bytes of the stream")
        else:
            part = first_part(buffer, boundary, complete=True)

        if part is None:
            raise FetchFailed(url, "stream ended before a complete frame")
        headers, body = part
        mime_type = headers.get("content-type", "").split(";")[0].strip() or "image/jpeg"
        if mime_type == "image/jpeg" and not body.startswith(JPEG_START):
            raise FetchFailed(url, "first frame is not a JPEG image")
        return body, mime_type
