"""Discover internet-exposed webcams through the Shodan search API."""

import asyncio
import logging
from typing import Any, Awaitable, Callable

import httpx
from pydantic import ValidationError

from config import DEFAULT_SHODAN_BASE_URL
from errors import ProviderError, ProviderRateLimited, ProviderUnauthorized
from models import AccessType, DiscoveryReport, RemoteDevice, SearchMatch

logger = logging.getLogger(__name__)

SEARCH_TIMEOUT = 30.0  # seconds per search request

# Common camera server banners, ports and paths, most productive first.
QUERY_TEMPLATES: tuple[str, ...] = (
    "Server: SQ-WEBCAM",
    "Server: yawcam",
    "Server: webcamXP",
    '"Server: IP Webcam Server"',
    '"200 OK" "Content-Type: multipart/x-mixed-replace"',
    'port:8080 "mjpeg"',
    'port:8081 "mjpeg"',
    'port:554 "rtsp"',
    '"axis video server"',
    '"live view axis"',
    'inurl:"view/view.shtml"',
    'inurl:"ViewerFrame?Mode="',
    'inurl:"MultiCameraFrame?Mode="',
)

# Only this many templates are run per discovery call to stay inside the
# provider's rate limits.
MAX_QUERIES = 3
DEFAULT_PER_QUERY_LIMIT = 10
QUERY_DELAY = 0.5  # seconds between successive queries

MJPEG_ENDPOINTS: tuple[str, ...] = (
    "/mjpeg",
    "/video.mjpg",
    "/video.cgi",
    "/snapshot.jpg",
    "/image.jpg",
    "/cam.jpg",
)
DEFAULT_MJPEG_ENDPOINT = "/mjpeg"

HTTP_PORTS = frozenset({80, 8080, 8081})
RTSP_PORT = 554


def classify(match: SearchMatch) -> AccessType:
    """Guess how a device is accessed from its banner and port."""
    banner = match.data.lower()
    if "mjpeg" in banner or "multipart/x-mixed-replace" in banner:
        return AccessType.MJPEG
    if match.port == RTSP_PORT or "rtsp" in banner:
        return AccessType.RTSP
    if match.port in HTTP_PORTS:
        return AccessType.HTTP
    return AccessType.UNKNOWN


def build_url(match: SearchMatch, access_type: AccessType) -> str:
    """Best-effort access URL; the MJPEG path falls back to a guessed default."""
    base = f"{match.address}:{match.port}"
    if access_type is AccessType.MJPEG:
        endpoint = next((e for e in MJPEG_ENDPOINTS if e in match.data), DEFAULT_MJPEG_ENDPOINT)
        return f"http://{base}{endpoint}"
    if access_type is AccessType.RTSP:
        return f"rtsp://{base}/"
    return f"http://{base}/"


def to_remote_device(match: SearchMatch) -> RemoteDevice:
    access_type = classify(match)
    return RemoteDevice(
        address=match.address,
        port=match.port,
        url=build_url(match, access_type),
        hostname=match.hostname,
        location=match.location,
        org=match.org,
        product=match.product,
        last_seen=match.timestamp,
        access_type=access_type,
    )


def deduplicate(devices: list[RemoteDevice]) -> list[RemoteDevice]:
    """Sort by address and keep the first device seen for each address."""
    unique: list[RemoteDevice] = []
    for device in sorted(devices, key=lambda d: d.address):
        if unique and unique[-1].address == device.address:
            continue
        unique.append(device)
    return unique


def per_query_limit(limit: int | None) -> int:
    if limit is None:
        return DEFAULT_PER_QUERY_LIMIT
    return max(1, limit // MAX_QUERIES)


class ShodanClient:
    """Minimal async client for ``/shodan/host/search``."""

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_SHODAN_BASE_URL,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = SEARCH_TIMEOUT,
    ):
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._transport = transport
        self._timeout = timeout

    async def search(self, query: str, limit: int | None = None) -> list[SearchMatch]:
        logger.debug("Executing Shodan search: %s", query)

        params: dict[str, Any] = {"key": self._api_key, "query": query}
        if limit is not None:
            params["limit"] = limit

        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self._timeout) as client:
                response = await client.get(f"{self._base_url}/shodan/host/search", params=params)
        except httpx.HTTPError as e:
            raise ProviderError(f"HTTP request failed: {e}") from e

        if response.status_code == httpx.codes.UNAUTHORIZED:
            raise ProviderUnauthorized()
        if response.status_code == httpx.codes.TOO_MANY_REQUESTS:
            raise ProviderRateLimited()
        if response.status_code != httpx.codes.OK:
            logger.error("Shodan API error %d: %s", response.status_code, response.text)
            raise ProviderError(f"HTTP {response.status_code}: {response.text}")

        try:
            payload = response.json()
        except ValueError as e:
            raise ProviderError(f"Invalid JSON from Shodan: {e}") from e
        if not isinstance(payload, dict):
            raise ProviderError("Unexpected Shodan response shape")
        raw_matches = payload.get("matches") or []

        matches = []
        for raw in raw_matches:
            try:
                matches.append(SearchMatch.model_validate(raw))
            except ValidationError as e:
                logger.debug("Skipping malformed Shodan match: %s", e)
        if limit is not None:
            matches = matches[:limit]

        logger.debug("Search returned %d results", len(matches))
        return matches


class DiscoveryPipeline:
    """Run the query templates, classify matches and deduplicate by address.

    Holds no state between calls; concurrent ``run`` calls are independent.
    """

    def __init__(
        self,
        client: ShodanClient,
        query_delay: float = QUERY_DELAY,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._client = client
        self._query_delay = query_delay
        self._sleep = sleep

    async def run(self, limit: int | None = None) -> DiscoveryReport:
        logger.info("Searching for webcams via Shodan")
        cap = per_query_limit(limit)
        queries = QUERY_TEMPLATES[:MAX_QUERIES]

        devices: list[RemoteDevice] = []
        failures: list[ProviderError] = []
        warnings: list[str] = []

        for position, query in enumerate(queries):
            if position:
                await self._sleep(self._query_delay)
            try:
                matches = await self._client.search(query, cap)
            except ProviderError as e:
                logger.warning("Failed to search with query '%s': %s", query, e)
                failures.append(e)
                warnings.append(f"Query '{query}' failed: {e}")
                continue
            devices.extend(to_remote_device(m) for m in matches)

        if failures and len(failures) == len(queries):
            raise _most_severe(failures)

        unique = deduplicate(devices)
        logger.info("Found %d unique webcams", len(unique))
        return DiscoveryReport(devices=unique, queries_run=len(queries), warnings=warnings)

    async def discover(self, limit: int | None = None) -> list[RemoteDevice]:
        report = await self.run(limit)
        return report.devices


def _most_severe(failures: list[ProviderError]) -> ProviderError:
    for kind in (ProviderUnauthorized, ProviderRateLimited):
        for failure in failures:
            if isinstance(failure, kind):
                return failure
    return failures[-1]
