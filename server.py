# /// script
# dependencies = ["fastmcp", "httpx", "opencv-python-headless", "python-dotenv"]
# requires-python = ">=3.10"
# ///
"""Webcam MCP server: entry point that wires all tools together."""

import asyncio
import logging
import sys

from fastmcp import FastMCP

from config import Settings
from device import OpenCVBackend
from discovery import DiscoveryPipeline, ShodanClient
from dispatcher import ToolDispatcher
from fetch import RemoteFetcher
from registry import CapabilityRegistry, ToolName
from session import DeviceSession
from tools import register_device_tools, register_remote_tools

logger = logging.getLogger(__name__)


def build_dispatcher(settings: Settings) -> ToolDispatcher:
    """Assemble the dispatcher; remote tools exist only when a Shodan key is set."""
    registry = CapabilityRegistry(remote_enabled=settings.remote_enabled)
    session = DeviceSession(OpenCVBackend(scan_limit=settings.scan_limit, jpeg_quality=settings.jpeg_quality))

    discovery = fetcher = None
    if settings.remote_enabled:
        logger.info("Shodan integration enabled")
        client = ShodanClient(settings.shodan_api_key, base_url=settings.shodan_base_url)
        discovery = DiscoveryPipeline(client)
        fetcher = RemoteFetcher()
    else:
        logger.warning("SHODAN_API_KEY not found - Shodan features will be disabled")

    return ToolDispatcher(registry, session, discovery=discovery, fetcher=fetcher)


def build_server(dispatcher: ToolDispatcher) -> FastMCP:
    mcp = FastMCP("Webcam")

    register_device_tools(mcp, dispatcher)
    if ToolName.SEARCH_WEBCAMS in dispatcher.registry:
        register_remote_tools(mcp, dispatcher)

    logger.info("Registered tools: %s", ", ".join(dispatcher.registry.names()))
    return mcp


async def check_local_cameras(dispatcher: ToolDispatcher) -> None:
    """Log whether local cameras are reachable; never fails startup."""
    envelope = await dispatcher.dispatch(ToolName.LIST_CAMERAS.value)
    if envelope.error is not None:
        logger.warning("Local camera access failed: %s", envelope.error)
    else:
        logger.info("Found %d local camera(s)", len(envelope.metadata["cameras"]))


def main():
    """Run the webcam MCP server (stdio transport)."""
    settings = Settings()
    # stdout carries the stdio protocol
    logging.basicConfig(
        level=settings.log_level,
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    dispatcher = build_dispatcher(settings)
    mcp = build_server(dispatcher)
    asyncio.run(check_local_cameras(dispatcher))
    logger.warning("Only access webcams you own or have permission to use")
    try:
        mcp.run()
    finally:
        dispatcher.close()


if __name__ == "__main__":
    main()
