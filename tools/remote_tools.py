"""Remote webcam tools. Only registered when a Shodan API key is configured."""

from fastmcp import FastMCP
from fastmcp.tools.tool import ToolResult
from pydantic import Field

from dispatcher import ToolDispatcher
from registry import ToolName
from tools.result import to_tool_result


def register_remote_tools(server: FastMCP, dispatcher: ToolDispatcher) -> None:
    registry = dispatcher.registry
    search = ToolName.SEARCH_WEBCAMS.value
    capture = ToolName.CAPTURE_REMOTE_IMAGE.value

    @server.tool(name=search, description=registry.get(search).description)
    async def search_webcams(
        limit: int | None = Field(
            default=None,
            description=registry.parameter(search, "limit").description,
        ),
    ) -> ToolResult:
        envelope = await dispatcher.dispatch(search, {"limit": limit})
        return to_tool_result(envelope)

    @server.tool(name=capture, description=registry.get(capture).description)
    async def capture_remote_image(
        url: str = Field(description=registry.parameter(capture, "url").description),
        ip: str | None = Field(default=None, description=registry.parameter(capture, "ip").description),
        port: int | None = Field(default=None, description=registry.parameter(capture, "port").description),
    ) -> ToolResult:
        envelope = await dispatcher.dispatch(capture, {"url": url, "ip": ip, "port": port})
        return to_tool_result(envelope)
