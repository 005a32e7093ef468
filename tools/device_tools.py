"""Local camera tools. All device access goes through the dispatcher's locked session."""

from fastmcp import FastMCP
from fastmcp.tools.tool import ToolResult
from pydantic import Field

from dispatcher import ToolDispatcher
from registry import ToolName
from tools.result import to_tool_result


def register_device_tools(server: FastMCP, dispatcher: ToolDispatcher) -> None:
    registry = dispatcher.registry

    @server.tool(
        name=ToolName.LIST_CAMERAS.value,
        description=registry.get(ToolName.LIST_CAMERAS.value).description,
    )
    async def list_cameras() -> ToolResult:
        envelope = await dispatcher.dispatch(ToolName.LIST_CAMERAS.value, {})
        return to_tool_result(envelope)

    @server.tool(
        name=ToolName.CAPTURE_IMAGE.value,
        description=registry.get(ToolName.CAPTURE_IMAGE.value).description,
    )
    async def capture_image(
        camera_index: int | None = Field(
            default=None,
            description=registry.parameter(ToolName.CAPTURE_IMAGE.value, "camera_index").description,
        ),
    ) -> ToolResult:
        envelope = await dispatcher.dispatch(
            ToolName.CAPTURE_IMAGE.value, {"camera_index": camera_index}
        )
        return to_tool_result(envelope)

    @server.tool(
        name=ToolName.GET_CAMERA_INFO.value,
        description=registry.get(ToolName.GET_CAMERA_INFO.value).description,
    )
    async def get_camera_info() -> ToolResult:
        envelope = await dispatcher.dispatch(ToolName.GET_CAMERA_INFO.value, {})
        return to_tool_result(envelope)
