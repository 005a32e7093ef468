"""Convert dispatcher envelopes into FastMCP tool results."""

from fastmcp.tools.tool import ToolResult
from mcp.types import ImageContent, TextContent

from models import Envelope, ImageBlock


def to_tool_result(envelope: Envelope) -> ToolResult:
    content = []
    for block in envelope.content:
        if isinstance(block, ImageBlock):
            content.append(ImageContent(type="image", data=block.data, mimeType=block.mime_type))
        else:
            content.append(TextContent(type="text", text=block.text))

    structured = {
        key: value
        for key, value in envelope.to_dict().items()
        if key in ("metadata", "error")
    }
    return ToolResult(content=content, structured_content=structured or None)
