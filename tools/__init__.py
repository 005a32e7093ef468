from tools.device_tools import register_device_tools
from tools.remote_tools import register_remote_tools
from tools.result import to_tool_result

__all__ = [
    "register_device_tools",
    "register_remote_tools",
    "to_tool_result",
]
