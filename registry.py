"""Static description of the tools this server exposes."""

from enum import Enum

from pydantic import BaseModel, ConfigDict


class ToolName(str, Enum):
    LIST_CAMERAS = "list_cameras"
    CAPTURE_IMAGE = "capture_image"
    GET_CAMERA_INFO = "get_camera_info"
    SEARCH_WEBCAMS = "search_webcams"
    CAPTURE_REMOTE_IMAGE = "capture_remote_image"


class ParameterSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: str
    description: str
    required: bool = False


class ToolDefinition(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: ToolName
    description: str
    parameters: dict[str, ParameterSpec] = {}


LOCAL_TOOLS: tuple[ToolDefinition, ...] = (
    ToolDefinition(
        name=ToolName.LIST_CAMERAS,
        description="List all available local camera devices.",
    ),
    ToolDefinition(
        name=ToolName.CAPTURE_IMAGE,
        description=(
            "Capture a JPEG image from a local camera. Opens the camera if it is "
            "not the one currently in use."
        ),
        parameters={
            "camera_index": ParameterSpec(
                type="integer",
                description="Index of the camera to capture from (see list_cameras). Defaults to 0.",
            ),
        },
    ),
    ToolDefinition(
        name=ToolName.GET_CAMERA_INFO,
        description="Get information about the available local cameras and the one currently open.",
    ),
)

REMOTE_TOOLS: tuple[ToolDefinition, ...] = (
    ToolDefinition(
        name=ToolName.SEARCH_WEBCAMS,
        description=(
            "Search for publicly exposed webcams using Shodan. Only access webcams "
            "you own or have permission to use."
        ),
        parameters={
            "limit": ParameterSpec(
                type="integer",
                description=(
                    "Approximate maximum number of results. Only the first three search "
                    "queries are run, each capped at limit // 3 (10 when omitted)."
                ),
            ),
        },
    ),
    ToolDefinition(
        name=ToolName.CAPTURE_REMOTE_IMAGE,
        description="Fetch a single image from a remote webcam URL (typically one returned by search_webcams).",
        parameters={
            "url": ParameterSpec(
                type="string",
                description="Webcam URL to fetch, e.g. a url returned by search_webcams.",
                required=True,
            ),
            "ip": ParameterSpec(type="string", description="Optional IP address of the webcam."),
            "port": ParameterSpec(type="integer", description="Optional port of the webcam."),
        },
    ),
)


class CapabilityRegistry:
    """Ordered, immutable set of tool definitions fixed at construction."""

    def __init__(self, remote_enabled: bool = False):
        definitions = LOCAL_TOOLS + (REMOTE_TOOLS if remote_enabled else ())
        self._definitions = definitions
        self._by_name = {d.name.value: d for d in definitions}

    def definitions(self) -> tuple[ToolDefinition, ...]:
        return self._definitions

    def names(self) -> list[str]:
        return list(self._by_name)

    def get(self, name: str) -> ToolDefinition | None:
        return self._by_name.get(name)

    def parameter(self, tool: str, name: str) -> ParameterSpec:
        """Declared parameter ``name`` of a registered tool; KeyError if either is unknown."""
        return self._by_name[tool].parameters[name]

    def __contains__(self, name: object) -> bool:
        if isinstance(name, ToolName):
            name = name.value
        return name in self._by_name

    def __len__(self) -> int:
        return len(self._definitions)
