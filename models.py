"""Immutable records passed between the session, discovery and dispatcher."""

from enum import Enum
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationInfo, field_validator


class _Record(BaseModel):
    model_config = ConfigDict(frozen=True)


# Local capture

class DeviceInfo(_Record):
    index: int = Field(ge=0)
    name: str
    description: str = ""
    available: bool = True


class Frame(_Record):
    """One encoded frame as handed back by a device backend."""

    width: int
    height: int
    data: bytes
    mime_type: str = "image/jpeg"


class CaptureResult(_Record):
    image_data: str  # base64
    mime_type: str
    width: int
    height: int
    timestamp: str
    camera_index: int


# Remote discovery

class Location(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    country_name: str | None = None
    city: str | None = None
    region_code: str | None = None
    latitude: float | None = None
    longitude: float | None = None


class SearchMatch(BaseModel):
    """A raw match as returned by the Shodan host search endpoint."""

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    address: str = Field(validation_alias=AliasChoices("ip_str", "address"))
    port: int
    data: str = ""
    transport: str = "tcp"
    hostnames: list[str] = Field(default_factory=list)
    location: Location | None = None
    org: str | None = None
    product: str | None = None
    timestamp: str = ""

    @field_validator("data", "transport", "hostnames", "timestamp", mode="before")
    @classmethod
    def _null_to_default(cls, value, info: ValidationInfo):
        if value is None:
            return cls.model_fields[info.field_name].get_default(call_default_factory=True)
        return value

    @property
    def hostname(self) -> str | None:
        return self.hostnames[0] if self.hostnames else None


class AccessType(str, Enum):
    MJPEG = "MJPEG"
    RTSP = "RTSP"
    HTTP = "HTTP"
    UNKNOWN = "Unknown"


class RemoteDevice(_Record):
    address: str
    port: int
    url: str
    hostname: str | None = None
    location: Location | None = None
    org: str | None = None
    product: str | None = None
    last_seen: str = ""
    access_type: AccessType = AccessType.UNKNOWN


class DiscoveryReport(_Record):
    devices: list[RemoteDevice]
    queries_run: int
    warnings: list[str] = Field(default_factory=list)


class FetchedPayload(_Record):
    url: str
    data: bytes
    mime_type: str = "image/jpeg"


# Response envelope

class TextBlock(_Record):
    type: Literal["text"] = "text"
    text: str


class ImageBlock(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    type: Literal["image"] = "image"
    data: str  # base64
    mime_type: str = Field(alias="mimeType")


class Envelope(_Record):
    """Uniform result of a tool call, for successes and domain errors alike."""

    content: list[TextBlock | ImageBlock]
    metadata: dict[str, Any] | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
