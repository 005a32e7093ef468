"""Error taxonomy for device, discovery, fetch and dispatch failures."""


class WebcamError(Exception):
    """Base class for every recoverable, envelope-reported error."""


# Local devices

class DeviceError(WebcamError):
    pass


class DeviceUnavailable(DeviceError):
    """The capture subsystem itself cannot be used."""


class DeviceNotFound(DeviceError):
    def __init__(self, index: int):
        super().__init__(f"Camera not found: {index}")
        self.index = index


class DeviceOpenFailed(DeviceError):
    def __init__(self, index: int, reason: str):
        super().__init__(f"Failed to open camera {index}: {reason}")
        self.index = index


class CaptureFailed(DeviceError):
    """A frame could not be captured.

    ``device_lost`` is True when the handle died and must be released.
    """

    def __init__(self, index: int, reason: str, device_lost: bool = False):
        super().__init__(f"Failed to capture from camera {index}: {reason}")
        self.index = index
        self.device_lost = device_lost


# Remote search provider

class ProviderError(WebcamError):
    """Generic search provider failure."""


class ProviderUnauthorized(ProviderError):
    def __init__(self):
        super().__init__("Unauthorized - check API key")


class ProviderRateLimited(ProviderError):
    def __init__(self):
        super().__init__("Rate limit exceeded")


# Remote devices

class FetchFailed(WebcamError):
    def __init__(self, url: str, reason: str, status: int | None = None):
        super().__init__(f"Failed to fetch {url}: {reason}")
        self.url = url
        self.status = status


# Dispatcher

class DispatchError(WebcamError):
    pass


class UnknownTool(DispatchError):
    def __init__(self, name: str):
        super().__init__("Tool not found")
        self.name = name


class MissingParameter(DispatchError):
    def __init__(self, parameter: str):
        super().__init__(f"Missing required parameter: {parameter}")
        self.parameter = parameter


class InvalidParameter(DispatchError):
    def __init__(self, parameter: str, reason: str):
        super().__init__(f"Invalid parameter {parameter}: {reason}")
        self.parameter = parameter


class SessionPoisoned(Exception):
    """The device session was left in an unknown state by an internal fault.

    Deliberately not a ``WebcamError``: it aborts the tool call instead of
    being rendered into an envelope.
    """
