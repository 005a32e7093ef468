"""Runtime settings loaded from the environment (and an optional .env file)."""

import os
from typing import Final

from dotenv import load_dotenv

DEFAULT_SHODAN_BASE_URL = "https://api.shodan.io"


class Settings:
    """Server configuration.

    The only switch that changes the tool surface is ``SHODAN_API_KEY``:
    without it the remote discovery tools are not registered at all.
    """

    def __init__(self, load_env_file: bool = True) -> None:
        if load_env_file:
            load_dotenv()

        self.shodan_api_key: Final[str | None] = os.getenv("SHODAN_API_KEY") or None
        self.shodan_base_url: Final[str] = os.getenv(
            "SHODAN_BASE_URL", DEFAULT_SHODAN_BASE_URL
        ).rstrip("/")

        # Number of device indices scanned when enumerating local cameras
        self.scan_limit: Final[int] = int(os.getenv("WEBCAM_SCAN_LIMIT", "10"))
        self.jpeg_quality: Final[int] = int(os.getenv("WEBCAM_JPEG_QUALITY", "85"))

        self.log_level: Final[str] = os.getenv("LOG_LEVEL", "INFO").upper()

    @property
    def remote_enabled(self) -> bool:
        return self.shodan_api_key is not None
