"""
Flasher Configuration
=====================

Connection settings for the programmer. Configuration can come from:
- Default values (defined here)
- Environment variables
- Command-line options (applied by the CLI on top of the environment)

Environment variables (all optional):
    SPIFLASH_PORT: Serial device (e.g. /dev/ttyACM0)
    SPIFLASH_BAUD: Baud rate (integer)
    SPIFLASH_TIMEOUT: Read timeout in seconds (float, 0 blocks forever)
"""

import logging
import os
from dataclasses import dataclass, replace
from typing import Optional

from spi_flasher.comms.serial import DEFAULT_BAUD_RATE, DEFAULT_TIMEOUT

logger = logging.getLogger(__name__)


@dataclass
class FlasherConfig:
    """
    Configuration for one flasher run.

    Attributes:
        port: Serial device, or None to auto-detect
        baud_rate: Baud rate passed to the port
        timeout: Read timeout in seconds, None to block forever
        verbose: Enable debug logging
    """

    port: Optional[str] = None
    baud_rate: int = DEFAULT_BAUD_RATE
    timeout: Optional[float] = DEFAULT_TIMEOUT
    verbose: bool = False

    @classmethod
    def from_env(cls) -> "FlasherConfig":
        """
        Create FlasherConfig from environment variables.

        Invalid numeric values are ignored with a warning. That covers
        values that do not parse, a baud rate below 1 and a negative
        (or NaN) timeout.
        """
        config = cls()

        if port := os.environ.get("SPIFLASH_PORT"):
            config.port = port

        if baud := os.environ.get("SPIFLASH_BAUD"):
            try:
                rate = int(baud)
            except ValueError:
                rate = 0
            if rate > 0:
                config.baud_rate = rate
            else:
                logger.warning("Ignoring invalid SPIFLASH_BAUD: %r", baud)

        if timeout := os.environ.get("SPIFLASH_TIMEOUT"):
            try:
                seconds = float(timeout)
            except ValueError:
                seconds = -1.0
            # NaN fails this comparison too
            if seconds >= 0:
                config.timeout = seconds if seconds > 0 else None
            else:
                logger.warning("Ignoring invalid SPIFLASH_TIMEOUT: %r", timeout)

        return config

    def merged(
        self,
        port: Optional[str] = None,
        baud_rate: Optional[int] = None,
        timeout: Optional[float] = None,
        verbose: Optional[bool] = None,
    ) -> "FlasherConfig":
        """Return a copy with every non-None argument applied."""
        overrides = {
            key: value
            for key, value in (
                ("port", port),
                ("baud_rate", baud_rate),
                ("timeout", timeout),
                ("verbose", verbose),
            )
            if value is not None
        }
        return replace(self, **overrides)
