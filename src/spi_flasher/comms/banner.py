"""
Programmer Banner
=================

After the wake-up byte the programmer announces itself with one line:

    <device-name> <capacity-bytes>\\n

for example ``EPCQ16A 2097152``. The name is the flash part the
programmer detected over SPI, and the capacity is its size in bytes.
In FPGA mode the line is free text and is only shown to the user.

The capacity travels in the same 32-bit word size as the page count,
so anything above ``MAX_CAPACITY`` is rejected.
"""

import logging
import re
from dataclasses import dataclass
from typing import Final, Optional

from spi_flasher.comms.protocol import PAGE_SIZE
from spi_flasher.errors import BannerParseError

logger = logging.getLogger(__name__)


MAX_CAPACITY: Final[int] = 0xFFFFFFFF

_DIGITS = re.compile(r"[0-9]+", re.ASCII)

# Parts the programmer firmware can identify, by name.
# Capacities are in bytes (the part names are in megabits).
KNOWN_DEVICES: Final[dict[str, int]] = {
    "EPCQ4A": (4 * 1024 * 1024) // 8,
    "EPCQ16A": (16 * 1024 * 1024) // 8,
    "EPCQ32A": (32 * 1024 * 1024) // 8,
    "EPCQ64A": (64 * 1024 * 1024) // 8,
    "EPCQ128A": (128 * 1024 * 1024) // 8,
}


@dataclass(frozen=True)
class Banner:
    """
    Parsed programmer banner.

    Attributes:
        device_name: Flash part name reported by the programmer
        capacity_bytes: Addressable flash capacity in bytes
    """

    device_name: str
    capacity_bytes: int

    @property
    def page_count(self) -> int:
        """Number of whole pages in the flash part."""
        return self.capacity_bytes // PAGE_SIZE

    @property
    def known_capacity(self) -> Optional[int]:
        """Capacity from the part table, or None for unknown parts."""
        return KNOWN_DEVICES.get(self.device_name.upper())

    def __str__(self) -> str:
        return f"Device: {self.device_name} Capacity: {self.capacity_bytes}"


def parse_banner(line: str) -> Banner:
    """
    Parse a banner line into a Banner.

    The line must be exactly two whitespace-separated tokens, the second
    a non-negative decimal integer no larger than MAX_CAPACITY.

    Args:
        line: Banner text with the newline already removed.

    Returns:
        The parsed Banner.

    Raises:
        BannerParseError: If the line does not have that shape.
    """
    tokens = line.split()

    if len(tokens) != 2:
        raise BannerParseError(
            line, f"expected '<name> <capacity>', got {len(tokens)} field(s)"
        )

    name, capacity_text = tokens

    if not _DIGITS.fullmatch(capacity_text):
        raise BannerParseError(
            line, f"capacity '{capacity_text}' is not a non-negative integer"
        )

    capacity = int(capacity_text)
    if capacity > MAX_CAPACITY:
        raise BannerParseError(
            line, f"capacity {capacity} does not fit in 32 bits"
        )

    banner = Banner(device_name=name, capacity_bytes=capacity)
    logger.debug("Parsed banner: %s", banner)
    return banner


def check_known_capacity(banner: Banner) -> bool:
    """
    Compare the announced capacity with the part table.

    A disagreement is logged, not raised, because the programmer's
    announcement is what the transfer uses.

    Returns:
        False if the part is known and the capacity differs, else True.
    """
    expected = banner.known_capacity
    if expected is None:
        logger.debug("Unknown flash part: %s", banner.device_name)
        return True

    if expected != banner.capacity_bytes:
        logger.warning(
            "%s announced %d bytes, expected %d for this part",
            banner.device_name, banner.capacity_bytes, expected,
        )
        return False

    return True
