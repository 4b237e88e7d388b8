"""
Programmer Wire Protocol
========================

Constants and framing helpers for the page-oriented programming
protocol. Everything on the wire is raw 8-bit bytes.

Session Start
-------------
    host -> ' '                     wake-up byte
    dev  -> "<name> <capacity>\\n"   banner
    host -> 'w' | 'r' | 'f'         mode command

Flash Write ('w')
-----------------
    dev  -> "<prompt>\\n"            content ignored
    host -> uint32 LE page count
    repeat per page:
        host -> 256 bytes
        dev  -> '#'                 or an error line
    dev  -> every page again        256 bytes each, for verification

Flash Read ('r')
----------------
    dev  -> capacity bytes          no framing, no acknowledgements

FPGA Write ('f')
----------------
    dev  -> "<prompt>\\n"
    repeat per block:
        host -> length (1..255), then that many bytes
        dev  -> '#'                 or an error line
    host -> 0x00                    end-of-stream marker
    dev  -> 'H' | other             CDONE high / low

Acknowledgements
----------------
A page or block is acknowledged with a single ``#``. Any other byte
starts an in-band error report: the programmer follows it with a
diagnostic line, which becomes the transfer's terminal error.
"""

import struct
from dataclasses import dataclass
from enum import Enum
from typing import Final, Iterator

# =============================================================================
# Constants
# =============================================================================

# Flash transfer unit
PAGE_SIZE: Final[int] = 256

# Largest FPGA block; the length prefix is a single byte and 0 ends the stream
MAX_BLOCK_SIZE: Final[int] = 255

# Sent once after opening the port
WAKEUP_BYTE: Final[bytes] = b" "

# Successful page/block acknowledgement
ACK_SENTINEL: Final[int] = ord("#")

# Zero-length block terminating an FPGA bitstream
END_OF_STREAM_MARKER: Final[int] = 0

# Final FPGA status byte when CDONE is asserted
CDONE_HIGH: Final[int] = ord("H")

# Page count header: little-endian unsigned 32-bit
PAGE_COUNT_FORMAT: Final[str] = "<I"
MAX_PAGE_COUNT: Final[int] = 0xFFFFFFFF


class Command(Enum):
    """Mode command bytes sent after the banner."""

    WRITE_FLASH = b"w"
    READ_FLASH = b"r"
    WRITE_FPGA = b"f"

    @property
    def pads_image(self) -> bool:
        """Whether input files are zero-padded to a page boundary."""
        return self is Command.WRITE_FLASH


# =============================================================================
# Acknowledgements
# =============================================================================

class AckKind(Enum):
    OK = "ok"
    ERROR = "error"


@dataclass(frozen=True)
class Acknowledgement:
    """
    Outcome of waiting for a page or block acknowledgement.

    Attributes:
        kind: OK for the sentinel, ERROR for an in-band error report
        lead_byte: The byte received in place of the sentinel
        message: Diagnostic line that followed (ERROR only)
    """

    kind: AckKind
    lead_byte: int = ACK_SENTINEL
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.kind is AckKind.OK

    @classmethod
    def success(cls) -> "Acknowledgement":
        return cls(AckKind.OK)

    @classmethod
    def error(cls, lead_byte: int, message: str) -> "Acknowledgement":
        return cls(AckKind.ERROR, lead_byte=lead_byte, message=message)

    @staticmethod
    def is_sentinel(value: int) -> bool:
        return value == ACK_SENTINEL


# =============================================================================
# Framing Helpers
# =============================================================================

def pad_to_page(data: bytes) -> bytes:
    """
    Right-pad ``data`` with zero bytes to a multiple of PAGE_SIZE.

    Already aligned data (including empty data) is returned unchanged.
    """
    remainder = len(data) % PAGE_SIZE
    if remainder == 0:
        return bytes(data)
    return bytes(data) + bytes(PAGE_SIZE - remainder)


def page_count(image: bytes) -> int:
    """
    Number of pages in a page-aligned image.

    Raises:
        ValueError: If the image length is not a multiple of PAGE_SIZE.
    """
    if len(image) % PAGE_SIZE != 0:
        raise ValueError(
            f"image length {len(image)} is not a multiple of {PAGE_SIZE}"
        )
    return len(image) // PAGE_SIZE


def encode_page_count(count: int) -> bytes:
    """Encode the page count header (4 bytes, little-endian)."""
    if not 0 <= count <= MAX_PAGE_COUNT:
        raise ValueError(f"page count {count} does not fit in 32 bits")
    return struct.pack(PAGE_COUNT_FORMAT, count)


def decode_page_count(data: bytes) -> int:
    return struct.unpack(PAGE_COUNT_FORMAT, data)[0]


def iter_pages(image: bytes) -> Iterator[tuple[int, bytes]]:
    """Yield ``(index, page)`` for each page of a page-aligned image."""
    for index in range(page_count(image)):
        start = index * PAGE_SIZE
        yield index, image[start:start + PAGE_SIZE]


def iter_blocks(data: bytes) -> Iterator[bytes]:
    """
    Split an FPGA bitstream into blocks of at most MAX_BLOCK_SIZE bytes.

    The last block may be short. Empty input yields nothing.
    """
    for start in range(0, len(data), MAX_BLOCK_SIZE):
        yield data[start:start + MAX_BLOCK_SIZE]


def block_count(length: int) -> int:
    return -(-length // MAX_BLOCK_SIZE)
