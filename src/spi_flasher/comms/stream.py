"""
Byte Stream Primitives
======================

Every exchange with the programmer is built from four blocking
operations on the serial port:

- ``read_chunk``: one port read, classified as DATA or END_OF_STREAM
- ``read_line``: bytes up to a newline, the newline dropped
- ``read_exact``: a fixed number of bytes, looping over short reads
- ``write_all``: write and flush, failing on short writes

Read Outcomes
-------------
pyserial reports a timeout or a closed stream as a read that returns
no bytes. That is not the same as a transport failure
(``serial.SerialException``), so reads are classified explicitly:

    DATA           at least one byte arrived
    END_OF_STREAM  the read returned nothing

Transport failures are raised as TransportError. How END_OF_STREAM is
treated depends on the caller. A line read ends early and logs a
diagnostic, while ``read_exact`` raises TimeoutError because a partial
page is structurally invalid.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Final

import serial

from spi_flasher.errors import TimeoutError, TransportError

if TYPE_CHECKING:
    from serial import Serial

logger = logging.getLogger(__name__)


LINE_TERMINATOR: Final[bytes] = b"\n"


class ReadOutcome(Enum):
    """Classification of a single port read."""

    DATA = "data"
    END_OF_STREAM = "end-of-stream"


@dataclass(frozen=True)
class ReadResult:
    """Result of a single port read."""

    outcome: ReadOutcome
    data: bytes = b""

    @property
    def at_end(self) -> bool:
        return self.outcome is ReadOutcome.END_OF_STREAM


@dataclass(frozen=True)
class Line:
    """
    A line received from the programmer.

    Attributes:
        text: Line content without the terminating newline
        terminated: False if the stream ended before a newline arrived
    """

    text: str
    terminated: bool = True

    def __str__(self) -> str:
        return self.text


# =============================================================================
# Reads
# =============================================================================

def read_chunk(port: "Serial", size: int) -> ReadResult:
    """
    Perform one read of up to ``size`` bytes.

    Raises:
        TransportError: If the port reports an error.
    """
    try:
        data = port.read(size)
    except serial.SerialException as e:
        raise TransportError(f"could not read from port: {e}") from e

    if not data:
        return ReadResult(ReadOutcome.END_OF_STREAM)
    return ReadResult(ReadOutcome.DATA, bytes(data))


def read_line(port: "Serial") -> Line:
    """
    Read one newline-terminated line.

    Bytes are read one at a time so nothing past the newline is
    consumed. An empty read ends the line early. This is not an error,
    but it is logged because it usually means the programmer went
    quiet mid-line.

    Returns:
        The line, without its newline.

    Raises:
        TransportError: If the port reports an error.
    """
    buffer = bytearray()

    while True:
        result = read_chunk(port, 1)
        if result.at_end:
            logger.warning(
                "End of stream after %d bytes while reading a line", len(buffer)
            )
            return Line(_decode(buffer), terminated=False)

        if result.data == LINE_TERMINATOR:
            break

        buffer.extend(result.data)

    line = Line(_decode(buffer))
    logger.debug("RX line: %r", line.text)
    return line


def read_exact(port: "Serial", size: int) -> bytes:
    """
    Read exactly ``size`` bytes, looping over short reads.

    Raises:
        TimeoutError: If the stream ends before ``size`` bytes arrive.
        TransportError: If the port reports an error.
    """
    buffer = bytearray()

    while len(buffer) < size:
        result = read_chunk(port, size - len(buffer))
        if result.at_end:
            raise TimeoutError(size, len(buffer))
        buffer.extend(result.data)

    return bytes(buffer)


def read_byte(port: "Serial") -> int:
    """Read a single byte and return its value."""
    return read_exact(port, 1)[0]


# =============================================================================
# Writes
# =============================================================================

def write_all(port: "Serial", data: bytes) -> None:
    """
    Write ``data`` and flush it to the device.

    Raises:
        TransportError: On a port error or a short write.
    """
    try:
        written = port.write(data)
        port.flush()
    except serial.SerialException as e:
        raise TransportError(f"could not write to port: {e}") from e

    if written is not None and written != len(data):
        raise TransportError(
            f"short write to port: {written} of {len(data)} bytes"
        )


def _decode(raw: bytes) -> str:
    return bytes(raw).decode("ascii", errors="replace")
