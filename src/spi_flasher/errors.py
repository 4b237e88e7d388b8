"""
SPI Flasher Error Hierarchy
===========================

This module defines the exception hierarchy for the SPI flasher client.
All exceptions inherit from FlasherError, allowing callers to catch all
flasher-related errors with a single except clause if desired.

Exception Hierarchy
-------------------
FlasherError (base)
├── ConfigError - invalid or missing configuration
├── ParseError (device text that cannot be understood)
│   └── BannerParseError - banner line is not "<name> <capacity>"
└── CommsError (serial communication)
    ├── ConnectionError - cannot open the programmer's port
    ├── TransportError - byte stream read/write failed
    │   └── TimeoutError - stream ended before the expected bytes arrived
    ├── ProtocolError - programmer answered outside the protocol
    │   └── DeviceError - in-band error report sent instead of an ack
    └── VerificationError - read-back pages differ from what was written

Fatal vs. Recorded Errors
-------------------------
Everything except VerificationError aborts the session as soon as it is
raised. Page mismatches are counted while the read-back runs and only
turned into a VerificationError once the whole image has been checked.
"""

from typing import Optional


# =============================================================================
# Base Exception Class
# =============================================================================

class FlasherError(Exception):
    """
    Base exception for all SPI flasher errors.

        try:
            write_flash_file(session, "gateware.bin")
        except FlasherError as e:
            print(f"Error: {e}")
    """
    pass


class ConfigError(FlasherError):
    """
    Invalid configuration.

    Raised before any transport activity when the tool cannot work out
    what to talk to, for example when no port was given and
    auto-detection found nothing.
    """
    pass


# =============================================================================
# Parse Exceptions
# =============================================================================

class ParseError(FlasherError):
    """Base exception for device text that cannot be parsed."""
    pass


class BannerParseError(ParseError):
    """
    The device banner does not match ``<token> <integer>``.

    There is no retry of banner reception, so this is fatal to the
    session.

    Attributes:
        line: The banner text as received (without the newline)
        reason: What was wrong with it
    """

    def __init__(self, line: str, reason: str):
        self.line = line
        self.reason = reason
        super().__init__(f"could not parse banner [{line}]: {reason}")


# =============================================================================
# Communication Exceptions
# =============================================================================

class CommsError(FlasherError):
    """Base exception for serial communication errors."""
    pass


class ConnectionError(CommsError):
    """
    Cannot open the programmer's serial port.

    Raised when:
    - Serial port not found
    - Permission denied
    - Port is busy
    """
    pass


class TransportError(CommsError):
    """
    Failure to read or write the byte stream.

    Always fatal. Nothing is retried at the page level.
    """
    pass


class TimeoutError(TransportError):
    """
    The stream ended before the expected number of bytes arrived.

    pyserial reports a read timeout as a short (possibly empty) read.
    Where a fixed amount of data is required (a page, an ack byte) the
    short read is turned into this exception.

    Note:
        This is a flasher-specific TimeoutError, distinct from the
        Python builtin TimeoutError.

    Attributes:
        expected: Number of bytes that were required
        received: Number of bytes that actually arrived
    """

    def __init__(self, expected: int, received: int, message: str = ""):
        self.expected = expected
        self.received = received
        if not message:
            message = (
                f"timed out reading from port: expected {expected} bytes, "
                f"got {received}"
            )
        super().__init__(message)


class ProtocolError(CommsError):
    """
    The programmer answered with something the protocol does not allow.
    """
    pass


class DeviceError(ProtocolError):
    """
    In-band error report from the programmer.

    The programmer sends a diagnostic line instead of the ``#`` sentinel
    when it cannot accept a page or block. The transfer stops at that
    unit.

    Attributes:
        message: Diagnostic text sent by the programmer
        unit_index: Page or block index that was being acknowledged
    """

    def __init__(self, message: str, unit_index: Optional[int] = None):
        self.message = message
        self.unit_index = unit_index
        where = f" at unit {unit_index}" if unit_index is not None else ""
        super().__init__(f"got an error writing{where}: {message}")


class VerificationError(CommsError):
    """
    Read-back verification found pages that differ from the image.

    Attributes:
        failures: Number of pages that failed verification
    """

    def __init__(self, failures: int, message: str = ""):
        self.failures = failures
        if not message:
            page_word = "page" if failures == 1 else "pages"
            message = f"validation failed on {failures} {page_word}"
        super().__init__(message)
