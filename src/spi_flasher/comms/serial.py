"""
Serial Port Utilities for the SPI Programmer
============================================

This module manages the serial connection to the USB programmer. It
handles:

- Port enumeration and detection
- Automatic detection of the programmer's USB CDC port
- Opening the port with the settings the protocol expects

Serial Port Settings
--------------------
The programmer enumerates as a USB CDC ACM device, so the baud rate is
not used on the wire. It is still passed through because some
USB-serial bridges honour it. Framing is always:
- Data Bits: 8
- Parity: None
- Stop Bits: 1
- Flow Control: None (the protocol acknowledges every page)

The read timeout bounds every blocking read. A read that times out
returns short, and the stream layer turns that into a TimeoutError.
"""

import logging
from dataclasses import dataclass
from typing import Final, Optional

import serial
import serial.tools.list_ports

from spi_flasher.errors import ConnectionError

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Ignored by USB CDC devices, used by real UART bridges
DEFAULT_BAUD_RATE: Final[int] = 115200

# Default read timeout in seconds. A bulk erase runs before the first
# page is acknowledged and can take tens of seconds on large parts.
DEFAULT_TIMEOUT: Final[float] = 60.0

# Raspberry Pi (RP2040 USB CDC)
PICO_VENDOR_ID: Final[int] = 0x2E8A

# USB vendors probed by auto-detection, most likely programmer first
USB_VENDOR_IDS: Final[dict[int, str]] = {
    PICO_VENDOR_ID: "Raspberry Pi",
    0x0403: "FTDI",
    0x10C4: "Silicon Labs",
    0x1A86: "QinHeng",
}

# Rank of USB ports from vendors not listed above
_UNKNOWN_VENDOR_RANK: Final[int] = len(USB_VENDOR_IDS)


# =============================================================================
# Port Information
# =============================================================================

@dataclass(frozen=True)
class PortInfo:
    """
    A serial port that could lead to the programmer.

    Attributes:
        device: System device path (e.g., '/dev/ttyACM0', 'COM3')
        description: Driver description, may be empty
        vid: USB Vendor ID, None for built-in UARTs
        pid: USB Product ID, None for built-in UARTs
        serial_number: USB serial number, if reported
        manufacturer: USB manufacturer string, if reported
    """

    device: str
    description: str = ""
    vid: Optional[int] = None
    pid: Optional[int] = None
    serial_number: Optional[str] = None
    manufacturer: Optional[str] = None

    @classmethod
    def from_comport(cls, port) -> "PortInfo":
        """Build from a ``serial.tools.list_ports`` entry."""
        return cls(
            device=port.device,
            description=port.description or "",
            vid=port.vid,
            pid=port.pid,
            serial_number=port.serial_number,
            manufacturer=port.manufacturer,
        )

    @property
    def is_usb(self) -> bool:
        return self.vid is not None

    @property
    def vendor_name(self) -> Optional[str]:
        return USB_VENDOR_IDS.get(self.vid) if self.is_usb else None

    @property
    def usb_id(self) -> Optional[str]:
        """``VID:PID`` in hex, or None for non-USB ports."""
        if not self.is_usb:
            return None
        return f"{self.vid:04X}:{self.pid or 0:04X}"

    @property
    def detection_rank(self) -> Optional[int]:
        """
        Auto-detection preference, lower is better.

        Known vendors rank in USB_VENDOR_IDS order, other USB ports
        after them. Non-USB ports are never picked (None).
        """
        if not self.is_usb:
            return None
        for rank, vid in enumerate(USB_VENDOR_IDS):
            if vid == self.vid:
                return rank
        return _UNKNOWN_VENDOR_RANK

    def __str__(self) -> str:
        text = self.device
        if self.description:
            text += f" - {self.description}"
        if self.vendor_name:
            text += f" ({self.vendor_name})"
        return text


# =============================================================================
# Port Enumeration
# =============================================================================

def list_serial_ports() -> list[PortInfo]:
    """Return every serial port the system reports."""
    ports = [
        PortInfo.from_comport(port)
        for port in serial.tools.list_ports.comports()
    ]
    for info in ports:
        logger.debug("Found port: %s (usb=%s)", info.device, info.usb_id or "no")
    return ports


def find_programmer_port() -> Optional[str]:
    """
    Pick the port most likely to be the programmer.

    Raspberry Pi Pico CDC ports win, then the USB-serial bridges in
    USB_VENDOR_IDS, then any other USB port. Ties keep enumeration
    order. Built-in UARTs are never chosen.

    Returns:
        Device path, or None if no USB serial port is present.
    """
    candidates = [
        (port.detection_rank, index, port)
        for index, port in enumerate(list_serial_ports())
        if port.detection_rank is not None
    ]
    if not candidates:
        logger.debug("No USB serial ports found")
        return None

    _, _, best = min(candidates, key=lambda item: item[:2])
    logger.info("Auto-detected port: %s", best)
    return best.device


# =============================================================================
# Port Configuration
# =============================================================================

def open_serial_port(
    device: str,
    baud_rate: int = DEFAULT_BAUD_RATE,
    timeout: Optional[float] = DEFAULT_TIMEOUT,
) -> serial.Serial:
    """
    Open and configure a serial port for the programmer.

    Args:
        device: Serial port device path (e.g., '/dev/ttyACM0', 'COM3').
        baud_rate: Baud rate, default 115200.
        timeout: Read timeout in seconds, or None to block forever.

    Returns:
        Configured and opened serial.Serial object.

    Raises:
        ConnectionError: If the port cannot be opened or configured.
        ValueError: If baud_rate or timeout is not positive.

    Note:
        The caller is responsible for closing the port when done.
        Session does this as a context manager.
    """
    if baud_rate <= 0:
        raise ValueError(f"Invalid baud rate: {baud_rate}")
    if timeout is not None and timeout <= 0:
        raise ValueError(f"Invalid timeout: {timeout}")

    logger.info("Opening serial port: %s at %d baud", device, baud_rate)

    try:
        port = serial.Serial(
            port=device,
            baudrate=baud_rate,
            bytesize=serial.EIGHTBITS,
            parity=serial.PARITY_NONE,
            stopbits=serial.STOPBITS_ONE,
            timeout=timeout,
            xonxoff=False,
            rtscts=False,
            dsrdtr=False,
        )

        # Drop anything the programmer printed before we connected
        port.reset_input_buffer()
        port.reset_output_buffer()

        logger.debug("Port opened: %s (timeout=%s)", device, timeout)

        return port

    except serial.SerialException as e:
        error_msg = str(e)

        if "Permission denied" in error_msg:
            raise ConnectionError(
                f"Permission denied accessing {device}. "
                "You may need to add your user to the 'dialout' group: "
                "sudo usermod -a -G dialout $USER"
            ) from e
        elif "No such file" in error_msg or "not found" in error_msg.lower():
            raise ConnectionError(
                f"Serial port not found: {device}. "
                "Power on the programmer and try again, "
                "or use 'spiflash ports' to list available ports."
            ) from e
        elif "busy" in error_msg.lower() or "in use" in error_msg.lower():
            raise ConnectionError(
                f"Serial port {device} is busy. "
                "Close any other programs using the port."
            ) from e
        else:
            raise ConnectionError(f"Cannot open {device}: {e}") from e


def close_serial_port(port: Optional[serial.Serial]) -> None:
    """
    Safely close a serial port.

    Errors during close are logged and ignored, the session is ending
    anyway.
    """
    if port is None:
        return

    try:
        if port.is_open:
            port.close()
            logger.debug("Serial port closed")
    except Exception as e:
        logger.warning("Error closing serial port: %s", e)


# =============================================================================
# Display
# =============================================================================

def format_port_list(ports: list[PortInfo], verbose: bool = False) -> str:
    """
    Render ports for the ``ports`` command, one port per line.

    With ``verbose`` each USB port gets a second line holding its
    VID:PID, serial number and manufacturer.
    """
    if not ports:
        return "No serial ports found."

    lines = []
    for port in ports:
        lines.append(f"  {port}")
        if verbose and port.is_usb:
            details = [f"USB {port.usb_id}"]
            if port.serial_number:
                details.append(f"serial {port.serial_number}")
            if port.manufacturer:
                details.append(port.manufacturer)
            lines.append("      " + ", ".join(details))

    return "\n".join(lines)
