"""
SPI Flasher - Host Client for a USB SPI Flash / FPGA Programmer
===============================================================

This package drives a small USB programmer (an RP2040 with the target's
configuration flash on its SPI bus) over a serial byte stream. It can:

- write a binary image to SPI flash and verify it page by page
- read the full flash contents back to a file
- stream a bitstream straight into the FPGA's configuration interface

Main Components
---------------
- **comms**: Protocol implementation (serial transport, banner,
  page transfer engine, verification, sessions)
- **emulator**: In-process programmer simulator for testing without
  hardware
- **config**: Connection settings from defaults and the environment
- **cli**: The ``spiflash`` command-line tool

Quick Start
-----------
    >>> from spi_flasher import Session, write_flash_file
    >>> with Session("/dev/ttyACM0") as session:
    ...     result = write_flash_file(session, "gateware.bin")
    >>> result.ok
    True

Or use the command-line tool:
    $ spiflash --port /dev/ttyACM0 write gateware.bin
    $ spiflash read backup.bin
    $ spiflash fpga top.bin
"""

__version__ = "1.0.0"

# =============================================================================
# Public API Exports
# =============================================================================

from spi_flasher.comms import (
    Banner,
    Command,
    FpgaResult,
    PageTransfer,
    Session,
    TransferResult,
    find_programmer_port,
    list_serial_ports,
    pad_to_page,
    parse_banner,
    read_flash_file,
    write_flash_file,
    write_flash_image,
    write_fpga_file,
)
from spi_flasher.config import FlasherConfig
from spi_flasher.emulator import ProgrammerSimulator
from spi_flasher.errors import (
    BannerParseError,
    CommsError,
    ConfigError,
    DeviceError,
    FlasherError,
    ParseError,
    ProtocolError,
    TimeoutError as FlasherTimeoutError,  # Avoid collision with builtin
    TransportError,
    VerificationError,
)
from spi_flasher.errors import ConnectionError as FlasherConnectionError

__all__ = [
    "__version__",
    # Comms
    "Banner",
    "Command",
    "FpgaResult",
    "PageTransfer",
    "Session",
    "TransferResult",
    "find_programmer_port",
    "list_serial_ports",
    "pad_to_page",
    "parse_banner",
    "read_flash_file",
    "write_flash_file",
    "write_flash_image",
    "write_fpga_file",
    # Config / simulator
    "FlasherConfig",
    "ProgrammerSimulator",
    # Errors
    "BannerParseError",
    "CommsError",
    "ConfigError",
    "DeviceError",
    "FlasherConnectionError",
    "FlasherError",
    "FlasherTimeoutError",
    "ParseError",
    "ProtocolError",
    "TransportError",
    "VerificationError",
]
