"""
Programmer Communication Module
===============================

This module talks to the USB SPI programmer over a serial byte stream.
It implements the page-oriented programming protocol used to write and
read SPI flash and to stream bitstreams straight into an FPGA.

Module Structure
----------------
- **serial**: Serial port utilities (detection, open/close)
- **stream**: Byte stream primitives (line reader, exact reads)
- **protocol**: Wire constants, commands, framing helpers
- **banner**: Programmer banner parsing
- **verify**: Page-by-page read-back verification
- **transfer**: Page transfer engine (flash write/read, FPGA write)
- **session**: Wake-up, banner, mode selection and file helpers

Quick Start
-----------
**Writing flash**:

    from spi_flasher.comms import Session, write_flash_file

    with Session('/dev/ttyACM0') as session:
        result = write_flash_file(session, 'gateware.bin')
        print(f"{result.units_sent} pages, "
              f"{result.validation_failures} failed verification")

**Reading flash**:

    with Session('/dev/ttyACM0') as session:
        read_flash_file(session, 'backup.bin')

**Configuring the FPGA directly**:

    with Session('/dev/ttyACM0') as session:
        status = write_fpga_file(session, 'top.bin')
        print("CDONE high" if status.cdone_high else "CDONE low")

Error Handling
--------------
All communication errors inherit from `CommsError`:

- `ConnectionError`: Cannot open the port
- `TransportError`: Read/write failed (`TimeoutError` for short reads)
- `DeviceError`: The programmer reported an error for a page or block
- `VerificationError`: Read-back differed (raised by
  `TransferResult.raise_on_failure`)

`BannerParseError` is a `ParseError`, not a `CommsError`. These
exceptions are defined in `spi_flasher.errors`.

Thread Safety
-------------
Sessions are NOT thread-safe. The protocol keeps exactly one operation
outstanding, so use a session from a single thread.
"""

from spi_flasher.comms.banner import (
    KNOWN_DEVICES,
    MAX_CAPACITY,
    Banner,
    check_known_capacity,
    parse_banner,
)
from spi_flasher.comms.protocol import (
    ACK_SENTINEL,
    CDONE_HIGH,
    END_OF_STREAM_MARKER,
    MAX_BLOCK_SIZE,
    PAGE_SIZE,
    WAKEUP_BYTE,
    Acknowledgement,
    AckKind,
    Command,
    encode_page_count,
    iter_blocks,
    iter_pages,
    pad_to_page,
    page_count,
)
from spi_flasher.comms.serial import (
    DEFAULT_BAUD_RATE,
    DEFAULT_TIMEOUT,
    PortInfo,
    close_serial_port,
    find_programmer_port,
    format_port_list,
    list_serial_ports,
    open_serial_port,
)
from spi_flasher.comms.session import (
    Session,
    load_image,
    read_flash_file,
    write_flash_file,
    write_flash_image,
    write_fpga_file,
)
from spi_flasher.comms.stream import (
    Line,
    ReadOutcome,
    ReadResult,
    read_chunk,
    read_exact,
    read_line,
    write_all,
)
from spi_flasher.comms.transfer import (
    FpgaResult,
    PageTransfer,
    ProgressCallback,
    TransferResult,
)
from spi_flasher.comms.verify import PageMismatch, Verifier

__all__ = [
    # Banner
    "KNOWN_DEVICES",
    "MAX_CAPACITY",
    "Banner",
    "check_known_capacity",
    "parse_banner",
    # Protocol
    "ACK_SENTINEL",
    "CDONE_HIGH",
    "END_OF_STREAM_MARKER",
    "MAX_BLOCK_SIZE",
    "PAGE_SIZE",
    "WAKEUP_BYTE",
    "Acknowledgement",
    "AckKind",
    "Command",
    "encode_page_count",
    "iter_blocks",
    "iter_pages",
    "pad_to_page",
    "page_count",
    # Serial
    "DEFAULT_BAUD_RATE",
    "DEFAULT_TIMEOUT",
    "PortInfo",
    "close_serial_port",
    "find_programmer_port",
    "format_port_list",
    "list_serial_ports",
    "open_serial_port",
    # Session
    "Session",
    "load_image",
    "read_flash_file",
    "write_flash_file",
    "write_flash_image",
    "write_fpga_file",
    # Stream
    "Line",
    "ReadOutcome",
    "ReadResult",
    "read_chunk",
    "read_exact",
    "read_line",
    "write_all",
    # Transfer
    "FpgaResult",
    "PageTransfer",
    "ProgressCallback",
    "TransferResult",
    # Verify
    "PageMismatch",
    "Verifier",
]
