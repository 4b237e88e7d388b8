"""
Programmer Session
==================

A Session owns the serial port for one run of the tool and performs
the exchange that precedes every transfer:

    1. open the port
    2. send the wake-up byte
    3. read the banner line
    4. send the mode command byte

after which a PageTransfer runs the chosen sub-protocol.

File helpers (``write_flash_file``, ``write_flash_image``,
``read_flash_file``, ``write_fpga_file``) tie this to flat binary
files. Flash images are zero-padded to a whole number of pages,
FPGA bitstreams are sent as is.
A flash read writes its output file only after the whole image has
arrived, so a failed read leaves no partial file behind.

Example:
    with Session("/dev/ttyACM0") as session:
        result = write_flash_file(session, "gateware.bin")
        result.raise_on_failure()
"""

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Optional, Union

from spi_flasher.comms.banner import Banner, check_known_capacity, parse_banner
from spi_flasher.comms.protocol import WAKEUP_BYTE, Command, pad_to_page
from spi_flasher.comms.serial import (
    DEFAULT_BAUD_RATE,
    DEFAULT_TIMEOUT,
    close_serial_port,
    open_serial_port,
)
from spi_flasher.comms.stream import read_line, write_all
from spi_flasher.comms.transfer import (
    FpgaResult,
    PageTransfer,
    ProgressCallback,
    TransferResult,
)
from spi_flasher.errors import CommsError, ConfigError, FlasherError

if TYPE_CHECKING:
    from serial import Serial

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


class Session:
    """
    One open connection to the programmer.

    Either pass a device path (the port is opened by ``open()``) or an
    already open port-like object, such as a ProgrammerSimulator.

    Attributes:
        banner: Parsed banner, after ``read_banner()``
        raw_banner: Banner text as received, after either banner read
        command: Mode command sent, after ``select()``
    """

    def __init__(
        self,
        device: Optional[str] = None,
        baud_rate: int = DEFAULT_BAUD_RATE,
        timeout: Optional[float] = DEFAULT_TIMEOUT,
        port: Optional["Serial"] = None,
    ):
        if device is None and port is None:
            raise ConfigError("Port not set")

        self.device = device
        self.baud_rate = baud_rate
        self.timeout = timeout
        self.port = port
        self._owns_port = port is None
        self._awake = False

        self.banner: Optional[Banner] = None
        self.raw_banner: Optional[str] = None
        self.command: Optional[Command] = None

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def open(self) -> "Session":
        """
        Open the port (if needed) and wake the programmer.

        A port opened here is closed again if the wake-up byte cannot
        be sent.

        Raises:
            ConfigError: If the baud rate or timeout is out of range.
            ConnectionError: If the port cannot be opened.
            TransportError: If the wake-up byte cannot be written.
        """
        if self.port is None:
            try:
                self.port = open_serial_port(
                    self.device, baud_rate=self.baud_rate, timeout=self.timeout
                )
            except ValueError as e:
                raise ConfigError(str(e)) from e

        logger.debug("Sending wake-up byte")
        try:
            write_all(self.port, WAKEUP_BYTE)
        except FlasherError:
            if self._owns_port:
                close_serial_port(self.port)
                self.port = None
            raise

        self._awake = True
        return self

    def close(self) -> None:
        if self._owns_port:
            close_serial_port(self.port)
            self.port = None
        self._awake = False

    def __enter__(self) -> "Session":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # -------------------------------------------------------------------------
    # Session Start
    # -------------------------------------------------------------------------

    def read_raw_banner(self) -> str:
        """Read the banner line without interpreting it."""
        self._require_awake()
        self.raw_banner = read_line(self.port).text
        logger.info("Banner: %s", self.raw_banner)
        return self.raw_banner

    def read_banner(self) -> Banner:
        """
        Read and parse the banner line.

        Raises:
            BannerParseError: If the line is not ``<name> <capacity>``.
        """
        self.banner = parse_banner(self.read_raw_banner())
        check_known_capacity(self.banner)
        return self.banner

    def select(self, command: Command) -> PageTransfer:
        """Send the mode command byte and return the transfer engine."""
        self._require_awake()
        if self.command is not None:
            raise CommsError(
                f"Mode already selected ({self.command.name}), "
                "a session runs one transfer"
            )

        logger.debug("Sending mode command %r", command.value)
        write_all(self.port, command.value)
        self.command = command
        return PageTransfer(self.port)

    def _require_awake(self) -> None:
        if not self._awake or self.port is None:
            raise CommsError("Session is not open")


# =============================================================================
# File Helpers
# =============================================================================

def load_image(path: PathLike, pad: bool) -> bytes:
    """
    Read a flat binary file, optionally zero-padded to a page boundary.
    """
    data = Path(path).read_bytes()
    if pad:
        padded = pad_to_page(data)
        if len(padded) != len(data):
            logger.debug(
                "Padded %s from %d to %d bytes", path, len(data), len(padded)
            )
        return padded
    return data


def write_flash_file(
    session: Session,
    path: PathLike,
    progress: Optional[ProgressCallback] = None,
    verify_progress: Optional[ProgressCallback] = None,
) -> TransferResult:
    """
    Write a file to flash and verify it.

    Raises:
        ConfigError: If the padded image is larger than the flash.
        FileNotFoundError: If the file does not exist.
    """
    return write_flash_image(
        session,
        load_image(path, pad=True),
        progress=progress,
        verify_progress=verify_progress,
    )


def write_flash_image(
    session: Session,
    image: bytes,
    progress: Optional[ProgressCallback] = None,
    verify_progress: Optional[ProgressCallback] = None,
) -> TransferResult:
    """
    Write an already loaded image to flash and verify it.

    Unaligned images are padded here, so the result of
    ``load_image(path, pad=True)`` and raw bytes are both accepted.

    Raises:
        ConfigError: If the padded image is larger than the flash.
    """
    image = pad_to_page(image)
    banner = session.read_banner()

    if len(image) > banner.capacity_bytes:
        raise ConfigError(
            f"Image is {len(image)} bytes but {banner.device_name} "
            f"holds {banner.capacity_bytes}"
        )

    transfer = session.select(Command.WRITE_FLASH)
    return transfer.write_flash(
        image, progress=progress, verify_progress=verify_progress
    )


def read_flash_file(
    session: Session,
    path: PathLike,
    progress: Optional[ProgressCallback] = None,
) -> bytes:
    """
    Read the whole flash into a file.

    The file is only written once every byte has arrived.
    """
    banner = session.read_banner()
    transfer = session.select(Command.READ_FLASH)
    data = transfer.read_flash(banner.capacity_bytes, progress=progress)

    Path(path).write_bytes(data)
    logger.info("Saved %d bytes to %s", len(data), path)
    return data


def write_fpga_file(
    session: Session,
    path: PathLike,
    progress: Optional[ProgressCallback] = None,
) -> FpgaResult:
    """Stream a bitstream file straight into the FPGA."""
    bitstream = load_image(path, pad=False)
    session.read_raw_banner()
    transfer = session.select(Command.WRITE_FPGA)
    return transfer.write_fpga(bitstream, progress=progress)
