"""
Programmer Simulator
====================

An in-process stand-in for the USB programmer firmware. It exposes the
small part of the ``serial.Serial`` API the flasher uses (``read``,
``write``, ``flush``, ``close``, ``is_open``, ``timeout``) and answers
the wire protocol the way the firmware does:

- wakes on any byte and announces ``<name> <capacity>``
- 'w': prompt, page count, bulk erase, ``#`` per page, then streams
  every written page back for verification
- 'r': streams the whole flash
- 'f': prompt, length-prefixed blocks acknowledged with ``#``, a zero
  length ends the bitstream and is answered with the CDONE state

Host bytes are processed as they are written, so the device's reply is
already waiting when the host reads. An empty read behaves like a
pyserial timeout.

Fault Injection
---------------
    fail_unit      page/block index answered with an error line
    corrupt_pages  page indexes whose read-back has one byte flipped
    cdone_high     CDONE state reported at the end of an FPGA write
    max_chunk      cap on bytes returned per read (forces short reads)
    stall_after    stop answering after this many reply bytes

Example:
    sim = ProgrammerSimulator("EPCQ4A")
    with Session(port=sim) as session:
        write_flash_file(session, "image.bin")
    assert sim.flash.startswith(open("image.bin", "rb").read())
"""

import logging
from enum import Enum, auto
from typing import Iterable, Optional

import serial

from spi_flasher.comms.banner import KNOWN_DEVICES
from spi_flasher.comms.protocol import (
    ACK_SENTINEL,
    CDONE_HIGH,
    PAGE_SIZE,
    Command,
    decode_page_count,
)

logger = logging.getLogger(__name__)

ERASED_BYTE = 0xFF
CDONE_LOW = ord("L")


class _State(Enum):
    ASLEEP = auto()
    COMMAND = auto()
    PAGE_COUNT = auto()
    PAGE_DATA = auto()
    BLOCK_LENGTH = auto()
    BLOCK_DATA = auto()
    HALTED = auto()


class ProgrammerSimulator:
    """
    Simulated programmer attached to a simulated SPI flash part.

    Attributes:
        flash: Current flash contents
        bitstream: Bytes received by the last FPGA write
        commands: Mode commands received, in order
        host_bytes: Every byte the host has written
    """

    def __init__(
        self,
        device_name: str = "EPCQ16A",
        capacity_bytes: Optional[int] = None,
        prompt: str = "+++",
        fail_unit: Optional[int] = None,
        failure_message: str = "write failed",
        corrupt_pages: Iterable[int] = (),
        cdone_high: bool = True,
        max_chunk: Optional[int] = None,
        stall_after: Optional[int] = None,
    ):
        if capacity_bytes is None:
            capacity_bytes = KNOWN_DEVICES.get(device_name, 1024 * 1024)

        self.device_name = device_name
        self.capacity_bytes = capacity_bytes
        self.prompt = prompt
        self.fail_unit = fail_unit
        self.failure_message = failure_message
        self.corrupt_pages = set(corrupt_pages)
        self.cdone_high = cdone_high
        self.max_chunk = max_chunk
        self.stall_after = stall_after

        self.flash = bytearray([ERASED_BYTE]) * capacity_bytes
        self.bitstream = bytearray()
        self.commands: list[Command] = []
        self.host_bytes = bytearray()

        self.timeout: Optional[float] = 1.0
        self.is_open = True

        self._state = _State.ASLEEP
        self._inbox = bytearray()
        self._outbox = bytearray()
        self._sent = 0
        self._pages_expected = 0
        self._pages_received = 0
        self._block_length = 0
        self._blocks_received = 0

    # -------------------------------------------------------------------------
    # serial.Serial subset
    # -------------------------------------------------------------------------

    def write(self, data: bytes) -> int:
        self._check_open()
        self.host_bytes.extend(data)
        self._inbox.extend(data)
        self._process()
        return len(data)

    def read(self, size: int = 1) -> bytes:
        self._check_open()
        size = min(size, len(self._outbox))
        if self.max_chunk is not None:
            size = min(size, self.max_chunk)
        if self.stall_after is not None:
            size = min(size, max(0, self.stall_after - self._sent))

        data = bytes(self._outbox[:size])
        del self._outbox[:size]
        self._sent += len(data)
        return data

    def flush(self) -> None:
        self._check_open()

    def reset_input_buffer(self) -> None:
        self._outbox.clear()

    def reset_output_buffer(self) -> None:
        pass

    def close(self) -> None:
        self.is_open = False

    @property
    def in_waiting(self) -> int:
        return len(self._outbox)

    def _check_open(self) -> None:
        if not self.is_open:
            raise serial.SerialException(
                "Attempting to use a port that is not open"
            )

    # -------------------------------------------------------------------------
    # Firmware state machine
    # -------------------------------------------------------------------------

    def _emit(self, data: bytes) -> None:
        self._outbox.extend(data)

    def _emit_line(self, text: str) -> None:
        self._emit(text.encode("ascii") + b"\n")

    def _process(self) -> None:
        while self._inbox and self._step():
            pass

    def _take(self, size: int) -> Optional[bytes]:
        if len(self._inbox) < size:
            return None
        data = bytes(self._inbox[:size])
        del self._inbox[:size]
        return data

    def _step(self) -> bool:
        """Consume input for the current state. False if more is needed."""
        state = self._state

        if state is _State.HALTED:
            self._inbox.clear()
            return False

        if state is _State.ASLEEP:
            self._take(1)
            self._emit_line(f"{self.device_name} {self.capacity_bytes}")
            self._state = _State.COMMAND
            return True

        if state is _State.COMMAND:
            self._start_command(self._take(1))
            return True

        if state is _State.PAGE_COUNT:
            header = self._take(4)
            if header is None:
                return False
            self._start_page_write(decode_page_count(header))
            return True

        if state is _State.PAGE_DATA:
            page = self._take(PAGE_SIZE)
            if page is None:
                return False
            self._receive_page(page)
            return True

        if state is _State.BLOCK_LENGTH:
            self._block_length = self._take(1)[0]
            if self._block_length == 0:
                self._emit(bytes([CDONE_HIGH if self.cdone_high else CDONE_LOW]))
                self._state = _State.ASLEEP
            else:
                self._state = _State.BLOCK_DATA
            return True

        if state is _State.BLOCK_DATA:
            block = self._take(self._block_length)
            if block is None:
                return False
            self._receive_block(block)
            return True

        return False

    def _start_command(self, raw: bytes) -> None:
        try:
            command = Command(raw)
        except ValueError:
            logger.debug("Simulator ignoring command byte %r", raw)
            return

        self.commands.append(command)

        if command is Command.WRITE_FLASH:
            self._emit_line(self.prompt)
            self._state = _State.PAGE_COUNT
        elif command is Command.READ_FLASH:
            self._emit(bytes(self.flash))
            self._state = _State.ASLEEP
        else:
            self.bitstream.clear()
            self._blocks_received = 0
            self._emit_line(self.prompt)
            self._state = _State.BLOCK_LENGTH

    def _start_page_write(self, count: int) -> None:
        self._pages_expected = count
        self._pages_received = 0
        self.flash[:] = bytearray([ERASED_BYTE]) * self.capacity_bytes
        if count == 0:
            self._state = _State.ASLEEP
        else:
            self._state = _State.PAGE_DATA

    def _receive_page(self, page: bytes) -> None:
        index = self._pages_received

        if index == self.fail_unit:
            self._report_failure()
            return

        address = index * PAGE_SIZE
        if address + PAGE_SIZE <= self.capacity_bytes:
            self.flash[address:address + PAGE_SIZE] = page
        self._emit(bytes([ACK_SENTINEL]))
        self._pages_received += 1

        if self._pages_received == self._pages_expected:
            self._send_readback()
            self._state = _State.ASLEEP

    def _send_readback(self) -> None:
        for index in range(self._pages_expected):
            address = index * PAGE_SIZE
            page = bytearray(self.flash[address:address + PAGE_SIZE])
            page.extend(bytes([ERASED_BYTE]) * (PAGE_SIZE - len(page)))
            if index in self.corrupt_pages:
                page[0] ^= 0xFF
            self._emit(bytes(page))

    def _receive_block(self, block: bytes) -> None:
        if self._blocks_received == self.fail_unit:
            self._report_failure()
            return

        self.bitstream.extend(block)
        self._blocks_received += 1
        self._emit(bytes([ACK_SENTINEL]))
        self._state = _State.BLOCK_LENGTH

    def _report_failure(self) -> None:
        self._emit(b"!")
        self._emit_line(self.failure_message)
        self._state = _State.HALTED
