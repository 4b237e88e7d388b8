"""
Page Transfer Engine
====================

This module drives the three transfer sub-protocols once the session
has sent its mode command:

- **Flash write**: page count header, 256-byte pages each acknowledged
  with ``#``, then a read-back of every page for verification
- **Flash read**: the programmer streams the whole flash, unframed
- **FPGA write**: length-prefixed blocks of up to 255 bytes, each
  acknowledged, a zero-length terminator and a CDONE status byte

All I/O is blocking and strictly sequential. The next page is never
written before the previous acknowledgement has been read.

Failure Policy
--------------
- A transport failure or timeout aborts the transfer immediately.
- An in-band error report aborts the transfer. The remaining units are
  never sent.
- A read-back mismatch is counted and the read-back carries on. The
  count is reported in TransferResult. Pages are never retried.

Verification Read-Back
----------------------
The programmer starts streaming the read-back on its own after
acknowledging the last page. No command byte is sent to trigger it.
This hand-over is kept in its own method (``_verify_readback``) so
the boundary is visible in logs and tests.
"""

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Optional

from spi_flasher.comms.protocol import (
    CDONE_HIGH,
    END_OF_STREAM_MARKER,
    PAGE_SIZE,
    Acknowledgement,
    block_count,
    encode_page_count,
    iter_blocks,
    iter_pages,
    page_count,
)
from spi_flasher.comms.stream import read_byte, read_exact, read_line, write_all
from spi_flasher.comms.verify import PageMismatch, Verifier
from spi_flasher.errors import DeviceError, VerificationError

if TYPE_CHECKING:
    from serial import Serial

logger = logging.getLogger(__name__)

# Type alias for progress callback: (units_done, units_total)
ProgressCallback = Callable[[int, int], None]


# =============================================================================
# Results
# =============================================================================

@dataclass
class TransferResult:
    """
    Outcome of a flash write.

    Attributes:
        units_sent: Pages written and acknowledged
        validation_failures: Pages whose read-back differed
        mismatches: Details of each failed page
    """

    units_sent: int = 0
    validation_failures: int = 0
    mismatches: list[PageMismatch] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.validation_failures == 0

    def raise_on_failure(self) -> None:
        """Raise VerificationError if any page failed verification."""
        if not self.ok:
            raise VerificationError(self.validation_failures)


@dataclass(frozen=True)
class FpgaResult:
    """
    Outcome of an FPGA write.

    ``cdone_high`` is session status, not an error. A low CDONE is
    reported to the user and the transfer still counts as done.
    """

    blocks_sent: int
    cdone_high: bool


# =============================================================================
# Engine
# =============================================================================

class PageTransfer:
    """
    Page transfer state machine for one open programmer session.

    The port must already have been woken, the banner consumed and the
    mode command sent (see Session).

    Example:
        transfer = PageTransfer(port)
        result = transfer.write_flash(pad_to_page(data))
        result.raise_on_failure()
    """

    def __init__(self, port: "Serial"):
        self.port = port

    # -------------------------------------------------------------------------
    # Flash Write
    # -------------------------------------------------------------------------

    def write_flash(
        self,
        image: bytes,
        progress: Optional[ProgressCallback] = None,
        verify_progress: Optional[ProgressCallback] = None,
    ) -> TransferResult:
        """
        Write a page-aligned image to flash and verify it.

        Args:
            image: Image bytes, length a multiple of 256.
            progress: Called after each acknowledged page.
            verify_progress: Called after each verified page.

        Returns:
            TransferResult. Check ``ok`` or call ``raise_on_failure()``.

        Raises:
            ValueError: If the image is not page aligned.
            DeviceError: If the programmer reports an error for a page.
            TransportError: If the port fails or times out.
        """
        total = page_count(image)
        header = encode_page_count(total)

        self._consume_prompt()

        logger.info("Writing %d pages (%d bytes)", total, len(image))
        write_all(self.port, header)

        result = TransferResult()
        for index, page in iter_pages(image):
            write_all(self.port, page)
            self._expect_ack(index)
            result.units_sent += 1
            if progress:
                progress(result.units_sent, total)

        verifier = self._verify_readback(image, verify_progress)
        result.validation_failures = verifier.failures
        result.mismatches = list(verifier.mismatches)

        if result.ok:
            logger.info("Write complete: %d pages verified", total)
        else:
            logger.error(
                "Write complete: %d of %d pages failed verification",
                result.validation_failures, total,
            )
        return result

    def _verify_readback(
        self,
        image: bytes,
        progress: Optional[ProgressCallback] = None,
    ) -> Verifier:
        """Read every page back and compare it with the image."""
        total = page_count(image)
        logger.info("Verifying %d pages", total)

        verifier = Verifier()
        for index, page in iter_pages(image):
            readback = read_exact(self.port, PAGE_SIZE)
            verifier.verify_page(index, page, readback)
            if progress:
                progress(index + 1, total)

        return verifier

    # -------------------------------------------------------------------------
    # Flash Read
    # -------------------------------------------------------------------------

    def read_flash(
        self,
        capacity_bytes: int,
        progress: Optional[ProgressCallback] = None,
    ) -> bytes:
        """
        Read the whole flash as streamed by the programmer.

        Pages are read in address order into one buffer of
        ``capacity_bytes``. If the capacity is not page aligned the last
        read is short.

        Raises:
            ValueError: If capacity_bytes is negative.
            TransportError: If the port fails or times out. No partial
                image is returned.
        """
        if capacity_bytes < 0:
            raise ValueError(f"negative capacity: {capacity_bytes}")

        total = -(-capacity_bytes // PAGE_SIZE)
        logger.info("Reading %d bytes (%d pages)", capacity_bytes, total)

        buffer = bytearray(capacity_bytes)
        for index, address in enumerate(range(0, capacity_bytes, PAGE_SIZE)):
            size = min(PAGE_SIZE, capacity_bytes - address)
            buffer[address:address + size] = read_exact(self.port, size)
            if progress:
                progress(index + 1, total)

        logger.info("Read complete")
        return bytes(buffer)

    # -------------------------------------------------------------------------
    # FPGA Write
    # -------------------------------------------------------------------------

    def write_fpga(
        self,
        bitstream: bytes,
        progress: Optional[ProgressCallback] = None,
    ) -> FpgaResult:
        """
        Stream a bitstream into the FPGA configuration interface.

        The bitstream is not padded, so the last block may be short.

        Raises:
            DeviceError: If the programmer reports an error for a block.
            TransportError: If the port fails or times out.
        """
        total = block_count(len(bitstream))

        self._consume_prompt()

        logger.info("Writing %d bytes to FPGA (%d blocks)", len(bitstream), total)

        sent = 0
        for index, block in enumerate(iter_blocks(bitstream)):
            write_all(self.port, bytes([len(block)]))
            write_all(self.port, block)
            self._expect_ack(index)
            sent += 1
            if progress:
                progress(sent, total)

        write_all(self.port, bytes([END_OF_STREAM_MARKER]))

        status = read_byte(self.port)
        cdone_high = status == CDONE_HIGH
        logger.info(
            "FPGA configuration %s: CDONE %s",
            "done" if cdone_high else "finished",
            "HIGH" if cdone_high else "LOW",
        )
        return FpgaResult(blocks_sent=sent, cdone_high=cdone_high)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _consume_prompt(self) -> None:
        """Read and discard the programmer's ready prompt."""
        prompt = read_line(self.port)
        logger.debug("Programmer prompt: %r", prompt.text)

    def receive_ack(self) -> Acknowledgement:
        """
        Wait for one page/block acknowledgement.

        A non-sentinel byte is followed by a diagnostic line, which is
        read before returning.
        """
        value = read_byte(self.port)
        if Acknowledgement.is_sentinel(value):
            return Acknowledgement.success()

        message = read_line(self.port)
        logger.debug("In-band error after byte 0x%02X: %r", value, message.text)
        return Acknowledgement.error(value, message.text)

    def _expect_ack(self, index: int) -> None:
        ack = self.receive_ack()
        if not ack.ok:
            raise DeviceError(ack.message, unit_index=index)
