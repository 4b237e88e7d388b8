"""
Tests for Communication Building Blocks
======================================

This module tests the pieces the transfer engine is built from:
- Byte stream primitives (read outcomes, line reader, exact reads)
- Banner parsing
- Protocol framing helpers (padding, page count header, blocks)
- Acknowledgements
- Page verification
- Serial port utilities
- Error hierarchy
"""

import logging
import struct
from types import SimpleNamespace
from unittest.mock import Mock, patch

import pytest
import serial

from spi_flasher.comms.banner import (
    KNOWN_DEVICES,
    MAX_CAPACITY,
    Banner,
    check_known_capacity,
    parse_banner,
)
from spi_flasher.comms.protocol import (
    ACK_SENTINEL,
    MAX_BLOCK_SIZE,
    PAGE_SIZE,
    Acknowledgement,
    AckKind,
    Command,
    block_count,
    decode_page_count,
    encode_page_count,
    iter_blocks,
    iter_pages,
    pad_to_page,
    page_count,
)
from spi_flasher.comms.serial import (
    PICO_VENDOR_ID,
    PortInfo,
    find_programmer_port,
    format_port_list,
    open_serial_port,
)
from spi_flasher.comms.stream import (
    ReadOutcome,
    read_chunk,
    read_exact,
    read_line,
    write_all,
)
from spi_flasher.comms.verify import PageMismatch, Verifier
from spi_flasher.errors import (
    BannerParseError,
    CommsError,
    ConnectionError,
    DeviceError,
    FlasherError,
    ParseError,
    ProtocolError,
    TimeoutError,
    TransportError,
    VerificationError,
)


# =============================================================================
# Stream Tests
# =============================================================================

class TestReadChunk:
    """Tests for single-read classification."""

    def test_data(self, fake_port):
        result = read_chunk(fake_port(b"abc"), 2)
        assert result.outcome is ReadOutcome.DATA
        assert result.data == b"ab"
        assert not result.at_end

    def test_empty_read_is_end_of_stream(self, fake_port):
        result = read_chunk(fake_port(b""), 4)
        assert result.outcome is ReadOutcome.END_OF_STREAM
        assert result.data == b""
        assert result.at_end

    def test_serial_exception_is_transport_error(self):
        port = Mock()
        port.read.side_effect = serial.SerialException("device disconnected")
        with pytest.raises(TransportError, match="device disconnected"):
            read_chunk(port, 1)


class TestReadLine:
    """Tests for the newline-delimited line reader."""

    def test_reads_up_to_newline(self, fake_port):
        port = fake_port(b"EPCQ16A 2097152\nrest")
        line = read_line(port)
        assert line.text == "EPCQ16A 2097152"
        assert line.terminated
        # Nothing past the newline is consumed
        assert bytes(port.incoming) == b"rest"

    def test_empty_line(self, fake_port):
        line = read_line(fake_port(b"\n"))
        assert line.text == ""
        assert line.terminated

    def test_end_of_stream_ends_line(self, fake_port, caplog):
        with caplog.at_level(logging.WARNING):
            line = read_line(fake_port(b"+++"))
        assert line.text == "+++"
        assert not line.terminated
        assert "End of stream" in caplog.text

    def test_str(self, fake_port):
        assert str(read_line(fake_port(b"ready\n"))) == "ready"

    def test_transport_error_propagates(self):
        port = Mock()
        port.read.side_effect = [b"a", serial.SerialException("gone")]
        with pytest.raises(TransportError):
            read_line(port)

    def test_non_ascii_replaced(self, fake_port):
        line = read_line(fake_port(b"bad\xffbyte\n"))
        assert line.text.startswith("bad")
        assert line.text.endswith("byte")


class TestReadExact:
    """Tests for fixed-size reads."""

    def test_single_read(self, fake_port):
        port = fake_port(bytes(range(256)))
        assert read_exact(port, 256) == bytes(range(256))
        assert port.reads == [256]

    def test_accumulates_short_reads(self, fake_port):
        port = fake_port(bytes(range(256)), max_chunk=100)
        assert read_exact(port, 256) == bytes(range(256))
        assert port.reads == [256, 156, 56]

    def test_end_of_stream_mid_read_times_out(self, fake_port):
        port = fake_port(b"x" * 10)
        with pytest.raises(TimeoutError) as exc_info:
            read_exact(port, 256)
        assert exc_info.value.expected == 256
        assert exc_info.value.received == 10

    def test_timeout_is_transport_error(self, fake_port):
        with pytest.raises(TransportError):
            read_exact(fake_port(b""), 1)


class TestWriteAll:
    """Tests for writes."""

    def test_writes_and_flushes(self):
        port = Mock()
        port.write.return_value = 3
        write_all(port, b"abc")
        port.write.assert_called_once_with(b"abc")
        port.flush.assert_called_once()

    def test_short_write(self):
        port = Mock()
        port.write.return_value = 1
        with pytest.raises(TransportError, match="short write"):
            write_all(port, b"abc")

    def test_serial_exception(self):
        port = Mock()
        port.write.side_effect = serial.SerialTimeoutException("Write timeout")
        with pytest.raises(TransportError, match="could not write"):
            write_all(port, b"abc")


# =============================================================================
# Banner Tests
# =============================================================================

class TestParseBanner:
    """Tests for banner parsing."""

    @pytest.mark.parametrize(
        "name, capacity",
        [
            ("EPCQ16A", 2097152),
            ("EPCQ128A", 16777216),
            ("W25Q32", 4194304),
            ("x", 0),
            ("flash-0", MAX_CAPACITY),
        ],
    )
    def test_valid(self, name, capacity):
        banner = parse_banner(f"{name} {capacity}")
        assert banner == Banner(name, capacity)

    def test_tabs_and_extra_spaces(self):
        banner = parse_banner("  EPCQ4A \t 524288  ")
        assert banner.device_name == "EPCQ4A"
        assert banner.capacity_bytes == 524288

    def test_trailing_carriage_return(self):
        assert parse_banner("EPCQ4A 524288\r").capacity_bytes == 524288

    @pytest.mark.parametrize(
        "line",
        [
            "",
            "EPCQ16A",
            "EPCQ16Af",
            "EPCQ16A abc",
            "EPCQ16A -5",
            "EPCQ16A +5",
            "EPCQ16A 2.5",
            "EPCQ16A 2097152 extra",
        ],
    )
    def test_invalid(self, line):
        with pytest.raises(BannerParseError) as exc_info:
            parse_banner(line)
        assert exc_info.value.line == line

    def test_capacity_too_large(self):
        with pytest.raises(BannerParseError, match="32 bits"):
            parse_banner(f"BIG {MAX_CAPACITY + 1}")

    def test_banner_parse_error_is_parse_error(self):
        with pytest.raises(ParseError):
            parse_banner("nonsense")

    def test_page_count(self):
        assert Banner("EPCQ4A", 524288).page_count == 2048

    def test_str(self):
        assert str(Banner("EPCQ4A", 524288)) == "Device: EPCQ4A Capacity: 524288"


class TestKnownDevices:
    """Tests for the flash part table."""

    def test_capacities(self):
        assert KNOWN_DEVICES["EPCQ4A"] == 512 * 1024
        assert KNOWN_DEVICES["EPCQ16A"] == 2 * 1024 * 1024
        assert KNOWN_DEVICES["EPCQ128A"] == 16 * 1024 * 1024

    def test_known_capacity(self):
        assert Banner("epcq32a", 1).known_capacity == 4 * 1024 * 1024
        assert Banner("MYSTERY", 1).known_capacity is None

    def test_matching_capacity(self, caplog):
        with caplog.at_level(logging.WARNING):
            assert check_known_capacity(Banner("EPCQ16A", 2097152))
        assert caplog.text == ""

    def test_mismatching_capacity_warns(self, caplog):
        with caplog.at_level(logging.WARNING):
            assert not check_known_capacity(Banner("EPCQ16A", 1024))
        assert "EPCQ16A" in caplog.text

    def test_unknown_part_accepted(self):
        assert check_known_capacity(Banner("MYSTERY", 1024))


# =============================================================================
# Protocol Helper Tests
# =============================================================================

class TestPadding:
    """Tests for zero-padding to page boundaries."""

    @pytest.mark.parametrize("length", [1, 100, 255, 257, 511, 1000])
    def test_pads_to_multiple_of_page(self, length):
        data = bytes([0xA5]) * length
        padded = pad_to_page(data)
        assert len(padded) % PAGE_SIZE == 0
        assert len(padded) - length < PAGE_SIZE
        assert padded[:length] == data
        assert padded[length:] == bytes(len(padded) - length)

    @pytest.mark.parametrize("length", [0, 256, 512])
    def test_aligned_is_unchanged(self, length):
        data = bytes([0x5A]) * length
        assert pad_to_page(data) == data

    def test_idempotent(self):
        once = pad_to_page(b"\x01" * 300)
        assert pad_to_page(once) == once


class TestPageFraming:
    """Tests for page count header and page iteration."""

    def test_page_count(self):
        assert page_count(b"") == 0
        assert page_count(bytes(512)) == 2

    def test_page_count_unaligned(self):
        with pytest.raises(ValueError, match="multiple of 256"):
            page_count(bytes(300))

    def test_encode_page_count_little_endian(self):
        assert encode_page_count(3) == b"\x03\x00\x00\x00"
        assert encode_page_count(0x01020304) == b"\x04\x03\x02\x01"
        assert encode_page_count(0x12345) == struct.pack("<I", 0x12345)

    def test_decode_page_count(self):
        assert decode_page_count(b"\x00\x01\x00\x00") == 256

    @pytest.mark.parametrize("count", [-1, 0x1_0000_0000])
    def test_encode_page_count_out_of_range(self, count):
        with pytest.raises(ValueError):
            encode_page_count(count)

    def test_iter_pages_in_address_order(self, image_factory):
        image = image_factory(3)
        pages = list(iter_pages(image))
        assert [index for index, _ in pages] == [0, 1, 2]
        assert b"".join(page for _, page in pages) == image
        assert all(len(page) == PAGE_SIZE for _, page in pages)


class TestBlockFraming:
    """Tests for FPGA block splitting."""

    def test_300_bytes(self):
        blocks = list(iter_blocks(bytes(300)))
        assert [len(b) for b in blocks] == [255, 45]

    def test_exact_multiple(self):
        assert [len(b) for b in iter_blocks(bytes(510))] == [255, 255]

    def test_empty(self):
        assert list(iter_blocks(b"")) == []

    def test_block_count(self):
        assert block_count(0) == 0
        assert block_count(1) == 1
        assert block_count(MAX_BLOCK_SIZE) == 1
        assert block_count(MAX_BLOCK_SIZE + 1) == 2

    def test_blocks_preserve_data(self):
        data = bytes(i & 0xFF for i in range(1000))
        assert b"".join(iter_blocks(data)) == data


class TestCommand:
    """Tests for mode command bytes."""

    def test_values(self):
        assert Command.WRITE_FLASH.value == b"w"
        assert Command.READ_FLASH.value == b"r"
        assert Command.WRITE_FPGA.value == b"f"

    def test_only_flash_write_pads(self):
        assert Command.WRITE_FLASH.pads_image
        assert not Command.READ_FLASH.pads_image
        assert not Command.WRITE_FPGA.pads_image


class TestAcknowledgement:
    """Tests for the tagged acknowledgement result."""

    def test_sentinel(self):
        assert ACK_SENTINEL == 0x23
        assert Acknowledgement.is_sentinel(0x23)
        assert not Acknowledgement.is_sentinel(ord("!"))
        assert not Acknowledgement.is_sentinel(0)

    def test_success(self):
        ack = Acknowledgement.success()
        assert ack.ok
        assert ack.kind is AckKind.OK

    def test_error(self):
        ack = Acknowledgement.error(ord("E"), "erase failed")
        assert not ack.ok
        assert ack.kind is AckKind.ERROR
        assert ack.lead_byte == ord("E")
        assert ack.message == "erase failed"


# =============================================================================
# Verifier Tests
# =============================================================================

class TestVerifier:
    """Tests for page verification."""

    def test_matching_page(self):
        verifier = Verifier()
        assert verifier.verify_page(0, bytes(256), bytes(256))
        assert verifier.failures == 0
        assert verifier.pages_checked == 1

    def test_single_byte_difference(self, caplog):
        verifier = Verifier()
        expected = bytes(256)
        actual = bytearray(256)
        actual[17] = 1
        with caplog.at_level(logging.WARNING):
            assert not verifier.verify_page(4, expected, bytes(actual))
        assert verifier.failures == 1
        mismatch = verifier.mismatches[0]
        assert mismatch.index == 4
        assert mismatch.address == 4 * 256
        assert mismatch.first_difference == 17
        assert "Expected" in caplog.text
        assert "Got" in caplog.text

    def test_failures_accumulate(self):
        verifier = Verifier()
        for index in range(5):
            actual = bytes(256) if index % 2 else b"\x01" + bytes(255)
            verifier.verify_page(index, bytes(256), actual)
        assert verifier.failures == 3
        assert verifier.pages_checked == 5
        assert [m.index for m in verifier.mismatches] == [0, 2, 4]

    def test_first_difference_equal_pages(self):
        assert PageMismatch(0, b"ab", b"ab").first_difference is None


# =============================================================================
# Serial Port Tests
# =============================================================================

def _comport(device, vid=None, pid=None, description=""):
    return SimpleNamespace(
        device=device,
        description=description,
        manufacturer=None,
        product=None,
        serial_number=None,
        vid=vid,
        pid=pid,
    )


class TestSerialPort:
    """Tests for serial port utilities."""

    def test_port_info_pico(self):
        info = PortInfo("/dev/ttyACM0", "Pico", vid=PICO_VENDOR_ID, pid=0x000A)
        assert info.is_usb
        assert info.vendor_name == "Raspberry Pi"
        assert "/dev/ttyACM0" in str(info)
        assert "Raspberry Pi" in str(info)

    def test_port_info_non_usb(self):
        info = PortInfo("/dev/ttyS0", "ttyS0")
        assert not info.is_usb
        assert info.vendor_name is None

    def test_format_port_list_empty(self):
        assert "No serial ports" in format_port_list([])

    def test_format_port_list_verbose(self):
        ports = [
            PortInfo("/dev/ttyACM0", "Pico", PICO_VENDOR_ID, 0x000A, "E660", "Raspberry Pi"),
            PortInfo("/dev/ttyS0", "ttyS0"),
        ]
        result = format_port_list(ports, verbose=True)
        assert "2E8A:000A" in result
        assert "serial E660" in result
        assert "/dev/ttyS0" in result
        # Built-in UARTs get no detail line
        assert len(result.splitlines()) == 3

    def test_format_port_list_brief(self):
        ports = [PortInfo("/dev/ttyACM0", "Pico", PICO_VENDOR_ID, 0x000A, "E660")]
        assert format_port_list(ports) == "  /dev/ttyACM0 - Pico (Raspberry Pi)"

    def test_from_comport(self):
        entry = _comport("/dev/ttyUSB0", vid=0x0403, pid=0x6001, description="FT232R")
        info = PortInfo.from_comport(entry)
        assert info.device == "/dev/ttyUSB0"
        assert info.usb_id == "0403:6001"
        assert info.vendor_name == "FTDI"

    def test_detection_rank(self):
        assert PortInfo("/dev/ttyACM0", vid=PICO_VENDOR_ID).detection_rank == 0
        assert PortInfo("/dev/ttyUSB0", vid=0x1A86).detection_rank == 3
        assert PortInfo("/dev/ttyACM1", vid=0x1234).detection_rank == 4
        assert PortInfo("/dev/ttyS0").detection_rank is None

    def test_find_programmer_keeps_enumeration_order_on_ties(self):
        comports = [
            _comport("/dev/ttyUSB1", vid=0x0403, pid=0x6001),
            _comport("/dev/ttyUSB0", vid=0x0403, pid=0x6015),
        ]
        with patch("serial.tools.list_ports.comports", return_value=comports):
            assert find_programmer_port() == "/dev/ttyUSB1"

    def test_find_programmer_prefers_pico(self):
        comports = [
            _comport("/dev/ttyS0"),
            _comport("/dev/ttyUSB0", vid=0x0403, pid=0x6001),
            _comport("/dev/ttyACM0", vid=PICO_VENDOR_ID, pid=0x000A),
        ]
        with patch("serial.tools.list_ports.comports", return_value=comports):
            assert find_programmer_port() == "/dev/ttyACM0"

    def test_find_programmer_falls_back_to_any_usb(self):
        comports = [_comport("/dev/ttyS0"), _comport("/dev/ttyACM3", vid=0x1234, pid=1)]
        with patch("serial.tools.list_ports.comports", return_value=comports):
            assert find_programmer_port() == "/dev/ttyACM3"

    def test_find_programmer_none(self):
        with patch("serial.tools.list_ports.comports", return_value=[_comport("/dev/ttyS0")]):
            assert find_programmer_port() is None

    def test_open_port_not_found(self):
        error = serial.SerialException("[Errno 2] No such file or directory: '/dev/ttyACM9'")
        with patch("spi_flasher.comms.serial.serial.Serial", side_effect=error):
            with pytest.raises(ConnectionError, match="not found"):
                open_serial_port("/dev/ttyACM9")

    def test_open_port_permission_denied(self):
        error = serial.SerialException("[Errno 13] Permission denied: '/dev/ttyACM0'")
        with patch("spi_flasher.comms.serial.serial.Serial", side_effect=error):
            with pytest.raises(ConnectionError, match="dialout"):
                open_serial_port("/dev/ttyACM0")

    def test_open_port_configures_8n1(self):
        with patch("spi_flasher.comms.serial.serial.Serial") as serial_cls:
            port = open_serial_port("/dev/ttyACM0", timeout=5.0)
        kwargs = serial_cls.call_args.kwargs
        assert kwargs["port"] == "/dev/ttyACM0"
        assert kwargs["timeout"] == 5.0
        assert kwargs["parity"] == serial.PARITY_NONE
        assert not kwargs["rtscts"]
        port.reset_input_buffer.assert_called_once()

    @pytest.mark.parametrize("kwargs", [{"baud_rate": 0}, {"timeout": 0}])
    def test_open_port_invalid_settings(self, kwargs):
        with pytest.raises(ValueError):
            open_serial_port("/dev/ttyACM0", **kwargs)


# =============================================================================
# Error Hierarchy Tests
# =============================================================================

class TestErrors:
    """Tests for error classes."""

    def test_comms_error_hierarchy(self):
        assert issubclass(ConnectionError, CommsError)
        assert issubclass(TransportError, CommsError)
        assert issubclass(TimeoutError, TransportError)
        assert issubclass(DeviceError, ProtocolError)
        assert issubclass(VerificationError, CommsError)
        assert issubclass(CommsError, FlasherError)

    def test_banner_error_is_not_comms_error(self):
        assert issubclass(BannerParseError, ParseError)
        assert not issubclass(BannerParseError, CommsError)

    def test_device_error_message(self):
        error = DeviceError("flash busy", unit_index=3)
        assert error.message == "flash busy"
        assert "unit 3" in str(error)

    def test_verification_error_message(self):
        assert "1 page" in str(VerificationError(1))
        assert "2 pages" in str(VerificationError(2))
