"""
Shared Test Fixtures
====================

- ``fake_port``: factory for a scripted serial port. Bytes the device
  "sends" are queued up front; bytes the host writes are recorded
  call by call.
- ``simulator``: factory for a ProgrammerSimulator.
"""

from typing import Optional

import pytest

from spi_flasher.emulator import ProgrammerSimulator


class FakeSerialPort:
    """
    Scripted stand-in for serial.Serial.

    Attributes:
        incoming: Bytes still to be returned by read()
        writes: Each write() payload, in order
        reads: Each size requested from read(), in order
    """

    def __init__(self, incoming: bytes = b"", max_chunk: Optional[int] = None):
        self.incoming = bytearray(incoming)
        self.max_chunk = max_chunk
        self.writes: list[bytes] = []
        self.reads: list[int] = []
        self.timeout = 1.0
        self.is_open = True

    @property
    def written(self) -> bytes:
        return b"".join(self.writes)

    def read(self, size: int = 1) -> bytes:
        self.reads.append(size)
        size = min(size, len(self.incoming))
        if self.max_chunk is not None:
            size = min(size, self.max_chunk)
        data = bytes(self.incoming[:size])
        del self.incoming[:size]
        return data

    def write(self, data: bytes) -> int:
        self.writes.append(bytes(data))
        return len(data)

    def flush(self) -> None:
        pass

    def close(self) -> None:
        self.is_open = False


@pytest.fixture
def fake_port():
    """Factory fixture: fake_port(incoming=b"", max_chunk=None)."""
    return FakeSerialPort


@pytest.fixture
def simulator():
    """Factory fixture: simulator(**ProgrammerSimulator kwargs)."""
    return ProgrammerSimulator


def make_image(pages: int) -> bytes:
    """Page-aligned image whose pages are all different."""
    return bytes((i * 7 + i // 256) & 0xFF for i in range(pages * 256))


@pytest.fixture
def image_factory():
    return make_image
