"""
Page Verification
=================

Byte-for-byte comparison of pages read back from the programmer
against the image that was written. A mismatch is recorded and logged
with both page contents. Verification always carries on to the last
page, and the caller decides what the final count means.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PageMismatch:
    """
    A page whose read-back differs from the image.

    Attributes:
        index: Page index within the image
        expected: Page contents that were written
        actual: Page contents that were read back
    """

    index: int
    expected: bytes
    actual: bytes

    @property
    def first_difference(self) -> Optional[int]:
        """Offset of the first differing byte, or None if equal."""
        for offset, (want, got) in enumerate(zip(self.expected, self.actual)):
            if want != got:
                return offset
        if len(self.expected) != len(self.actual):
            return min(len(self.expected), len(self.actual))
        return None

    @property
    def address(self) -> int:
        return self.index * len(self.expected)


@dataclass
class Verifier:
    """
    Accumulates page verification results for one transfer.

    Example:
        verifier = Verifier()
        for index, page in iter_pages(image):
            verifier.verify_page(index, page, read_exact(port, PAGE_SIZE))
        if verifier.failures:
            ...
    """

    mismatches: list[PageMismatch] = field(default_factory=list)
    pages_checked: int = 0

    @property
    def failures(self) -> int:
        return len(self.mismatches)

    def verify_page(self, index: int, expected: bytes, actual: bytes) -> bool:
        """
        Compare one page. Returns True if identical.

        On mismatch both pages are logged in hex and the failure count
        increases. Never raises.
        """
        self.pages_checked += 1

        if expected == actual:
            return True

        mismatch = PageMismatch(index, bytes(expected), bytes(actual))
        self.mismatches.append(mismatch)

        logger.warning(
            "Bad data in page %d (address 0x%06X, first difference at +%s)",
            index, mismatch.address, mismatch.first_difference,
        )
        logger.warning("Expected: %s", mismatch.expected.hex(" "))
        logger.warning("Got:      %s", mismatch.actual.hex(" "))
        return False
