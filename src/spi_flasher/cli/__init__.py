"""
SPI Flasher Command-Line Interface
==================================

This package provides the ``spiflash`` command-line tool, a Click-based
application with one command per transfer mode:

- **write**: write and verify a flash image
- **read**: read the flash to a file
- **fpga**: stream a bitstream into the FPGA
- **ports**: list serial ports
"""

__all__ = ["spiflash"]
