"""
spiflash - SPI Programmer Command-Line Interface
================================================

This module implements the command-line interface for the USB SPI
programmer. It writes and verifies flash images, reads flash contents
back to a file, and streams bitstreams straight into the FPGA.

Usage Examples
--------------
List available serial ports:
    $ spiflash ports

Write an image to flash (padded to 256-byte pages, then verified):
    $ spiflash --port /dev/ttyACM0 write gateware.bin

Read the whole flash to a file:
    $ spiflash read backup.bin

Configure the FPGA directly, bypassing the flash:
    $ spiflash fpga top.bin

The port can also come from SPIFLASH_PORT. If neither is given, the
first Raspberry Pi Pico (or other USB serial) port found is used.

Exit Codes
----------
0 - Success
1 - Connection, transport, banner or programmer error
2 - Invalid arguments or configuration error
3 - Internal error
4 - Written image failed verification
"""

import logging
from pathlib import Path
from typing import Callable, Optional

import click

from spi_flasher import __version__
from spi_flasher.cli.errors import handle_cli_exception
from spi_flasher.comms import (
    PAGE_SIZE,
    Session,
    find_programmer_port,
    format_port_list,
    list_serial_ports,
    load_image,
    read_flash_file,
    write_flash_image,
    write_fpga_file,
)
from spi_flasher.config import FlasherConfig
from spi_flasher.errors import ConfigError

# Configure logging
logger = logging.getLogger(__name__)


# =============================================================================
# CLI Context and Utilities
# =============================================================================

class Context:
    """
    Shared context for CLI commands.

    Holds the resolved configuration (environment plus options).
    """

    def __init__(self) -> None:
        self.config = FlasherConfig()

    def setup_logging(self) -> None:
        """Configure logging based on verbosity."""
        level = logging.DEBUG if self.config.verbose else logging.INFO
        logging.basicConfig(
            level=level,
            format="%(levelname)s: %(message)s" if self.config.verbose else "%(message)s",
        )

    def resolve_port(self) -> str:
        """
        Return the configured port, auto-detecting if none was given.

        Raises:
            ConfigError: If no port is configured and none is detected.
        """
        port = self.config.port or find_programmer_port()
        if not port:
            raise ConfigError(
                "No serial port specified and auto-detect failed. "
                "Use --port or 'spiflash ports' to find available ports."
            )
        return port

    def open_session(self) -> Session:
        return Session(
            self.resolve_port(),
            baud_rate=self.config.baud_rate,
            timeout=self.config.timeout,
        )


pass_context = click.make_pass_decorator(Context, ensure=True)


def hash_progress(heading: Optional[str] = None) -> Callable[[int, int], None]:
    """
    Progress printer: one '#' per completed unit.

    The heading is printed before the first mark and a newline after
    the last one.
    """
    def report(done: int, total: int) -> None:
        if done == 1 and heading:
            click.echo(heading)
        click.echo("#", nl=False)
        if done >= total:
            click.echo()

    return report


# =============================================================================
# Main CLI Group
# =============================================================================

@click.group()
@click.option(
    "-p", "--port",
    type=str,
    default=None,
    help="Serial port device (default: $SPIFLASH_PORT, then auto-detect)",
)
@click.option(
    "-b", "--baud",
    type=click.IntRange(min=1),
    default=None,
    help="Baud rate (ignored by USB CDC programmers)",
)
@click.option(
    "--timeout",
    type=click.FloatRange(min=0),
    default=None,
    help="Read timeout in seconds, 0 to wait forever (default: 60)",
)
@click.option(
    "-v", "--verbose",
    is_flag=True,
    help="Enable verbose output",
)
@click.version_option(version=__version__, prog_name="spiflash")
@pass_context
def main(
    ctx: Context,
    port: Optional[str],
    baud: Optional[int],
    timeout: Optional[float],
    verbose: bool,
) -> None:
    """
    Write, read and verify SPI flash, or configure an FPGA directly,
    through the USB SPI programmer.

    Exactly one command selects the mode: write, read or fpga.
    """
    ctx.config = FlasherConfig.from_env().merged(
        port=port,
        baud_rate=baud,
        timeout=timeout,
        verbose=verbose or None,
    )
    if timeout == 0:
        ctx.config.timeout = None
    ctx.setup_logging()


# =============================================================================
# Ports Command
# =============================================================================

@main.command()
@click.option(
    "--detailed", "-d",
    is_flag=True,
    help="Show detailed port information",
)
def ports(detailed: bool) -> None:
    """
    List available serial ports.

    Example:
        spiflash ports
        spiflash ports --detailed
    """
    port_list = list_serial_ports()

    if not port_list:
        click.echo("No serial ports found.")
        click.echo("\nTips:")
        click.echo("  - Power on the programmer and connect it over USB")
        click.echo("  - On Linux, ensure you have permission (dialout group)")
        return

    click.echo("Available serial ports:")
    click.echo(format_port_list(port_list, verbose=detailed))

    auto_port = find_programmer_port()
    if auto_port:
        click.echo(f"\nSuggested port for the programmer: {auto_port}")
    else:
        click.echo("\nNo USB serial device auto-detected.")


# =============================================================================
# Write Command
# =============================================================================

@main.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@pass_context
def write(ctx: Context, file: Path) -> None:
    """
    Write FILE to SPI flash and verify it.

    FILE is padded with zero bytes to a multiple of 256 bytes. After
    every page has been acknowledged the programmer sends the flash
    back and each page is compared with the file. Mismatching pages
    are reported but not rewritten.

    Example:
        spiflash write gateware.bin
    """
    try:
        image = load_image(file, pad=True)
        click.echo(f"File is {len(image)} bytes ({len(image) // PAGE_SIZE} pages)")

        with ctx.open_session() as session:
            result = write_flash_image(
                session,
                image,
                progress=hash_progress(),
                verify_progress=hash_progress("Verifying..."),
            )

        click.echo("Done")
        result.raise_on_failure()

    except Exception as e:
        handle_cli_exception(e, verbose=ctx.config.verbose)


# =============================================================================
# Read Command
# =============================================================================

@main.command()
@click.argument("file", type=click.Path(dir_okay=False, writable=True, path_type=Path))
@pass_context
def read(ctx: Context, file: Path) -> None:
    """
    Read the whole SPI flash into FILE.

    The capacity comes from the programmer's banner. FILE is only
    written once every byte has arrived.

    Example:
        spiflash read backup.bin
    """
    try:
        with ctx.open_session() as session:
            click.echo("Reading...")
            data = read_flash_file(session, file, progress=hash_progress())

        click.echo(f"Done: {len(data)} bytes saved to {file}")

    except Exception as e:
        handle_cli_exception(e, verbose=ctx.config.verbose)


# =============================================================================
# FPGA Command
# =============================================================================

@main.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@pass_context
def fpga(ctx: Context, file: Path) -> None:
    """
    Stream FILE straight into the FPGA configuration interface.

    The bitstream is sent unpadded, in blocks of up to 255 bytes. When
    it finishes, the programmer reports whether CDONE went high.

    Example:
        spiflash fpga top.bin
    """
    try:
        click.echo(f"File is {file.stat().st_size} bytes")

        with ctx.open_session() as session:
            status = write_fpga_file(session, file, progress=hash_progress())

        if status.cdone_high:
            click.echo("Got a HIGH on CDONE")
        else:
            click.echo("Got a LOW on CDONE")
        click.echo("Done")

    except Exception as e:
        handle_cli_exception(e, verbose=ctx.config.verbose)


# =============================================================================
# Entry Point
# =============================================================================

if __name__ == "__main__":
    main()
