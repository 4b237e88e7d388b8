"""
Unified CLI Error Handling
==========================

Provides consistent error reporting and exit codes for the spiflash tool.
"""

import sys
import traceback
from enum import IntEnum
from typing import NoReturn

import click

from spi_flasher.errors import (
    BannerParseError,
    CommsError,
    ConfigError,
    ConnectionError,
    DeviceError,
    FlasherError,
    TransportError,
    VerificationError,
)


class ExitCode(IntEnum):
    """Standard exit codes for spiflash."""
    SUCCESS = 0
    TRANSFER_ERROR = 1   # Connection, transport, banner or device error
    INVALID_ARGS = 2     # Invalid arguments, missing files or configuration
    INTERNAL_ERROR = 3   # Unexpected internal error
    VERIFY_FAILED = 4    # Transfer finished but read-back did not match


def handle_cli_exception(error: Exception, verbose: bool = False) -> NoReturn:
    """
    Report an exception and exit with the matching exit code.

    Args:
        error: The exception that was raised
        verbose: If True, print full traceback for internal errors

    Raises:
        SystemExit: Always exits with an appropriate exit code
    """
    if isinstance(error, VerificationError):
        click.echo(f"Verification failed: {error}", err=True)
        sys.exit(ExitCode.VERIFY_FAILED)

    elif isinstance(error, ConfigError):
        click.echo(f"Error: {error}", err=True)
        sys.exit(ExitCode.INVALID_ARGS)

    elif isinstance(error, ConnectionError):
        click.echo(f"Connection error: {error}", err=True)
        sys.exit(ExitCode.TRANSFER_ERROR)

    elif isinstance(error, DeviceError):
        click.echo(f"Programmer error: {error}", err=True)
        sys.exit(ExitCode.TRANSFER_ERROR)

    elif isinstance(error, TransportError):
        click.echo(f"Transport error: {error}", err=True)
        sys.exit(ExitCode.TRANSFER_ERROR)

    elif isinstance(error, BannerParseError):
        click.echo(f"Could not handle banner: {error}", err=True)
        sys.exit(ExitCode.TRANSFER_ERROR)

    elif isinstance(error, (CommsError, FlasherError)):
        click.echo(f"Error: {error}", err=True)
        sys.exit(ExitCode.TRANSFER_ERROR)

    elif isinstance(error, click.BadParameter):
        click.echo(f"Error: {error}", err=True)
        sys.exit(ExitCode.INVALID_ARGS)

    elif isinstance(error, (FileNotFoundError, PermissionError)):
        click.echo(f"Error: {error}", err=True)
        sys.exit(ExitCode.INVALID_ARGS)

    elif isinstance(error, OSError):
        click.echo(f"Error writing file: {error}", err=True)
        sys.exit(ExitCode.INVALID_ARGS)

    else:
        click.echo(f"Internal error: {error}", err=True)
        if verbose:
            traceback.print_exc()
        sys.exit(ExitCode.INTERNAL_ERROR)
