"""
esplink CLI

Command-line interface for flashing raw firmware images to ESP chips.
"""

import sys
import json
import logging
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.logging import RichHandler
from rich.progress import Progress, BarColumn, TextColumn

from esplink.chips import FLASH_MODES, list_chips
from esplink.core.actions import flash_firmware_serial
from esplink.core.parsing import parse_offset, require_port
from esplink.core.results import OperationResult
from esplink.errors import ConfigurationError

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format="%(message)s",
    handlers=[RichHandler(rich_tracebacks=True)],
)
logger = logging.getLogger("esplink")

# Setup Rich console
console = Console()

app = typer.Typer(help="esplink - flash raw firmware images to ESP chips over the ROM bootloader")


def print_header(text: str) -> None:
    """Print fancy header."""
    console.print(Panel(text, expand=False, style="bold blue"))


def print_success(text: str) -> None:
    """Print success message."""
    console.print(f"✓ {text}", style="green")


def print_warning(text: str) -> None:
    """Print warning message."""
    console.print(f"⚠️  {text}", style="yellow")


def print_error(text: str) -> None:
    """Print error message."""
    console.print(f"❌ {text}", style="red")


def set_verbose(verbose: bool) -> None:
    if verbose:
        logger.setLevel(logging.DEBUG)


def print_result(result: OperationResult, verbose: bool = False) -> None:
    """Print an OperationResult summary."""
    if result.ok:
        print_success(f"Flashed {result.bytes_len:,} bytes to {result.chip} at {result.region}")
    else:
        print_error(result.errors[0] if result.errors else "Flash failed")
    console.print(result.to_summary(), style="dim", markup=False, highlight=False)
    if verbose and result.logs:
        console.print("\n".join(result.logs), style="dim", markup=False, highlight=False)


@app.command()
def flash(
    file: str = typer.Argument(..., help="Raw .bin firmware image"),
    port: Optional[str] = typer.Option(None, "--port", "-p", help="Serial port of the connected ESP chip"),
    baud: int = typer.Option(115200, "--baud", "-b", help="Baud rate of the communication"),
    offset: Optional[str] = typer.Option(None, "--offset", "-o", help="Flash offset, hexadecimal (e.g. 0x10000)"),
    flash_param: Optional[str] = typer.Option(
        None,
        "--flash-param",
        help="Override SPI flash mode, speed and chip size as MODE:FREQ:SIZE (e.g. dio:40m:4MB, 'keep' keeps the probed value)",
    ),
    chip: str = typer.Option("esp32c3", "--chip", "-c", help="Chip type, or 'auto' to accept the detected chip"),
    ignore_magic: bool = typer.Option(
        False, "--ignore-magic", help="Continue when flash offset 0 holds no valid image header"
    ),
    no_reset: bool = typer.Option(False, "--no-reset", help="Do not pulse DTR/RTS to enter the bootloader"),
    output_json: bool = typer.Option(False, "--json", "-j", help="Output the result as JSON for scripting"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug messages during execution"),
) -> None:
    """
    Flash a raw binary image.

    Sequence: sync, detect chip, attach and configure SPI flash, probe the
    flash header, erase, write 4 KiB blocks, reboot.
    """
    set_verbose(verbose)

    try:
        port_name = require_port(port)
        flash_offset = parse_offset(offset)
    except ConfigurationError as e:
        print_error(str(e))
        raise typer.Exit(2)

    options = dict(
        port=port_name,
        file=file,
        offset=flash_offset,
        baud=baud,
        chip=chip,
        flash_param=flash_param,
        strict_magic=not ignore_magic,
        reset=not no_reset,
    )

    if output_json:
        result = flash_firmware_serial(**options)
        console.print(json.dumps(result.to_dict(), indent=2), soft_wrap=True, markup=False, highlight=False)
        if not result.ok:
            raise typer.Exit(1)
        return

    print_header(f"Flashing {file} -> {port_name} @ 0x{flash_offset:08X}")
    if ignore_magic:
        print_warning("Flash header magic check disabled (--ignore-magic)")

    with Progress(
        TextColumn("[{task.description}]"),
        BarColumn(),
        TextColumn("[{task.percentage:.0f}%]"),
        console=console,
    ) as progress:
        task = progress.add_task("Writing blocks...", total=None)

        def _progress(done: int, total: int) -> None:
            progress.update(task, completed=done, total=total)

        result = flash_firmware_serial(**options, progress_cb=_progress)

    print_result(result, verbose=verbose)
    if not result.ok:
        raise typer.Exit(1)


@app.command()
def info(
    file: Optional[str] = typer.Argument(None, help="Unused"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug messages"),
) -> None:
    """Show chip information (not implemented yet)."""
    set_verbose(verbose)
    print_warning("'info' is not implemented yet")


@app.command()
def monitor(
    file: Optional[str] = typer.Argument(None, help="Unused"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug messages"),
) -> None:
    """Open a serial monitor (not implemented yet)."""
    set_verbose(verbose)
    print_warning("'monitor' is not implemented yet")


@app.command()
def chips() -> None:
    """List supported chips and their flash parameter names."""
    print_header("Supported Chips")

    table = Table(title="Chips")
    table.add_column("Name", style="cyan")
    table.add_column("Chip", style="magenta")
    table.add_column("Chip ID", style="yellow")
    table.add_column("Frequencies", style="green")
    table.add_column("Sizes", style="blue")

    for chip in list_chips():
        table.add_row(
            chip.name,
            chip.display_name,
            ", ".join(f"0x{v:08X}" for v in chip.magic_values),
            ", ".join(chip.flash_frequencies),
            ", ".join(chip.flash_sizes),
        )

    console.print(table)
    console.print(f"Flash modes: {', '.join(FLASH_MODES)}")


@app.command()
def ports() -> None:
    """List available serial ports."""
    print_header("Available Serial Ports")

    import serial.tools.list_ports

    ports_list = list(serial.tools.list_ports.comports())

    if not ports_list:
        print_warning("No serial ports found")
        return

    table = Table(title="Serial Ports")
    table.add_column("Port", style="cyan")
    table.add_column("Device", style="magenta")
    table.add_column("Description", style="green")

    for port in ports_list:
        table.add_row(port.device, port.name or "-", port.description or "-")

    console.print(table)


def main() -> None:
    """Main entry point."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/yellow]")
        sys.exit(130)


if __name__ == "__main__":
    main()
