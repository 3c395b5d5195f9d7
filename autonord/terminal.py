# FILE: autonord/terminal.py
# PURPOSE: Dashboard rendering and single-key input for the terminal.

import os
import select
import sys
import termios
import tty
from contextlib import contextmanager
from typing import IO, Optional

from rich.console import Group
from rich.table import Table
from rich.text import Text

from .core.data_models import RateSample, SelectionState, VpnStatus

BANNER = (
    "       d8888          888            888b    888                      888",
    "      d88888          888            8888b   888                      888",
    "     d88P888          888            88888b  888                      888",
    "    d88P 888 888  888 888888 .d88b.  888Y88b 888  .d88b.  888d888 .d88888",
    "   d88P  888 888  888 888   d88  88b 888 Y88b888 d88  88b 888P   d88  888",
    "  d88P   888 888  888 888   888  888 888  Y88888 888  888 888    888  888",
    " d8888888888 Y88b 888 Y88b  Y88..88P 888   Y8888 Y88..88P 888    Y88b 888",
    "d88P     888  Y88888   Y888   Y88P   888    Y888   Y888   888      Y8888P",
)


def banner(roulette: bool = False) -> Text:
    return Text("\n".join(BANNER), style="cyan" if roulette else "red")


def _value(value: Optional[str]) -> str:
    return value if value else "N/A"


def format_rate(sample: Optional[RateSample]) -> Text:
    if sample is None:
        return Text.assemble("Download: ", ("N/A Mb/s", "bright_green"),
                             ", Upload: ", ("N/A Mb/s", "bright_green"))
    return Text.assemble("Download: ", (f"{sample.download_mbps:.2f} Mb/s", "bright_green"),
                         ", Upload: ", (f"{sample.upload_mbps:.2f} Mb/s", "bright_green"))


def render_dashboard(interface: str,
                     status: Optional[VpnStatus],
                     rate: Optional[RateSample],
                     selection: SelectionState,
                     status_error: Optional[str] = None,
                     rate_error: Optional[str] = None,
                     message: Optional[str] = None) -> Group:
    """Builds the fixed status block shown below the banner."""
    grid = Table.grid(padding=(0, 1))
    grid.add_column(style="bright_blue", no_wrap=True)
    grid.add_column()

    if status_error:
        grid.add_row("VPN:", Text(status_error, style="bold red"))
    else:
        status = status or VpnStatus()
        grid.add_row("Status:", Text(_value(status.state), style="green" if status.connected else "yellow"))
        grid.add_row("IP Address:", Text.assemble((_value(status.ip), "blue"),
                                                  " | Hostname: ", (_value(status.hostname), "bright_black")))
        grid.add_row("City:", Text.assemble((_value(status.city), "blue"),
                                            " Country: ", (_value(status.country), "bright_black")))

    rate_line = format_rate(rate)
    if rate is None and rate_error:
        rate_line.append(f" ({rate_error})", style="bright_black")
    grid.add_row(f"{interface}:", rate_line)

    if selection.roulette_enabled:
        grid.add_row("1337-Roulette mode:", Text("ON", style="bold bright_green"))
    else:
        grid.add_row("1337-Roulette mode:", Text("OFF", style="white"))

    parts = [banner(selection.roulette_enabled), grid]
    if message:
        parts.append(Text(message, style="yellow"))
    parts.append(Text.assemble(("Press: ", "bold bright_blue"), "'s' for settings, 'q' to quit."))
    return Group(*parts)


class KeyReader:
    """
    Non-blocking single key reads from stdin.

    While active, a TTY is switched to cbreak mode so keys arrive without
    Enter; suspended() hands the terminal back for line-based prompts.
    Without a TTY, the line ending typed after a key is consumed with it.
    """

    def __init__(self, stream: Optional[IO[str]] = None) -> None:
        self.stream = stream or sys.stdin
        self._saved = None
        self.eof = False
        self._pending: Optional[bytes] = None

    def _is_tty(self) -> bool:
        try:
            return self.stream.isatty()
        except (AttributeError, ValueError):
            return False

    def __enter__(self) -> "KeyReader":
        self._cbreak()
        return self

    def __exit__(self, *exc) -> None:
        self._restore()

    def _cbreak(self) -> None:
        if self._saved is not None or not self._is_tty():
            return
        fd = self.stream.fileno()
        self._saved = termios.tcgetattr(fd)
        tty.setcbreak(fd)

    def _restore(self) -> None:
        if self._saved is None:
            return
        termios.tcsetattr(self.stream.fileno(), termios.TCSADRAIN, self._saved)
        self._saved = None

    @contextmanager
    def suspended(self):
        was_active = self._saved is not None
        self._restore()
        try:
            yield
        finally:
            if was_active:
                self._cbreak()

    def _read_byte(self, timeout: float) -> Optional[bytes]:
        if self._pending is not None:
            data, self._pending = self._pending, None
            return data
        ready, _, _ = select.select([self.stream], [], [], max(timeout, 0))
        if not ready:
            return None
        return os.read(self.stream.fileno(), 1)

    def _drop_line_end(self) -> None:
        # Piped input arrives a line at a time; the newline after a key is not
        # a key of its own and must not be left for the next line-based prompt
        for expected in (b"\r", b"\n"):
            data = self._read_byte(0)
            if data is None:
                return
            if data == b"\n":
                return
            if data != expected:
                self._pending = data
                return

    def poll(self, timeout: float) -> Optional[str]:
        """Returns one key, or None if nothing arrived within timeout."""
        if self.eof:
            return None
        data = self._read_byte(timeout)
        if data is None:
            return None
        if not data:
            self.eof = True
            return None
        if data not in (b"\r", b"\n") and not self._is_tty():
            self._drop_line_end()
        return data.decode(errors="ignore") or None
