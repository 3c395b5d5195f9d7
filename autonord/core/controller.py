# ==============================================================================
# FILE: core/controller.py
# PURPOSE: Foreground loop: redraw the dashboard, react to keys, run the menu.
# ==============================================================================
import logging
import time
from typing import Callable, Iterator, Optional, Tuple

from rich.console import Console
from rich.live import Live

from ..terminal import KeyReader, render_dashboard
from .data_models import AppConfig, SelectionState, SharedRate, StatusBoard
from .sampler import ThroughputSampler
from .selection import SelectionAborted, SelectionFlow
from .vpn_client import VpnClient, VpnCommandError

logger = logging.getLogger(__name__)

TICK = "tick"
KEY = "key"

QUIT_KEY = "q"
MENU_KEY = "s"


def describe_selection(state: SelectionState) -> str:
    if state.group:
        return f"group {state.group}"
    target = " / ".join(p for p in (state.country, state.city) if p)
    return target or "best server"


class Controller:
    """
    Single-threaded loop fed by one ordered event stream: a render tick every
    refresh_interval and key presses polled in between.
    """

    def __init__(self, config: AppConfig, vpn: VpnClient, shared_rate: SharedRate,
                 board: StatusBoard, sampler: ThroughputSampler, keys: KeyReader,
                 console: Console, on_quit: Callable[[], None],
                 flow: Optional[SelectionFlow] = None,
                 clock: Callable[[], float] = time.monotonic) -> None:
        self.config = config
        self.vpn = vpn
        self.shared_rate = shared_rate
        self.board = board
        self.sampler = sampler
        self.keys = keys
        self.console = console
        self.flow = flow or SelectionFlow(vpn, console, max_attempts=config.max_prompt_attempts)
        self._on_quit = on_quit
        self._clock = clock
        self._live: Optional[Live] = None
        self._running = False
        self._quit_sent = False
        self.rendering = False
        self.message: Optional[str] = None
        self.fatal_error: Optional[str] = None

    # --- Event stream ---

    def events(self) -> Iterator[Tuple[str, Optional[str]]]:
        next_tick = self._clock()
        while self._running:
            now = self._clock()
            if self.rendering and now >= next_tick:
                next_tick = now + self.config.refresh_interval
                yield TICK, None
                continue
            timeout = self.config.key_timeout
            if self.rendering:
                timeout = min(timeout, max(0.0, next_tick - now))
            key = self.keys.poll(timeout)
            if key is not None:
                yield KEY, key
            elif self.keys.eof:
                yield KEY, QUIT_KEY

    # --- Rendering ---

    def _resume_rendering(self) -> None:
        self._live = Live(console=self.console, auto_refresh=False)
        self._live.start()
        self.rendering = True

    def _suspend_rendering(self) -> None:
        self.rendering = False
        if self._live is not None:
            self._live.stop()
            self._live = None

    def render(self) -> None:
        try:
            status, status_error = self.vpn.status(), None
        except VpnCommandError as e:
            status, status_error = None, str(e)
        self.board.update(status, status_error)
        rate, rate_error = self.shared_rate.read()
        view = render_dashboard(self.board.interface, status, rate, self.board.selection,
                                status_error=status_error, rate_error=rate_error,
                                message=self.message)
        if self._live is not None:
            self._live.update(view, refresh=True)

    # --- Menu ---

    def enter_menu(self) -> None:
        self._suspend_rendering()
        self.console.clear()
        try:
            with self.keys.suspended():
                state = self.flow.run()
        except SelectionAborted as e:
            self.message = f"Selection aborted: {e}"
            logger.info(self.message)
        except VpnCommandError as e:
            self.message = str(e)
            logger.error("VPN command failed during selection: %s", e)
        else:
            self.board.set_selection(state)
            self.message = f"Last selection: {describe_selection(state)}"
        self.console.clear()
        self._resume_rendering()

    # --- Lifecycle ---

    def _quit(self) -> None:
        self._running = False
        if not self._quit_sent:
            self._quit_sent = True
            self._on_quit()

    def handle_key(self, key: str) -> None:
        if key == QUIT_KEY:
            self.console.print("\nQuitting...")
            self._quit()
        elif key == MENU_KEY:
            self.enter_menu()

    def run(self) -> int:
        """Runs until 'q' (exit code 0) or until the sampler fails (exit code 1)."""
        self._running = True
        if self.config.menu_on_start:
            self.enter_menu()
        else:
            self._resume_rendering()
        try:
            for kind, key in self.events():
                if self.sampler.failed:
                    self.fatal_error = f"Lost interface {self.sampler.interface}: {self.sampler.error}"
                    logger.error(self.fatal_error)
                    self._quit()
                    break
                if kind == TICK:
                    self.render()
                else:
                    self.handle_key(key)
        finally:
            self._suspend_rendering()
        return 1 if self.fatal_error else 0
