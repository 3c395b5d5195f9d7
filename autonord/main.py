# ==============================================================================
# FILE: autonord/main.py
# PURPOSE: Main entry point for the application. Run `autonord` or `python -m autonord`.
# ==============================================================================
import argparse
import atexit
import logging
import os
import signal
import sys
from threading import RLock
from typing import Callable, List, Optional

from rich.console import Console

from . import __version__
from .core.controller import Controller
from .core.data_models import AppConfig, SharedRate, StatusBoard
from .core.instance_lock import AlreadyRunning, InstanceLock
from .core.sampler import ThroughputSampler
from .core.vpn_client import VpnClient
from .interface_selector import NoActiveInterface, find_active_interface, select_interface, validate_interface
from .terminal import KeyReader

logger = logging.getLogger("autonord")

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'


def setup_logging(log_file: str, verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    root = logging.getLogger()
    root.setLevel(level)
    error = None
    try:
        os.makedirs(os.path.dirname(log_file) or ".", exist_ok=True)
        handler: logging.Handler = logging.FileHandler(log_file, encoding='utf-8', mode='w')
    except OSError as e:
        # The dashboard owns stdout
        handler = logging.StreamHandler(sys.stderr)
        error = e
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    if error is not None:
        logging.warning("Failed to write to log file %s: %s. Logging to stderr.", log_file, error)


def build_argparser() -> argparse.ArgumentParser:
    defaults = AppConfig()
    p = argparse.ArgumentParser(prog="autonord",
                                description="NordVPN connection menu with a live throughput dashboard")
    p.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    p.add_argument('-i', '--interface', help='Interface to monitor (default: first active one)')
    p.add_argument('--pick-interface', action='store_true', help='Choose the interface from a list')
    p.add_argument('--vpn-command', default=defaults.vpn_command,
                   help=f'VPN client binary (default: {defaults.vpn_command})')
    p.add_argument('--interval', type=float, default=defaults.sample_interval,
                   help=f'Throughput sampling interval in seconds (default: {defaults.sample_interval})')
    p.add_argument('--refresh', type=float, default=defaults.refresh_interval,
                   help=f'Dashboard refresh interval in seconds (default: {defaults.refresh_interval})')
    p.add_argument('--speed-file', default=defaults.speed_file,
                   help=f'File the latest rate is published to (default: {defaults.speed_file})')
    p.add_argument('--no-speed-file', action='store_true', help='Do not publish the rate to a file')
    p.add_argument('--lock-file', default=defaults.lock_file, help=f'(default: {defaults.lock_file})')
    p.add_argument('--log-file', default=defaults.log_file, help=f'(default: {defaults.log_file})')
    p.add_argument('--no-replace', action='store_true',
                   help='Exit if another instance is running instead of terminating it')
    p.add_argument('--skip-menu', action='store_true', help='Go straight to the dashboard')
    p.add_argument('--web', action='store_true', help='Also serve a read-only web dashboard')
    p.add_argument('--web-host', default=defaults.web_host)
    p.add_argument('--web-port', type=int, default=defaults.web_port)
    p.add_argument('-v', '--verbose', action='store_true', help='Debug logging')
    return p


def config_from_args(args: argparse.Namespace) -> AppConfig:
    if args.interval <= 0 or args.refresh <= 0:
        raise SystemExit("autonord: --interval and --refresh must be positive")
    return AppConfig(
        vpn_command=args.vpn_command,
        interface=args.interface,
        pick_interface=args.pick_interface,
        sample_interval=args.interval,
        refresh_interval=args.refresh,
        speed_file=None if args.no_speed_file else args.speed_file,
        lock_file=args.lock_file,
        log_file=args.log_file,
        verbose=args.verbose,
        menu_on_start=not args.skip_menu,
        replace_running=not args.no_replace,
        web_enabled=args.web,
        web_host=args.web_host,
        web_port=args.web_port,
    )


class Shutdown:
    """
    The single exit path. Cleanup steps registered here run once, whichever of
    atexit, a signal or the normal return reaches close() first.
    """

    def __init__(self) -> None:
        self._steps: List[Callable[[], None]] = []
        # Reentrant: a signal handler may call close() while the main thread holds the lock
        self._lock = RLock()
        self.closed = False

    def add(self, step: Callable[[], None]) -> None:
        self._steps.append(step)

    def close(self) -> None:
        with self._lock:
            if self.closed:
                return
            self.closed = True
        for step in reversed(self._steps):
            try:
                step()
            except Exception:
                logger.exception("Cleanup step %r failed", step)

    def install(self) -> None:
        atexit.register(self.close)
        for sig in (signal.SIGTERM, signal.SIGHUP):
            signal.signal(sig, self._on_signal)

    def _on_signal(self, signum, _frame) -> None:
        logger.info("Received signal %s, shutting down", signum)
        self.close()
        raise SystemExit(128 + signum)


def resolve_interface(config: AppConfig, console: Console) -> Optional[str]:
    if config.interface:
        return validate_interface(config.interface)
    if config.pick_interface:
        return select_interface(input_fn=console.input, print_fn=console.print,
                                max_attempts=config.max_prompt_attempts)
    console.print("Finding [bold bright_green]-Active-[/] interface to monitor.")
    return find_active_interface()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_argparser().parse_args(argv)
    config = config_from_args(args)
    setup_logging(config.log_file, config.verbose)
    console = Console()
    shutdown = Shutdown()
    shutdown.install()

    lock = InstanceLock(config.lock_file)
    try:
        lock.acquire(replace=config.replace_running)
    except AlreadyRunning as e:
        console.print(f"[red]AutoNord:[/red] {e}")
        return 1
    shutdown.add(lock.release)

    try:
        interface = resolve_interface(config, console)
    except NoActiveInterface as e:
        console.print(f"[red]AutoNord:[/red] {e}")
        logger.error("%s", e)
        shutdown.close()
        return 1
    if not interface:
        console.print("[red]AutoNord:[/red] No interface selected.")
        shutdown.close()
        return 1
    console.print(f"[red]AutoNord:[/red] Monitoring network speed on [bold bright_green]{interface}[/]")

    shared_rate = SharedRate()
    board = StatusBoard(interface)
    sampler = ThroughputSampler(interface, shared_rate, config.sample_interval, config.speed_file)
    sampler.start()
    shutdown.add(sampler.stop)

    if config.web_enabled:
        from .web.api import WebServer, create_app
        web = WebServer(create_app(board, shared_rate), config.web_host, config.web_port)
        web.start()
        shutdown.add(web.stop)

    vpn = VpnClient(config.vpn_command, config.command_timeout)
    controller = None
    try:
        with KeyReader() as keys:
            controller = Controller(config, vpn, shared_rate, board, sampler, keys, console,
                                    on_quit=shutdown.close)
            code = controller.run()
    except KeyboardInterrupt:
        code = 130
    finally:
        shutdown.close()

    if controller is not None and controller.fatal_error:
        console.print(f"[red]AutoNord:[/red] {controller.fatal_error}")
    console.print("[red]AutoNord:[/red] Script ended.")
    return code


if __name__ == '__main__':
    raise SystemExit(main())
