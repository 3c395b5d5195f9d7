# ==============================================================================
# FILE: core/vpn_client.py
# PURPOSE: Thin wrapper around the external VPN command line client.
# ==============================================================================
import logging
import re
import subprocess
from typing import Callable, List, Optional

from .data_models import VpnStatus

logger = logging.getLogger(__name__)

# Spinner frames the CLI prints before its real output
SPINNER_CHARS = "-\\|/"
STATUS_KEYS = {
    'status': 'state',
    'hostname': 'hostname',
    'ip': 'ip',
    'server ip': 'ip',
    'country': 'country',
    'city': 'city',
}


class VpnCommandError(Exception):
    """The VPN command is missing, failed, timed out or printed nothing useful."""


def parse_listing(text: str) -> List[str]:
    """Splits a countries/cities/groups listing into sorted names."""
    names = []
    for token in re.split(r"[,\s]+", text.replace('\r', '')):
        token = token.strip(SPINNER_CHARS)
        if token:
            names.append(token)
    return sorted(set(names))


def parse_status(text: str) -> VpnStatus:
    """Extracts the interesting "Key: Value" lines of the status output."""
    fields = {}
    for line in text.replace('\r', '').splitlines():
        key, sep, value = line.strip(SPINNER_CHARS + " \t").partition(':')
        if not sep:
            continue
        attr = STATUS_KEYS.get(key.strip().lower())
        if attr and attr not in fields:
            fields[attr] = value.strip() or None
    return VpnStatus(**fields)


class VpnClient:
    def __init__(self, command: str = "nordvpn", timeout: float = 60.0,
                 runner: Callable[..., subprocess.CompletedProcess] = subprocess.run) -> None:
        self.command = command
        self.timeout = timeout
        self._runner = runner

    def _run(self, *args: str) -> str:
        cmd = [self.command, *args]
        logger.debug("Running %s", " ".join(cmd))
        try:
            result = self._runner(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE,
                                  text=True, timeout=self.timeout)
        except FileNotFoundError as e:
            raise VpnCommandError(f"'{self.command}' not found. Is it installed?") from e
        except subprocess.TimeoutExpired as e:
            raise VpnCommandError(f"'{' '.join(cmd)}' timed out after {self.timeout:.0f}s") from e
        except OSError as e:
            raise VpnCommandError(f"Could not run '{self.command}': {e}") from e

        if result.returncode != 0:
            message = (result.stderr or result.stdout or "").strip().splitlines()
            detail = message[-1] if message else f"exit status {result.returncode}"
            logger.warning("%s failed (%s): %s", " ".join(cmd), result.returncode, detail)
            raise VpnCommandError(f"'{' '.join(cmd)}' failed: {detail}")
        return result.stdout or ""

    def status(self) -> VpnStatus:
        output = self._run("status")
        if not output.strip():
            raise VpnCommandError(f"'{self.command} status' returned no output")
        return parse_status(output)

    def countries(self) -> List[str]:
        return parse_listing(self._run("countries"))

    def cities(self, country: str) -> List[str]:
        return parse_listing(self._run("cities", country))

    def groups(self) -> List[str]:
        return parse_listing(self._run("groups"))

    def connect(self, *targets: Optional[str]) -> str:
        """Connects to the given country [city] or group; no target means best server."""
        args = [t for t in targets if t]
        logger.info("Connecting to %s", " ".join(args) or "best server")
        return self._run("connect", *args)

    def disconnect(self) -> str:
        logger.info("Disconnecting")
        return self._run("disconnect")
