# ==============================================================================
# FILE: core/data_models.py
# PURPOSE: Defines shared data structures and the runtime configuration.
# ==============================================================================
import os
import tempfile
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Dict, Optional, Tuple

BYTES_PER_MEGABIT = 131072  # 1024 * 1024 / 8


@dataclass(frozen=True)
class InterfaceSample:
    interface_name: str
    rx_bytes: int
    tx_bytes: int
    timestamp: float  # monotonic seconds


@dataclass(frozen=True)
class RateSample:
    download_mbps: float
    upload_mbps: float
    window_seconds: float


@dataclass
class SelectionState:
    country: Optional[str] = None
    city: Optional[str] = None
    group: Optional[str] = None
    roulette_enabled: bool = False


@dataclass(frozen=True)
class VpnStatus:
    state: Optional[str] = None
    hostname: Optional[str] = None
    ip: Optional[str] = None
    country: Optional[str] = None
    city: Optional[str] = None

    @property
    def connected(self) -> bool:
        return (self.state or "").lower() == "connected"


def _tmp(name: str) -> str:
    return os.path.join(tempfile.gettempdir(), name)


@dataclass
class AppConfig:
    """Everything the sampler, controller and web front-end need to know."""
    vpn_command: str = "nordvpn"
    command_timeout: float = 60.0
    interface: Optional[str] = None
    pick_interface: bool = False
    sample_interval: float = 5.0
    refresh_interval: float = 0.5
    key_timeout: float = 0.1
    max_prompt_attempts: int = 5
    speed_file: Optional[str] = field(default_factory=lambda: _tmp("network_speed.tmp"))
    lock_file: str = field(default_factory=lambda: _tmp("autonord.lock"))
    log_file: str = field(default_factory=lambda: _tmp("autonord.log"))
    verbose: bool = False
    menu_on_start: bool = True
    replace_running: bool = True
    web_enabled: bool = False
    web_host: str = "127.0.0.1"
    web_port: int = 8000


class SharedRate:
    """Latest throughput measurement, written by the sampler only.

    The value is replaced as a whole under the lock, so a reader always gets
    a consistent (sample, reason) pair.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._sample: Optional[RateSample] = None
        self._reason: Optional[str] = None

    def publish(self, sample: RateSample) -> None:
        with self._lock:
            self._sample = sample
            self._reason = None

    def mark_unavailable(self, reason: Optional[str] = None) -> None:
        with self._lock:
            self._sample = None
            self._reason = reason

    def read(self) -> Tuple[Optional[RateSample], Optional[str]]:
        with self._lock:
            return self._sample, self._reason


class StatusBoard:
    """Last status the controller rendered, exposed read-only to the web API."""

    def __init__(self, interface: str) -> None:
        self._lock = Lock()
        self.interface = interface
        self._status: Optional[VpnStatus] = None
        self._status_error: Optional[str] = None
        self._selection = SelectionState()

    def update(self, status: Optional[VpnStatus], error: Optional[str] = None) -> None:
        with self._lock:
            self._status = status
            self._status_error = error

    def set_selection(self, selection: SelectionState) -> None:
        with self._lock:
            self._selection = selection

    @property
    def selection(self) -> SelectionState:
        with self._lock:
            return self._selection

    def snapshot(self, shared_rate: SharedRate) -> Dict[str, Any]:
        sample, reason = shared_rate.read()
        with self._lock:
            status = self._status
            payload: Dict[str, Any] = {
                'interface': self.interface,
                'rate': None,
                'rate_error': reason,
                'vpn': None,
                'vpn_error': self._status_error,
                'roulette': self._selection.roulette_enabled,
            }
        if sample is not None:
            payload['rate'] = {
                'download_mbps': sample.download_mbps,
                'upload_mbps': sample.upload_mbps,
                'window_seconds': sample.window_seconds,
            }
        if status is not None:
            payload['vpn'] = {
                'state': status.state,
                'hostname': status.hostname,
                'ip': status.ip,
                'country': status.country,
                'city': status.city,
            }
        return payload
