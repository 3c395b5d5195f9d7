# ==============================================================================
# FILE: core/sampler.py
# PURPOSE: Turns interface byte counters into download/upload rates.
# ==============================================================================
import logging
import os
import time
from threading import Event, Thread
from typing import Callable, Optional, Tuple

import psutil

from .data_models import BYTES_PER_MEGABIT, InterfaceSample, RateSample, SharedRate

logger = logging.getLogger(__name__)


class CounterReadFailure(Exception):
    """The interface counters could not be read (interface gone, permissions...)."""


def read_counters(interface: str, clock: Callable[[], float] = time.monotonic) -> InterfaceSample:
    """Reads the raw rx/tx byte counters of one interface."""
    try:
        # nowrap=False: wraps and resets must stay visible to compute_rate
        counters = psutil.net_io_counters(pernic=True, nowrap=False)
    except (psutil.Error, OSError) as e:
        raise CounterReadFailure(f"Unable to read counters for {interface}: {e}") from e
    stats = counters.get(interface)
    if stats is None:
        raise CounterReadFailure(f"Interface {interface} disappeared.")
    return InterfaceSample(interface, stats.bytes_recv, stats.bytes_sent, clock())


def compute_rate(before: InterfaceSample, after: InterfaceSample) -> Optional[RateSample]:
    """
    Rate between two readings of the same interface, in Mbps rounded to 2 places.
    Returns None when a counter went backwards (wrap or interface reset).
    """
    if before.interface_name != after.interface_name:
        raise ValueError("Samples belong to different interfaces")
    window = after.timestamp - before.timestamp
    if window <= 0:
        raise ValueError(f"Sampling window must be positive, got {window}")

    delta_rx = after.rx_bytes - before.rx_bytes
    delta_tx = after.tx_bytes - before.tx_bytes
    if delta_rx < 0 or delta_tx < 0:
        return None
    return RateSample(
        download_mbps=round(delta_rx / window / BYTES_PER_MEGABIT, 2),
        upload_mbps=round(delta_tx / window / BYTES_PER_MEGABIT, 2),
        window_seconds=window,
    )


def write_speed_file(path: str, sample: RateSample) -> None:
    tmp_path = f"{path}.{os.getpid()}"
    try:
        with open(tmp_path, 'w') as f:
            f.write(f"{sample.download_mbps:.2f} {sample.upload_mbps:.2f}\n")
        os.replace(tmp_path, path)
    finally:
        if os.path.lexists(tmp_path):
            os.remove(tmp_path)


def remove_speed_file(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("Could not remove speed file %s: %s", path, e)


def read_speed_file(path: str) -> Optional[Tuple[float, float]]:
    """Reads the "<download> <upload>" pair another process published, if any."""
    try:
        with open(path) as f:
            parts = f.read().split()
    except OSError:
        return None
    if len(parts) != 2:
        return None
    try:
        return float(parts[0]), float(parts[1])
    except ValueError:
        return None


class ThroughputSampler:
    """Background thread that publishes the rate of one interface every interval."""

    def __init__(self, interface: str, shared_rate: SharedRate, interval: float = 5.0,
                 speed_file: Optional[str] = None,
                 read_fn: Callable[[str], InterfaceSample] = read_counters) -> None:
        if interval <= 0:
            raise ValueError("Sampling interval must be positive")
        self.interface = interface
        self.shared_rate = shared_rate
        self.interval = interval
        self.speed_file = speed_file
        self._read = read_fn
        self._stop = Event()
        self._thread: Optional[Thread] = None
        self.error: Optional[Exception] = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    def start(self) -> None:
        self._thread = Thread(target=self.run, name="throughput-sampler", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 2.0) -> None:
        self._stop.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout)
        if self.speed_file:
            remove_speed_file(self.speed_file)

    def _unavailable(self, reason: str) -> None:
        self.shared_rate.mark_unavailable(reason)
        if self.speed_file:
            remove_speed_file(self.speed_file)

    def _publish(self, sample: RateSample) -> None:
        self.shared_rate.publish(sample)
        if self.speed_file:
            try:
                write_speed_file(self.speed_file, sample)
            except OSError as e:
                logger.warning("Could not write speed file %s: %s", self.speed_file, e)

    def run(self) -> None:
        logger.info("Sampling %s every %.1fs", self.interface, self.interval)
        try:
            baseline = self._read(self.interface)
            while not self._stop.wait(self.interval):
                current = self._read(self.interface)
                rate = compute_rate(baseline, current)
                if rate is None:
                    logger.warning("Counter went backwards on %s, skipping window", self.interface)
                    self._unavailable("counter reset")
                else:
                    self._publish(rate)
                # Each window starts where the previous one ended
                baseline = current
        except CounterReadFailure as e:
            logger.error("Sampler stopped: %s", e)
            self.error = e
            self._unavailable(str(e))
        except Exception as e:
            # Any other failure must still reach the controller through self.error
            logger.exception("Sampler crashed on %s", self.interface)
            self.error = e
            self._unavailable(f"sampler error: {e}")
