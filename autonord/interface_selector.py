# FILE: autonord/interface_selector.py
# PURPOSE: Find the active network interface, or let the user pick one.

import ipaddress
import logging
import socket
from typing import Callable, List, Optional

import psutil

logger = logging.getLogger(__name__)

LOOPBACK_NAMES = ("lo", "lo0")
IP_FAMILIES = (socket.AF_INET, socket.AF_INET6)


class NoActiveInterface(Exception):
    """No non-loopback interface carries an IPv4 or IPv6 address."""


def _ip_addresses(addrs) -> List[str]:
    return [addr.address for addr in addrs if addr.family in IP_FAMILIES]


def _is_loopback(name: str, ips: List[str]) -> bool:
    if name in LOOPBACK_NAMES:
        return True
    if not ips:
        return False
    for ip in ips:
        try:
            # Scoped IPv6 addresses come back as "fe80::1%eth0"
            if not ipaddress.ip_address(ip.split('%', 1)[0]).is_loopback:
                return False
        except ValueError:
            return False
    return True


def active_interfaces() -> List[str]:
    """All non-loopback interfaces with at least one IP address, in host order."""
    try:
        interfaces_addrs = psutil.net_if_addrs()
    except (psutil.Error, OSError) as e:
        raise NoActiveInterface(f"Unable to retrieve interfaces: {e}") from e

    found = []
    for iface_name, addrs in interfaces_addrs.items():
        ips = _ip_addresses(addrs)
        if ips and not _is_loopback(iface_name, ips):
            found.append(iface_name)
    return found


def find_active_interface() -> str:
    """
    Returns the first non-loopback interface that has an IPv4 or IPv6 address.
    Raises NoActiveInterface when there is none.
    """
    candidates = active_interfaces()
    if not candidates:
        raise NoActiveInterface("No active interface found.")
    logger.info("Active interface detected: %s (candidates: %s)", candidates[0], ", ".join(candidates))
    return candidates[0]


def validate_interface(iface_name: str) -> str:
    """Checks that a user supplied interface exists and has counters."""
    if iface_name not in psutil.net_io_counters(pernic=True):
        raise NoActiveInterface(f"Interface {iface_name!r} does not exist.")
    return iface_name


def get_interface_ip(iface_name: str) -> str:
    """Gets the primary IPv4 address for a given interface name."""
    try:
        addrs = psutil.net_if_addrs().get(iface_name, [])
    except (psutil.Error, OSError):
        return ""
    for addr in addrs:
        if addr.family == socket.AF_INET:
            return addr.address
    return ""


def select_interface(input_fn: Callable[[str], str] = input,
                     print_fn: Callable[..., None] = print,
                     max_attempts: int = 5) -> Optional[str]:
    """
    Lists the active interfaces with their status (online/offline).
    Returns the name of the selected interface, or None if the user gave up.
    """
    interface_list = active_interfaces()
    if not interface_list:
        raise NoActiveInterface("No active interface found.")
    interfaces_stats = psutil.net_if_stats()

    print_fn("Please select the network interface you want to use:")
    for i, iface_name in enumerate(interface_list):
        status_text = "[OFF]"
        if iface_name in interfaces_stats and interfaces_stats[iface_name].isup:
            status_text = "[ON]"
        ip_address = get_interface_ip(iface_name)
        suffix = f" (IP: {ip_address})" if ip_address else ""
        print_fn(f"  {i + 1}: {status_text} {iface_name}{suffix}")

    for _ in range(max_attempts):
        try:
            raw = input_fn(f"Enter the number (1-{len(interface_list)}): ")
        except (EOFError, KeyboardInterrupt):
            print_fn("\nSelection cancelled.")
            return None
        try:
            choice = int(raw)
        except ValueError:
            print_fn("Invalid input. Please enter a number.")
            continue
        if 1 <= choice <= len(interface_list):
            return interface_list[choice - 1]
        print_fn("Invalid number. Please try again.")
    return None
