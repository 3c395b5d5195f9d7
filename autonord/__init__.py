# FILE: autonord/__init__.py
# PURPOSE: Terminal VPN dashboard with live interface throughput.

__version__ = "2.0.0"
