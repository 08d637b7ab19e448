"""
benchgo - Utility functions.

Provides address helpers, validation and display formatting.
"""

import ipaddress
import logging
import os
import re
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)


def host_of(address: Any) -> str:
    """
    Return the host part of a socket address, without the port.

    Accepts socket address tuples as returned by ``getpeername()`` /
    ``getsockname()`` (IPv4 and IPv6 forms), ``"host:port"`` strings,
    ``"[v6]:port"`` strings and bare hosts.

    Args:
        address: Socket address tuple or string

    Returns:
        Host string

    Raises:
        ValueError: If no host can be extracted
    """
    if isinstance(address, (tuple, list)):
        if not address:
            raise ValueError("Empty socket address")
        return str(address[0])

    if not isinstance(address, str) or not address:
        raise ValueError(f"Invalid address: {address!r}")

    if address.startswith("["):
        end = address.find("]")
        if end == -1:
            raise ValueError(f"Unterminated IPv6 literal: {address!r}")
        return address[1:end]

    # A bare IPv6 address has several colons and no port
    if address.count(":") == 1:
        return address.split(":", 1)[0]
    return address


def validate_port(port: int) -> bool:
    """
    Validate a port number.

    Args:
        port: Port number to validate

    Returns:
        True if valid, False otherwise
    """
    return 1024 <= port <= 65535


def validate_ip(ip: str, allow_loopback: bool = True) -> bool:
    """
    Validate an IP address (IPv4 or IPv6).

    Rejects invalid IPs, unspecified addresses (0.0.0.0, ::) and multicast
    addresses. Loopback is accepted unless ``allow_loopback`` is False.

    Args:
        ip: IP address string
        allow_loopback: Whether to allow loopback addresses

    Returns:
        True if valid IP address, False otherwise
    """
    try:
        ip_obj = ipaddress.ip_address(ip)
    except ValueError:
        return False

    if ip_obj.is_loopback:
        return allow_loopback
    if ip_obj.is_unspecified or ip_obj.is_multicast:
        return False
    return True


def validate_hostname(hostname: str) -> bool:
    """
    Validate a hostname.

    Args:
        hostname: Hostname string

    Returns:
        True if valid hostname, False otherwise
    """
    if not hostname or len(hostname) > 255:
        return False

    if hostname[-1] == ".":
        hostname = hostname[:-1]

    if not hostname:
        return False

    pattern = r"^[a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?(\.[a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*$"
    return bool(re.match(pattern, hostname))


def validate_remote(address: str) -> bool:
    """Check that ``address`` names a host we could dial (IP literal or hostname)."""
    return validate_ip(address) or validate_hostname(address)


def format_timestamp(dt: datetime, format_str: str = "%Y-%m-%d %H:%M:%S") -> str:
    """
    Format a timestamp in local time for display.

    Args:
        dt: Timestamp (naive values are treated as local time)
        format_str: strftime format string

    Returns:
        Formatted timestamp string
    """
    if dt.tzinfo is not None:
        dt = dt.astimezone()
    return dt.strftime(format_str)


def format_fingerprint(fingerprint: str) -> str:
    """
    Format a fingerprint for display with spaces every 4 characters.

    Args:
        fingerprint: Hex fingerprint string

    Returns:
        Formatted fingerprint
    """
    return " ".join(fingerprint[i : i + 4] for i in range(0, len(fingerprint), 4))


def truncate_string(s: str, max_length: int, suffix: str = "...") -> str:
    """
    Truncate a string to a maximum length.

    Args:
        s: String to truncate
        max_length: Maximum length
        suffix: Suffix to add if truncated

    Returns:
        Truncated string
    """
    if len(s) <= max_length:
        return s
    return s[: max_length - len(suffix)] + suffix


def default_data_dir(override: Optional[str] = None) -> Path:
    """
    Resolve the data directory, using the platform default when not given.

    Args:
        override: Explicit directory (optional)

    Returns:
        Absolute data directory path (not created)
    """
    if override:
        return Path(override).expanduser().resolve()

    if sys.platform == "win32":
        data_dir = Path(os.getenv("APPDATA", "~")) / "benchgo"
    elif sys.platform == "darwin":
        data_dir = Path.home() / "Library" / "Application Support" / "benchgo"
    else:
        data_dir = Path.home() / ".benchgo"

    return data_dir.expanduser().resolve()
