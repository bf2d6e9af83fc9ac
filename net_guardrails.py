from __future__ import annotations

import ipaddress
import os
import socket
from typing import Any, Mapping
from urllib.parse import urlparse

from errors import InvalidTargetError

DEFAULT_USER_AGENT = "TagSpeed/1.0 (+contact@tagspeed.example)"
DEFAULT_HEADERS = {"User-Agent": DEFAULT_USER_AGENT}
DEFAULT_TIMEOUT = 15

PRIVATE_IP_RANGES = [
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("127.0.0.0/8"),
    ipaddress.ip_network("169.254.0.0/16"),
    ipaddress.ip_network("::1/128"),
    ipaddress.ip_network("fc00::/7"),
    ipaddress.ip_network("fe80::/10"),
]


def allow_private_targets() -> bool:
    return os.environ.get("TAGSPEED_ALLOW_PRIVATE_TARGETS") == "1"


def redact_values(values: Mapping[str, Any]) -> dict[str, str]:
    """Keeps cookie / local-storage keys for logging, hides their values."""
    return {str(key): "[REDACTED]" for key in (values or {})}


def validate_url(url: str) -> None:
    """
    Validates that the audit target uses http(s) and does not resolve to a
    private IP (unless TAGSPEED_ALLOW_PRIVATE_TARGETS=1, for local dev servers).
    Raises InvalidTargetError if unsafe.
    """
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https"):
        raise InvalidTargetError(f"Unsafe scheme: {parsed.scheme}")

    if not parsed.hostname:
        raise InvalidTargetError("Missing hostname")

    if allow_private_targets():
        return

    try:
        ip_list = socket.getaddrinfo(parsed.hostname, None)
    except socket.gaierror:
        # fail closed: an unresolvable host cannot be checked
        raise InvalidTargetError(f"DNS resolution failed for {parsed.hostname}")

    for _, _, _, _, sockaddr in ip_list:
        ip_str = sockaddr[0]
        ip_obj = ipaddress.ip_address(ip_str)
        for private_range in PRIVATE_IP_RANGES:
            if ip_obj in private_range:
                raise InvalidTargetError(f"Target resolves to private IP: {ip_str}")
