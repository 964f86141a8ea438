"""Syntactic and policy checks applied to a URL before it touches the network."""

from __future__ import annotations

import ipaddress
import re
import socket
from typing import Optional, Union
from urllib.parse import SplitResult, urlsplit, urlunsplit

from .config import AdmissionPolicy
from .errors import AdmissionError
from .models import ReasonCode

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

_UNSAFE_CHARS = re.compile(r"[\s\x00-\x1f\x7f]")
_LEGACY_IPV4 = re.compile(r"^(0x[0-9a-f]+|[0-9]+)(\.(0x[0-9a-f]+|[0-9]+)){0,3}$")


def parse_ip_literal(host: str) -> Optional[IPAddress]:
    """Interpret ``host`` as an IP literal, including shorthand IPv4 forms.

    Resolvers accept spellings such as ``127.1``, ``0x7f.0.0.1`` and
    ``2130706433`` for loopback, so those are decoded here as well.
    """
    candidate = host.split("%", 1)[0]
    try:
        address = ipaddress.ip_address(candidate)
    except ValueError:
        if not _LEGACY_IPV4.match(candidate):
            return None
        try:
            packed = socket.inet_aton(candidate)
        except OSError:
            return None
        return ipaddress.IPv4Address(packed)
    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped:
        return address.ipv4_mapped
    return address


def is_non_public_address(address: IPAddress) -> bool:
    return not address.is_global or address.is_multicast


def is_blocked_host(host: str, policy: AdmissionPolicy) -> bool:
    """Return True when ``host`` (already lower-cased) is denied by ``policy``."""
    if host in policy.blocked_hosts:
        return True
    address = parse_ip_literal(host)
    if address is not None:
        if address.compressed in policy.blocked_hosts:
            return True
        if policy.block_private_addresses and is_non_public_address(address):
            return True
    if policy.host_predicate is not None and policy.host_predicate(host):
        return True
    return False


def _split(raw: str) -> SplitResult:
    if not raw or _UNSAFE_CHARS.search(raw):
        raise AdmissionError(ReasonCode.MALFORMED_URL, "URL is empty or contains whitespace")
    try:
        parts = urlsplit(raw)
        hostname = parts.hostname
        parts.port  # raises ValueError when out of range
    except ValueError as exc:
        raise AdmissionError(ReasonCode.MALFORMED_URL, f"Unparseable URL: {exc}") from exc
    if not parts.scheme or not parts.netloc or not hostname:
        raise AdmissionError(ReasonCode.MALFORMED_URL, "URL has no scheme or host")
    return parts


def _normalized_netloc(parts: SplitResult, host: str) -> str:
    userinfo, _, _ = parts.netloc.rpartition("@")
    netloc = f"[{host}]" if ":" in host else host
    if parts.port is not None:
        netloc = f"{netloc}:{parts.port}"
    if userinfo:
        netloc = f"{userinfo}@{netloc}"
    return netloc


def admit(raw: str, policy: Optional[AdmissionPolicy] = None) -> str:
    """Validate ``raw`` and return its normalized form.

    Checks run in order and stop at the first failure: the URL must parse
    with a scheme and host, the scheme must be allowed, and the host must not
    be denied. Raises :class:`AdmissionError` carrying the matching
    :class:`ReasonCode`. No DNS lookups or other I/O happen here.
    """
    policy = policy or AdmissionPolicy()
    parts = _split(raw)

    scheme = parts.scheme.lower()
    if scheme not in policy.allowed_schemes:
        raise AdmissionError(
            ReasonCode.UNSUPPORTED_SCHEME, f"Scheme {scheme!r} is not allowed"
        )

    host = parts.hostname.rstrip(".")
    if not host:
        raise AdmissionError(ReasonCode.MALFORMED_URL, "URL has an empty host")
    if is_blocked_host(host, policy):
        raise AdmissionError(ReasonCode.BLOCKED_HOST, f"Host {host!r} is blocked")

    return urlunsplit(
        (scheme, _normalized_netloc(parts, host), parts.path or "/", parts.query, "")
    )
