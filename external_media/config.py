"""Policy objects and defaults for admitting and probing remote images."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, FrozenSet, Optional

DEFAULT_ALLOWED_SCHEMES = frozenset({"http", "https"})
DEFAULT_BLOCKED_HOSTS = frozenset({"localhost", "127.0.0.1", "::1"})
DEFAULT_ALLOWED_MIME_TYPES = frozenset(
    {"image/jpeg", "image/png", "image/gif", "image/webp"}
)
DEFAULT_MAX_BYTES = 20 * 1024 * 1024
DEFAULT_TIMEOUT_SECONDS = 10
DEFAULT_PROBE_BYTES = 256 * 1024
DEFAULT_MAX_REDIRECTS = 5
DEFAULT_MAX_CONCURRENCY = 4
DEFAULT_USER_AGENT = "external-media/1.0 (+remote image validation)"


def _normalize_host_entry(host: str) -> str:
    return host.strip().strip("[]").rstrip(".").lower()


@dataclass(frozen=True)
class AdmissionPolicy:
    """Settings that decide which URLs may reach the network at all."""

    allowed_schemes: FrozenSet[str] = DEFAULT_ALLOWED_SCHEMES
    blocked_hosts: FrozenSet[str] = DEFAULT_BLOCKED_HOSTS
    block_private_addresses: bool = True
    host_predicate: Optional[Callable[[str], bool]] = field(
        default=None, compare=False
    )

    def __post_init__(self) -> None:
        object.__setattr__(
            self,
            "allowed_schemes",
            frozenset(scheme.lower() for scheme in self.allowed_schemes),
        )
        object.__setattr__(
            self,
            "blocked_hosts",
            frozenset(_normalize_host_entry(host) for host in self.blocked_hosts),
        )

    def with_blocked_hosts(self, *hosts: str) -> "AdmissionPolicy":
        """Return a copy whose denylist also contains ``hosts``."""
        return AdmissionPolicy(
            allowed_schemes=self.allowed_schemes,
            blocked_hosts=self.blocked_hosts | frozenset(hosts),
            block_private_addresses=self.block_private_addresses,
            host_predicate=self.host_predicate,
        )


@dataclass(frozen=True)
class ProbePolicy:
    """Limits applied while inspecting a remote resource."""

    allowed_mime_types: FrozenSet[str] = DEFAULT_ALLOWED_MIME_TYPES
    max_bytes: int = DEFAULT_MAX_BYTES
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    user_agent: str = DEFAULT_USER_AGENT
    probe_bytes: int = DEFAULT_PROBE_BYTES
    max_redirects: int = DEFAULT_MAX_REDIRECTS

    def __post_init__(self) -> None:
        if self.max_bytes <= 0:
            raise ValueError("max_bytes must be positive")
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        if self.probe_bytes <= 0:
            raise ValueError("probe_bytes must be positive")
        if self.max_redirects < 0:
            raise ValueError("max_redirects cannot be negative")
        object.__setattr__(
            self,
            "allowed_mime_types",
            frozenset(mime.strip().lower() for mime in self.allowed_mime_types),
        )

    @property
    def read_limit(self) -> int:
        """Most body bytes the structural probe is allowed to consume."""
        return min(self.probe_bytes, self.max_bytes)
