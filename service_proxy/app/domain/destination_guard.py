"""
Outbound destination validation for caller-supplied URLs.

Only the literal hostname is inspected. Numeric IPv4 spellings (`127.1`,
`2130706433`, `0x7f.0.0.1`) are rewritten to dotted form before the range
check, but nothing is resolved: a public name pointing at a private address
(DNS rebinding), an IPv4-mapped IPv6 literal and upstream redirects to
private addresses are not caught here.
"""

import ipaddress
from dataclasses import dataclass
from typing import List, Optional
from urllib.parse import SplitResult, urlsplit, urlunsplit

import httpx


ALLOWED_SCHEMES = frozenset({"http", "https"})
DEFAULT_PORTS = {"http": 80, "https": 443}

BLOCKED_HOSTNAMES = frozenset({"localhost"})
BLOCKED_SUFFIXES = (".localhost", ".local", ".internal")

BLOCKED_NETWORKS = tuple(
    ipaddress.ip_network(cidr)
    for cidr in (
        "127.0.0.0/8",
        "0.0.0.0/32",
        "10.0.0.0/8",
        "172.16.0.0/12",
        "192.168.0.0/16",
        "169.254.0.0/16",
        "100.64.0.0/10",
        "::1/128",
    )
)

MISSING_URL = "Missing url parameter"
INVALID_URL = "Invalid url parameter"
INVALID_PROTOCOL = "Invalid url protocol"
BLOCKED_HOST = "Blocked url host"

_DIGITS = {8: "01234567", 10: "0123456789", 16: "0123456789abcdefABCDEF"}


@dataclass(frozen=True)
class GuardDecision:
    allowed: bool
    reason: Optional[str] = None
    url: Optional[str] = None

    def __bool__(self) -> bool:
        return self.allowed


def _reject(reason: str) -> GuardDecision:
    return GuardDecision(allowed=False, reason=reason)


def _parse(url: str) -> Optional[SplitResult]:
    try:
        parts = urlsplit(url.strip())
        # Raises on a non-numeric or out-of-range port
        _port = parts.port
    except ValueError:
        return None
    if not parts.scheme:
        return None
    return parts


def _ipv4_number(part: str) -> int:
    if part[:2] in ("0x", "0X"):
        digits, base = part[2:], 16
    elif len(part) > 1 and part.startswith("0"):
        digits, base = part[1:], 8
    else:
        digits, base = part, 10
    if not all(char in _DIGITS[base] for char in digits):
        raise ValueError(f"not a base-{base} number: {part!r}")
    return int(digits, base) if digits else 0


def _ends_in_number(host: str) -> bool:
    labels = host.split(".")
    if labels[-1] == "" and len(labels) > 1:
        labels.pop()
    last = labels[-1]
    if last and all(char in _DIGITS[10] for char in last):
        return True
    if last[:2] in ("0x", "0X"):
        return all(char in _DIGITS[16] for char in last[2:])
    return False


def _parse_ipv4(host: str) -> ipaddress.IPv4Address:
    """
    Read a host that ends in a number as an IPv4 address.

    Accepts one to four parts, each decimal, ``0x`` hex or leading-zero
    octal; the last part fills the remaining bytes, so ``127.1`` is
    ``127.0.0.1`` and ``2130706433`` is ``127.0.0.1``.

    Raises:
        ValueError: if the parts do not form an IPv4 address.
    """
    parts: List[str] = host.split(".")
    if parts[-1] == "" and len(parts) > 1:
        parts.pop()
    if len(parts) > 4 or "" in parts:
        raise ValueError(f"malformed IPv4 host: {host!r}")

    numbers = [_ipv4_number(part) for part in parts]
    if any(number > 255 for number in numbers[:-1]):
        raise ValueError(f"IPv4 part out of range: {host!r}")
    if numbers[-1] >= 256 ** (5 - len(numbers)):
        raise ValueError(f"IPv4 part out of range: {host!r}")

    value = numbers[-1]
    for index, number in enumerate(numbers[:-1]):
        value += number * 256 ** (3 - index)
    return ipaddress.IPv4Address(value)


def canonical_host(hostname: str) -> str:
    """
    Lowercase ``hostname`` and rewrite numeric IPv4 spellings to dotted form.

    Raises:
        ValueError: if the host ends in a number but is not an IPv4 address.
    """
    host = hostname.lower()
    if host and ":" not in host and _ends_in_number(host):
        return str(_parse_ipv4(host))
    return host


def is_blocked_host(hostname: Optional[str]) -> bool:
    """True when ``hostname`` names a loopback, private, link-local or internal target."""
    if not hostname:
        return True

    try:
        host = canonical_host(hostname).rstrip(".")
    except ValueError:
        return True
    if host in BLOCKED_HOSTNAMES or host.endswith(BLOCKED_SUFFIXES):
        return True

    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return False
    return any(address in network for network in BLOCKED_NETWORKS if network.version == address.version)


def _canonical_url(parts: SplitResult, scheme: str, host: str) -> str:
    netloc = f"[{host}]" if ":" in host else host
    userinfo, at, _ = parts.netloc.rpartition("@")
    if at:
        netloc = f"{userinfo}@{netloc}"
    if parts.port is not None and parts.port != DEFAULT_PORTS[scheme]:
        netloc = f"{netloc}:{parts.port}"
    return urlunsplit((scheme, netloc, parts.path or "/", parts.query, ""))


def _is_fetchable(url: str) -> bool:
    # Hosts such as ``xn--`` split cleanly but fail IDNA decoding in httpx
    try:
        httpx.URL(url).host
    except (httpx.InvalidURL, UnicodeError):
        return False
    return True


def is_allowed(url: Optional[str]) -> GuardDecision:
    """
    Decide whether the proxy may fetch ``url``.

    Pure and synchronous. The returned decision carries the canonical URL to
    fetch when allowed, or the client-facing reason when not.
    """
    if not url or not url.strip():
        return _reject(MISSING_URL)

    parts = _parse(url)
    if parts is None:
        return _reject(INVALID_URL)

    scheme = parts.scheme.lower()
    if scheme not in ALLOWED_SCHEMES:
        return _reject(INVALID_PROTOCOL)

    try:
        host = canonical_host(parts.hostname or "")
    except ValueError:
        return _reject(INVALID_URL)

    if is_blocked_host(host):
        return _reject(BLOCKED_HOST)

    canonical = _canonical_url(parts, scheme, host)
    if not _is_fetchable(canonical):
        return _reject(INVALID_URL)
    return GuardDecision(allowed=True, url=canonical)
