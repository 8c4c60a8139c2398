"""Object key scheme, version metadata extraction and download URL helpers.

Keys have the shape ``[<prefix>/]<version>/<filename>`` and versions the shape
``v1.0.0-<commit>-<YYYYMMDD>-<HHMMSS>-<counter>``. Every function here is pure.
"""

from __future__ import annotations

import ipaddress
import re
from datetime import date, datetime, timedelta
from enum import Enum

from obsput.domain.errors import FormatError

_KB = 1024
_MB = 1024 * 1024
_GB = 1024 * 1024 * 1024

_DATE_FIELD = re.compile(r"^\d{8}$")
_RELATIVE_CUTOFF = re.compile(r"^(\d+)([dh])$")


class HostClass(str, Enum):
    """Addressing class of an endpoint host."""

    LOCAL = "local"  # IP literal or localhost, path-style URLs
    DNS = "dns"  # DNS name, virtual-hosted URLs


def build_key(prefix: str, version: str, filename: str) -> str:
    if prefix:
        return f"{prefix}/{version}/{filename}"
    return f"{version}/{filename}"


def parse_version_from_key(key: str) -> str:
    """Return the right-most key segment that looks like a version, or ``""``."""
    if key.endswith("/"):
        key = key[:-1]
    for segment in reversed(key.split("/")):
        if segment.startswith("v") and "-" in segment:
            return segment
    return ""


def extract_commit(version: str) -> str:
    parts = version.split("-")
    if len(parts) >= 2:
        return parts[1]
    return ""


def parse_version_date(version: str) -> date:
    """Extract the upload date from a version string.

    Raises:
        FormatError: If the version has fewer than four dash-separated fields,
            or its date field is not a valid ``YYYYMMDD`` calendar date.
    """
    parts = version.split("-")
    if len(parts) < 4:
        raise FormatError(f"invalid version format: {version!r}")
    date_field = parts[2]
    if not _DATE_FIELD.match(date_field):
        raise FormatError(f"invalid date in version: {version!r}")
    try:
        return datetime.strptime(date_field, "%Y%m%d").date()
    except ValueError as exc:
        raise FormatError(f"invalid date in version: {version!r}") from exc


def parse_before(value: str, *, now: datetime | None = None) -> datetime:
    """Parse a ``--before`` cutoff: ``YYYY-MM-DD``, ``<N>d`` or ``<N>h``."""
    text = (value or "").strip()
    try:
        return datetime.strptime(text, "%Y-%m-%d")
    except ValueError:
        pass
    match = _RELATIVE_CUTOFF.match(text)
    if not match:
        raise FormatError(
            f"invalid cutoff {value!r}: use YYYY-MM-DD or Nd / Nh (e.g. 7d, 24h)"
        )
    amount, unit = int(match.group(1)), match.group(2)
    current = now or datetime.now()
    if unit == "d":
        return current - timedelta(days=amount)
    return current - timedelta(hours=amount)


def format_size(num_bytes: int) -> str:
    if num_bytes < _KB:
        return f"{num_bytes} B"
    if num_bytes < _MB:
        return f"{num_bytes / _KB:.1f} KB"
    if num_bytes < _GB:
        return f"{num_bytes / _MB:.1f} MB"
    return f"{num_bytes / _GB:.2f} GB"


def extract_filename(key: str) -> str:
    return key.rstrip("/").rsplit("/", 1)[-1]


def strip_scheme(endpoint: str) -> str:
    endpoint = endpoint.strip()
    for scheme in ("https://", "http://"):
        if endpoint.startswith(scheme):
            return endpoint[len(scheme):]
    return endpoint


def split_host_port(host: str) -> tuple[str, int | None]:
    """Split ``host[:port]`` into its parts, accepting bare and bracketed IPv6."""
    host = host.split("/", 1)[0]
    if host.startswith("["):
        closing = host.find("]")
        if closing != -1:
            name = host[1:closing]
            rest = host[closing + 1:]
            if rest.startswith(":") and rest[1:].isdigit():
                return name, int(rest[1:])
            return name, None
    if host.count(":") == 1:
        name, _, port = host.partition(":")
        if port.isdigit():
            return name, int(port)
        return name, None
    # Bare IPv6 literals carry several colons and no port.
    return host, None


def is_ip_address(host: str) -> bool:
    name, _ = split_host_port(host)
    try:
        ipaddress.ip_address(name)
    except ValueError:
        return False
    return True


def classify_host(host: str) -> HostClass:
    name, _ = split_host_port(host)
    if name.lower() == "localhost" or is_ip_address(host):
        return HostClass.LOCAL
    return HostClass.DNS


def build_download_url(endpoint: str, bucket: str, key: str) -> str:
    """Public URL of ``key``: path-style for local hosts, virtual-hosted otherwise."""
    host = strip_scheme(endpoint).rstrip("/")
    if classify_host(host) is HostClass.LOCAL:
        return f"http://{host}/{bucket}/{key}"
    return f"https://{bucket}.{host}/{key}"


def clean_url(url: str) -> str:
    """Drop the query string (signature parameters) from a URL."""
    return url.split("?", 1)[0]
