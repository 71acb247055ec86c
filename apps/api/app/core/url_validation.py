"""URL validation helpers for outbound webhook targets (SSRF defense)."""

from __future__ import annotations

import ipaddress
import socket
from urllib.parse import urlsplit, urlunsplit

MAX_WEBHOOK_URL_LENGTH = 2048

BLOCKED_HOSTNAMES = frozenset({"localhost", "localhost.localdomain", "ip6-localhost"})
INTERNAL_TLDS = (".local", ".internal", ".corp", ".home", ".lan", ".intranet", ".localhost")


def _is_ip_allowed(ip: ipaddress.IPv4Address | ipaddress.IPv6Address) -> bool:
    # is_global rejects loopback, RFC1918, link-local, 0.0.0.0/8 and reserved ranges.
    if ip.is_multicast:
        return False
    return ip.is_global


def _resolve_host(host: str, port: int) -> set[ipaddress.IPv4Address | ipaddress.IPv6Address]:
    try:
        infos = socket.getaddrinfo(host, port, type=socket.SOCK_STREAM)
    except OSError as exc:
        raise ValueError("Webhook URL host could not be resolved") from exc

    resolved: set[ipaddress.IPv4Address | ipaddress.IPv6Address] = set()
    for info in infos:
        sockaddr = info[4]
        if not sockaddr:
            continue
        try:
            resolved.add(ipaddress.ip_address(sockaddr[0]))
        except ValueError:
            continue
    return resolved


def validate_outbound_webhook_url(url: str, *, resolve_dns: bool = True) -> str:
    """
    Validate a user-supplied outbound webhook URL.

    Rules:
    - https:// only, at most 2048 characters
    - no credentials or fragment
    - no localhost, private, link-local, multicast or internal-TLD hosts
    - hostnames must resolve exclusively to public addresses

    Returns a normalized URL or raises ValueError.
    """
    candidate = (url or "").strip()
    if not candidate:
        raise ValueError("Webhook URL is required")
    if len(candidate) > MAX_WEBHOOK_URL_LENGTH:
        raise ValueError("Webhook URL is too long")

    parts = urlsplit(candidate)
    scheme = (parts.scheme or "").lower()
    if scheme != "https":
        raise ValueError("Webhook URL must use HTTPS")

    if parts.username or parts.password:
        raise ValueError("Webhook URL must not include credentials")

    host = (parts.hostname or "").strip().lower().rstrip(".")
    if not host:
        raise ValueError("Webhook URL must include a host")

    if parts.fragment:
        raise ValueError("Webhook URL must not include a fragment")

    if host in BLOCKED_HOSTNAMES or host.endswith(INTERNAL_TLDS):
        raise ValueError("Webhook URL host is not allowed")

    normalized = urlunsplit((scheme, parts.netloc, parts.path, parts.query, ""))

    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        ip = None
    if ip is not None:
        if not _is_ip_allowed(ip):
            raise ValueError("Webhook URL host is not allowed")
        return normalized

    if not resolve_dns:
        return normalized

    resolved_ips = _resolve_host(host, parts.port or 443)
    if not resolved_ips:
        raise ValueError("Webhook URL host could not be resolved")
    if not all(_is_ip_allowed(resolved) for resolved in resolved_ips):
        raise ValueError("Webhook URL host is not allowed")

    return normalized
