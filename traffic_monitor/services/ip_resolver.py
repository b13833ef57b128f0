"""
Client IP resolution

Picks the best-effort client address from request headers. The first
matching header wins:

1. edge header set by the CDN (``cf-connecting-ip``), not client controlled
2. real-ip header set by an intermediate proxy (``x-real-ip``)
3. one entry of the ``x-forwarded-for`` chain, chosen by ``forwarded_for_index``
4. ``"unknown"``

Addresses are not validated.
"""

from dataclasses import dataclass
from typing import Mapping, Optional

UNKNOWN_IP = "unknown"


@dataclass(frozen=True)
class IpResolutionPolicy:
    """Which headers to trust, in precedence order"""
    edge_header: Optional[str] = "cf-connecting-ip"
    real_ip_header: Optional[str] = "x-real-ip"
    forwarded_for_header: str = "x-forwarded-for"
    # Index into the forwarded-for chain; falls back to the first entry when
    # the chain is shorter. 0 trusts the originating client, 1 the first hop.
    forwarded_for_index: int = 0


def _header(headers: Mapping[str, str], name: Optional[str]) -> Optional[str]:
    if not name:
        return None
    value = headers.get(name.lower())
    if value is None:
        return None
    value = value.strip()
    return value or None


def resolve_client_ip(
    headers: Mapping[str, str],
    policy: IpResolutionPolicy = IpResolutionPolicy(),
) -> str:
    """
    Return the client IP for a request's headers, or ``"unknown"``.
    Header names are matched case-insensitively.
    """
    headers = {name.lower(): value for name, value in headers.items()}
    edge_ip = _header(headers, policy.edge_header)
    if edge_ip:
        return edge_ip

    real_ip = _header(headers, policy.real_ip_header)
    if real_ip:
        return real_ip

    chain = _header(headers, policy.forwarded_for_header)
    if chain:
        ips = [ip.strip() for ip in chain.split(",")]
        if len(ips) > policy.forwarded_for_index and ips[policy.forwarded_for_index]:
            return ips[policy.forwarded_for_index]
        if ips[0]:
            return ips[0]

    return UNKNOWN_IP
