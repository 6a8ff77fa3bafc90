"""
Classifies a request as coming from the household's local network or not.

X-Forwarded-For is honoured hop by hop from the right: an entry is only
believed when the hop that reported it is itself a configured trusted proxy.
A client talking to us directly cannot claim locality with its own header.
"""
from __future__ import annotations

import ipaddress
import logging
from dataclasses import dataclass
from typing import Iterable, Union

from flask import Request

from app.hearth.config import DEFAULT_LOCAL_CIDRS

logger = logging.getLogger(__name__)

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]


@dataclass(frozen=True)
class Classification:
    client_ip: str | None
    source: str  # socket | x-forwarded-for | unknown
    is_local: bool


def parse_ip(raw: str | None) -> IPAddress | None:
    if not raw:
        return None
    value = raw.strip()
    if value.startswith("[") and "]" in value:
        value = value[1 : value.index("]")]
    value = value.split("%", 1)[0]  # zone id
    try:
        addr = ipaddress.ip_address(value)
    except ValueError:
        return None
    if isinstance(addr, ipaddress.IPv6Address) and addr.ipv4_mapped is not None:
        return addr.ipv4_mapped
    return addr


def parse_networks(cidrs: Iterable[str]) -> tuple[IPNetwork, ...]:
    nets: list[IPNetwork] = []
    for c in cidrs:
        try:
            net = ipaddress.ip_network(c.strip(), strict=False)
        except ValueError:
            logger.warning("Ignoring invalid network %r", c)
            continue
        if isinstance(net, ipaddress.IPv6Network) and net.prefixlen >= 96 and net.network_address.ipv4_mapped:
            net = ipaddress.ip_network(f"{net.network_address.ipv4_mapped}/{net.prefixlen - 96}")
        nets.append(net)
    return tuple(nets)


def _in_networks(addr: IPAddress, nets: tuple[IPNetwork, ...]) -> bool:
    return any(addr.version == n.version and addr in n for n in nets)


class TrustClassifier:
    def __init__(self, trusted_proxies: Iterable[str] = (), local_cidrs: Iterable[str] = DEFAULT_LOCAL_CIDRS) -> None:
        self.trusted_proxies = parse_networks(trusted_proxies)
        self.local_networks = parse_networks(local_cidrs)

    def is_trusted_proxy(self, addr: IPAddress) -> bool:
        return _in_networks(addr, self.trusted_proxies)

    def is_local_ip(self, raw: str | None) -> bool:
        addr = parse_ip(raw)
        return addr is not None and _in_networks(addr, self.local_networks)

    def classify(self, remote_addr: str | None, forwarded_for: str | None = None) -> Classification:
        peer = parse_ip(remote_addr)
        if peer is None:
            return Classification(client_ip=None, source="unknown", is_local=False)

        client = peer
        source = "socket"
        hops = [h.strip() for h in (forwarded_for or "").split(",") if h.strip()]
        while hops and self.is_trusted_proxy(client):
            candidate = parse_ip(hops.pop())
            if candidate is None:
                # A trusted proxy forwarded garbage; the real client is unknown.
                return Classification(client_ip=None, source="x-forwarded-for", is_local=False)
            client = candidate
            source = "x-forwarded-for"

        return Classification(
            client_ip=str(client),
            source=source,
            is_local=_in_networks(client, self.local_networks),
        )

    def classify_request(self, req: Request) -> Classification:
        return self.classify(req.remote_addr, req.headers.get("X-Forwarded-For"))
