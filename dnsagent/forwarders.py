"""Domain-conditional upstream DNS servers."""

from __future__ import annotations

import ipaddress
import urllib.parse
from dataclasses import dataclass
from typing import Iterable, Optional


def _fqdn(name: str) -> str:
    return name if name.endswith(".") else name + "."


def _is_sub_domain(sub: str, domain: str) -> bool:
    return sub.endswith("." + domain)


def _check_ip(text: str, server: str) -> None:
    try:
        ipaddress.ip_address(text)
    except ValueError:
        raise ValueError(f"{server}: invalid server address") from None


def _check_server(server: str) -> None:
    if server.startswith("https://"):
        url, _, bootstrap = server.partition("#")
        if not urllib.parse.urlsplit(url).hostname:
            raise ValueError(f"{server}: invalid DoH URL")
        if bootstrap:
            _check_ip(bootstrap, server)
        return
    host, port = server, ""
    if server.startswith("["):
        host, sep, port = server[1:].partition("]:")
        if not sep:
            raise ValueError(f"{server}: invalid server address")
    elif server.count(":") == 1:
        host, port = server.split(":")
    if port and not (port.isascii() and port.isdigit() and 0 < int(port) < 65536):
        raise ValueError(f"{server}: invalid port")
    _check_ip(host, server)


@dataclass(frozen=True)
class Forwarder:
    """One or more servers, optionally restricted to a domain and its subdomains."""

    addr: str
    domain: str = ""

    @property
    def servers(self) -> list:
        """The servers of addr, in failover order."""
        return [s.strip() for s in self.addr.split(",")]

    def match(self, domain: str) -> bool:
        """True if queries for domain go to this forwarder."""
        if self.domain:
            return domain == self.domain or _is_sub_domain(domain, self.domain)
        return True

    def __str__(self) -> str:
        if self.domain:
            return f"{self.domain}={self.addr}"
        return self.addr


def parse_forwarder(value: str) -> Forwarder:
    """Parse "[DOMAIN=]SERVER[,SERVER...]"; raises ValueError if invalid.

    A server is IP[:PORT] for plain DNS or an https URL for DNS over HTTPS,
    optionally followed by #IP giving a bootstrap address.
    """
    domain, sep, addr = value.partition("=")
    if sep:
        addr = addr.strip()
        domain = _fqdn(domain.strip())
    else:
        addr, domain = value, ""
    if not addr:
        raise ValueError(f"{value}: missing server address")
    forwarder = Forwarder(addr=addr, domain=domain)
    for server in forwarder.servers:
        _check_server(server)
    return forwarder


class Forwarders:
    """An ordered list of forwarders; the first matching one wins."""

    def __init__(self, forwarders: Iterable[Forwarder] = ()) -> None:
        self.forwarders = list(forwarders)

    def __iter__(self):
        return iter(self.forwarders)

    def __len__(self) -> int:
        return len(self.forwarders)

    def __str__(self) -> str:
        return "[" + " ".join(str(f) for f in self.forwarders) + "]"

    def get(self, domain: str) -> Optional[Forwarder]:
        """The forwarder for domain, or None."""
        for forwarder in self.forwarders:
            if forwarder.match(domain):
                return forwarder
        return None

    def set(self, value: str) -> None:
        """Add a forwarder, replacing one defined for the same domain."""
        forwarder = parse_forwarder(value)
        for i, existing in enumerate(self.forwarders):
            if existing.domain == forwarder.domain:
                self.forwarders[i] = forwarder
                return
        self.forwarders.append(forwarder)

    def strings(self) -> list:
        """Each forwarder in its textual form."""
        return [str(f) for f in self.forwarders]