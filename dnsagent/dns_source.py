"""Name discovery by querying the local network's DNS server."""

from __future__ import annotations

import ipaddress
import socket
import threading
import time
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Optional, Union

import dns.exception
import dns.flags
import dns.message
import dns.name
import dns.rcode
import dns.rdatatype
import dns.resolver

from dnsagent.names import SemaphoreMap

CACHE_SIZE = 10000
CACHE_TTL = 300.0
QUERY_TIMEOUT = 0.1
MAX_PACKET = 514
MAX_RECORDS = 100

IPLike = Union[str, ipaddress.IPv4Address, ipaddress.IPv6Address]


class DNSError(Exception):
    """A DNS server answered with a non-success response code."""

    def __init__(self, rcode: int) -> None:
        self.rcode = int(rcode)
        super().__init__(dns.rcode.to_text(self.rcode))


def _to_ip(ip: IPLike) -> Union[ipaddress.IPv4Address, ipaddress.IPv6Address]:
    addr = ipaddress.ip_address(ip)
    if isinstance(addr, ipaddress.IPv6Address) and addr.ipv4_mapped is not None:
        return addr.ipv4_mapped
    return addr


def _ip_text(ip: IPLike) -> str:
    return str(_to_ip(ip))


def _name_text(name: dns.name.Name) -> str:
    """Render a name from its raw labels, without escaping."""
    labels = list(name.labels)
    if not labels:
        return ""
    if labels[-1] == b"":
        return ".".join(label.decode("utf-8", "replace") for label in labels[:-1]) + "."
    return ".".join(label.decode("utf-8", "replace") for label in labels)


def is_private_ip(ip: str) -> bool:
    """True for RFC 1918 IPv4 addresses and fdxx:: IPv6 addresses."""
    if "%" in ip:
        return False
    try:
        addr = _to_ip(ip)
    except ValueError:
        return False
    packed = addr.packed
    if addr.version == 4:
        return (
            packed[0] == 10
            or (packed[0] == 172 and packed[1] & 0xF0 == 16)
            or (packed[0] == 192 and packed[1] == 168)
        )
    return packed[0] == 0xFD


def reverse_ip(ip: IPLike) -> str:
    """Return the in-addr.arpa. or ip6.arpa. name for a PTR lookup of ip."""
    return _to_ip(ip).reverse_pointer + "."


def _split_host_port(server: str) -> tuple[str, int]:
    if server.startswith("["):
        host, sep, port = server[1:].partition("]:")
        if sep and port.isdigit():
            return host, int(port)
    elif server.count(":") == 1:
        host, port = server.split(":")
        if port.isdigit():
            return host, int(port)
    return server, 53


def _build_query(name: str, rdtype, rd: bool) -> dns.message.Message:
    message = dns.message.make_query(name, rdtype)
    if rd:
        message.flags |= dns.flags.RD
    else:
        message.flags &= ~dns.flags.RD
    return message


def send_query(server: str, message: dns.message.Message, rdtype) -> list:
    """Send message over UDP and return the answers of type rdtype as text.

    Raises DNSError on a non-success response code, TimeoutError when no
    reply arrives in time and OSError on other network failures.
    """
    rdtype = dns.rdatatype.RdataType.make(rdtype)
    host, port = _split_host_port(server)
    family, socktype, proto, _, sockaddr = socket.getaddrinfo(
        host, port, type=socket.SOCK_DGRAM
    )[0]
    deadline = time.monotonic() + QUERY_TIMEOUT
    with socket.socket(family, socktype, proto) as sock:
        sock.settimeout(QUERY_TIMEOUT)
        sock.connect(sockaddr)
        sock.send(message.to_wire())
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise TimeoutError("i/o timeout")
            sock.settimeout(remaining)
            data = sock.recv(MAX_PACKET)
            # Replies with another id may belong to an earlier, timed out query.
            if len(data) >= 2 and int.from_bytes(data[:2], "big") == message.id:
                break
    response = dns.message.from_wire(data)
    if response.rcode() != dns.rcode.NOERROR:
        raise DNSError(response.rcode())
    results: list[str] = []
    budget = MAX_RECORDS
    for rrset in response.answer:
        for rdata in rrset:
            if budget == 0:
                return results
            budget -= 1
            if rrset.rdtype != rdtype:
                continue
            if rdtype == dns.rdatatype.PTR:
                results.append(_name_text(rdata.target))
            elif rdtype in (dns.rdatatype.A, dns.rdatatype.AAAA):
                results.append(_ip_text(rdata.address))
    return results


def query_ptr(server: str, ip: IPLike, rd: bool) -> list:
    """Names that server reports for ip."""
    return send_query(server, _build_query(reverse_ip(ip), dns.rdatatype.PTR, rd), dns.rdatatype.PTR)


def query_name(server: str, name: str, rdtype, rd: bool) -> list:
    """Addresses of type rdtype that server reports for name."""
    return send_query(server, _build_query(name, rdtype, rd), rdtype)


def probe_buggy_dnsmasq(upstream: str) -> bool:
    """True if upstream answers SERVFAIL to queries without the RD flag only."""
    if not upstream:
        return False
    with ThreadPoolExecutor(max_workers=2) as pool:
        no_rd = pool.submit(query_name, upstream, "localhost.", dns.rdatatype.A, False)
        with_rd = pool.submit(query_name, upstream, "localhost.", dns.rdatatype.A, True)
        err_no_rd = no_rd.exception()
        err_rd = with_rd.exception()
    return (
        isinstance(err_no_rd, DNSError)
        and err_no_rd.rcode == dns.rcode.SERVFAIL
        and err_rd is None
    )


def _system_servers() -> list:
    try:
        return list(dns.resolver.Resolver().nameservers)
    except (dns.exception.DNSException, OSError):
        return []


_QUERY_ERRORS = (OSError, ValueError, DNSError, dns.exception.DNSException)


@dataclass
class DNS:
    """Discovery source asking a private DNS server for local names.

    When no upstream is given, the first private name server of the system
    configuration is used. Answers are cached for five minutes.
    """

    upstream: str = ""
    system_servers: Callable[[], list] = field(default=_system_servers, repr=False)

    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)
    _init_lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)
    _initialized: bool = field(default=False, init=False, repr=False)
    _cache: OrderedDict = field(default_factory=OrderedDict, init=False, repr=False)
    _anti_loop: SemaphoreMap = field(default_factory=SemaphoreMap, init=False, repr=False)
    _rd: bool = field(default=False, init=False, repr=False)

    def _ensure_init(self) -> None:
        with self._init_lock:
            if self._initialized:
                return
            self._initialized = True
            if not self.upstream:
                # Only send local PTR queries to private DNS servers.
                private = [ip for ip in self.system_servers() if is_private_ip(ip)]
                if private:
                    self.upstream = private[0]
            # Buggy dnsmasq versions need RD, at the risk of DNS loops.
            self._rd = probe_buggy_dnsmasq(self.upstream)

    def _cache_get(self, key: str) -> Optional[list]:
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                return None
            self._cache.move_to_end(key)
        values, expiry = entry
        if time.monotonic() > expiry:
            return None
        return list(values)

    def _cache_set(self, key: str, values: list) -> None:
        with self._lock:
            self._cache[key] = (list(values), time.monotonic() + CACHE_TTL)
            self._cache.move_to_end(key)
            while len(self._cache) > CACHE_SIZE:
                self._cache.popitem(last=False)

    def _run_single(self, func: Callable[[str], list], arg: str) -> list:
        # Only one query per key in flight: a looping query gets nothing back.
        if not self._anti_loop.acquire(arg):
            return []
        try:
            return func(arg)
        finally:
            self._anti_loop.release(arg)

    def name(self) -> str:
        return "dns"

    def visit(self, f: Callable[[str, list], None]) -> None:
        self._ensure_init()
        with self._lock:
            keys = list(self._cache)
        for key in keys:
            values = self._cache_get(key)
            if values is not None:
                f(key, values)

    def lookup_addr(self, addr: str) -> list:
        return self._run_single(self._lookup_addr, addr)

    def _lookup_addr(self, addr: str) -> list:
        self._ensure_init()
        if not self.upstream:
            return []
        cached = self._cache_get(addr)
        if cached is not None:
            return cached
        try:
            names = query_ptr(self.upstream, addr, self._rd)
        except _QUERY_ERRORS:
            names = []
        self._cache_set(addr, names)
        return names

    def lookup_host(self, name: str) -> list:
        return self._run_single(self._lookup_host, name)

    def _query_quiet(self, name: str, rdtype) -> list:
        try:
            return query_name(self.upstream, name, rdtype, self._rd)
        except _QUERY_ERRORS:
            return []

    def _lookup_host(self, name: str) -> list:
        self._ensure_init()
        if not self.upstream:
            return []
        cached = self._cache_get(name)
        if cached is not None:
            return cached
        with ThreadPoolExecutor(max_workers=1) as pool:
            future_a = pool.submit(self._query_quiet, name, dns.rdatatype.A)
            aaaa = self._query_quiet(name, dns.rdatatype.AAAA)
            addrs = future_a.result() + aaaa
        self._cache_set(name, addrs)
        return addrs