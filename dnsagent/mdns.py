"""Name discovery by listening to multicast DNS traffic."""

from __future__ import annotations

import errno
import ipaddress
import socket
import struct
import threading
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence

import dns.exception
import dns.flags
import dns.message
import dns.name
import dns.rdataclass
import dns.rdatatype
import psutil

from dnsagent.dns_source import _ip_text, _name_text
from dnsagent.names import abs_domain_name, append_uniq, is_valid_name, prepare_host_lookup

MDNS_IPV4 = "224.0.0.251"
MDNS_IPV6 = "ff02::fb"
MDNS_PORT = 5353

READ_TIMEOUT = 1.0
INITIAL_BACKOFF = 0.1
MAX_BACKOFF = 30.0

SERVICES = (
    "_hap._tcp.local.",
    "_homekit._tcp.local.",
    "_airplay._tcp.local.",
    "_raop._tcp.local.",
    "_sleep-proxy._udp.local.",
    "_companion-link._tcp.local.",
    "_googlezone._tcp.local.",
    "_googlerpc._tcp.local.",
    "_googlecast._tcp.local.",
    "_http._tcp.local.",
    "_https._tcp.local.",
)

_TYPE_A = 1
_TYPE_AAAA = 28


@dataclass(frozen=True)
class Interface:
    """A network interface able to take part in multicast."""

    name: str
    index: int
    addresses: tuple
    loopback: bool


def multicast_interfaces() -> list:
    """Interfaces that are up and support multicast."""
    stats = psutil.net_if_stats()
    all_addrs = psutil.net_if_addrs()
    result = []
    for name, st in stats.items():
        if not st.isup:
            continue
        flags = {f for f in getattr(st, "flags", "").split(",") if f}
        if flags and "multicast" not in flags:
            continue
        addrs = tuple(
            a.address
            for a in all_addrs.get(name, [])
            if a.family in (socket.AF_INET, socket.AF_INET6)
        )
        loopback = "loopback" in flags or any(_is_loopback(a) for a in addrs)
        try:
            index = socket.if_nametoindex(name)
        except OSError:
            index = 0
        result.append(Interface(name=name, index=index, addresses=addrs, loopback=loopback))
    return result


def _is_loopback(addr: str) -> bool:
    try:
        return ipaddress.ip_address(addr.split("%", 1)[0]).is_loopback
    except ValueError:
        return False


def build_probe(services: Sequence[str]) -> bytes:
    """Wire form of a query asking for PTR records of each service."""
    message = dns.message.Message(id=0)
    message.flags = 0
    for service in services:
        message.find_rrset(
            message.question,
            dns.name.from_text(service),
            dns.rdataclass.IN,
            dns.rdatatype.PTR,
            create=True,
            force_unique=True,
        )
    return message.to_wire()


def _read_section(data: bytes, offset: int, count: int, entries: Optional[dict]) -> int:
    for _ in range(count):
        name, used = dns.name.from_wire(data, offset)
        offset += used
        rtype, _rclass, _ttl, rdlength = struct.unpack_from("!HHIH", data, offset)
        offset += 10
        rdata = data[offset:offset + rdlength]
        if len(rdata) != rdlength:
            raise ValueError("truncated record data")
        offset += rdlength
        if entries is None:
            continue
        if rtype == _TYPE_A:
            if rdlength != 4:
                raise ValueError("invalid A record length")
            entries[_ip_text(ipaddress.IPv4Address(rdata))] = _name_text(name)
        elif rtype == _TYPE_AAAA:
            if rdlength != 16:
                raise ValueError("invalid AAAA record length")
            entries[_ip_text(ipaddress.IPv6Address(rdata))] = _name_text(name)
    return offset


def _parse_entries(data: bytes) -> dict:
    if len(data) < 12:
        raise ValueError("message too short")
    qdcount, ancount, nscount, arcount = struct.unpack_from("!4H", data, 4)
    offset = 12
    for _ in range(qdcount):
        _, used = dns.name.from_wire(data, offset)
        offset += used + 4
        if offset > len(data):
            raise ValueError("truncated question")
    entries: dict = {}
    offset = _read_section(data, offset, ancount, entries)
    offset = _read_section(data, offset, nscount, None)
    _read_section(data, offset, arcount, entries)
    return entries


def parse_entries(data: bytes) -> dict:
    """Map each A/AAAA address in the answer and additional sections to its name.

    The record class is ignored so cache-flush records are read as well.
    Raises ValueError on a malformed message.
    """
    try:
        return _parse_entries(data)
    except (struct.error, IndexError, dns.exception.DNSException) as err:
        raise ValueError(f"malformed mDNS message: {err}") from err


def _set_reuse(sock: socket.socket) -> None:
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    if hasattr(socket, "SO_REUSEPORT"):
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
        except OSError:
            pass


def _open_ipv4(iface: Interface) -> tuple:
    local = next((a for a in iface.addresses if ":" not in a), None)
    if local is None:
        raise OSError(errno.EADDRNOTAVAIL, f"{iface.name}: no IPv4 address")
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
    try:
        _set_reuse(sock)
        sock.bind(("", MDNS_PORT))
        local_packed = socket.inet_aton(local)
        sock.setsockopt(
            socket.IPPROTO_IP,
            socket.IP_ADD_MEMBERSHIP,
            socket.inet_aton(MDNS_IPV4) + local_packed,
        )
        sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_IF, local_packed)
    except OSError:
        sock.close()
        raise
    return sock, (MDNS_IPV4, MDNS_PORT)


def _open_ipv6(iface: Interface) -> tuple:
    sock = socket.socket(socket.AF_INET6, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
    try:
        _set_reuse(sock)
        sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 1)
        sock.bind(("::", MDNS_PORT))
        index = struct.pack("@I", iface.index)
        sock.setsockopt(
            socket.IPPROTO_IPV6,
            socket.IPV6_JOIN_GROUP,
            socket.inet_pton(socket.AF_INET6, MDNS_IPV6) + index,
        )
        sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_MULTICAST_IF, index)
    except OSError:
        sock.close()
        raise
    return sock, (MDNS_IPV6, MDNS_PORT, 0, iface.index)


@dataclass
class MDNS:
    """Discovery source learning names from mDNS announcements and replies."""

    on_error: Optional[Callable[[Exception], None]] = None
    interfaces: Callable[[], list] = field(default=multicast_interfaces, repr=False)
    services: Sequence[str] = SERVICES

    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)
    _addrs: dict = field(default_factory=dict, init=False, repr=False)
    _names: dict = field(default_factory=dict, init=False, repr=False)
    _conns: list = field(default_factory=list, init=False, repr=False)
    _stop: threading.Event = field(default_factory=threading.Event, init=False, repr=False)

    def start(self, filter: str) -> None:
        """Listen on all interfaces ("all"), one named interface, or none ("disabled")."""
        if filter == "disabled":
            return
        ifaces = self.interfaces()
        if not ifaces:
            raise RuntimeError("no interface found")
        conns = []
        found = False
        last_err: Optional[OSError] = None
        for iface in ifaces:
            if filter != "all" and iface.name != filter:
                continue
            found = True
            if iface.loopback or not iface.addresses:
                continue
            for opener in (_open_ipv4, _open_ipv6):
                try:
                    conns.append(opener(iface))
                except OSError as err:
                    last_err = err
        if not found:
            raise ValueError(f"unknown interface: {filter}")
        if not conns:
            if last_err is not None:
                raise last_err
            return
        self._stop.clear()
        self._conns = conns
        for sock, _ in conns:
            threading.Thread(target=self._read, args=(sock,), daemon=True).start()
        threading.Thread(target=self._run_probe, daemon=True).start()

    def stop(self) -> None:
        """Stop listening and close every socket."""
        self._stop.set()
        conns, self._conns = self._conns, []
        for sock, _ in conns:
            sock.close()

    def _probe(self, payload: bytes) -> None:
        last_err: Optional[OSError] = None
        for sock, dest in self._conns:
            try:
                sock.sendto(payload, dest)
            except OSError as err:
                last_err = err
        if last_err is not None:
            raise last_err

    def _run_probe(self) -> None:
        payload = build_probe(self.services)
        backoff = INITIAL_BACKOFF
        while not self._stop.is_set():
            try:
                self._probe(payload)
                return
            except OSError as err:
                if err.errno in (errno.ENETUNREACH, errno.EINVAL):
                    return
                if self.on_error is not None:
                    self.on_error(RuntimeError(f"probe: {err}"))
            if self._stop.wait(backoff):
                return
            backoff = min(backoff * 2, MAX_BACKOFF)

    def _read(self, sock: socket.socket) -> None:
        try:
            sock.settimeout(READ_TIMEOUT)
        except OSError:
            return
        while not self._stop.is_set():
            try:
                data = sock.recv(65536)
            except socket.timeout:
                continue
            except OSError:
                return
            if len(data) < 12:
                continue
            try:
                entries = parse_entries(data)
            except ValueError:
                continue
            self._add_entries(entries)

    def _add_entries(self, entries: dict) -> None:
        with self._lock:
            for addr, name in entries.items():
                if not is_valid_name(name):
                    continue
                host = abs_domain_name(name)
                key = prepare_host_lookup(host)
                append_uniq(self._addrs.setdefault(addr, []), host)
                append_uniq(self._names.setdefault(key, []), addr)

    def name(self) -> str:
        return "mdns"

    def visit(self, f: Callable[[str, list], None]) -> None:
        with self._lock:
            entries = [(name, list(addrs)) for name, addrs in self._names.items()]
        for name, addrs in entries:
            f(name, addrs)

    def lookup_addr(self, addr: str) -> list:
        with self._lock:
            return list(self._addrs.get(addr, []))

    def lookup_host(self, name: str) -> list:
        with self._lock:
            return list(self._names.get(prepare_host_lookup(name), []))