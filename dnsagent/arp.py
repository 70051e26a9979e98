"""The system ARP table: reading, parsing and a lazily refreshed cache."""

from __future__ import annotations

import ipaddress
import string
import subprocess
import sys
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, Union

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

_HEX = frozenset(string.hexdigits)


def _parse_hardware_addr(s: str) -> Optional[bytes]:
    """Parse an EUI-48/EUI-64/20-byte address in colon, dash or dot notation."""
    if len(s) < 14:
        return None
    if s[2] in ":-":
        groups = s.split(s[2])
        width, counts = 2, (6, 8, 20)
    elif s[4] == ".":
        groups = s.split(".")
        width, counts = 4, (3, 4, 10)
    else:
        return None
    if len(groups) not in counts:
        return None
    if any(len(g) != width or not set(g) <= _HEX for g in groups):
        return None
    return bytes.fromhex("".join(groups))


def _to_ip(value) -> Optional[IPAddress]:
    if value is None:
        return None
    if isinstance(value, str):
        try:
            value = ipaddress.ip_address(value)
        except ValueError:
            return None
    if isinstance(value, ipaddress.IPv6Address) and value.ipv4_mapped is not None:
        return value.ipv4_mapped
    return value


def _to_mac(value) -> Optional[bytes]:
    if value is None:
        return None
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    return _parse_hardware_addr(value)


def parse_mac(s: str) -> Optional[bytes]:
    """Parse a MAC address, accepting single-digit groups like 0:1:2:3:4:5."""
    if len(s) < 17:
        comps = s.split(":")
        if len(comps) != 6:
            return None
        s = ":".join("0" + c if len(c) == 1 else c for c in comps)
    return _parse_hardware_addr(s)


@dataclass(frozen=True)
class ArpEntry:
    """One IP to MAC association; either side is None when unparsable."""

    ip: Optional[IPAddress]
    mac: Optional[bytes]


@dataclass(frozen=True)
class ArpTable:
    """An ordered collection of ARP entries."""

    entries: tuple = ()

    def __iter__(self):
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def search_mac(self, ip) -> Optional[bytes]:
        """MAC of the first entry for ip, or None."""
        target = _to_ip(ip)
        if target is None:
            return None
        for entry in self.entries:
            if entry.ip == target:
                return entry.mac
        return None

    def search_ip(self, mac) -> Optional[IPAddress]:
        """IP of the first entry for mac, or None."""
        target = _to_mac(mac)
        if target is None:
            return None
        for entry in self.entries:
            if entry.mac == target:
                return entry.ip
        return None


def _entry(ip: str, mac: str) -> ArpEntry:
    return ArpEntry(ip=_to_ip(ip), mac=parse_mac(mac))


def parse_proc_arp(text: str) -> ArpTable:
    """Parse the content of /proc/net/arp."""
    lines = text.splitlines()[1:]  # the first line holds field names
    entries = []
    for line in lines:
        fields = line.split()
        if len(fields) < 4:
            continue
        entries.append(_entry(fields[0], fields[3]))
    return ArpTable(tuple(entries))


def parse_arp_unix(output: str) -> ArpTable:
    """Parse the output of `arp -an` on BSD-like systems."""
    entries = []
    for line in output.split("\n"):
        fields = line.split()
        if len(fields) < 4:
            continue
        ip = fields[1].replace("(", "").replace(")", "")
        entries.append(_entry(ip, fields[3]))
    return ArpTable(tuple(entries))


def parse_arp_windows(output: str) -> ArpTable:
    """Parse the output of `arp -a` on Windows."""
    entries = []
    skip_next = False
    for line in output.split("\n"):
        if not line:
            continue
        if line[0] != " ":
            # An "Interface:" line; its column header follows.
            skip_next = True
            continue
        if skip_next:
            skip_next = False
            continue
        fields = line.split()
        if len(fields) < 2:
            continue
        entries.append(_entry(fields[0], fields[1]))
    return ArpTable(tuple(entries))


def get_table() -> ArpTable:
    """Read the system ARP table.

    Raises OSError or subprocess.CalledProcessError when it cannot be read.
    """
    if sys.platform.startswith("linux"):
        with open("/proc/net/arp", encoding="utf-8", errors="replace") as f:
            return parse_proc_arp(f.read())
    if sys.platform == "win32":
        argv, parser = ["arp", "-a"], parse_arp_windows
    else:
        argv, parser = ["arp", "-an"], parse_arp_unix
    out = subprocess.run(argv, capture_output=True, check=True).stdout
    return parser(out.decode("utf-8", "replace"))


@dataclass
class ArpCache:
    """Serves the last table read and reloads it in the background when stale."""

    loader: Callable[[], ArpTable] = field(default=get_table, repr=False)
    max_age: int = 30

    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)
    _last_update: int = field(default=0, init=False, repr=False)
    _table: ArpTable = field(default_factory=ArpTable, init=False, repr=False)

    def get(self) -> ArpTable:
        """The current table; triggers a reload if it is older than max_age."""
        now = int(time.time())
        with self._lock:
            stale = now - self._last_update > self.max_age
            if stale:
                self._last_update = now
            table = self._table
        if stale:
            threading.Thread(target=self._reload, daemon=True).start()
        return table

    def _reload(self) -> None:
        try:
            table = self.loader()
        except (OSError, subprocess.SubprocessError, ValueError):
            table = ArpTable()
        with self._lock:
            self._table = table


_GLOBAL = ArpCache()


def search_mac(ip) -> Optional[bytes]:
    """MAC for ip from the shared ARP cache."""
    return _GLOBAL.get().search_mac(ip)


def search_ip(mac) -> Optional[IPAddress]:
    """IP for mac from the shared ARP cache."""
    return _GLOBAL.get().search_ip(mac)