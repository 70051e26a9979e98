"""Name discovery from DHCP server lease files."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional, Sequence

from dnsagent.hosts_file import _first_existing
from dnsagent.names import (
    FileInfo,
    abs_domain_name,
    append_uniq,
    get_file_info,
    prepare_host_lookup,
)

LEASE_FILES = (
    ("/var/run/dhcpd.leases", "isc-dhcpd"),
    ("/var/lib/dhcp/dhcpd.leases", "isc-dhcpd"),
    ("/var/dhcpd/var/db/dhcpd.leases", "isc-dhcpd"),
    ("/var/lib/misc/dnsmasq.leases", "dnsmasq"),
    ("/tmp/dnsmasq.leases", "dnsmasq"),
    ("/tmp/dhcp.leases", "dnsmasq"),
    ("/etc/dhcpd/dhcpd.conf.leases", "dnsmasq"),
    ("/var/run/dnsmasq-dhcp.leases", "dnsmasq"),
    ("/config/dhcpd.leases", "dnsmasq"),
)

REFRESH_INTERVAL = 5.0


def _record(macs, addrs, names, name, ip, mac):
    host = abs_domain_name(name)
    if ip:
        key = prepare_host_lookup(host)
        append_uniq(names.setdefault(key, []), ip)
        append_uniq(names.setdefault(key + "local.", []), ip)
        append_uniq(addrs.setdefault(ip, []), host)
    if mac:
        append_uniq(macs.setdefault(mac, []), host)


def read_dhcpd_lease(lines: Iterable[str]) -> tuple[dict, dict, dict]:
    """Parse ISC dhcpd lease lines into (macs, addrs, names) tables."""
    macs: dict[str, list] = {}
    addrs: dict[str, list] = {}
    names: dict[str, list] = {}
    name = ip = mac = ""
    for line in lines:
        line = line.rstrip("\r\n")
        if line.startswith("}"):
            if name:
                _record(macs, addrs, names, name, ip, mac)
            name = ip = mac = ""
            continue
        fields = line.split()
        if len(fields) < 2:
            continue
        keyword = fields[0]
        if keyword == "lease":
            ip = fields[1].lower()
        elif keyword == "hardware":
            if len(fields) >= 3:
                mac = fields[2].rstrip(";").lower()
        elif keyword == "client-hostname":
            name = fields[1].strip('";')
    return macs, addrs, names


def read_dnsmasq_lease(lines: Iterable[str]) -> tuple[dict, dict, dict]:
    """Parse dnsmasq lease lines into (macs, addrs, names) tables."""
    macs: dict[str, list] = {}
    addrs: dict[str, list] = {}
    names: dict[str, list] = {}
    for line in lines:
        fields = line.split()
        if len(fields) < 5:
            continue
        _record(macs, addrs, names, fields[3], fields[2].lower(), fields[1].lower())
    return macs, addrs, names


_PARSERS = {"isc-dhcpd": read_dhcpd_lease, "dnsmasq": read_dnsmasq_lease}


def _first_lease(candidates: Iterable[tuple[str, str]]) -> Optional[tuple[str, str]]:
    for path, fmt in candidates:
        if _first_existing((path,)) is not None:
            return path, fmt
    return None


def find_lease_file() -> Optional[tuple[str, str]]:
    """Return (path, format) of the first lease file present, if any."""
    return _first_lease(LEASE_FILES)


@dataclass
class DHCP:
    """Discovery source backed by a DHCP lease file, re-read when it changes."""

    on_error: Optional[Callable[[Exception], None]] = None
    files: Sequence[tuple[str, str]] = LEASE_FILES

    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)
    _macs: dict = field(default_factory=dict, init=False, repr=False)
    _addrs: dict = field(default_factory=dict, init=False, repr=False)
    _names: dict = field(default_factory=dict, init=False, repr=False)
    _file_info: Optional[FileInfo] = field(default=None, init=False, repr=False)
    _expires: float = field(default=float("-inf"), init=False, repr=False)

    def _refresh(self) -> None:
        now = time.monotonic()
        if now < self._expires:
            return
        self._expires = now + REFRESH_INTERVAL
        found = _first_lease(self.files)
        if found is None:
            return
        path, fmt = found
        try:
            self._read(path, fmt)
        except (OSError, UnicodeError, ValueError) as err:
            if self.on_error is not None:
                self.on_error(RuntimeError(f"read lease {path} ({fmt}): {err}"))

    def _read(self, path: str, fmt: str) -> None:
        if self._file_info is not None and self._file_info.matches(path):
            return
        parser = _PARSERS.get(fmt)
        if parser is None:
            raise ValueError(f"unknown format: {fmt}")
        with open(path, encoding="utf-8", errors="replace") as f:
            macs, addrs, names = parser(f)
        self._macs, self._addrs, self._names = macs, addrs, names
        self._file_info = get_file_info(path)

    def name(self) -> str:
        return "dhcp"

    def visit(self, f: Callable[[str, list], None]) -> None:
        with self._lock:
            self._refresh()
            entries = [(name, list(addrs)) for name, addrs in self._names.items()]
        for name, addrs in entries:
            f(name, addrs)

    def lookup_mac(self, mac: str) -> list:
        with self._lock:
            self._refresh()
            return list(self._macs.get(mac, []))

    def lookup_addr(self, addr: str) -> list:
        with self._lock:
            self._refresh()
            return list(self._addrs.get(addr, []))

    def lookup_host(self, name: str) -> list:
        with self._lock:
            self._refresh()
            return list(self._names.get(prepare_host_lookup(name), []))