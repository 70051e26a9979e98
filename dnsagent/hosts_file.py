"""Name discovery from the system hosts file."""

from __future__ import annotations

import ipaddress
import os
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional, Sequence

from dnsagent.names import FileInfo, abs_domain_name, get_file_info, prepare_host_lookup

HOSTS_FILES = (
    "/etc/hosts.dnsmasq",
    "/tmp/hosts/dhcp.cfg01411c",  # OpenWRT
    r"C:\Windows\System32\Drivers\etc\hosts",
    "/etc/hosts",
)

REFRESH_INTERVAL = 5.0


def _parse_ip(s: str) -> Optional[str]:
    if "%" in s:
        return None
    try:
        ip = ipaddress.ip_address(s)
    except ValueError:
        return None
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        return str(ip.ipv4_mapped)
    return str(ip)


def parse_literal_ip(addr: str) -> Optional[str]:
    """Return the canonical form of an IP literal (with IPv6 zone), or None."""
    for ch in addr:
        if ch == ".":
            return _parse_ip(addr)
        if ch == ":":
            idx = addr.rfind("%")
            host, zone = (addr[:idx], addr[idx + 1:]) if idx > 0 else (addr, "")
            ip = _parse_ip(host)
            if ip is None:
                return None
            return f"{ip}%{zone}" if zone else ip
    return None


def read_hosts_file(path: str) -> tuple[dict, dict]:
    """Parse a hosts file into (names, addrs) tables."""
    names: dict[str, list] = {}
    addrs: dict[str, list] = {}
    with open(path, encoding="utf-8", errors="replace") as f:
        for line in f:
            line = line.split("#", 1)[0]
            fields = line.split()
            if len(fields) < 2:
                continue
            addr = parse_literal_ip(fields[0])
            if addr is None:
                continue
            for host in fields[1:]:
                names.setdefault(prepare_host_lookup(host), []).append(addr)
                addrs.setdefault(addr, []).append(abs_domain_name(host))
    # Systems relying on systemd-resolved may ship an empty hosts file; make
    # sure the special local names still resolve unless redefined.
    for special in ("localhost", "localhost.localdomain."):
        if not names.get(special):
            names[special] = ["127.0.0.1", "::1"]
    return names, addrs


def _first_existing(paths: Iterable[str]) -> Optional[str]:
    for path in paths:
        if os.path.exists(path):
            return path
    return None


def find_hosts_file() -> Optional[str]:
    """Return the first hosts file present on this system, if any."""
    return _first_existing(HOSTS_FILES)


@dataclass
class Hosts:
    """Discovery source backed by a hosts file, re-read when it changes."""

    on_error: Optional[Callable[[Exception], None]] = None
    files: Sequence[str] = HOSTS_FILES

    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)
    _names: dict = field(default_factory=dict, init=False, repr=False)
    _addrs: dict = field(default_factory=dict, init=False, repr=False)
    _file_info: Optional[FileInfo] = field(default=None, init=False, repr=False)
    _expires: float = field(default=float("-inf"), init=False, repr=False)

    def _refresh(self) -> None:
        now = time.monotonic()
        if now < self._expires:
            return
        self._expires = now + REFRESH_INTERVAL
        path = _first_existing(self.files)
        if path is None:
            return
        try:
            self._read(path)
        except (OSError, UnicodeError) as err:
            if self.on_error is not None:
                self.on_error(RuntimeError(f"read hosts {path}: {err}"))

    def _read(self, path: str) -> None:
        if self._file_info is not None and self._file_info.matches(path):
            return
        names, addrs = read_hosts_file(path)
        self._names = names
        self._addrs = addrs
        self._file_info = get_file_info(path)

    def name(self) -> str:
        return "hosts"

    def visit(self, f: Callable[[str, list], None]) -> None:
        with self._lock:
            self._refresh()
            entries = [(name, list(addrs)) for name, addrs in self._names.items()]
        for name, addrs in entries:
            f(name, addrs)

    def lookup_addr(self, addr: str) -> list:
        with self._lock:
            self._refresh()
            return list(self._addrs.get(addr, []))

    def lookup_host(self, name: str) -> list:
        with self._lock:
            self._refresh()
            return list(self._names.get(prepare_host_lookup(name), []))