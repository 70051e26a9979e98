"""Client names published by router firmwares (ASUSWRT-Merlin, UniFi OS)."""

from __future__ import annotations

import json
import os
import subprocess
import sys
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence

from dnsagent.names import append_uniq

_UBIOS_QUERY = (
    "\n\t\tDBQuery.shellBatchSize = 1000;\n"
    '\t\tdb.user.find({name: {$exists: true, $ne: ""}}, {_id:0, mac:1, name:1});'
)

_JSON_WHITESPACE = " \t\r\n"


def _run_command(argv: Sequence[str]) -> bytes:
    return subprocess.run(list(argv), capture_output=True, check=True).stdout


def read_client_list(data) -> Optional[dict]:
    """Parse an ASUSWRT-Merlin custom_clientlist value into mac -> names.

    The format is <Name>MAC>...><Name>MAC>...>. Returns None for empty input
    and raises ValueError on a malformed list.
    """
    if isinstance(data, (bytes, bytearray)):
        data = bytes(data).decode("utf-8", "replace")
    if not data:
        return None
    macs: dict[str, list] = {}
    rest = data
    while rest:
        ch = rest[0]
        if ch in "\n\r":
            rest = rest[1:]
            continue
        if ch != "<":
            raise ValueError(f"{rest}: invalid format: missing item separator")
        rest = rest[1:]
        eol = rest.find("<")
        if eol == -1:
            eol = len(rest)
        idx = rest.find(">")
        if idx == -1:
            raise ValueError(f"{rest}: invalid format: missing host separator")
        idx2 = idx + 18
        if idx2 > eol or len(rest) <= idx2 or rest[idx2] != ">":
            raise ValueError(f"{rest}: invalid format: missing MAC separator")
        if idx > 0:
            name = rest[:idx]
            mac = rest[idx + 1:idx2].lower()
            append_uniq(macs.setdefault(mac, []), name)
        rest = rest[eol:]
    return macs


def parse_ubios_records(text: str) -> dict:
    """Parse a stream of JSON objects with mac and name fields into mac -> names.

    Field names match case-insensitively; parsing stops at the first value
    that is not such an object. Missing fields keep the previous record's value.
    """
    decoder = json.JSONDecoder()
    macs: dict[str, list] = {}
    mac = name = ""
    pos = 0
    while True:
        while pos < len(text) and text[pos] in _JSON_WHITESPACE:
            pos += 1
        if pos >= len(text):
            break
        try:
            value, pos = decoder.raw_decode(text, pos)
        except ValueError:
            break
        if not isinstance(value, dict):
            break
        valid = True
        for key, item in value.items():
            lowered = key.lower()
            if lowered not in ("mac", "name"):
                continue
            if not isinstance(item, str):
                valid = False
                break
            if lowered == "mac":
                mac = item
            else:
                name = item
        if not valid:
            break
        append_uniq(macs.setdefault(mac.lower(), []), name)
    return macs


class _ClientTable:
    """A periodically refreshed mac -> names table."""

    def __init__(
        self,
        interval: float,
        supported: Callable[[], bool],
        load: Callable[[], dict],
        report: Callable[[Exception], None],
    ) -> None:
        self._interval = interval
        self._supported = supported
        self._load = load
        self._report = report
        self._lock = threading.Lock()
        self._macs: dict = {}
        self._expires = float("-inf")

    def _refresh(self) -> None:
        if not self._supported():
            return
        now = time.monotonic()
        if now < self._expires:
            return
        self._expires = now + self._interval
        try:
            macs = self._load()
        except (OSError, subprocess.SubprocessError, ValueError) as err:
            self._report(RuntimeError(f"clientList: {err}"))
            return
        self._macs = macs or {}

    def by_name(self) -> dict:
        by_name: dict[str, list] = {}
        with self._lock:
            self._refresh()
            for mac, names in self._macs.items():
                for name in names:
                    by_name.setdefault(name, []).append(mac)
        return by_name

    def names_for_mac(self, mac: str) -> list:
        with self._lock:
            self._refresh()
            return list(self._macs.get(mac, []))

    def unindexed(self, _key: str) -> list:
        # The table is keyed by MAC only; addresses and host names are unknown.
        return []


@dataclass
class Merlin:
    """Client names from the custom client list of ASUSWRT-Merlin routers."""

    on_error: Optional[Callable[[Exception], None]] = None
    run: Callable[[Sequence[str]], bytes] = field(default=_run_command, repr=False)
    supported: Optional[bool] = None

    _table: _ClientTable = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._table = _ClientTable(30.0, self._is_supported, self._load, self._report)

    def _report(self, err: Exception) -> None:
        if self.on_error is not None:
            self.on_error(err)

    def _is_supported(self) -> bool:
        if self.supported is None:
            self.supported = self._detect()
        return self.supported

    def _detect(self) -> bool:
        if not sys.platform.startswith("linux"):
            return False
        try:
            out = self.run(["uname", "-o"])
        except (OSError, subprocess.SubprocessError):
            return False
        return out.decode("utf-8", "replace").startswith("ASUSWRT-Merlin")

    def _load(self) -> dict:
        return read_client_list(self.run(["nvram", "get", "custom_clientlist"])) or {}

    def name(self) -> str:
        return "merlin"

    def visit(self, f: Callable[[str, list], None]) -> None:
        """Call f(name, macs) for every known client name."""
        for name, macs in self._table.by_name().items():
            f(name, macs)

    def lookup_mac(self, mac: str) -> list:
        return self._table.names_for_mac(mac)

    def lookup_addr(self, addr: str) -> list:
        return self._table.unindexed(addr)

    def lookup_host(self, name: str) -> list:
        return self._table.unindexed(name)


@dataclass
class Ubios:
    """Client names from the controller database of UniFi OS devices."""

    on_error: Optional[Callable[[Exception], None]] = None
    run: Callable[[Sequence[str]], bytes] = field(default=_run_command, repr=False)
    supported: Optional[bool] = None

    _table: _ClientTable = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._table = _ClientTable(300.0, self._is_supported, self._load, self._report)

    def _report(self, err: Exception) -> None:
        if self.on_error is not None:
            self.on_error(err)

    def _is_supported(self) -> bool:
        if self.supported is None:
            self.supported = sys.platform.startswith("linux") and os.path.isdir("/data/unifi")
        return self.supported

    def _load(self) -> dict:
        out = self.run(
            ["/usr/bin/mongo", "localhost:27117/ace", "--quiet", "--eval", _UBIOS_QUERY]
        )
        return parse_ubios_records(out.decode("utf-8", "replace"))

    def name(self) -> str:
        return "ubios"

    def visit(self, f: Callable[[str, list], None]) -> None:
        """Call f(name, macs) for every known client name."""
        for name, macs in self._table.by_name().items():
            f(name, macs)

    def lookup_mac(self, mac: str) -> list:
        return self._table.names_for_mac(mac)

    def lookup_addr(self, addr: str) -> list:
        return self._table.unindexed(addr)

    def lookup_host(self, name: str) -> list:
        return self._table.unindexed(name)