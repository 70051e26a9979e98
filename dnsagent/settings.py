"""Daemon settings parsed from command-line style flags."""

from __future__ import annotations

import re
import sys
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal, InvalidOperation
from typing import Sequence, TextIO

from dnsagent.forwarders import Forwarders
from dnsagent.profiles import Profiles

DEFAULT_CONTROL = "dnsagent-cli" if sys.platform == "win32" else "/var/run/dnsagent.sock"
DEFAULT_LISTEN = "127.0.0.1:53" if sys.platform == "win32" else "localhost:53"

_TRUE = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE = frozenset({"0", "f", "F", "FALSE", "false", "False"})

_DURATION_PART = re.compile(r"(\d+\.?\d*|\.\d+)(ns|us|µs|μs|ms|s|m|h)")
_UNIT_NS = {
    "ns": 1,
    "us": 1_000,
    "µs": 1_000,
    "μs": 1_000,
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60 * 1_000_000_000,
    "h": 3600 * 1_000_000_000,
}
_MAX_DURATION_NS = 2**63 - 1
_MAX_UINT = 2**64 - 1


def _parse_bool(value: str) -> bool:
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ValueError("parse error")


def _parse_uint(value: str) -> int:
    try:
        number = int(value, 0)
    except ValueError:
        raise ValueError("parse error") from None
    if not 0 <= number <= _MAX_UINT:
        raise ValueError("value out of range")
    return number


def _parse_duration(text: str) -> timedelta:
    """Parse a duration such as "300ms", "1.5h" or "2h45m"."""
    s = text
    sign = 1
    if s[:1] in ("-", "+"):
        if s[0] == "-":
            sign = -1
        s = s[1:]
    if s == "0":
        return timedelta(0)
    if not s:
        raise ValueError(f"invalid duration {text!r}")
    total = Decimal(0)
    pos = 0
    while pos < len(s):
        match = _DURATION_PART.match(s, pos)
        if match is None:
            raise ValueError(f"invalid duration {text!r}")
        try:
            total += Decimal(match[1]) * _UNIT_NS[match[2]]
        except InvalidOperation:
            raise ValueError(f"invalid duration {text!r}") from None
        pos = match.end()
    if total > _MAX_DURATION_NS:
        raise ValueError(f"invalid duration {text!r}")
    return sign * timedelta(microseconds=int(total // 1000))


def _fraction(value: int, scale: int) -> str:
    whole, frac = divmod(value, scale)
    if not frac:
        return str(whole)
    digits = len(str(scale)) - 1
    return f"{whole}.{frac:0{digits}d}".rstrip("0")


def _format_duration(d: timedelta) -> str:
    """Render a duration as hours, minutes and seconds, e.g. "1m30s"."""
    ns = ((d.days * 86400 + d.seconds) * 1_000_000 + d.microseconds) * 1000
    negative = ns < 0
    ns = abs(ns)
    if ns == 0:
        return "0s"
    if ns < 1_000_000_000:
        for unit, scale in (("ns", 1), ("µs", 1_000), ("ms", 1_000_000)):
            if ns < scale * 1000:
                text = _fraction(ns, scale) + unit
                break
    else:
        hours, rest = divmod(ns, 3600 * 1_000_000_000)
        minutes, rest = divmod(rest, 60 * 1_000_000_000)
        text = _fraction(rest, 1_000_000_000) + "s"
        if hours or minutes:
            text = f"{minutes}m{text}"
        if hours:
            text = f"{hours}h{text}"
    return "-" + text if negative else text


@dataclass(frozen=True)
class _Flag:
    name: str
    attr: str
    kind: str
    default: object = None
    stored: bool = True


_FLAGS = (
    _Flag("config-file", "file", "string", "", stored=False),
    _Flag("listen", "listens", "strings"),
    _Flag("control", "control", "string", DEFAULT_CONTROL),
    _Flag("config", "conf", "var"),
    _Flag("forwarder", "forwarders", "var"),
    _Flag("log-queries", "log_queries", "bool", False),
    _Flag("cache-size", "cache_size", "string", "0"),
    _Flag("cache-max-age", "cache_max_age", "duration", timedelta(0)),
    _Flag("max-ttl", "max_ttl", "duration", timedelta(0)),
    _Flag("report-client-info", "report_client_info", "bool", False),
    _Flag("discovery-dns", "discovery_dns", "string", ""),
    _Flag("mdns", "mdns", "string", "all"),
    _Flag("detect-captive-portals", "detect_captive_portals", "bool", False),
    _Flag("hardened-privacy", "hardened_privacy", "bool", False),
    _Flag("bogus-priv", "bogus_priv", "bool", True),
    _Flag("use-hosts", "use_hosts", "bool", True),
    _Flag("timeout", "timeout", "duration", timedelta(seconds=5)),
    _Flag("max-inflight-requests", "max_inflight_requests", "uint", 256),
    _Flag("setup-router", "setup_router", "bool", False),
    _Flag("auto-activate", "auto_activate", "bool", False),
)
_FLAGS_BY_NAME = {f.name: f for f in _FLAGS}
_SCALAR_KINDS = frozenset({"string", "bool", "duration", "uint"})


@dataclass
class Config:
    """Proxy daemon settings.

    Flags follow the single-dash convention: -name value, -name=value, and
    -name alone for boolean flags. Repeated list flags accumulate.
    """

    file: str = ""
    listens: list = field(default_factory=list)
    control: str = DEFAULT_CONTROL
    conf: Profiles = field(default_factory=Profiles)
    forwarders: Forwarders = field(default_factory=Forwarders)
    log_queries: bool = False
    cache_size: str = "0"
    cache_max_age: timedelta = timedelta(0)
    max_ttl: timedelta = timedelta(0)
    report_client_info: bool = False
    discovery_dns: str = ""
    mdns: str = "all"
    detect_captive_portals: bool = False
    hardened_privacy: bool = field(default=False, repr=False)  # deprecated, ignored
    bogus_priv: bool = True
    use_hosts: bool = True
    timeout: timedelta = timedelta(seconds=5)
    max_inflight_requests: int = 256
    setup_router: bool = False
    auto_activate: bool = False

    def parse(self, args: Sequence[str]) -> None:
        """Apply flags from args; raises ValueError on any invalid argument."""
        for flag in _FLAGS:
            if flag.kind in _SCALAR_KINDS:
                setattr(self, flag.attr, flag.default)
        args = list(args)
        i = 0
        while i < len(args):
            arg = args[i]
            if len(arg) < 2 or arg[0] != "-":
                break
            i += 1
            if arg == "--":
                break
            body = arg[2:] if arg.startswith("--") else arg[1:]
            if not body or body[0] in "-=":
                raise ValueError(f"bad flag syntax: {arg}")
            name, sep, value = body.partition("=")
            flag = _FLAGS_BY_NAME.get(name)
            if flag is None:
                raise ValueError(f"flag provided but not defined: -{name}")
            if not sep:
                if flag.kind == "bool":
                    value = "true"
                elif i < len(args):
                    value = args[i]
                    i += 1
                else:
                    raise ValueError(f"flag needs an argument: -{name}")
            try:
                self._apply(flag, value)
            except ValueError as err:
                raise ValueError(f'invalid value "{value}" for flag -{name}: {err}') from None
        if i < len(args):
            raise ValueError(f"Unrecognized parameter: {args[i]}")
        if not self.listens:
            self.listens = [DEFAULT_LISTEN]

    def _apply(self, flag: _Flag, value: str) -> None:
        if flag.kind == "strings":
            values = getattr(self, flag.attr)
            if value not in values:
                values.append(value)
        elif flag.kind == "var":
            getattr(self, flag.attr).set(value)
        elif flag.kind == "bool":
            setattr(self, flag.attr, _parse_bool(value))
        elif flag.kind == "duration":
            setattr(self, flag.attr, _parse_duration(value))
        elif flag.kind == "uint":
            setattr(self, flag.attr, _parse_uint(value))
        else:
            setattr(self, flag.attr, value)

    def to_entries(self) -> list:
        """(name, value) pairs of every stored setting; lists give one pair per item."""
        entries = []
        for flag in _FLAGS:
            if not flag.stored:
                continue
            value = getattr(self, flag.attr)
            if flag.kind == "strings":
                entries.extend((flag.name, v) for v in value)
            elif flag.kind == "var":
                entries.extend((flag.name, v) for v in value.strings())
            elif flag.kind == "bool":
                entries.append((flag.name, "true" if value else "false"))
            elif flag.kind == "duration":
                entries.append((flag.name, _format_duration(value)))
            else:
                entries.append((flag.name, str(value)))
        return entries

    def write(self, stream: TextIO) -> None:
        """Write each setting as a "name value" line."""
        for name, value in self.to_entries():
            stream.write(f"{name} {value}\n")