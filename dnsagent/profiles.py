"""Configuration ids selected per client by subnet or MAC address."""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass
from typing import Iterable, Optional, Union

from dnsagent.arp import _parse_hardware_addr, _to_ip, _to_mac

IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]


def _parse_cidr(s: str) -> Optional[IPNetwork]:
    addr, sep, bits = s.partition("/")
    if not sep or not bits.isascii() or not bits.isdigit():
        return None
    try:
        return ipaddress.ip_network(f"{addr}/{bits}", strict=False)
    except ValueError:
        return None


def _mac_text(mac: bytes) -> str:
    return ":".join(f"{b:02x}" for b in mac)


@dataclass(frozen=True)
class ProfileRule:
    """A configuration id, optionally restricted to a subnet or a MAC address."""

    config: str
    prefix: Optional[IPNetwork] = None
    mac: Optional[bytes] = None

    def match(self, ip, mac) -> bool:
        """True if the rule applies to a client with this ip and mac."""
        if self.prefix is not None:
            addr = _to_ip(ip)
            if addr is None or addr.version != self.prefix.version:
                return False
            if addr not in self.prefix:
                return False
        if self.mac is not None:
            hw = _to_mac(mac)
            if hw is None or hw != self.mac:
                return False
        return True

    def __str__(self) -> str:
        if self.mac is not None:
            return f"{_mac_text(self.mac)}={self.config}"
        if self.prefix is not None:
            return f"{self.prefix}={self.config}"
        return self.config


def parse_profile_rule(value: str) -> ProfileRule:
    """Parse "[CIDR=|MAC=]ID"; raises ValueError on an unknown condition."""
    cond, sep, conf = value.partition("=")
    if not sep:
        return ProfileRule(config=value)
    cond = cond.strip()
    conf = conf.strip()
    prefix = _parse_cidr(cond)
    if prefix is not None:
        return ProfileRule(config=conf, prefix=prefix)
    mac = _parse_hardware_addr(cond)
    if mac is not None:
        return ProfileRule(config=conf, mac=mac)
    raise ValueError(f"{cond}: invalid condition format")


def _same_criteria(a: ProfileRule, b: ProfileRule) -> bool:
    if a.mac is not None and b.mac is not None and a.mac == b.mac:
        return True
    if a.prefix is not None and b.prefix is not None and str(a.prefix) == str(b.prefix):
        return True
    return a.mac is None and a.prefix is None and b.mac is None and b.prefix is None


class Profiles:
    """An ordered list of profile rules; the first matching rule wins."""

    def __init__(self, rules: Iterable[ProfileRule] = ()) -> None:
        self.rules = list(rules)

    def __iter__(self):
        return iter(self.rules)

    def __len__(self) -> int:
        return len(self.rules)

    def __str__(self) -> str:
        return "[" + " ".join(str(r) for r in self.rules) + "]"

    def get(self, ip, mac) -> str:
        """The configuration id for a client, or "" if no rule matches."""
        for rule in self.rules:
            if rule.match(ip, mac):
                return rule.config
        return ""

    def set(self, value: str) -> None:
        """Add a rule, replacing any rule with the same condition."""
        rule = parse_profile_rule(value)
        for i, existing in enumerate(self.rules):
            if _same_criteria(rule, existing):
                self.rules[i] = rule
                return
        self.rules.append(rule)

    def strings(self) -> list:
        """Each rule in its textual form."""
        return [str(r) for r in self.rules]