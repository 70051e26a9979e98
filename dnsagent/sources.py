"""Combining name discovery sources."""

from __future__ import annotations

from types import MappingProxyType
from typing import Callable, Iterable, Mapping


class Resolver:
    """An ordered list of discovery sources queried in turn.

    A source provides name(), visit(f), lookup_addr(addr) and
    lookup_host(name); it may also provide lookup_mac(mac).
    """

    def __init__(self, sources: Iterable) -> None:
        self.sources = list(sources)

    def __iter__(self):
        return iter(self.sources)

    def __len__(self) -> int:
        return len(self.sources)

    def visit(self, f: Callable[[str, str, list], None]) -> None:
        """Call f(source_name, name, addrs) for every entry of every source."""
        for source in self.sources:
            source_name = source.name()
            source.visit(lambda name, addrs, sn=source_name: f(sn, name, addrs))

    def lookup_addr(self, addr: str) -> list:
        """Names for addr from the first source that knows any."""
        addr = addr.lower()
        for source in self.sources:
            names = source.lookup_addr(addr)
            if names:
                return names
        return []

    def lookup_host(self, name: str) -> list:
        """Addresses for name from the first source that knows any."""
        name = name.lower()
        for source in self.sources:
            addrs = source.lookup_host(name)
            if addrs:
                return addrs
        return []

    def lookup_mac(self, mac: str) -> list:
        """Names for mac from the first MAC-aware source that knows any."""
        mac = mac.lower()
        for source in self.sources:
            lookup = getattr(source, "lookup_mac", None)
            if lookup is None:
                continue
            names = lookup(mac)
            if names:
                return names
        return []


class Dummy:
    """A source that knows nothing: its name and address tables are always empty."""

    _names: Mapping[str, tuple] = MappingProxyType({})
    _addrs: Mapping[str, tuple] = MappingProxyType({})

    def name(self) -> str:
        return "dummy"

    def visit(self, f: Callable[[str, list], None]) -> None:
        for name, addrs in self._names.items():
            f(name, list(addrs))

    def lookup_addr(self, addr: str) -> list:
        return list(self._addrs.get(addr, ()))

    def lookup_host(self, name: str) -> list:
        return list(self._names.get(name, ()))