from dnsagent.sources import Dummy, Resolver


class FakeSource:
    def __init__(self, name, hosts=None, addrs=None):
        self._name = name
        self._hosts = hosts or {}
        self._addrs = addrs or {}
        self.seen = []

    def name(self):
        return self._name

    def visit(self, f):
        for host, addrs in self._hosts.items():
            f(host, addrs)

    def lookup_addr(self, addr):
        self.seen.append(addr)
        return self._addrs.get(addr, [])

    def lookup_host(self, name):
        self.seen.append(name)
        return self._hosts.get(name, [])


class FakeMACSource(FakeSource):
    def __init__(self, name, macs):
        super().__init__(name)
        self._macs = macs

    def lookup_mac(self, mac):
        self.seen.append(mac)
        return self._macs.get(mac, [])


def test_lookup_host_lowercases_and_uses_first_hit():
    empty = FakeSource("empty")
    full = FakeSource("full", hosts={"box.": ["10.0.0.1"]})
    later = FakeSource("later", hosts={"box.": ["10.0.0.2"]})
    resolver = Resolver([empty, full, later])
    assert resolver.lookup_host("BOX.") == ["10.0.0.1"]
    assert empty.seen == ["box."]
    assert later.seen == []


def test_lookup_addr_lowercases():
    src = FakeSource("s", addrs={"fe80::a": ["box."]})
    resolver = Resolver([src])
    assert resolver.lookup_addr("FE80::A") == ["box."]
    assert src.seen == ["fe80::a"]


def test_lookups_without_match_are_empty():
    resolver = Resolver([FakeSource("a"), Dummy()])
    assert resolver.lookup_host("nothing.") == []
    assert resolver.lookup_addr("10.9.9.9") == []
    assert resolver.lookup_mac("02:00:00:00:00:01") == []


def test_lookup_mac_skips_sources_without_mac_support():
    plain = FakeSource("plain")
    mac_src = FakeMACSource("mac", {"02:00:00:00:00:01": ["box"]})
    resolver = Resolver([plain, mac_src])
    assert resolver.lookup_mac("02:00:00:00:00:01".upper()) == ["box"]
    assert plain.seen == []
    assert mac_src.seen == ["02:00:00:00:00:01"]


def test_visit_tags_entries_with_source_name():
    a = FakeSource("a", hosts={"x.": ["10.0.0.1"]})
    b = FakeSource("b", hosts={"y.": ["10.0.0.2"]})
    seen = []
    Resolver([a, Dummy(), b]).visit(lambda s, n, addrs: seen.append((s, n, addrs)))
    assert seen == [("a", "x.", ["10.0.0.1"]), ("b", "y.", ["10.0.0.2"])]


def test_dummy_knows_nothing():
    dummy = Dummy()
    calls = []
    dummy.visit(lambda n, a: calls.append(n))
    assert dummy.name() == "dummy"
    assert calls == []
    assert dummy.lookup_addr("10.0.0.1") == []
    assert dummy.lookup_host("x.") == []