import ipaddress
import socket
import threading

import dns.flags
import dns.message
import dns.rcode
import dns.rdatatype
import dns.rrset
import pytest

from dnsagent.dns_source import (
    DNS,
    DNSError,
    is_private_ip,
    probe_buggy_dnsmasq,
    query_name,
    query_ptr,
    reverse_ip,
    send_query,
)


class FakeDNSServer:
    def __init__(self, records=None, servfail_without_rd=False, rcode=None):
        self.records = records or {}
        self.servfail_without_rd = servfail_without_rd
        self.rcode = rcode
        self.queries = []
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self.sock.bind(("127.0.0.1", 0))
        self.sock.settimeout(0.05)
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._serve, daemon=True)
        self._thread.start()

    @property
    def address(self):
        return "127.0.0.1:%d" % self.sock.getsockname()[1]

    def _serve(self):
        while not self._stop.is_set():
            try:
                data, peer = self.sock.recvfrom(4096)
            except socket.timeout:
                continue
            except OSError:
                return
            query = dns.message.from_wire(data)
            question = query.question[0]
            rd = bool(query.flags & dns.flags.RD)
            self.queries.append((question.name.to_text(), question.rdtype, rd))
            response = dns.message.make_response(query)
            if self.servfail_without_rd and not rd:
                response.set_rcode(dns.rcode.SERVFAIL)
            elif self.rcode is not None:
                response.set_rcode(self.rcode)
            else:
                key = (question.name.to_text(), question.rdtype)
                for rtype, text in self.records.get(key, []):
                    response.answer.append(
                        dns.rrset.from_text(question.name, 60, "IN", rtype, text)
                    )
            self.sock.sendto(response.to_wire(), peer)

    def close(self):
        self._stop.set()
        self._thread.join(1)
        self.sock.close()


@pytest.fixture
def dns_server():
    servers = []

    def make(**kwargs):
        server = FakeDNSServer(**kwargs)
        servers.append(server)
        return server

    yield make
    for server in servers:
        server.close()


PRINTER = {
    ("printer.lan.", dns.rdatatype.A): [("A", "192.0.2.10")],
    ("printer.lan.", dns.rdatatype.AAAA): [("AAAA", "2001:db8::10")],
    ("10.2.0.192.in-addr.arpa.", dns.rdatatype.PTR): [("PTR", "printer.lan.")],
}


@pytest.mark.parametrize(
    "ip,expected",
    [
        ("10.1.2.3", True),
        ("172.16.0.1", True),
        ("172.31.255.1", True),
        ("172.32.0.1", False),
        ("192.168.1.1", True),
        ("8.8.8.8", False),
        ("fd00::1", True),
        ("fe80::1", False),
        ("::ffff:10.0.0.1", True),
        ("not-an-ip", False),
    ],
)
def test_is_private_ip(ip, expected):
    assert is_private_ip(ip) is expected


def test_reverse_ip_ipv4():
    assert reverse_ip("192.0.2.1") == "1.2.0.192.in-addr.arpa."


def test_reverse_ip_ipv4_mapped_is_ipv4():
    assert reverse_ip("::ffff:192.0.2.1") == reverse_ip("192.0.2.1")


def test_reverse_ip_ipv6_nibbles():
    name = reverse_ip("2001:db8::1")
    labels = name.split(".")
    assert name.endswith(".ip6.arpa.")
    nibbles = labels[:32]
    assert all(len(n) == 1 for n in nibbles)
    assert int("".join(reversed(nibbles)), 16) == int(ipaddress.ip_address("2001:db8::1"))


def test_dns_error_carries_rcode():
    err = DNSError(dns.rcode.SERVFAIL)
    assert err.rcode == dns.rcode.SERVFAIL
    assert str(err) == dns.rcode.to_text(dns.rcode.SERVFAIL)


def test_query_name_a(dns_server):
    server = dns_server(records=PRINTER)
    assert query_name(server.address, "printer.lan.", dns.rdatatype.A, False) == ["192.0.2.10"]


def test_query_name_aaaa(dns_server):
    server = dns_server(records=PRINTER)
    assert query_name(server.address, "printer.lan.", dns.rdatatype.AAAA, False) == [
        "2001:db8::10"
    ]


def test_query_ptr(dns_server):
    server = dns_server(records=PRINTER)
    assert query_ptr(server.address, "192.0.2.10", False) == ["printer.lan."]


def test_query_sets_rd_flag_as_asked(dns_server):
    server = dns_server(records=PRINTER)
    query_name(server.address, "printer.lan.", dns.rdatatype.A, False)
    query_name(server.address, "printer.lan.", dns.rdatatype.A, True)
    assert [q[2] for q in server.queries] == [False, True]


def test_send_query_skips_other_types(dns_server):
    records = {
        ("alias.lan.", dns.rdatatype.A): [("CNAME", "printer.lan."), ("A", "192.0.2.10")]
    }
    server = dns_server(records=records)
    message = dns.message.make_query("alias.lan.", dns.rdatatype.A)
    assert send_query(server.address, message, dns.rdatatype.A) == ["192.0.2.10"]


def test_send_query_error_rcode(dns_server):
    server = dns_server(rcode=dns.rcode.NXDOMAIN)
    with pytest.raises(DNSError) as info:
        query_name(server.address, "missing.lan.", dns.rdatatype.A, True)
    assert info.value.rcode == dns.rcode.NXDOMAIN


def test_send_query_times_out():
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as silent:
        silent.bind(("127.0.0.1", 0))
        address = "127.0.0.1:%d" % silent.getsockname()[1]
        with pytest.raises(TimeoutError):
            query_name(address, "printer.lan.", dns.rdatatype.A, False)


def test_probe_detects_buggy_dnsmasq(dns_server):
    server = dns_server(servfail_without_rd=True)
    assert probe_buggy_dnsmasq(server.address) is True


def test_probe_normal_server(dns_server):
    server = dns_server(records=PRINTER)
    assert probe_buggy_dnsmasq(server.address) is False


def test_dns_lookup_host_and_cache(dns_server):
    server = dns_server(records=PRINTER)
    source = DNS(upstream=server.address)
    assert source.lookup_host("printer.lan.") == ["192.0.2.10", "2001:db8::10"]
    count = len(server.queries)
    assert source.lookup_host("printer.lan.") == ["192.0.2.10", "2001:db8::10"]
    assert len(server.queries) == count


def test_dns_lookup_addr_and_visit(dns_server):
    server = dns_server(records=PRINTER)
    source = DNS(upstream=server.address)
    assert source.lookup_addr("192.0.2.10") == ["printer.lan."]
    seen = {}
    source.visit(lambda name, values: seen.__setitem__(name, values))
    assert seen == {"192.0.2.10": ["printer.lan."]}


def test_dns_uses_buggy_rd_flag(dns_server):
    server = dns_server(servfail_without_rd=True)
    source = DNS(upstream=server.address)
    source.lookup_host("printer.lan.")
    lookups = [q for q in server.queries if q[0] == "printer.lan."]
    assert lookups and all(rd for _, _, rd in lookups)


def test_dns_without_private_upstream_knows_nothing():
    source = DNS(system_servers=lambda: ["8.8.8.8"])
    assert source.lookup_host("printer.lan.") == []
    assert source.lookup_addr("192.0.2.10") == []
    assert source.upstream == ""