from dnsagent.dhcp import DHCP, read_dhcpd_lease, read_dnsmasq_lease

DHCPD_FILE = """
# The format of this file is documented in the dhcpd.leases(5) manual page.

# authoring-byte-order entry is generated, DO NOT DELETE
authoring-byte-order little-endian;

lease 10.0.1.4 {
	starts 0 2019/06/09 20:28:45;
	ends 0 2019/06/09 20:38:45;
	tstp 0 2019/06/09 20:38:45;
	cltt 0 2019/06/09 20:28:45;
	binding state free;
	hardware ethernet 02:00:00:00:00:01;
	uid "placeholder-1";
}
lease 10.0.1.5 {
	starts 1 2020/01/06 01:56:24;
	ends 1 2020/01/06 03:56:24;
	cltt 1 2020/01/06 01:56:24;
	binding state active;
	next binding state free;
	rewind binding state free;
	hardware ethernet 02:00:00:00:00:02;
	uid "placeholder-2";
	client-hostname "iPad";
}
lease 10.0.1.3 {
	starts 1 2020/01/06 02:08:32;
	ends 1 2020/01/06 04:08:32;
	cltt 1 2020/01/06 02:08:58;
	binding state active;
	next binding state free;
	rewind binding state free;
	hardware ethernet 02:00:00:00:00:01;
	uid "placeholder-1";
	client-hostname "Mac";
}"""

DNSMASQ_FILE = """
56789 02:00:00:00:00:0a 192.168.50.12 wrt54g 01:02:00:00:00:00:0a
86400 02:00:00:00:00:0b 192.168.50.11 GL-MT300N-V2-bb0 *
77060 02:00:00:00:00:0c 192.168.50.111 ubnt *
			"""


def test_read_dhcpd_lease():
    macs, addrs, names = read_dhcpd_lease(DHCPD_FILE.splitlines())
    assert macs == {
        "02:00:00:00:00:02": ["iPad."],
        "02:00:00:00:00:01": ["Mac."],
    }
    assert addrs == {
        "10.0.1.5": ["iPad."],
        "10.0.1.3": ["Mac."],
    }
    assert names == {
        "ipad.": ["10.0.1.5"],
        "ipad.local.": ["10.0.1.5"],
        "mac.": ["10.0.1.3"],
        "mac.local.": ["10.0.1.3"],
    }


def test_read_dnsmasq_lease():
    macs, addrs, names = read_dnsmasq_lease(DNSMASQ_FILE.splitlines())
    assert macs == {
        "02:00:00:00:00:0a": ["wrt54g."],
        "02:00:00:00:00:0b": ["GL-MT300N-V2-bb0."],
        "02:00:00:00:00:0c": ["ubnt."],
    }
    assert addrs == {
        "192.168.50.12": ["wrt54g."],
        "192.168.50.11": ["GL-MT300N-V2-bb0."],
        "192.168.50.111": ["ubnt."],
    }
    assert names == {
        "wrt54g.": ["192.168.50.12"],
        "wrt54g.local.": ["192.168.50.12"],
        "gl-mt300n-v2-bb0.": ["192.168.50.11"],
        "gl-mt300n-v2-bb0.local.": ["192.168.50.11"],
        "ubnt.": ["192.168.50.111"],
        "ubnt.local.": ["192.168.50.111"],
    }


def test_dhcp_source_from_dnsmasq_file(tmp_path):
    path = tmp_path / "dnsmasq.leases"
    path.write_text(DNSMASQ_FILE)
    errors = []
    source = DHCP(
        on_error=errors.append,
        files=((str(tmp_path / "missing"), "isc-dhcpd"), (str(path), "dnsmasq")),
    )
    assert source.name() == "dhcp"
    assert source.lookup_host("WRT54G") == ["192.168.50.12"]
    assert source.lookup_host("ubnt.local") == ["192.168.50.111"]
    assert source.lookup_mac("02:00:00:00:00:0b") == ["GL-MT300N-V2-bb0."]
    assert source.lookup_addr("192.168.50.111") == ["ubnt."]
    visited = {}
    source.visit(lambda name, addrs: visited.__setitem__(name, addrs))
    assert visited == read_dnsmasq_lease(DNSMASQ_FILE.splitlines())[2]
    assert errors == []


def test_dhcp_source_from_dhcpd_file(tmp_path):
    path = tmp_path / "dhcpd.leases"
    path.write_text(DHCPD_FILE)
    source = DHCP(files=((str(path), "isc-dhcpd"),))
    assert source.lookup_host("iPad") == ["10.0.1.5"]
    assert source.lookup_mac("02:00:00:00:00:01") == ["Mac."]


def test_dhcp_unknown_format_reports_error(tmp_path):
    path = tmp_path / "leases"
    path.write_text(DNSMASQ_FILE)
    errors = []
    source = DHCP(on_error=errors.append, files=((str(path), "bogus"),))
    assert source.lookup_mac("02:00:00:00:00:0a") == []
    assert len(errors) == 1
    assert "unknown format: bogus" in str(errors[0])


def test_dhcp_without_lease_file(tmp_path):
    errors = []
    source = DHCP(on_error=errors.append, files=((str(tmp_path / "none"), "dnsmasq"),))
    assert source.lookup_host("wrt54g") == []
    assert errors == []