"""Tests for DHCP lease lookup."""

from ipaddress import IPv4Network

from pvesandbox.utils.leases import (
    DEFAULT_LEASE_PATHS,
    expand_lease_paths,
    find_lease_ip,
    has_glob,
)

MAC = "52:54:00:aa:bb:cc"

DNSMASQ = """\
1738159100 52:54:00:11:22:33 10.77.0.20 other *
1738159200 52:54:00:AA:BB:CC 10.77.0.55 host *
"""

DHCPD = """\
# The format of this file is documented in the dhcpd.leases(5) manual page.
lease 192.168.50.10 {
  starts 4 2025/01/30 10:00:00;
  binding state active;
  hardware ethernet 52:54:00:aa:bb:cc;
}
lease 192.168.50.11 {
  binding state free;
  hardware ethernet 52:54:00:aa:bb:cc;
}
"""


class TestFindLease:
    def test_dnsmasq_case_insensitive_mac(self):
        assert find_lease_ip(DNSMASQ, [MAC], None) == "10.77.0.55"

    def test_dnsmasq_netblock_filter(self):
        assert find_lease_ip(DNSMASQ, [MAC], IPv4Network("192.168.0.0/16")) == ""

    def test_dhcpd_skips_inactive_binding(self):
        assert find_lease_ip(DHCPD, [MAC], None) == "192.168.50.10"

    def test_dhcpd_inactive_is_not_active(self):
        content = (
            "lease 192.168.50.12 {\n"
            "  binding state inactive;\n"
            "  hardware ethernet 52:54:00:aa:bb:cc;\n"
            "}\n"
        )
        assert find_lease_ip(content, [MAC], None) == ""

    def test_dhcpd_without_binding_state(self):
        content = "lease 10.1.0.4 {\n  hardware ethernet 52:54:00:aa:bb:cc;\n}\n"
        assert find_lease_ip(content, [MAC], None) == "10.1.0.4"

    def test_last_matching_lease_wins(self):
        content = DNSMASQ + "1738159300 52:54:00:aa:bb:cc 10.77.0.56 host *\n"
        assert find_lease_ip(content, [MAC], None) == "10.77.0.56"

    def test_no_macs(self):
        assert find_lease_ip(DNSMASQ, [], None) == ""


class TestExpandLeasePaths:
    def test_defaults_when_empty(self):
        paths = expand_lease_paths([])
        assert "/var/lib/misc/dnsmasq.leases" in paths
        assert all(not has_glob(p) for p in paths)
        assert len(DEFAULT_LEASE_PATHS) == 8

    def test_glob_sorted_and_deduplicated(self, tmp_path):
        (tmp_path / "dnsmasq.b.leases").write_text("")
        (tmp_path / "dnsmasq.a.leases").write_text("")
        explicit = str(tmp_path / "dnsmasq.a.leases")
        paths = expand_lease_paths([str(tmp_path / "dnsmasq.*.leases"), explicit])
        assert paths == [
            str(tmp_path / "dnsmasq.a.leases"),
            str(tmp_path / "dnsmasq.b.leases"),
        ]

    def test_missing_literal_paths_kept(self, tmp_path):
        missing = str(tmp_path / "nope.leases")
        assert expand_lease_paths([missing]) == [missing]
