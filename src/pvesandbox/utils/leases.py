"""DHCP lease file lookup for guest IP discovery."""

import glob

from .network import IPv4Network, normalize_mac, parse_ipv4

DEFAULT_LEASE_PATHS = (
    "/var/lib/misc/dnsmasq.leases",
    "/var/lib/dnsmasq/dnsmasq.leases",
    "/var/lib/misc/dnsmasq.*.leases",
    "/var/lib/misc/dnsmasq*.leases",
    "/var/lib/dhcp/dhcpd.leases",
    "/var/lib/dhcp/dhcpd.leases~",
    "/var/lib/dhcp3/dhcpd.leases",
    "/var/lib/pve-firewall/dhcpd.leases",
)


def has_glob(path: str) -> bool:
    """Return True if the path contains glob metacharacters."""
    return any(ch in path for ch in "*?[")


def expand_lease_paths(paths: list[str] | tuple[str, ...] | None = None) -> list[str]:
    """Expand configured lease paths, globbing patterns at call time.

    Args:
        paths: Configured paths; the built-in list when empty

    Returns:
        Sorted, de-duplicated candidate files (not checked for existence)
    """
    expanded: set[str] = set()
    for path in paths or DEFAULT_LEASE_PATHS:
        if has_glob(path):
            expanded.update(glob.glob(path))
        else:
            expanded.add(path)
    return sorted(expanded)


def _in_netblock(value: str, netblock: IPv4Network | None) -> str:
    ip = parse_ipv4(value)
    if ip is None:
        return ""
    if netblock is not None and ip not in netblock:
        return ""
    return str(ip)


def find_dnsmasq_lease(content: str, macs: set[str], netblock: IPv4Network | None) -> str:
    """Find the last dnsmasq lease (``<expiry> <mac> <ip> ...``) for any MAC."""
    found = ""
    for line in content.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        fields = line.split()
        if len(fields) < 3 or normalize_mac(fields[1]) not in macs:
            continue
        ip = _in_netblock(fields[2], netblock)
        if ip:
            found = ip
    return found


def find_dhcpd_lease(content: str, macs: set[str], netblock: IPv4Network | None) -> str:
    """Find the last active ISC dhcpd lease block for any MAC."""
    found = ""
    current_ip = current_mac = ""
    in_lease = False
    active = True
    binding_seen = False
    for raw in content.splitlines():
        line = raw.strip()
        if line.startswith("lease ") and "{" in line:
            fields = line.split()
            current_ip, current_mac = fields[1], ""
            active, binding_seen, in_lease = True, False, True
            continue
        if not in_lease:
            continue
        if line.startswith("hardware ethernet "):
            fields = line.split()
            if len(fields) >= 3:
                current_mac = normalize_mac(fields[2].rstrip(";"))
        elif line.startswith("binding state "):
            binding_seen = True
            fields = line.rstrip(";").split()
            active = len(fields) >= 3 and fields[2] == "active"
        elif line == "}":
            if current_mac in macs and (not binding_seen or active):
                ip = _in_netblock(current_ip, netblock)
                if ip:
                    found = ip
            in_lease = False
    return found


def find_lease_ip(content: str, macs: list[str], netblock: IPv4Network | None) -> str:
    """Look up a lease for any of ``macs`` in dnsmasq or dhcpd format.

    Returns:
        IPv4 address string, or "" when nothing matches
    """
    if not macs or not content:
        return ""
    macset = {normalize_mac(mac) for mac in macs}
    return find_dnsmasq_lease(content, macset, netblock) or find_dhcpd_lease(
        content, macset, netblock
    )
