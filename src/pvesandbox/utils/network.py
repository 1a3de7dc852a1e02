"""Network utilities for resolving VM IP addresses."""

import ipaddress
import json
import re
from typing import Any

from ..api.exceptions import InvalidArgumentError

IPv4Network = ipaddress.IPv4Network
IPv4Address = ipaddress.IPv4Address

RFC1918_NETWORKS = (
    IPv4Network("10.0.0.0/8"),
    IPv4Network("172.16.0.0/12"),
    IPv4Network("192.168.0.0/16"),
)

_MAC_RE = re.compile(r"^[0-9a-f]{2}([:-])[0-9a-f]{2}(\1[0-9a-f]{2}){4}$", re.IGNORECASE)


def parse_netblock(cidr: str) -> IPv4Network | None:
    """Parse the agent CIDR setting.

    Args:
        cidr: CIDR such as ``10.77.0.0/16``; empty disables filtering

    Returns:
        The network, or None when no CIDR is configured

    Raises:
        InvalidArgumentError: If the CIDR cannot be parsed
    """
    cidr = (cidr or "").strip()
    if not cidr:
        return None
    try:
        return ipaddress.IPv4Network(cidr, strict=False)
    except ValueError as e:
        raise InvalidArgumentError(f"invalid agent CIDR {cidr!r}: {e}") from e


def normalize_mac(mac: str) -> str:
    """Lowercase a MAC address and use colon separators."""
    return mac.strip().lower().replace("-", ":")


def is_mac(value: str) -> bool:
    """Return True if the value looks like an Ethernet MAC address."""
    return bool(_MAC_RE.match(value.strip()))


def extract_mac(net_spec: str) -> str:
    """Extract the MAC from a net spec such as ``virtio=AA:BB:..,bridge=vmbr0``.

    Returns:
        Lowercase MAC address, or "" if the spec has none
    """
    for field in net_spec.split(","):
        _, sep, value = field.strip().partition("=")
        if sep and is_mac(value):
            return normalize_mac(value)
    return ""


def config_macs(config: dict[str, str]) -> list[str]:
    """Collect the unique MACs of all ``net*`` entries in a VM config."""
    macs: list[str] = []
    for key in sorted(config):
        if not key.startswith("net"):
            continue
        mac = extract_mac(config[key])
        if mac and mac not in macs:
            macs.append(mac)
    return macs


def parse_ipv4(value: str) -> IPv4Address | None:
    """Parse an IPv4 address, returning None for anything else."""
    try:
        ip = ipaddress.ip_address(value.strip())
    except ValueError:
        return None
    if isinstance(ip, ipaddress.IPv6Address):
        return ip.ipv4_mapped
    return ip


def _agent_interfaces(payload: Any) -> list[dict[str, Any]] | None:
    if isinstance(payload, (str, bytes)):
        text = payload.strip() if isinstance(payload, str) else payload.decode().strip()
        if not text:
            raise InvalidArgumentError("empty agent response")
        try:
            payload = json.loads(text)
        except ValueError as e:
            raise InvalidArgumentError("unrecognized agent response") from e
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in ("result", "data"):
            interfaces = payload.get(key)
            if isinstance(interfaces, list) and interfaces:
                return interfaces
        if isinstance(payload.get("result"), list) or isinstance(payload.get("data"), list):
            return []
    return None


def parse_agent_addresses(payload: Any) -> list[IPv4Address]:
    """Collect usable IPv4 addresses from a guest agent interface listing.

    Accepts ``{"result": [...]}``, ``{"data": [...]}``, a bare list, or the
    JSON text of any of those. Loopback, link-local and unspecified
    addresses are skipped.

    Format: [{"name": "eth0", "ip-addresses": [{"ip-address": "x.x.x.x", "ip-address-type": "ipv4"}]}]

    Raises:
        InvalidArgumentError: If the payload has none of the known shapes
    """
    interfaces = _agent_interfaces(payload)
    if interfaces is None:
        raise InvalidArgumentError("unrecognized agent response")

    addresses: list[IPv4Address] = []
    for iface in interfaces:
        if not isinstance(iface, dict):
            continue
        for addr in iface.get("ip-addresses") or []:
            if not isinstance(addr, dict):
                continue
            if addr.get("ip-address-type") != "ipv4":
                continue
            ip = parse_ipv4(str(addr.get("ip-address", "")))
            if ip is None or ip.is_loopback or ip.is_link_local or ip.is_unspecified:
                continue
            addresses.append(ip)
    return addresses


def is_rfc1918(ip: IPv4Address) -> bool:
    return any(ip in network for network in RFC1918_NETWORKS)


def select_ip(ips: list[IPv4Address], netblock: IPv4Network | None) -> str:
    """Pick the best guest address.

    Order: first address inside ``netblock``, then first RFC1918 address,
    then the first address.

    Returns:
        Address string, or "" when ``ips`` is empty
    """
    if netblock is not None:
        for ip in ips:
            if ip in netblock:
                return str(ip)
    for ip in ips:
        if is_rfc1918(ip):
            return str(ip)
    if ips:
        return str(ips[0])
    return ""


def parse_node_list(payload: Any) -> str:
    """Return the first node name from a ``/nodes`` listing.

    Raises:
        InvalidArgumentError: If no entry names a node
    """
    if isinstance(payload, str):
        text = payload.strip()
        if not text:
            raise InvalidArgumentError("empty node list")
        try:
            payload = json.loads(text)
        except ValueError as e:
            raise InvalidArgumentError("unrecognized node list") from e
    if isinstance(payload, dict):
        payload = payload.get("data")
    for entry in payload or []:
        if not isinstance(entry, dict):
            continue
        name = entry.get("node") or entry.get("name")
        if name:
            return str(name)
    raise InvalidArgumentError("no nodes found")
