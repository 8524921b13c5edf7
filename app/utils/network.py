import ipaddress
import socket
from typing import Optional

FALLBACK_IP = "127.0.0.1"

_PRIVATE_NETWORKS = (
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
)


def is_private_ipv4(address: str) -> bool:
    """Check whether an address belongs to a LAN (RFC 1918) IPv4 range."""
    try:
        ip = ipaddress.ip_address(address)
    except ValueError:
        return False
    if ip.version != 4:
        return False
    return any(ip in network for network in _PRIVATE_NETWORKS)


def _route_address() -> Optional[str]:
    # UDP connect sends nothing; it only selects the outbound interface
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
        try:
            s.connect(("10.254.254.254", 1))
            return s.getsockname()[0]
        except OSError:
            return None


def get_local_ip() -> str:
    """Return this machine's LAN IPv4 address, or 127.0.0.1 if none is found."""
    candidate = _route_address()
    if candidate and is_private_ipv4(candidate):
        return candidate

    try:
        _, _, addresses = socket.gethostbyname_ex(socket.gethostname())
    except OSError:
        addresses = []
    for address in addresses:
        if is_private_ipv4(address):
            return address

    return FALLBACK_IP
