"""Local network address used as the advertised location."""

import logging
import os
import socket

logger = logging.getLogger(__name__)

# Any routable address works; connecting a UDP socket sends no packets.
_PROBE_TARGET = ("10.255.255.255", 1)


def get_local_ip() -> str:
    """Best guess at this node's LAN address."""
    override = os.environ.get("FLEET_ADVERTISE_ADDRESS", "").strip()
    if override:
        return override

    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        sock.connect(_PROBE_TARGET)
        ip = sock.getsockname()[0]
        if not ip.startswith("127.") and ip != "0.0.0.0":
            return ip
    except OSError as e:
        logger.debug(f"Could not resolve local IP via routing table: {e}")
    finally:
        sock.close()

    try:
        _, _, ips = socket.gethostbyname_ex(socket.gethostname())
        for ip in ips:
            if not ip.startswith("127."):
                return ip
    except OSError as e:
        logger.debug(f"Error resolving local IPs: {e}")

    return "127.0.0.1"
