"""
SSDP (UDP multicast) discovery for management endpoints.

The server answers M-SEARCH requests for its service type and sends
ssdp:alive / ssdp:byebye notifications. The client sends an M-SEARCH and
hands every response it receives to a callback.
"""

import asyncio
import logging
import socket
import struct
from typing import Callable, Optional

from discovery.models import AdvertisedService, Announcement

logger = logging.getLogger(__name__)

SSDP_ADDR = "239.255.255.250"
SSDP_PORT = 1900
SSDP_ALL = "ssdp:all"
MULTICAST_TTL = 2
SEARCH_MX = 1
DEFAULT_SERVER = "Linux/UPnP/1.1 fleet-agent/1.0"


# --- Wire format helpers ---

def build_search(service_type: str, mx: int = SEARCH_MX) -> bytes:
    lines = [
        "M-SEARCH * HTTP/1.1",
        f"HOST: {SSDP_ADDR}:{SSDP_PORT}",
        'MAN: "ssdp:discover"',
        f"MX: {mx}",
        f"ST: {service_type}",
    ]
    return ("\r\n".join(lines) + "\r\n\r\n").encode("utf-8")


def build_usn(service: AdvertisedService) -> str:
    return f"uuid:{service.device_id}::{service.service_type}"


def build_response(service: AdvertisedService) -> bytes:
    lines = [
        "HTTP/1.1 200 OK",
        f"CACHE-CONTROL: max-age={service.max_age}",
        "EXT:",
        f"LOCATION: {service.location}",
        f"SERVER: {service.server or DEFAULT_SERVER}",
        f"ST: {service.service_type}",
        f"USN: {build_usn(service)}",
    ]
    return ("\r\n".join(lines) + "\r\n\r\n").encode("utf-8")


def build_notify(service: AdvertisedService, alive: bool = True) -> bytes:
    lines = [
        "NOTIFY * HTTP/1.1",
        f"HOST: {SSDP_ADDR}:{SSDP_PORT}",
        f"NT: {service.service_type}",
        f"NTS: {'ssdp:alive' if alive else 'ssdp:byebye'}",
        f"USN: {build_usn(service)}",
    ]
    if alive:
        lines[2:2] = [
            f"CACHE-CONTROL: max-age={service.max_age}",
            f"LOCATION: {service.location}",
            f"SERVER: {service.server or DEFAULT_SERVER}",
        ]
    return ("\r\n".join(lines) + "\r\n\r\n").encode("utf-8")


def parse_message(data: bytes) -> tuple[str, dict[str, str]]:
    """Split a datagram into its start line and upper-cased headers."""
    text = data.decode("utf-8", errors="replace")
    lines = text.split("\r\n") if "\r\n" in text else text.split("\n")
    start_line = lines[0].strip()
    headers: dict[str, str] = {}
    for line in lines[1:]:
        if ":" not in line:
            continue
        name, _, value = line.partition(":")
        headers[name.strip().upper()] = value.strip()
    return start_line, headers


def device_id_from_usn(usn: str) -> str:
    """Extract the device id from ``uuid:<id>::<service type>``."""
    if usn.lower().startswith("uuid:"):
        usn = usn[len("uuid:"):]
    return usn.split("::", 1)[0].strip()


def parse_max_age(cache_control: str) -> int:
    for directive in cache_control.split(","):
        name, _, value = directive.partition("=")
        if name.strip().lower() == "max-age":
            try:
                return int(value.strip())
            except ValueError:
                return 0
    return 0


def parse_response(data: bytes) -> Optional[Announcement]:
    """Parse a search response into an announcement, or None if it is not one."""
    start_line, headers = parse_message(data)
    if not start_line.upper().startswith("HTTP/") or " 200" not in start_line:
        return None
    if "LOCATION" not in headers or "USN" not in headers:
        return None

    return Announcement(
        location=headers["LOCATION"],
        device_id=device_id_from_usn(headers["USN"]),
        service_type=headers.get("ST", ""),
        server=headers.get("SERVER", ""),
        max_age=parse_max_age(headers.get("CACHE-CONTROL", "")),
    )


# --- Server (advertiser) ---

class ResponderProtocol(asyncio.DatagramProtocol):
    """asyncio UDP protocol answering M-SEARCH requests."""

    def __init__(self, server: "SsdpServer"):
        self.server = server

    def datagram_received(self, data: bytes, addr: tuple[str, int]) -> None:
        try:
            start_line, headers = parse_message(data)
        except Exception as e:
            logger.debug(f"Ignoring invalid SSDP packet from {addr}: {e}")
            return

        if not start_line.upper().startswith("M-SEARCH"):
            return
        self.server.handle_search(headers.get("ST", ""), addr)

    def error_received(self, exc: Exception) -> None:
        logger.warning(f"SSDP server UDP error: {exc}")


class SsdpServer:
    """Multicast responder advertising local services."""

    def __init__(self) -> None:
        self._transport: asyncio.DatagramTransport | None = None
        self._services: dict[str, AdvertisedService] = {}

    @property
    def running(self) -> bool:
        return self._transport is not None

    async def start(self) -> None:
        """Join the SSDP multicast group. Raises OSError on failure."""
        loop = asyncio.get_running_loop()

        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            if hasattr(socket, "SO_REUSEPORT"):
                try:
                    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
                except OSError:
                    pass
            sock.bind(("", SSDP_PORT))
            mreq = struct.pack("4sl", socket.inet_aton(SSDP_ADDR), socket.INADDR_ANY)
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, mreq)
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, MULTICAST_TTL)
            sock.setblocking(False)
        except OSError:
            sock.close()
            raise

        transport, _ = await loop.create_datagram_endpoint(
            lambda: ResponderProtocol(self),
            sock=sock,
        )
        self._transport = transport
        logger.debug(f"SSDP server listening on {SSDP_ADDR}:{SSDP_PORT}")

    def advertise(self, service: AdvertisedService) -> None:
        """Start answering searches for ``service`` and announce it."""
        self._services[service.service_type] = service
        self._send(build_notify(service, alive=True), (SSDP_ADDR, SSDP_PORT))

    def handle_search(self, search_target: str, addr: tuple[str, int]) -> None:
        for service in self._services.values():
            if search_target in (SSDP_ALL, service.service_type):
                self._send(build_response(service), addr)

    def stop(self) -> None:
        if self._transport is None:
            return
        for service in self._services.values():
            self._send(build_notify(service, alive=False), (SSDP_ADDR, SSDP_PORT))
        self._transport.close()
        self._transport = None
        self._services.clear()

    def _send(self, data: bytes, addr: tuple[str, int]) -> None:
        if self._transport is None:
            return
        try:
            self._transport.sendto(data, addr)
        except OSError as e:
            logger.debug(f"SSDP send to {addr} failed: {e}")


# --- Client (listener) ---

class SearchProtocol(asyncio.DatagramProtocol):
    """asyncio UDP protocol collecting search responses."""

    def __init__(self, client: "SsdpClient"):
        self.client = client

    def datagram_received(self, data: bytes, addr: tuple[str, int]) -> None:
        try:
            announcement = parse_response(data)
        except Exception as e:
            logger.debug(f"Ignoring invalid SSDP response from {addr}: {e}")
            return

        if announcement is None:
            return
        self.client.handle_response(announcement)

    def error_received(self, exc: Exception) -> None:
        logger.warning(f"SSDP client UDP error: {exc}")


class SsdpClient:
    """Sends M-SEARCH requests and reports matching responses."""

    def __init__(self, on_response: Callable[[Announcement], None]) -> None:
        self._on_response = on_response
        self._transport: asyncio.DatagramTransport | None = None
        self._targets: set[str] = set()

    async def start(self) -> None:
        """Open the client socket. Raises OSError on failure."""
        loop = asyncio.get_running_loop()

        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        try:
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, MULTICAST_TTL)
            sock.bind(("", 0))
            sock.setblocking(False)
        except OSError:
            sock.close()
            raise

        transport, _ = await loop.create_datagram_endpoint(
            lambda: SearchProtocol(self),
            sock=sock,
        )
        self._transport = transport

    def listen_for(self, service_type: str) -> None:
        """Search for ``service_type``; responses go to the callback."""
        if self._transport is None:
            raise OSError("SSDP client is not started")
        self._targets.add(service_type)
        self._transport.sendto(build_search(service_type), (SSDP_ADDR, SSDP_PORT))

    def handle_response(self, announcement: Announcement) -> None:
        if announcement.service_type and announcement.service_type not in self._targets:
            return
        self._on_response(announcement)

    def stop(self) -> None:
        if self._transport is not None:
            self._transport.close()
            self._transport = None
