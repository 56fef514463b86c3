"""DM-NVX device discovery over UDP.

Three independent transports are supported:
- Multicast DNS query for _crestron._tcp.local on 224.0.0.251:5353
- SSDP M-SEARCH on 239.255.255.250:1900, filtered by vendor name
- Crestron vendor broadcast on port 41794 (binary request/response)

Every probe is best-effort and time-bounded: transport failures are logged
and produce an empty (or partial) result instead of an exception. The
vendor probe is the only one that reports firmware and device role.
"""

from __future__ import annotations

import asyncio
import logging
import re
import socket
import struct
from enum import StrEnum
from typing import TYPE_CHECKING

from .const import DEFAULT_DISCOVERY_TIMEOUT, PRODUCT_PREFIX
from .models import DeviceType, DiscoveredDevice, LivenessState, utcnow

if TYPE_CHECKING:
    from collections.abc import Iterable

_LOGGER = logging.getLogger(__name__)

# Multicast DNS
MDNS_GROUP = "224.0.0.251"
MDNS_PORT = 5353
MDNS_SERVICE = "_crestron._tcp.local"
DNS_HEADER_LENGTH = 12

# SSDP
SSDP_GROUP = "239.255.255.250"
SSDP_PORT = 1900
SSDP_SEARCH_TARGET = "upnp:rootdevice"
SSDP_VENDOR_MARKERS = ("crestron", "nvx", "dmps")

# Crestron vendor discovery
CRESTRON_PORT = 41794
CRESTRON_BROADCAST = "255.255.255.255"
CRESTRON_REQUEST_HEADER = b"\x14\x00\x00\x00"
CRESTRON_RESPONSE_SIGNATURE = b"\x15\x00\x00\x00"
CRESTRON_FIXED_HEADER = b"\x14\x00\x00\x00\x01\x04\x00\x03\x00\x00"
CRESTRON_FIXED_LENGTH = 266
CRESTRON_PAYLOAD_OFFSET = 10
CRESTRON_SECOND_MESSAGE_DELAY = 0.1

# Seconds a probe may overrun its own timeout before it is abandoned
PROBE_GRACE = 1.0

RECV_BUFFER_SIZE = 4096
RECV_SLICE = 0.5

TRANSMITTER_MARKERS = ("tx", "transmit", "encode")
RECEIVER_MARKERS = ("rx", "receiv", "decode")

_VERSION_RE = re.compile(r"\[v([\d.]+)")
_BUILD_DATE_RE = re.compile(r"\(([^)]+)\)")
_ENDPOINTS_RE = re.compile(rf"{PRODUCT_PREFIX}-(\d+)", re.IGNORECASE)
_SERVER_RE = re.compile(r"^SERVER:\s*(.+)$", re.IGNORECASE | re.MULTILINE)


class Transport(StrEnum):
    """Discovery transports."""

    MULTICAST = "multicast"
    SSDP = "ssdp"
    CRESTRON = "crestron"


def classify_device(*texts: str) -> DeviceType:
    """Classify a device as transmitter or receiver from free text.

    Args:
        texts: Model and description strings to inspect.

    Returns:
        The detected role, or DeviceType.UNKNOWN.
    """
    haystack = " ".join(texts).lower()
    if any(marker in haystack for marker in TRANSMITTER_MARKERS):
        return DeviceType.TRANSMITTER
    if any(marker in haystack for marker in RECEIVER_MARKERS):
        return DeviceType.RECEIVER
    return DeviceType.UNKNOWN


def model_capabilities(model: str) -> frozenset[str]:
    """Derive capability tags from a DM-NVX model number.

    Args:
        model: Model string, e.g. "DM-NVX-384".

    Returns:
        Capability tags for the model.
    """
    capabilities = {"crestron_discovery"}
    match = _ENDPOINTS_RE.search(model)
    if match:
        endpoints = int(match.group(1))
        capabilities.update(
            {f"{endpoints}_endpoints", "hdmi", "4k_support", "hdcp", "ethernet_streaming"}
        )
        if endpoints >= 350:
            capabilities.update({"dante_audio", "advanced_scaling"})
    return frozenset(capabilities)


class DiscoveryProbe:
    """Base class for one UDP discovery transport.

    Subclasses create and configure the socket, send their requests and
    parse individual responses. The receive loop collects responses until
    the timeout expires and keeps the first valid answer per address.
    """

    name = "probe"

    def __init__(self, timeout: float = DEFAULT_DISCOVERY_TIMEOUT) -> None:
        """Initialize the probe.

        Args:
            timeout: How long to wait for responses (seconds).
        """
        self.timeout = timeout

    def _create_socket(self) -> socket.socket:
        raise NotImplementedError

    async def _async_send_requests(self, sock: socket.socket) -> None:
        raise NotImplementedError

    def _parse_response(self, data: bytes, address: str) -> DiscoveredDevice | None:
        raise NotImplementedError

    async def async_discover(self, timeout: float | None = None) -> list[DiscoveredDevice]:
        """Run the probe and return the devices that answered.

        Never raises for transport failures: socket errors are logged and
        whatever was collected before the failure is returned.

        Args:
            timeout: Override the probe timeout (seconds).

        Returns:
            List of discovered devices, one per address.
        """
        timeout = self.timeout if timeout is None else timeout
        devices: dict[str, DiscoveredDevice] = {}
        sock: socket.socket | None = None

        try:
            sock = self._create_socket()
            await self._async_send_requests(sock)

            loop = asyncio.get_running_loop()
            end_time = loop.time() + timeout

            while loop.time() < end_time:
                remaining = end_time - loop.time()
                if remaining <= 0:
                    break

                try:
                    data, addr = await asyncio.wait_for(
                        loop.sock_recvfrom(sock, RECV_BUFFER_SIZE),
                        timeout=min(remaining, RECV_SLICE),
                    )
                except TimeoutError:
                    continue

                address = addr[0]
                if address in devices:
                    continue
                device = self._parse_response(data, address)
                if device is not None:
                    devices[address] = device
                    _LOGGER.debug(
                        "%s probe found %s at %s", self.name, device.model, address
                    )
        except OSError as err:
            _LOGGER.warning("%s discovery failed: %s", self.name, err)
        finally:
            if sock is not None:
                sock.close()

        _LOGGER.debug("%s discovery complete: found %d device(s)", self.name, len(devices))
        return list(devices.values())


class MulticastProbe(DiscoveryProbe):
    """Multicast DNS query for Crestron services.

    Any DNS answer longer than the fixed header counts as a sighting; the
    role is never inferred from this transport.
    """

    name = "multicast"

    @staticmethod
    def build_query() -> bytes:
        """Build a DNS PTR query for the Crestron service type."""
        header = struct.pack("!6H", 0, 0x0100, 1, 0, 0, 0)
        qname = b"".join(
            bytes([len(label)]) + label.encode("ascii") for label in MDNS_SERVICE.split(".")
        )
        return header + qname + b"\x00" + struct.pack("!2H", 12, 1)

    def _create_socket(self) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, 2)
            sock.setblocking(False)
            sock.bind(("", 0))
            mreq = struct.pack("4sl", socket.inet_aton(MDNS_GROUP), socket.INADDR_ANY)
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, mreq)
        except OSError:
            sock.close()
            raise
        return sock

    async def _async_send_requests(self, sock: socket.socket) -> None:
        sock.sendto(self.build_query(), (MDNS_GROUP, MDNS_PORT))
        _LOGGER.debug("Sent mDNS query to %s:%s", MDNS_GROUP, MDNS_PORT)

    def _parse_response(self, data: bytes, address: str) -> DiscoveredDevice | None:
        if len(data) <= DNS_HEADER_LENGTH:
            return None
        return DiscoveredDevice(
            address=address,
            name=f"Crestron Device ({address})",
            model=f"{PRODUCT_PREFIX} (mDNS)",
            device_type=DeviceType.UNKNOWN,
            capabilities=frozenset({"network_discovery"}),
            status=LivenessState.ONLINE,
            last_seen=utcnow(),
            source=self.name,
        )


class SsdpProbe(DiscoveryProbe):
    """SSDP search filtered by vendor name."""

    name = "ssdp"

    @staticmethod
    def build_search() -> bytes:
        """Build the M-SEARCH request."""
        return (
            "M-SEARCH * HTTP/1.1\r\n"
            f"HOST: {SSDP_GROUP}:{SSDP_PORT}\r\n"
            'MAN: "ssdp:discover"\r\n'
            "MX: 3\r\n"
            f"ST: {SSDP_SEARCH_TARGET}\r\n"
            "\r\n"
        ).encode("ascii")

    def _create_socket(self) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, 2)
            sock.setblocking(False)
            sock.bind(("", 0))
        except OSError:
            sock.close()
            raise
        return sock

    async def _async_send_requests(self, sock: socket.socket) -> None:
        sock.sendto(self.build_search(), (SSDP_GROUP, SSDP_PORT))
        _LOGGER.debug("Sent SSDP search to %s:%s", SSDP_GROUP, SSDP_PORT)

    def _parse_response(self, data: bytes, address: str) -> DiscoveredDevice | None:
        text = data.decode("utf-8", errors="replace")
        lowered = text.lower()
        if not any(marker in lowered for marker in SSDP_VENDOR_MARKERS):
            return None

        model = f"{PRODUCT_PREFIX} (SSDP)"
        server = _SERVER_RE.search(text)
        if server and server.group(1).strip():
            model = server.group(1).strip()

        return DiscoveredDevice(
            address=address,
            name=f"Crestron Device ({address})",
            model=model,
            device_type=DeviceType.UNKNOWN,
            capabilities=frozenset({"upnp", "network_discovery"}),
            status=LivenessState.ONLINE,
            last_seen=utcnow(),
            source=self.name,
        )


class CrestronProbe(DiscoveryProbe):
    """Crestron proprietary broadcast discovery.

    Two request shapes are broadcast 100 ms apart because older and newer
    firmware answer different forms. Responses carry the 15 00 00 00
    signature followed by NUL separated hostname, description and id.
    """

    name = "crestron"

    def __init__(
        self,
        timeout: float = DEFAULT_DISCOVERY_TIMEOUT,
        hostname: str | None = None,
    ) -> None:
        """Initialize the probe.

        Args:
            timeout: How long to wait for responses (seconds).
            hostname: Name announced in requests; defaults to this host.
        """
        super().__init__(timeout)
        self.hostname = hostname if hostname is not None else socket.gethostname()

    def _hostname_bytes(self) -> bytes:
        return self.hostname.encode("ascii", errors="ignore")[
            : CRESTRON_FIXED_LENGTH - len(CRESTRON_FIXED_HEADER)
        ]

    def build_variable_message(self) -> bytes:
        """Build the variable-length request."""
        host = self._hostname_bytes()
        length = bytes([(len(host) + 4) & 0xFF, 0x00])
        return CRESTRON_REQUEST_HEADER + length + b"\x00\x03\x00\x00" + host

    def build_fixed_message(self) -> bytes:
        """Build the fixed 266 byte request."""
        message = CRESTRON_FIXED_HEADER + self._hostname_bytes()
        return message.ljust(CRESTRON_FIXED_LENGTH, b"\x00")

    def _create_socket(self) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
            sock.setblocking(False)
            # Fixed port; another controller on this host may already hold it
            sock.bind(("", CRESTRON_PORT))
        except OSError:
            sock.close()
            raise
        return sock

    async def _async_send_requests(self, sock: socket.socket) -> None:
        target = (CRESTRON_BROADCAST, CRESTRON_PORT)
        sock.sendto(self.build_variable_message(), target)
        await asyncio.sleep(CRESTRON_SECOND_MESSAGE_DELAY)
        sock.sendto(self.build_fixed_message(), target)
        _LOGGER.debug("Sent Crestron discovery broadcasts on port %s", CRESTRON_PORT)

    @staticmethod
    def parse_description(description: str) -> tuple[str, str, str]:
        """Extract model, firmware version and build date.

        Args:
            description: e.g. "DM-NVX-384 [v7.3.0173.23090 (Jan 15 2025), #...]".

        Returns:
            Tuple of (model, version, build_date); empty strings when absent.
        """
        model = description.split("[", 1)[0].strip()
        version_match = _VERSION_RE.search(description)
        version = f"v{version_match.group(1)}" if version_match else ""
        date_match = _BUILD_DATE_RE.search(description)
        build_date = date_match.group(1) if date_match else ""
        return model, version, build_date

    def _parse_response(self, data: bytes, address: str) -> DiscoveredDevice | None:
        if not data.startswith(CRESTRON_RESPONSE_SIGNATURE):
            return None

        payload = data[CRESTRON_PAYLOAD_OFFSET:].decode("utf-8", errors="replace")
        parts = [part for part in payload.split("\x00") if part]
        hostname = parts[0] if parts else ""
        description = parts[1] if len(parts) > 1 else ""
        device_id = parts[2].replace("@", "") if len(parts) > 2 else ""

        model, version, build_date = self.parse_description(description)
        if not model.startswith(PRODUCT_PREFIX):
            _LOGGER.debug("Ignoring non %s device at %s: %r", PRODUCT_PREFIX, address, model)
            return None

        return DiscoveredDevice(
            address=address,
            name=hostname or model,
            model=model,
            firmware_version=version or "Unknown",
            device_type=classify_device(model, description),
            capabilities=model_capabilities(model),
            status=LivenessState.ONLINE,
            last_seen=utcnow(),
            hostname=hostname,
            description=description,
            device_id=device_id,
            build_date=build_date,
            source=self.name,
        )


PROBES: dict[Transport, type[DiscoveryProbe]] = {
    Transport.MULTICAST: MulticastProbe,
    Transport.SSDP: SsdpProbe,
    Transport.CRESTRON: CrestronProbe,
}


async def async_discover_devices(
    transports: Iterable[Transport | str] | None = None,
    timeout: float = DEFAULT_DISCOVERY_TIMEOUT,
) -> list[DiscoveredDevice]:
    """Run the selected probes concurrently and collect every candidate.

    A probe that fails or overruns its timeout is dropped; the others still
    contribute. Results are not deduplicated across probes, that is the
    registry's job.

    Args:
        transports: Transports to use; all of them when None.
        timeout: Per-probe listening time (seconds).

    Returns:
        All candidates reported by the probes that completed.
    """
    selected = list(Transport) if transports is None else [Transport(t) for t in transports]
    probes = [PROBES[transport](timeout=timeout) for transport in dict.fromkeys(selected)]

    results = await asyncio.gather(
        *(
            asyncio.wait_for(probe.async_discover(timeout), timeout=timeout + PROBE_GRACE)
            for probe in probes
        ),
        return_exceptions=True,
    )

    candidates: list[DiscoveredDevice] = []
    for probe, result in zip(probes, results, strict=True):
        if isinstance(result, BaseException):
            _LOGGER.warning("%s discovery abandoned: %r", probe.name, result)
            continue
        candidates.extend(result)

    _LOGGER.info(
        "Discovery complete: %d candidate(s) from %d transport(s)",
        len(candidates),
        len(probes),
    )
    return candidates
