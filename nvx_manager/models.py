"""Data models for DM-NVX discovery, sessions and device parameters.

This module defines the records exchanged between the discovery probes,
the device registry, the session negotiator and the presentation layer.

Note: This module intentionally does NOT use `from __future__ import annotations`
because TypedDict requires evaluated type hints at runtime to properly distinguish
required vs optional keys (NotRequired).
"""

import dataclasses
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, NotRequired, TypedDict

from .const import LOGIN_PATH, TRACKID_COOKIE, XSRF_REQUEST_HEADER


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(UTC)


class DeviceType(StrEnum):
    """Role of a DM-NVX endpoint."""

    TRANSMITTER = "transmitter"
    RECEIVER = "receiver"
    UNKNOWN = "unknown"


class LivenessState(StrEnum):
    """Reachability of a registered device."""

    ONLINE = "online"
    OFFLINE = "offline"
    UNKNOWN = "unknown"


class TransportScheme(StrEnum):
    """HTTP scheme used for a device session."""

    SECURE = "https"
    INSECURE = "http"


class SessionState(StrEnum):
    """States of the device login handshake."""

    UNAUTHENTICATED = "unauthenticated"
    TRACK_ID_OBTAINED = "track_id_obtained"
    AUTHENTICATED = "authenticated"
    CLOSED = "closed"
    FAILED = "failed"


class CertificatePolicy(StrEnum):
    """Which server certificates are accepted over HTTPS."""

    VALID_CA_ONLY = "valid_ca_only"
    VALID_CA_AND_SELF_SIGNED = "valid_ca_and_self_signed"
    ANY_CERTIFICATE = "any_certificate"


@dataclass(frozen=True)
class DiscoveredDevice:
    """A candidate DM-NVX endpoint seen on the network.

    Attributes:
        address: Device IP address, unique key within the registry.
        name: Display name.
        model: Model string (e.g., "DM-NVX-384").
        firmware_version: Firmware version string or "Unknown".
        device_type: Transmitter, receiver or unknown.
        capabilities: Capability tags.
        status: Liveness state.
        last_seen: When the device was last observed (UTC).
        mac_address: MAC address, if the transport reported one.
        hostname: Hostname reported by the vendor probe.
        description: Raw description reported by the vendor probe.
        device_id: Device id reported by the vendor probe.
        build_date: Firmware build date reported by the vendor probe.
        source: Name of the probe that produced this record.
    """

    address: str
    name: str
    model: str
    firmware_version: str = "Unknown"
    device_type: DeviceType = DeviceType.UNKNOWN
    capabilities: frozenset[str] = frozenset()
    status: LivenessState = LivenessState.ONLINE
    last_seen: datetime = field(default_factory=utcnow)
    mac_address: str | None = None
    hostname: str = ""
    description: str = ""
    device_id: str = ""
    build_date: str = ""
    source: str = ""

    def with_status(
        self,
        status: LivenessState,
        last_seen: datetime | None = None,
    ) -> "DiscoveredDevice":
        """Return a copy with a new liveness state and optional timestamp."""
        return dataclasses.replace(
            self,
            status=status,
            last_seen=last_seen if last_seen is not None else self.last_seen,
        )

    def as_dict(self) -> dict[str, Any]:
        """Return a JSON friendly representation."""
        return {
            "address": self.address,
            "name": self.name,
            "model": self.model,
            "firmware_version": self.firmware_version,
            "device_type": str(self.device_type),
            "capabilities": sorted(self.capabilities),
            "status": str(self.status),
            "last_seen": self.last_seen.isoformat(),
            "mac_address": self.mac_address,
            "hostname": self.hostname,
            "description": self.description,
            "device_id": self.device_id,
            "build_date": self.build_date,
            "source": self.source,
        }


@dataclass(frozen=True)
class Credentials:
    """Login credentials for a device web server."""

    username: str
    password: str = field(repr=False)


@dataclass(frozen=True)
class CertificateOptions:
    """Connection security policy for HTTPS requests."""

    policy: CertificatePolicy = CertificatePolicy.ANY_CERTIFICATE

    @property
    def strict(self) -> bool:
        """Return True when certificates must chain to a trusted CA."""
        return self.policy is CertificatePolicy.VALID_CA_ONLY

    def ssl_context(self) -> bool:
        """Return the value for aiohttp's ``ssl`` request argument.

        ``True`` keeps default verification, ``False`` disables it so that
        self-signed device certificates are accepted.
        """
        return self.strict


@dataclass
class SessionContext:
    """One authenticated login to one device.

    The scheme is fixed by the first handshake step and never changes for
    the lifetime of the context. Contexts are never persisted and have no
    automatic expiry.
    """

    address: str
    scheme: TransportScheme
    track_id: str = field(default="", repr=False)
    cookies: str = field(default="", repr=False)
    xsrf_token: str | None = field(default=None, repr=False)
    state: SessionState = SessionState.UNAUTHENTICATED
    created_at: datetime = field(default_factory=utcnow)

    @property
    def base_url(self) -> str:
        """Return the scheme and address prefix for requests."""
        return f"{self.scheme.value}://{self.address}"

    @property
    def origin(self) -> str:
        """Return the Origin header value for this session."""
        return self.base_url

    @property
    def referer(self) -> str:
        """Return the Referer header value for this session."""
        return f"{self.base_url}{LOGIN_PATH}"

    @property
    def is_authenticated(self) -> bool:
        """Return True while the context can be used for calls."""
        return self.state is SessionState.AUTHENTICATED

    def login_headers(self) -> dict[str, str]:
        """Headers for the credential POST."""
        return {
            "Content-Type": "application/x-www-form-urlencoded",
            "Origin": self.origin,
            "Referer": self.referer,
            "Cookie": f"{TRACKID_COOKIE}={self.track_id}",
        }

    def auth_headers(self) -> dict[str, str]:
        """Headers attached to every authenticated call."""
        headers = {
            "Accept": "application/json",
            "Referer": self.referer,
            "Cookie": self.cookies,
        }
        if self.xsrf_token:
            headers[XSRF_REQUEST_HEADER] = self.xsrf_token
        return headers


@dataclass
class NormalizedParameters:
    """Merged view of a device's configuration.

    Every field is always defined: values missing from the device fall
    back to the defaults in ``parameters.PARAMETER_RULES``.
    """

    # Identity
    ip_address: str
    hostname: str
    firmware_version: str
    device_name: str
    serial_number: str
    model: str

    # Network adapters
    network_hostname: str
    icmp_ping_enabled: bool
    tcp_keep_alive_enabled: bool
    igmp_version: str
    address_schema: str
    primary_adapter_name: str
    primary_mac_address: str
    primary_is_enabled: bool
    primary_link_status: bool
    primary_is_active: bool
    primary_auto_negotiation: str
    primary_domain_name: str
    primary_ipv4_address: str
    primary_ipv4_subnet_mask: str
    primary_ipv4_gateway: str
    primary_dhcp_enabled: bool
    primary_dns_server: str
    secondary_dns_server: str
    aux_adapter_name: str
    aux_mac_address: str
    aux_is_enabled: bool
    aux_link_status: bool
    aux_ipv4_address: str
    ipv6_supported: bool
    ipv6_ping_enabled: bool
    ipv6_multicast_proxy: bool
    network_adapters_version: str

    # Streaming
    mode: str
    start_stop: bool
    status: str
    stream_type: str
    bitrate: int
    target_bitrate: int
    preview: bool

    # Video
    video_mode: str
    video_source: str
    xio_route: str
    scaler_resolution: str

    # Audio
    audio_mode: str
    audio_source: str
    analog_audio: str

    # HDMI
    sync_hotplug: bool
    hdmi1_edid: str
    hdmi1_hdcp: bool
    hdmi2_edid: str
    hdmi2_hdcp: bool

    # Multicast
    igmp: bool
    ttl: int
    stream_location: str
    multicast_ip: str
    multicast_mac: str

    # NAX audio
    nax_tx_ip: str
    nax_tx_mac: str
    nax_rx_ip: str
    nax_tx_start_stop: bool
    nax_tx_status: str
    nax_tx_mode: str
    nax_rx_start_stop: bool
    nax_rx_status: str
    nax_rx_mode: str

    # USB
    usb_mode: str
    usb_transport: str
    usb_paired_devices: list[str]
    usb_actions: list[str]

    # Chassis
    chassis_slot: int
    chassis_tsid: str
    chassis_serial: str

    # Device specific
    leds_enabled: bool

    # EDID management
    edid_system_list: list[str]
    edid_custom_list: list[str]
    edid_copy_list: list[str]
    edid_version: str
    edid_upload_path: str

    # Discovered streams
    discovered_streams_list: list[str]
    streams_data: dict[str, Any]
    stream_count: int

    # Identify
    identify_supported: bool
    identify_methods: list[str]

    # Audio/video input and output
    audio_inputs: dict[str, Any]
    video_inputs: dict[str, Any]
    audio_outputs: dict[str, Any]
    video_outputs: dict[str, Any]

    # Metadata
    last_updated: datetime = field(default_factory=utcnow)
    is_synthetic: bool = False

    def replace_field(self, name: str, value: Any) -> "NormalizedParameters":
        """Return a copy with one field replaced.

        Raises:
            KeyError: If the field does not exist.
        """
        if name not in {f.name for f in dataclasses.fields(self)}:
            raise KeyError(name)
        return dataclasses.replace(self, **{name: value})

    def as_dict(self) -> dict[str, Any]:
        """Return a JSON friendly representation."""
        data = dataclasses.asdict(self)
        data["last_updated"] = self.last_updated.isoformat()
        return data


class ConnectResult(TypedDict):
    """Outcome of a connect call."""

    success: bool
    error: NotRequired[str]


class ImportResult(TypedDict):
    """Outcome of a parameter import.

    ``is_synthetic`` is True only when no live data could be obtained and
    the parameters were generated locally.
    """

    success: bool
    parameters: NotRequired[NormalizedParameters]
    is_synthetic: NotRequired[bool]
    error: NotRequired[str]


class UpdateResult(TypedDict):
    """Outcome of a single parameter write."""

    success: bool
    error: NotRequired[str]


class NetworkAdaptersResult(TypedDict):
    """Outcome of a network adapter read or write."""

    success: bool
    network_adapters: NotRequired[dict[str, Any]]
    message: NotRequired[str]
    error: NotRequired[str]


class IdentifyResult(TypedDict):
    """Outcome of an identify action."""

    success: bool
    effective_duration: NotRequired[int]
    error: NotRequired[str]


class EdidData(TypedDict):
    """EDID lists available on a device."""

    system_edid_list: list[str]
    custom_edid_list: list[str]
    copy_edid_list: list[str]
    version: str
    upload_path: str


class EdidResult(TypedDict):
    """Outcome of an EDID management read."""

    success: bool
    edid_data: NotRequired[EdidData]
    error: NotRequired[str]


class StreamsData(TypedDict):
    """Streams a receiver has discovered on the network."""

    discovered_streams_list: list[str]
    streams_data: dict[str, Any]
    stream_count: int


class StreamsResult(TypedDict):
    """Outcome of a discovered streams read."""

    success: bool
    streams: NotRequired[StreamsData]
    error: NotRequired[str]


class ConnectionStatus(TypedDict):
    """Connection bookkeeping for one device address."""

    is_connected: bool
    last_connected: NotRequired[datetime]
    error: NotRequired[str]
