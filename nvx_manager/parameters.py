"""Resolution of DM-NVX sub-resources into NormalizedParameters.

Firmware versions disagree on where a value lives: the same logical field
can be wrapped as ``Device.<Resource>``, as ``<Resource>`` or returned bare,
and may use one of several key names. The table in this module lists, per
field, the ordered paths to try; the first present, well-typed value wins,
otherwise the field's default is used.
"""

from __future__ import annotations

import copy
import dataclasses
import hashlib
import math
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from .const import DEVICE_PATH
from .exceptions import NvxApiError
from .models import NormalizedParameters, utcnow

RESOURCE_ROOT = "Device"

# Fetch order for a full import.
RESOURCES: tuple[str, ...] = (
    "DeviceInfo",
    "NetworkAdapters",
    "DeviceSpecific",
    "StreamingVideo",
    "StreamingAudio",
    "USB",
    "Network",
    "EdidMgmnt",
    "DiscoveredStreams",
    "Identify",
    "AudioVideoInputOutput",
    RESOURCE_ROOT,
)

KIND_STR = "str"
KIND_INT = "int"
KIND_BOOL = "bool"
KIND_LIST = "list"
KIND_DICT = "dict"
KIND_KEYS = "keys"
KIND_COUNT = "count"
KIND_PRESENT = "present"

WRITABLE_KINDS = frozenset({KIND_STR, KIND_INT, KIND_BOOL, KIND_LIST})

PathSegment = str | int
Path = tuple[PathSegment, ...]


def resource_path(name: str) -> str:
    """Return the URL path of a sub-resource."""
    if name == RESOURCE_ROOT:
        return DEVICE_PATH
    return f"{DEVICE_PATH}/{name}"


def unwrap_resource(name: str, payload: Any) -> dict[str, Any] | None:
    """Strip the wrapper from a sub-resource response.

    Checks ``Device.<name>``, then ``<name>``, then the bare payload. The
    root resource checks ``Device`` and then the bare payload.

    Args:
        name: Resource name (e.g., "DeviceInfo").
        payload: Decoded JSON body.

    Returns:
        The resource object, or None if the payload is not an object.
    """
    if not isinstance(payload, dict):
        return None

    device = payload.get(RESOURCE_ROOT)
    if name == RESOURCE_ROOT:
        candidates = [device]
    else:
        nested = device.get(name) if isinstance(device, dict) else None
        candidates = [nested, payload.get(name)]

    for candidate in candidates:
        if isinstance(candidate, dict):
            return candidate
    return payload


@dataclass(frozen=True)
class FieldRule:
    """How one NormalizedParameters field is resolved.

    Attributes:
        paths: Ordered lookup paths. The first segment names the resource,
            the rest are dict keys or list indexes inside it.
        default: Fallback value, or a callable taking the device address.
        kind: Expected value type.
        writable: Whether the field can be written back to its first path.
    """

    paths: tuple[Path, ...]
    default: Any
    kind: str = KIND_STR
    writable: bool = True

    def default_for(self, address: str) -> Any:
        """Return a fresh copy of the default value."""
        if callable(self.default):
            return self.default(address)
        return copy.deepcopy(self.default)


def _rule(
    *paths: Path,
    default: Any,
    kind: str = KIND_STR,
    writable: bool = True,
) -> FieldRule:
    return FieldRule(paths=paths, default=default, kind=kind, writable=writable)


def _device_name_default(address: str) -> str:
    return f"DM-NVX Device ({address})"


_PRIMARY = ("NetworkAdapters", "Adapters", "EthernetPrimary")
_PRIMARY_FLAT = ("NetworkAdapters", "EthernetPrimary")
_AUX = ("NetworkAdapters", "Adapters", "EthernetAux")
_AUX_FLAT = ("NetworkAdapters", "EthernetAux")
_DNS = ("NetworkAdapters", "DnsSettings")
_NAX_TX = ("Network", "NAX", "Transmitter")
_NAX_RX = ("Network", "NAX", "Receiver")

PARAMETER_RULES: dict[str, FieldRule] = {
    # Identity
    "hostname": _rule(
        ("DeviceInfo", "HostName"), ("DeviceInfo", "Name"), default="Unknown", writable=False
    ),
    "firmware_version": _rule(
        ("DeviceInfo", "FirmwareVersion"),
        ("DeviceInfo", "Version"),
        ("Device", "FirmwareVersion"),
        default="Unknown",
        writable=False,
    ),
    "device_name": _rule(
        ("DeviceInfo", "FriendlyName"),
        ("DeviceInfo", "DeviceName"),
        ("DeviceInfo", "Name"),
        default=_device_name_default,
    ),
    "serial_number": _rule(
        ("DeviceInfo", "SerialNumber"),
        ("DeviceInfo", "Serial"),
        ("Device", "SerialNumber"),
        default="Unknown",
        writable=False,
    ),
    "model": _rule(
        ("DeviceInfo", "Model"), ("DeviceInfo", "DeviceModel"), default="DM-NVX", writable=False
    ),
    # Network adapters
    "network_hostname": _rule(("NetworkAdapters", "HostName"), default="Unknown"),
    "icmp_ping_enabled": _rule(
        ("NetworkAdapters", "IsIcmpPingEnabled"), default=False, kind=KIND_BOOL
    ),
    "tcp_keep_alive_enabled": _rule(
        ("NetworkAdapters", "IsTcpKeepAliveEnabled"), default=False, kind=KIND_BOOL
    ),
    "igmp_version": _rule(("NetworkAdapters", "IgmpVersion"), default="v2"),
    "address_schema": _rule(("NetworkAdapters", "AddressSchema"), default="IPv4"),
    "primary_adapter_name": _rule(
        (*_PRIMARY, "Name"), (*_PRIMARY_FLAT, "Name"), default="eth0", writable=False
    ),
    "primary_mac_address": _rule(
        (*_PRIMARY, "MacAddress"), (*_PRIMARY_FLAT, "MacAddress"), default="Unknown", writable=False
    ),
    "primary_is_enabled": _rule(
        (*_PRIMARY, "IsAdapterEnabled"),
        (*_PRIMARY_FLAT, "IsAdapterEnabled"),
        default=False,
        kind=KIND_BOOL,
    ),
    "primary_link_status": _rule(
        (*_PRIMARY, "LinkStatus"),
        (*_PRIMARY_FLAT, "LinkStatus"),
        default=False,
        kind=KIND_BOOL,
        writable=False,
    ),
    "primary_is_active": _rule(
        (*_PRIMARY, "IsActive"),
        (*_PRIMARY_FLAT, "IsActive"),
        default=False,
        kind=KIND_BOOL,
        writable=False,
    ),
    "primary_auto_negotiation": _rule(
        (*_PRIMARY, "AutoNegotiation"), (*_PRIMARY_FLAT, "AutoNegotiation"), default="On"
    ),
    "primary_domain_name": _rule(
        (*_PRIMARY, "DomainName"), (*_PRIMARY_FLAT, "DomainName"), default=""
    ),
    "primary_ipv4_address": _rule(
        (*_PRIMARY, "IPv4", "Addresses", 0, "Address"),
        (*_PRIMARY, "IPv4", "CurrentAddress"),
        (*_PRIMARY_FLAT, "IPv4", "Addresses", 0, "Address"),
        (*_PRIMARY_FLAT, "IPv4", "CurrentAddress"),
        default="Unknown",
        writable=False,
    ),
    "primary_ipv4_subnet_mask": _rule(
        (*_PRIMARY, "IPv4", "Addresses", 0, "SubnetMask"),
        (*_PRIMARY, "IPv4", "CurrentSubnetMask"),
        (*_PRIMARY_FLAT, "IPv4", "Addresses", 0, "SubnetMask"),
        (*_PRIMARY_FLAT, "IPv4", "CurrentSubnetMask"),
        default="Unknown",
        writable=False,
    ),
    "primary_ipv4_gateway": _rule(
        (*_PRIMARY, "IPv4", "DefaultGateway"),
        (*_PRIMARY_FLAT, "IPv4", "DefaultGateway"),
        default="Unknown",
    ),
    "primary_dhcp_enabled": _rule(
        (*_PRIMARY, "IPv4", "IsDhcpEnabled"),
        (*_PRIMARY_FLAT, "IPv4", "IsDhcpEnabled"),
        default=False,
        kind=KIND_BOOL,
    ),
    "primary_dns_server": _rule(
        (*_DNS, "IPv4", "DnsServers", 0),
        (*_DNS, "DnsServers", "Server01", "Address"),
        default="Unknown",
        writable=False,
    ),
    "secondary_dns_server": _rule(
        (*_DNS, "IPv4", "DnsServers", 1),
        (*_DNS, "DnsServers", "Server02", "Address"),
        default="Unknown",
        writable=False,
    ),
    "aux_adapter_name": _rule(
        (*_AUX, "Name"), (*_AUX_FLAT, "Name"), default="eth1", writable=False
    ),
    "aux_mac_address": _rule(
        (*_AUX, "MacAddress"), (*_AUX_FLAT, "MacAddress"), default="Unknown", writable=False
    ),
    "aux_is_enabled": _rule(
        (*_AUX, "IsAdapterEnabled"), (*_AUX_FLAT, "IsAdapterEnabled"), default=False, kind=KIND_BOOL
    ),
    "aux_link_status": _rule(
        (*_AUX, "LinkStatus"),
        (*_AUX_FLAT, "LinkStatus"),
        default=False,
        kind=KIND_BOOL,
        writable=False,
    ),
    "aux_ipv4_address": _rule(
        (*_AUX, "IPv4", "Addresses", 0, "Address"),
        (*_AUX_FLAT, "IPv4", "Addresses", 0, "Address"),
        default="Not Configured",
        writable=False,
    ),
    "ipv6_supported": _rule(
        ("NetworkAdapters", "IPv6", "IsSupported"), default=False, kind=KIND_BOOL, writable=False
    ),
    "ipv6_ping_enabled": _rule(
        ("NetworkAdapters", "IPv6", "IsIcmpPingEnabled"), default=False, kind=KIND_BOOL
    ),
    "ipv6_multicast_proxy": _rule(
        ("NetworkAdapters", "IPv6", "IsMulticastProxyEnabled"), default=False, kind=KIND_BOOL
    ),
    "network_adapters_version": _rule(
        ("NetworkAdapters", "Version"), default="1.0.0", writable=False
    ),
    # Streaming
    "mode": _rule(
        ("StreamingVideo", "Mode"),
        ("StreamingAudio", "Mode"),
        ("Device", "Mode"),
        default="Unknown",
    ),
    "start_stop": _rule(
        ("StreamingVideo", "Enabled"),
        ("StreamingVideo", "IsRunning"),
        ("StreamingAudio", "Enabled"),
        default=False,
        kind=KIND_BOOL,
    ),
    "status": _rule(
        ("StreamingVideo", "Status"),
        ("StreamingAudio", "Status"),
        ("Device", "Status"),
        default="Unknown",
        writable=False,
    ),
    "stream_type": _rule(
        ("StreamingVideo", "Codec"), ("StreamingVideo", "CompressionType"), default="H.264"
    ),
    "bitrate": _rule(
        ("StreamingVideo", "Bitrate"),
        ("StreamingVideo", "CurrentBitrate"),
        default=0,
        kind=KIND_INT,
        writable=False,
    ),
    "target_bitrate": _rule(
        ("StreamingVideo", "TargetBitrate"),
        ("StreamingVideo", "MaxBitrate"),
        default=100,
        kind=KIND_INT,
    ),
    "preview": _rule(
        ("StreamingVideo", "PreviewEnabled"),
        ("StreamingVideo", "IsPreviewEnabled"),
        default=False,
        kind=KIND_BOOL,
    ),
    # Video
    "video_mode": _rule(
        ("StreamingVideo", "Resolution"), ("StreamingVideo", "VideoFormat"), default="1920x1080@60"
    ),
    "video_source": _rule(
        ("StreamingVideo", "Source"), ("StreamingVideo", "InputSource"), default="HDMI 1"
    ),
    "xio_route": _rule(
        ("StreamingVideo", "XioRoute"), ("StreamingVideo", "RoutingMode"), default="Local"
    ),
    "scaler_resolution": _rule(
        ("StreamingVideo", "ScalerResolution"),
        ("StreamingVideo", "OutputResolution"),
        default="1920x1080",
    ),
    # Audio
    "audio_mode": _rule(
        ("StreamingAudio", "Mode"), ("StreamingAudio", "AudioFormat"), default="PCM"
    ),
    "audio_source": _rule(
        ("StreamingAudio", "Source"), ("StreamingAudio", "InputSource"), default="HDMI"
    ),
    "analog_audio": _rule(
        ("StreamingAudio", "AnalogMode"), ("StreamingAudio", "AnalogLevel"), default="Line Level"
    ),
    # HDMI
    "sync_hotplug": _rule(
        ("StreamingVideo", "SyncHotplug"),
        ("StreamingVideo", "HotplugDetection"),
        default=False,
        kind=KIND_BOOL,
    ),
    "hdmi1_edid": _rule(
        ("StreamingVideo", "HDMI1_EDID"),
        ("StreamingVideo", "HDMI", "Port1", "EDID"),
        default="Standard",
    ),
    "hdmi1_hdcp": _rule(
        ("StreamingVideo", "HDMI1_HDCP"),
        ("StreamingVideo", "HDMI", "Port1", "HDCP"),
        default=False,
        kind=KIND_BOOL,
    ),
    "hdmi2_edid": _rule(
        ("StreamingVideo", "HDMI2_EDID"),
        ("StreamingVideo", "HDMI", "Port2", "EDID"),
        default="Standard",
    ),
    "hdmi2_hdcp": _rule(
        ("StreamingVideo", "HDMI2_HDCP"),
        ("StreamingVideo", "HDMI", "Port2", "HDCP"),
        default=False,
        kind=KIND_BOOL,
    ),
    # Multicast
    "igmp": _rule(("Network", "IGMP"), default=False, kind=KIND_BOOL),
    "ttl": _rule(("Network", "TTL"), ("Network", "TimeToLive"), default=15, kind=KIND_INT),
    "stream_location": _rule(
        ("Network", "StreamLocation"), ("Network", "MulticastLocation"), default="Local Network"
    ),
    "multicast_ip": _rule(
        ("Network", "MulticastIP"), ("StreamingVideo", "MulticastAddress"), default="239.1.1.1"
    ),
    "multicast_mac": _rule(
        ("Network", "MulticastMAC"),
        ("StreamingVideo", "MulticastMAC"),
        default="01:00:5E:01:01:01",
        writable=False,
    ),
    # NAX audio
    "nax_tx_ip": _rule(
        ("Network", "NAX_TX_IP"), (*_NAX_TX, "IP"), default="239.255.255.1"
    ),
    "nax_tx_mac": _rule(
        ("Network", "NAX_TX_MAC"), (*_NAX_TX, "MAC"), default="01:00:5E:FF:FF:01", writable=False
    ),
    "nax_rx_ip": _rule(
        ("Network", "NAX_RX_IP"), (*_NAX_RX, "IP"), default="239.255.255.2"
    ),
    "nax_tx_start_stop": _rule(
        (*_NAX_TX, "Enabled"), ("Network", "NAXTxEnabled"), default=False, kind=KIND_BOOL
    ),
    "nax_tx_status": _rule(
        (*_NAX_TX, "Status"), ("Network", "NAXTxStatus"), default="Stopped", writable=False
    ),
    "nax_tx_mode": _rule((*_NAX_TX, "Mode"), ("Network", "NAXTxMode"), default="Auto"),
    "nax_rx_start_stop": _rule(
        (*_NAX_RX, "Enabled"), ("Network", "NAXRxEnabled"), default=False, kind=KIND_BOOL
    ),
    "nax_rx_status": _rule(
        (*_NAX_RX, "Status"), ("Network", "NAXRxStatus"), default="Stopped", writable=False
    ),
    "nax_rx_mode": _rule((*_NAX_RX, "Mode"), ("Network", "NAXRxMode"), default="Auto"),
    # USB
    "usb_mode": _rule(("USB", "Mode"), ("USB", "OperatingMode"), default="Device"),
    "usb_transport": _rule(("USB", "Transport"), ("USB", "TransportType"), default="USB 2.0"),
    "usb_paired_devices": _rule(
        ("USB", "PairedDevices"), ("USB", "ConnectedDevices"), default=[], kind=KIND_LIST
    ),
    "usb_actions": _rule(
        ("USB", "AvailableActions"),
        ("USB", "SupportedCommands"),
        default=["Pair", "Unpair", "Reset"],
        kind=KIND_LIST,
        writable=False,
    ),
    # Chassis
    "chassis_slot": _rule(
        ("DeviceInfo", "ChassisSlot"),
        ("DeviceInfo", "SlotNumber"),
        ("Device", "ChassisSlot"),
        default=1,
        kind=KIND_INT,
        writable=False,
    ),
    "chassis_tsid": _rule(
        ("DeviceInfo", "TSID"),
        ("DeviceInfo", "ChassisID"),
        ("Device", "TSID"),
        default="CHAS001",
        writable=False,
    ),
    "chassis_serial": _rule(
        ("DeviceInfo", "ChassisSerial"),
        ("DeviceInfo", "ChassisSerialNumber"),
        ("Device", "ChassisSerial"),
        default="Unknown",
        writable=False,
    ),
    # Device specific
    "leds_enabled": _rule(
        ("DeviceSpecific", "LedsEnabled"),
        ("DeviceSpecific", "LEDsEnabled"),
        default=False,
        kind=KIND_BOOL,
    ),
    # EDID management
    "edid_system_list": _rule(
        ("EdidMgmnt", "SystemEdidList"), default=[], kind=KIND_KEYS, writable=False
    ),
    "edid_custom_list": _rule(
        ("EdidMgmnt", "CustomEdidList"), default=[], kind=KIND_KEYS, writable=False
    ),
    "edid_copy_list": _rule(
        ("EdidMgmnt", "CopyEdidList"), default=[], kind=KIND_KEYS, writable=False
    ),
    "edid_version": _rule(("EdidMgmnt", "Version"), default="Unknown", writable=False),
    "edid_upload_path": _rule(("EdidMgmnt", "UploadFilePath"), default="", writable=False),
    # Discovered streams
    "discovered_streams_list": _rule(
        ("DiscoveredStreams", "Streams"), default=[], kind=KIND_KEYS, writable=False
    ),
    "streams_data": _rule(
        ("DiscoveredStreams", "Streams"), default={}, kind=KIND_DICT, writable=False
    ),
    "stream_count": _rule(
        ("DiscoveredStreams", "Streams"), default=0, kind=KIND_COUNT, writable=False
    ),
    # Identify
    "identify_supported": _rule(
        ("Identify",), default=False, kind=KIND_PRESENT, writable=False
    ),
    "identify_methods": _rule(("Identify",), default=[], kind=KIND_KEYS, writable=False),
    # Audio/video input and output
    "audio_inputs": _rule(
        ("AudioVideoInputOutput", "AudioInputs"), default={}, kind=KIND_DICT, writable=False
    ),
    "video_inputs": _rule(
        ("AudioVideoInputOutput", "VideoInputs"), default={}, kind=KIND_DICT, writable=False
    ),
    "audio_outputs": _rule(
        ("AudioVideoInputOutput", "AudioOutputs"), default={}, kind=KIND_DICT, writable=False
    ),
    "video_outputs": _rule(
        ("AudioVideoInputOutput", "VideoOutputs"), default={}, kind=KIND_DICT, writable=False
    ),
}

_MISSING = object()


def _lookup(data: Any, keys: tuple[PathSegment, ...]) -> Any:
    """Walk a path through nested dicts and lists."""
    current = data
    for key in keys:
        if isinstance(key, int):
            if not isinstance(current, list) or not -len(current) <= key < len(current):
                return _MISSING
            current = current[key]
        else:
            if not isinstance(current, dict) or key not in current:
                return _MISSING
            current = current[key]
    return current


def _coerce(value: Any, kind: str) -> Any:
    """Convert a raw value to the expected kind, or return _MISSING."""
    if value is None or value is _MISSING:
        return _MISSING
    # NaN and Infinity are valid JSON to the decoder but not device values
    if isinstance(value, float) and not math.isfinite(value):
        return _MISSING

    if kind == KIND_STR:
        if isinstance(value, str):
            return value if value else _MISSING
        if isinstance(value, int | float) and not isinstance(value, bool):
            return str(value)
        return _MISSING

    if kind == KIND_INT:
        if isinstance(value, bool):
            return _MISSING
        if isinstance(value, int):
            return value
        if isinstance(value, float):
            return int(value)
        if isinstance(value, str):
            try:
                return int(value.strip())
            except ValueError:
                return _MISSING
        return _MISSING

    if kind == KIND_BOOL:
        if isinstance(value, bool):
            return value
        if isinstance(value, int | float):
            return bool(value)
        return _MISSING

    if kind == KIND_LIST:
        return list(value) if isinstance(value, list) else _MISSING
    if kind == KIND_DICT:
        return dict(value) if isinstance(value, dict) else _MISSING
    if kind == KIND_KEYS:
        return list(value) if isinstance(value, dict) else _MISSING
    if kind == KIND_COUNT:
        return len(value) if isinstance(value, dict | list) else _MISSING

    raise ValueError(f"Unknown field kind: {kind}")


def resolve_field(
    rule: FieldRule,
    resources: Mapping[str, dict[str, Any]],
    address: str = "",
) -> Any:
    """Resolve one field from fetched resources.

    Args:
        rule: The field's resolution rule.
        resources: Unwrapped resources keyed by resource name. Missing keys
            mean the resource was not fetched.
        address: Device address, used by computed defaults.

    Returns:
        The first present, well-typed value, otherwise the default.
    """
    for resource, *keys in rule.paths:
        data = resources.get(str(resource))
        if data is None:
            continue
        if rule.kind == KIND_PRESENT:
            return True
        value = _coerce(_lookup(data, tuple(keys)), rule.kind)
        if value is not _MISSING:
            return copy.deepcopy(value)
    return rule.default_for(address)


def normalize_parameters(
    address: str,
    resources: Mapping[str, dict[str, Any]],
) -> NormalizedParameters:
    """Build the full parameter set from whatever resources were fetched."""
    values = {
        name: resolve_field(rule, resources, address) for name, rule in PARAMETER_RULES.items()
    }
    return NormalizedParameters(ip_address=address, last_updated=utcnow(), **values)


def _host_part(address: str) -> str:
    if address.count(":") == 1:
        return address.split(":", 1)[0]
    return address


def synthetic_parameters(address: str) -> NormalizedParameters:
    """Generate a deterministic placeholder parameter set.

    Used when no live data can be obtained at all. The result is flagged
    ``is_synthetic`` so it is never mistaken for device telemetry.
    """
    host = _host_part(address)
    digest = hashlib.sha256(host.encode()).hexdigest().upper()
    base = normalize_parameters(address, {})
    return dataclasses.replace(
        base,
        hostname=f"nvx-device-{host.rsplit('.', 1)[-1]}",
        firmware_version="v7.3.0173.23090",
        device_name=f"DM-NVX-384 ({address})",
        serial_number=f"NVX{digest[:8]}",
        model="DM-NVX-384",
        mode="Transmitter",
        status="Stopped",
        sync_hotplug=True,
        igmp=True,
        usb_paired_devices=["Touch Panel", "Keyboard"],
        chassis_serial=f"CH{digest[8:16]}",
        leds_enabled=True,
        is_synthetic=True,
    )


def write_target(name: str) -> tuple[str, tuple[str, ...]]:
    """Return the resource and key path a single-field write goes to.

    Raises:
        NvxApiError: If the field is unknown or read-only.
    """
    rule = PARAMETER_RULES.get(name)
    if rule is None:
        raise NvxApiError(f"Unknown parameter: {name}")
    if not rule.writable or rule.kind not in WRITABLE_KINDS:
        raise NvxApiError(f"Parameter {name} is read-only")

    resource, *keys = rule.paths[0]
    return str(resource), tuple(str(key) for key in keys)


def coerce_write_value(name: str, value: Any) -> Any:
    """Check a value written to a field and convert it to the field's kind.

    Raises:
        NvxApiError: If the field is not writable or the value has the wrong type.
    """
    write_target(name)
    rule = PARAMETER_RULES[name]
    if rule.kind == KIND_STR and value == "":
        return value
    coerced = _coerce(value, rule.kind)
    if coerced is _MISSING:
        raise NvxApiError(f"Invalid value for {name}: {value!r}")
    return coerced


def build_write_payload(
    resource: str,
    keys: tuple[str, ...],
    value: Any,
) -> dict[str, Any]:
    """Wrap a value at ``Device.<resource>.<keys...>``."""
    nested: Any = value
    for key in reversed(keys):
        nested = {key: nested}
    if resource == RESOURCE_ROOT:
        return {RESOURCE_ROOT: nested}
    return {RESOURCE_ROOT: {resource: nested}}

