"""Discovery, session handling and configuration for Crestron DM-NVX endpoints."""

from __future__ import annotations

from .api import NvxClient, async_check_reachable
from .config import CONFIG_SCHEMA, ManagerConfig
from .coordinator import NvxDeviceCoordinator
from .discovery import Transport, async_discover_devices
from .exceptions import (
    NvxApiError,
    NvxAuthError,
    NvxConnectionError,
    NvxError,
    NvxTimeoutError,
)
from .models import (
    CertificateOptions,
    CertificatePolicy,
    Credentials,
    DeviceType,
    DiscoveredDevice,
    LivenessState,
    NormalizedParameters,
    SessionContext,
    SessionState,
    TransportScheme,
)
from .registry import DeviceRegistry
from .services import NvxManager

__all__ = [
    "CONFIG_SCHEMA",
    "CertificateOptions",
    "CertificatePolicy",
    "Credentials",
    "DeviceRegistry",
    "DeviceType",
    "DiscoveredDevice",
    "LivenessState",
    "ManagerConfig",
    "NormalizedParameters",
    "NvxApiError",
    "NvxAuthError",
    "NvxClient",
    "NvxConnectionError",
    "NvxDeviceCoordinator",
    "NvxError",
    "NvxManager",
    "NvxTimeoutError",
    "SessionContext",
    "SessionState",
    "Transport",
    "TransportScheme",
    "async_check_reachable",
    "async_discover_devices",
]
