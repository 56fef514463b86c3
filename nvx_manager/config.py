"""Configuration for the NVX manager."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import voluptuous as vol

from .const import (
    CONF_CERT_POLICY,
    CONF_DISCOVERY_TIMEOUT,
    CONF_REFRESH_INTERVAL,
    CONF_REQUEST_TIMEOUT,
    CONF_TRANSPORTS,
    DEFAULT_DISCOVERY_TIMEOUT,
    DEFAULT_REFRESH_INTERVAL,
    DEFAULT_TIMEOUT,
    MAX_DISCOVERY_TIMEOUT,
    MAX_REFRESH_INTERVAL,
    MAX_REQUEST_TIMEOUT,
    MIN_DISCOVERY_TIMEOUT,
    MIN_REFRESH_INTERVAL,
    MIN_REQUEST_TIMEOUT,
)
from .discovery import Transport
from .models import CertificateOptions, CertificatePolicy

if TYPE_CHECKING:
    from collections.abc import Mapping
    from typing import Any

CONFIG_SCHEMA = vol.Schema(
    {
        vol.Optional(CONF_DISCOVERY_TIMEOUT, default=DEFAULT_DISCOVERY_TIMEOUT): vol.All(
            vol.Coerce(float),
            vol.Range(min=MIN_DISCOVERY_TIMEOUT, max=MAX_DISCOVERY_TIMEOUT),
        ),
        vol.Optional(CONF_REFRESH_INTERVAL, default=DEFAULT_REFRESH_INTERVAL): vol.All(
            vol.Coerce(int),
            vol.Range(min=MIN_REFRESH_INTERVAL, max=MAX_REFRESH_INTERVAL),
        ),
        vol.Optional(CONF_REQUEST_TIMEOUT, default=DEFAULT_TIMEOUT): vol.All(
            vol.Coerce(int),
            vol.Range(min=MIN_REQUEST_TIMEOUT, max=MAX_REQUEST_TIMEOUT),
        ),
        vol.Optional(CONF_TRANSPORTS, default=[t.value for t in Transport]): vol.All(
            [vol.In([t.value for t in Transport])],
            vol.Length(min=1),
        ),
        vol.Optional(CONF_CERT_POLICY, default=CertificatePolicy.ANY_CERTIFICATE.value): vol.In(
            [p.value for p in CertificatePolicy]
        ),
    }
)


@dataclass(frozen=True)
class ManagerConfig:
    """Validated settings for an NvxManager."""

    discovery_timeout: float = DEFAULT_DISCOVERY_TIMEOUT
    refresh_interval: int = DEFAULT_REFRESH_INTERVAL
    request_timeout: int = DEFAULT_TIMEOUT
    transports: tuple[Transport, ...] = field(default_factory=lambda: tuple(Transport))
    cert_policy: CertificatePolicy = CertificatePolicy.ANY_CERTIFICATE

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None = None) -> ManagerConfig:
        """Validate raw settings and build a config.

        Args:
            data: Settings keyed by the CONF_* names. Missing keys use defaults.

        Returns:
            The validated configuration.

        Raises:
            vol.Invalid: If any setting is out of range or unknown.
        """
        validated = CONFIG_SCHEMA(dict(data or {}))
        return cls(
            discovery_timeout=validated[CONF_DISCOVERY_TIMEOUT],
            refresh_interval=validated[CONF_REFRESH_INTERVAL],
            request_timeout=validated[CONF_REQUEST_TIMEOUT],
            transports=tuple(Transport(t) for t in dict.fromkeys(validated[CONF_TRANSPORTS])),
            cert_policy=CertificatePolicy(validated[CONF_CERT_POLICY]),
        )

    @property
    def cert_options(self) -> CertificateOptions:
        """Return the default certificate options for new connections."""
        return CertificateOptions(self.cert_policy)

    def as_dict(self) -> dict[str, Any]:
        """Return the settings keyed by CONF_* names."""
        return {
            CONF_DISCOVERY_TIMEOUT: self.discovery_timeout,
            CONF_REFRESH_INTERVAL: self.refresh_interval,
            CONF_REQUEST_TIMEOUT: self.request_timeout,
            CONF_TRANSPORTS: [str(t) for t in self.transports],
            CONF_CERT_POLICY: str(self.cert_policy),
        }
