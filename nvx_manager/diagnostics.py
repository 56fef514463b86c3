"""Diagnostics snapshot for the NVX manager."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .services import NvxManager

REDACTED = "**REDACTED**"

# Keys to redact from diagnostics output for security/privacy
TO_REDACT: set[str] = {
    "password",
    "cookies",
    "track_id",
    "xsrf_token",
    "serial_number",
    "chassis_serial",
    "mac_address",
    "primary_mac_address",
    "aux_mac_address",
}


def redact_data(data: Any, to_redact: Iterable[str]) -> Any:
    """Return a copy of ``data`` with the listed keys redacted at any depth.

    Args:
        data: A mapping, list or scalar.
        to_redact: Keys whose values are replaced.

    Returns:
        The redacted copy.
    """
    keys = set(to_redact)
    if isinstance(data, Mapping):
        return {
            key: REDACTED if key in keys and value is not None else redact_data(value, keys)
            for key, value in data.items()
        }
    if isinstance(data, list):
        return [redact_data(item, keys) for item in data]
    return data


async def async_get_diagnostics(manager: NvxManager) -> dict[str, Any]:
    """Return diagnostics for a manager.

    Contains the configuration, the registry contents and, for each
    connected device, its session state and last imported parameters.
    Credentials, cookies, tokens, serial numbers and MAC addresses are
    redacted so the output can be shared in bug reports.

    Args:
        manager: The manager to inspect.

    Returns:
        Dictionary of redacted diagnostics data.
    """
    connections: dict[str, Any] = {}
    for address in manager.connected_devices:
        connection = manager.get_connection(address)
        if connection is None:
            continue
        session = connection.session
        connections[address] = {
            "username": connection.credentials.username,
            "password": connection.credentials.password,
            "cert_policy": str(connection.cert_options.policy),
            "has_session": connection.has_session,
            "session": None
            if session is None
            else {
                "scheme": str(session.scheme),
                "state": str(session.state),
                "created_at": session.created_at.isoformat(),
                "track_id": session.track_id,
                "cookies": session.cookies,
                "xsrf_token": session.xsrf_token,
            },
            "status": {
                key: value.isoformat() if hasattr(value, "isoformat") else value
                for key, value in manager.get_connection_status(address).items()
            },
            "parameters": None
            if connection.parameters is None
            else connection.parameters.as_dict(),
        }

    return redact_data(
        {
            "config": manager.config.as_dict(),
            "devices": [device.as_dict() for device in manager.registry.devices],
            "connections": connections,
        },
        TO_REDACT,
    )
