"""Tests for NVX manager diagnostics."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from nvx_manager.coordinator import NvxDeviceCoordinator
from nvx_manager.diagnostics import REDACTED, TO_REDACT, async_get_diagnostics, redact_data
from nvx_manager.models import (
    CertificateOptions,
    Credentials,
    DiscoveredDevice,
    SessionContext,
    SessionState,
    TransportScheme,
)
from nvx_manager.parameters import normalize_parameters
from nvx_manager.services import DeviceConnection, NvxManager


class TestRedactData:
    """Tests for redact_data."""

    def test_nested_keys_redacted(self) -> None:
        """Test that keys are redacted at any depth, including inside lists."""
        data = {
            "password": "secret",
            "device": {"mac_address": "00.10.7f.aa.bb.cc", "name": "NVX"},
            "items": [{"serial_number": "2045JBH01234"}],
        }

        redacted = redact_data(data, TO_REDACT)

        assert redacted == {
            "password": REDACTED,
            "device": {"mac_address": REDACTED, "name": "NVX"},
            "items": [{"serial_number": REDACTED}],
        }
        assert data["password"] == "secret"

    def test_none_values_kept(self) -> None:
        """Test that absent values stay visibly absent."""
        assert redact_data({"xsrf_token": None}, TO_REDACT) == {"xsrf_token": None}


@pytest.mark.asyncio
async def test_diagnostics_redacts_secrets() -> None:
    """Test that the snapshot hides credentials, cookies and identifiers."""
    manager = NvxManager()
    manager.registry.merge(
        [
            DiscoveredDevice(
                address="10.0.0.5",
                name="NVX-384-LOBBY",
                model="DM-NVX-384",
                mac_address="00.10.7f.aa.bb.cc",
            )
        ]
    )
    client = MagicMock()
    client.address = "10.0.0.5"
    client.async_logout = AsyncMock()
    manager._connections["10.0.0.5"] = DeviceConnection(
        client=client,
        coordinator=NvxDeviceCoordinator(client),
        credentials=Credentials("admin", "hunter2"),
        cert_options=CertificateOptions(),
        session=SessionContext(
            address="10.0.0.5",
            scheme=TransportScheme.SECURE,
            track_id="track-1",
            cookies="userid=42",
            xsrf_token="token-1",
            state=SessionState.AUTHENTICATED,
        ),
        parameters=normalize_parameters(
            "10.0.0.5", {"DeviceInfo": {"SerialNumber": "2045JBH01234"}}
        ),
    )
    manager._statuses["10.0.0.5"] = {
        "is_connected": True,
        "last_connected": manager._connections["10.0.0.5"].connected_at,
    }

    result = await async_get_diagnostics(manager)

    assert result["config"]["transports"] == ["multicast", "ssdp", "crestron"]
    assert result["devices"][0]["mac_address"] == REDACTED
    assert result["devices"][0]["name"] == "NVX-384-LOBBY"

    connection = result["connections"]["10.0.0.5"]
    assert connection["username"] == "admin"
    assert connection["password"] == REDACTED
    assert connection["has_session"] is True
    assert connection["session"]["scheme"] == "https"
    assert connection["session"]["cookies"] == REDACTED
    assert connection["session"]["track_id"] == REDACTED
    assert connection["session"]["xsrf_token"] == REDACTED
    assert connection["status"]["is_connected"] is True
    assert isinstance(connection["status"]["last_connected"], str)
    assert connection["parameters"]["serial_number"] == REDACTED
    assert connection["parameters"]["ip_address"] == "10.0.0.5"

    await manager.async_close()


@pytest.mark.asyncio
async def test_diagnostics_empty_manager() -> None:
    """Test the snapshot of a manager with nothing discovered or connected."""
    manager = NvxManager()

    result = await async_get_diagnostics(manager)

    assert result["devices"] == []
    assert result["connections"] == {}
    await manager.async_close()
