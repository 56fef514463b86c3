"""Tests for the NVX device coordinator."""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from nvx_manager.coordinator import NvxDeviceCoordinator
from nvx_manager.exceptions import NvxApiError, NvxAuthError, NvxConnectionError
from nvx_manager.models import SessionContext, SessionState, TransportScheme
from nvx_manager.parameters import RESOURCES

DEVICE = "10.0.0.5"


@pytest.fixture
def ctx() -> SessionContext:
    """Return an authenticated session context."""
    return SessionContext(
        address=DEVICE,
        scheme=TransportScheme.SECURE,
        cookies="userid=42",
        state=SessionState.AUTHENTICATED,
    )


def create_mock_client(
    resources: dict[str, Any] | None = None,
    failing: dict[str, Exception] | None = None,
    post_status: int = 200,
) -> MagicMock:
    """Create a mock NvxClient serving wrapped resources by path."""
    resources = resources or {}
    failing = failing or {}

    async def get_json(ctx: SessionContext, path: str) -> dict[str, Any]:
        name = path.rsplit("/", 1)[-1]
        if name in failing:
            raise failing[name]
        if name not in resources:
            raise NvxApiError(f"{path} returned 404", status_code=404)
        return {"Device": {name: resources[name]}} if name != "Device" else resources[name]

    client = MagicMock()
    client.address = DEVICE
    client.async_get_json = AsyncMock(side_effect=get_json)
    client.async_post_json = AsyncMock(return_value=post_status)
    client.async_logout = AsyncMock()
    return client


class TestImportParameters:
    """Tests for the full parameter import."""

    @pytest.mark.asyncio
    async def test_fetches_resources_in_order(self, ctx: SessionContext) -> None:
        """Test that every resource is requested once, in order."""
        client = create_mock_client(resources={"DeviceInfo": {"HostName": "nvx"}})
        coordinator = NvxDeviceCoordinator(client)

        await coordinator.async_import_parameters(ctx)

        paths = [call.args[1] for call in client.async_get_json.call_args_list]
        assert paths == [
            "/Device" if name == "Device" else f"/Device/{name}" for name in RESOURCES
        ]
        client.async_logout.assert_awaited_once_with(ctx)

    @pytest.mark.asyncio
    async def test_partial_import_when_identity_fails(
        self, ctx: SessionContext, mock_network_adapters: dict[str, Any]
    ) -> None:
        """Test that a failing DeviceInfo leaves identity fields at defaults."""
        client = create_mock_client(
            resources={
                "NetworkAdapters": mock_network_adapters,
                "StreamingVideo": {"Mode": "Transmitter", "Source": "HDMI 2"},
            },
            failing={"DeviceInfo": NvxApiError("internal error", status_code=500)},
        )

        params = await NvxDeviceCoordinator(client).async_import_parameters(ctx)

        assert params.hostname == "Unknown"
        assert params.network_hostname == "NVX-384-LOBBY"
        assert params.device_name == f"DM-NVX Device ({DEVICE})"
        assert params.primary_ipv4_address == "10.0.0.5"
        assert params.mode == "Transmitter"
        assert params.video_source == "HDMI 2"
        assert params.is_synthetic is False

    @pytest.mark.asyncio
    async def test_rejected_session_raises(self, ctx: SessionContext) -> None:
        """Test that a session refused on the first read is reported, not defaulted."""
        client = create_mock_client(
            resources={"DeviceInfo": {"HostName": "nvx"}},
            failing={"DeviceInfo": NvxAuthError("Session rejected by 10.0.0.5 (401)")},
        )

        with pytest.raises(NvxAuthError):
            await NvxDeviceCoordinator(client).async_import_parameters(ctx)

        assert client.async_get_json.await_count == 1
        client.async_logout.assert_awaited_once_with(ctx)

    @pytest.mark.asyncio
    async def test_rejection_after_data_keeps_partial_import(self, ctx: SessionContext) -> None:
        """Test that a rejection after some reads leaves the rest at defaults."""
        client = create_mock_client(
            resources={"DeviceInfo": {"HostName": "nvx"}, "Network": {"TTL": 64}},
            failing={"NetworkAdapters": NvxAuthError("Session rejected by 10.0.0.5 (401)")},
        )

        params = await NvxDeviceCoordinator(client).async_import_parameters(ctx)

        assert params.hostname == "nvx"
        assert params.ttl == 64
        assert client.async_get_json.await_count == len(RESOURCES)

    @pytest.mark.asyncio
    async def test_nothing_readable_raises(self, ctx: SessionContext) -> None:
        """Test that an import with no readable resource is an error."""
        client = create_mock_client()

        with pytest.raises(NvxApiError, match="No parameters could be read"):
            await NvxDeviceCoordinator(client).async_import_parameters(ctx)

        client.async_logout.assert_awaited_once_with(ctx)

    @pytest.mark.asyncio
    async def test_logout_even_when_fetch_raises(self, ctx: SessionContext) -> None:
        """Test that the session is closed if an unexpected error escapes."""
        client = create_mock_client()
        client.async_get_json = AsyncMock(side_effect=RuntimeError("bug"))

        with pytest.raises(RuntimeError):
            await NvxDeviceCoordinator(client).async_import_parameters(ctx)

        client.async_logout.assert_awaited_once_with(ctx)

    @pytest.mark.asyncio
    async def test_non_object_resource_skipped(self, ctx: SessionContext) -> None:
        """Test that a malformed resource falls back to defaults."""
        client = create_mock_client(resources={"Network": {"TTL": 64}})
        original = client.async_get_json.side_effect

        async def get_json(ctx: SessionContext, path: str) -> Any:
            if path.endswith("/USB"):
                return ["not", "an", "object"]
            return await original(ctx, path)

        client.async_get_json = AsyncMock(side_effect=get_json)

        params = await NvxDeviceCoordinator(client).async_import_parameters(ctx)

        assert params.ttl == 64
        assert params.usb_mode == "Device"


class TestFetchResource:
    """Tests for single resource reads."""

    @pytest.mark.asyncio
    async def test_fetch_resource(self, ctx: SessionContext) -> None:
        """Test that a resource is returned unwrapped."""
        client = create_mock_client(resources={"EdidMgmnt": {"Version": "1.0.0"}})

        resource = await NvxDeviceCoordinator(client).async_fetch_resource(ctx, "EdidMgmnt")

        assert resource == {"Version": "1.0.0"}

    @pytest.mark.asyncio
    async def test_fetch_resource_propagates_errors(self, ctx: SessionContext) -> None:
        """Test that errors for a requested resource are raised."""
        client = create_mock_client(failing={"EdidMgmnt": NvxConnectionError("reset")})

        with pytest.raises(NvxConnectionError):
            await NvxDeviceCoordinator(client).async_fetch_resource(ctx, "EdidMgmnt")


class TestUpdates:
    """Tests for writes."""

    @pytest.mark.asyncio
    async def test_update_parameter(self, ctx: SessionContext) -> None:
        """Test that one field is written under its resource."""
        client = create_mock_client()

        result = await NvxDeviceCoordinator(client).async_update_parameter(ctx, "ttl", "64")

        assert result == 64
        client.async_post_json.assert_awaited_once_with(
            ctx, "/Device/Network", {"Device": {"Network": {"TTL": 64}}}
        )

    @pytest.mark.asyncio
    async def test_update_read_only_parameter(self, ctx: SessionContext) -> None:
        """Test that read-only fields are refused before any request."""
        client = create_mock_client()

        with pytest.raises(NvxApiError):
            await NvxDeviceCoordinator(client).async_update_parameter(ctx, "serial_number", "X")

        client.async_post_json.assert_not_called()

    @pytest.mark.asyncio
    async def test_update_rejected_by_device(self, ctx: SessionContext) -> None:
        """Test that device rejections propagate."""
        client = create_mock_client()
        client.async_post_json = AsyncMock(side_effect=NvxApiError("Update failed: 400 - Bad"))

        with pytest.raises(NvxApiError, match="Update failed"):
            await NvxDeviceCoordinator(client).async_update_parameter(ctx, "igmp", True)

    @pytest.mark.asyncio
    async def test_update_network_adapters(
        self, ctx: SessionContext, mock_network_adapters: dict[str, Any]
    ) -> None:
        """Test that the whole adapter tree is posted."""
        client = create_mock_client(post_status=204)

        message = await NvxDeviceCoordinator(client).async_update_network_adapters(
            ctx, mock_network_adapters
        )

        assert message == "Network adapter settings updated successfully"
        client.async_post_json.assert_awaited_once_with(
            ctx, "/Device/NetworkAdapters", {"Device": {"NetworkAdapters": mock_network_adapters}}
        )

    @pytest.mark.asyncio
    async def test_update_network_adapters_unexpected_status(self, ctx: SessionContext) -> None:
        """Test that 2xx statuses other than 200 and 204 are failures."""
        client = create_mock_client(post_status=202)

        with pytest.raises(NvxApiError) as exc_info:
            await NvxDeviceCoordinator(client).async_update_network_adapters(ctx, {})

        assert exc_info.value.status_code == 202

    @pytest.mark.asyncio
    async def test_update_network_adapters_requires_object(self, ctx: SessionContext) -> None:
        """Test that a non-object tree is refused."""
        client = create_mock_client()

        with pytest.raises(NvxApiError):
            await NvxDeviceCoordinator(client).async_update_network_adapters(ctx, [])  # type: ignore[arg-type]

        client.async_post_json.assert_not_called()


class TestIdentify:
    """Tests for the identify signal."""

    @pytest.mark.asyncio
    async def test_identify(self, ctx: SessionContext) -> None:
        """Test that a single start request is sent."""
        client = create_mock_client()

        duration = await NvxDeviceCoordinator(client).async_identify(ctx, 45)

        assert duration == 45
        client.async_post_json.assert_awaited_once_with(
            ctx,
            "/Device/Identify",
            {"Device": {"Identify": {"Action": "Start", "Duration": 45}}},
        )

    @pytest.mark.asyncio
    async def test_identify_default_duration(self, ctx: SessionContext) -> None:
        """Test the default identify duration."""
        client = create_mock_client()

        assert await NvxDeviceCoordinator(client).async_identify(ctx) == 30

    @pytest.mark.parametrize("duration", [0, -5, 2.5, True, "30"])
    @pytest.mark.asyncio
    async def test_identify_invalid_duration(self, ctx: SessionContext, duration: Any) -> None:
        """Test that invalid durations are refused before any request."""
        client = create_mock_client()

        with pytest.raises(NvxApiError):
            await NvxDeviceCoordinator(client).async_identify(ctx, duration)

        client.async_post_json.assert_not_called()

    @pytest.mark.asyncio
    async def test_identify_session_rejected(self, ctx: SessionContext) -> None:
        """Test that session errors propagate."""
        client = create_mock_client()
        client.async_post_json = AsyncMock(side_effect=NvxAuthError("expired"))

        with pytest.raises(NvxAuthError):
            await NvxDeviceCoordinator(client).async_identify(ctx)
