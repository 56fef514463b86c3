"""NvxManager: the entry point used by the presentation layer.

Every operation returns a result dictionary instead of raising, so a UI
can render the device's or transport's literal error message.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from types import TracebackType
from typing import TYPE_CHECKING, Any

import aiohttp

from .api import NvxClient, async_check_reachable
from .config import ManagerConfig
from .const import DEFAULT_IDENTIFY_DURATION, REACHABILITY_TIMEOUT
from .coordinator import NvxDeviceCoordinator
from .discovery import Transport, async_discover_devices
from .exceptions import NvxAuthError, NvxError
from .models import (
    CertificateOptions,
    ConnectionStatus,
    ConnectResult,
    Credentials,
    DiscoveredDevice,
    EdidData,
    EdidResult,
    IdentifyResult,
    ImportResult,
    NetworkAdaptersResult,
    NormalizedParameters,
    SessionContext,
    StreamsData,
    StreamsResult,
    UpdateResult,
    utcnow,
)
from .parameters import PARAMETER_RULES, resolve_field, synthetic_parameters
from .registry import DeviceRegistry, DevicesCallback

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

_LOGGER = logging.getLogger(__name__)


def _not_connected(address: str) -> str:
    return f"Not connected to {address}"


@dataclass
class DeviceConnection:
    """Credentials and session bookkeeping for one connected address."""

    client: NvxClient
    coordinator: NvxDeviceCoordinator
    credentials: Credentials
    cert_options: CertificateOptions
    session: SessionContext | None = None
    parameters: NormalizedParameters | None = None
    identify_until: datetime | None = None
    connected_at: datetime = field(default_factory=utcnow)

    @property
    def has_session(self) -> bool:
        """Return True if an authenticated session is held."""
        return self.session is not None and self.session.is_authenticated


class NvxManager:
    """Composes discovery, the device registry and per-device clients.

    One session per device address is held at a time, and all operations
    on an address are serialized with a per-address lock. ``async_connect``
    negotiates a session and keeps it; a parameter import uses that session
    (or a fresh one from the stored credentials) and logs it out when done;
    writes and identify reuse the held session or negotiate one on demand.

    Example:
        async with NvxManager() as manager:
            devices = await manager.async_discover()
            await manager.async_connect(devices[0].address, Credentials("admin", "pw"))
            result = await manager.async_import_parameters(devices[0].address)
    """

    def __init__(
        self,
        config: ManagerConfig | None = None,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        """Initialize the manager.

        Args:
            config: Validated settings. Defaults are used when omitted.
            session: Optional aiohttp ClientSession shared by every device
                client. If not provided, one is created and managed here.
        """
        self.config = config or ManagerConfig()
        self._session = session
        self._owns_session = session is None
        self.registry = DeviceRegistry(
            checker=self._async_check_reachable,
            cert_options=self.config.cert_options,
        )
        self._connections: dict[str, DeviceConnection] = {}
        self._statuses: dict[str, ConnectionStatus] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(cookie_jar=aiohttp.DummyCookieJar())
        return self._session

    def _lock(self, address: str) -> asyncio.Lock:
        if address not in self._locks:
            self._locks[address] = asyncio.Lock()
        return self._locks[address]

    async def _async_check_reachable(self, address: str) -> bool:
        return await async_check_reachable(
            address,
            await self._get_session(),
            REACHABILITY_TIMEOUT,
            self.config.cert_options,
        )

    # Discovery and registry

    async def async_discover(
        self,
        transports: Iterable[Transport | str] | None = None,
        timeout: float | None = None,
    ) -> list[DiscoveredDevice]:
        """Run discovery and merge the results into the registry.

        Args:
            transports: Transports to use. Defaults to the configured ones.
            timeout: Listening time in seconds. Defaults to the configured one.

        Returns:
            The merged record for every address found in this run.
        """
        selected = list(transports) if transports is not None else list(self.config.transports)
        with self.registry.discovery_in_progress():
            candidates = await async_discover_devices(
                selected,
                timeout if timeout is not None else self.config.discovery_timeout,
            )
        return self.registry.merge(candidates)

    def on_devices_changed(self, callback: DevicesCallback) -> Callable[[], None]:
        """Subscribe to registry changes. Returns an idempotent unsubscribe."""
        return self.registry.subscribe(callback)

    def remove_listener(self, callback: DevicesCallback) -> None:
        """Unsubscribe a registry callback."""
        self.registry.unsubscribe(callback)

    async def async_add_device(self, address: str) -> DiscoveredDevice | None:
        """Add a device by address if it answers."""
        return await self.registry.async_add_device(address)

    async def async_start(self) -> None:
        """Start the periodic liveness refresh."""
        await self.registry.async_start(self.config.refresh_interval)

    # Connections

    async def async_connect(
        self,
        address: str,
        credentials: Credentials,
        cert_options: CertificateOptions | None = None,
    ) -> ConnectResult:
        """Authenticate to a device and keep the session.

        On failure the credentials are discarded and no session is kept.

        Args:
            address: Device address.
            credentials: Username and password.
            cert_options: HTTPS certificate policy. Defaults to the configured one.

        Returns:
            ``{"success": True}`` or ``{"success": False, "error": ...}``.
        """
        cert_options = cert_options or self.config.cert_options
        async with self._lock(address):
            await self._async_release(address)

            client = NvxClient(
                address,
                credentials,
                cert_options,
                session=await self._get_session(),
                timeout=self.config.request_timeout,
            )
            try:
                ctx = await client.async_login()
            except NvxError as err:
                _LOGGER.warning("Connection to %s failed: %s", address, err)
                self._statuses[address] = {"is_connected": False, "error": str(err)}
                return {"success": False, "error": str(err)}

            connection = DeviceConnection(
                client=client,
                coordinator=NvxDeviceCoordinator(client),
                credentials=credentials,
                cert_options=cert_options,
                session=ctx,
            )
            self._connections[address] = connection
            self._statuses[address] = {
                "is_connected": True,
                "last_connected": connection.connected_at,
            }
            _LOGGER.info("Connected to %s over %s", address, ctx.scheme)
            return {"success": True}

    async def _async_release(self, address: str) -> None:
        """Log out and forget an address. Caller holds the address lock."""
        connection = self._connections.pop(address, None)
        if connection is None:
            return
        if connection.session is not None:
            await connection.client.async_logout(connection.session)
            connection.session = None

    async def async_disconnect(self, address: str) -> None:
        """Log out and forget the credentials. No-op when not connected."""
        if address not in self._connections:
            return
        async with self._lock(address):
            await self._async_release(address)
        status = self._statuses.get(address)
        if status is not None:
            status["is_connected"] = False
        _LOGGER.debug("Disconnected from %s", address)

    async def _async_session(self, connection: DeviceConnection) -> SessionContext:
        """Return the held session, negotiating one if needed."""
        if connection.session is None or not connection.session.is_authenticated:
            connection.session = await connection.client.async_login()
        return connection.session

    # Parameters

    async def _async_import(
        self,
        connection: DeviceConnection,
        held: SessionContext | None,
    ) -> NormalizedParameters:
        """Import with the held session, logging in again once if it was rejected."""
        if held is not None and held.is_authenticated:
            try:
                return await connection.coordinator.async_import_parameters(held)
            except NvxAuthError as err:
                _LOGGER.info(
                    "Session for %s was rejected, negotiating a new one: %s",
                    connection.client.address,
                    err,
                )
        ctx = await connection.client.async_login()
        return await connection.coordinator.async_import_parameters(ctx)

    async def async_import_parameters(self, address: str) -> ImportResult:
        """Read and normalize every device parameter.

        A held session the device no longer accepts is replaced once. If
        no data can be read after that, a synthetic parameter set is
        returned with ``is_synthetic`` set and the reason in ``error``.
        """
        connection = self._connections.get(address)
        if connection is None:
            return {"success": False, "error": _not_connected(address)}

        async with self._lock(address):
            held, connection.session = connection.session, None
            try:
                parameters = await self._async_import(connection, held)
            except NvxError as err:
                _LOGGER.warning(
                    "Parameter import from %s failed, using synthetic data: %s", address, err
                )
                parameters = synthetic_parameters(address)
                connection.parameters = parameters
                return {
                    "success": True,
                    "parameters": parameters,
                    "is_synthetic": True,
                    "error": f"Could not retrieve device parameters: {err}",
                }

            connection.parameters = parameters
            return {"success": True, "parameters": parameters, "is_synthetic": False}

    async def async_update_parameter(self, address: str, name: str, value: Any) -> UpdateResult:
        """Write one parameter and patch the cached parameter set."""
        connection = self._connections.get(address)
        if connection is None:
            return {"success": False, "error": _not_connected(address)}

        async with self._lock(address):
            try:
                ctx = await self._async_session(connection)
                written = await connection.coordinator.async_update_parameter(ctx, name, value)
            except NvxError as err:
                self._drop_rejected_session(connection, err)
                _LOGGER.warning("Update of %s on %s failed: %s", name, address, err)
                return {"success": False, "error": str(err)}

            if connection.parameters is not None:
                connection.parameters = connection.parameters.replace_field(name, written)
            return {"success": True}

    async def async_update_network_adapters(
        self,
        address: str,
        tree: dict[str, Any],
    ) -> NetworkAdaptersResult:
        """Replace the device's network adapter configuration."""
        connection = self._connections.get(address)
        if connection is None:
            return {"success": False, "error": _not_connected(address)}

        async with self._lock(address):
            try:
                ctx = await self._async_session(connection)
                message = await connection.coordinator.async_update_network_adapters(ctx, tree)
            except NvxError as err:
                self._drop_rejected_session(connection, err)
                _LOGGER.warning("Network adapter update on %s failed: %s", address, err)
                return {"success": False, "error": str(err)}
            return {"success": True, "message": message}

    async def _async_fetch(self, address: str, resource: str) -> dict[str, Any]:
        """Fetch one sub-resource with the held or a new session.

        Raises:
            NvxError: If the device is not connected or the read fails.
        """
        connection = self._connections.get(address)
        if connection is None:
            raise NvxError(_not_connected(address))

        async with self._lock(address):
            try:
                ctx = await self._async_session(connection)
                return await connection.coordinator.async_fetch_resource(ctx, resource)
            except NvxError as err:
                self._drop_rejected_session(connection, err)
                raise

    async def async_get_network_adapters(self, address: str) -> NetworkAdaptersResult:
        """Read the device's network adapter configuration."""
        try:
            adapters = await self._async_fetch(address, "NetworkAdapters")
        except NvxError as err:
            return {"success": False, "error": str(err)}
        return {"success": True, "network_adapters": adapters}

    async def async_get_edid_management(self, address: str) -> EdidResult:
        """Read the EDID lists available on the device."""
        try:
            edid = await self._async_fetch(address, "EdidMgmnt")
        except NvxError as err:
            return {"success": False, "error": str(err)}

        resources = {"EdidMgmnt": edid}
        data: EdidData = {
            "system_edid_list": resolve_field(PARAMETER_RULES["edid_system_list"], resources),
            "custom_edid_list": resolve_field(PARAMETER_RULES["edid_custom_list"], resources),
            "copy_edid_list": resolve_field(PARAMETER_RULES["edid_copy_list"], resources),
            "version": resolve_field(PARAMETER_RULES["edid_version"], resources),
            "upload_path": resolve_field(PARAMETER_RULES["edid_upload_path"], resources),
        }
        return {"success": True, "edid_data": data}

    async def async_get_discovered_streams(self, address: str) -> StreamsResult:
        """Read the streams a receiver has found on the network."""
        try:
            streams = await self._async_fetch(address, "DiscoveredStreams")
        except NvxError as err:
            return {"success": False, "error": str(err)}

        resources = {"DiscoveredStreams": streams}
        data: StreamsData = {
            "discovered_streams_list": resolve_field(
                PARAMETER_RULES["discovered_streams_list"], resources
            ),
            "streams_data": resolve_field(PARAMETER_RULES["streams_data"], resources),
            "stream_count": resolve_field(PARAMETER_RULES["stream_count"], resources),
        }
        return {"success": True, "streams": data}

    # Identify

    async def async_identify(
        self,
        address: str,
        duration: int = DEFAULT_IDENTIFY_DURATION,
    ) -> IdentifyResult:
        """Start the identify signal; the device ends it after ``duration`` seconds."""
        connection = self._connections.get(address)
        if connection is None:
            return {"success": False, "error": _not_connected(address)}

        async with self._lock(address):
            try:
                ctx = await self._async_session(connection)
                effective = await connection.coordinator.async_identify(ctx, duration)
            except NvxError as err:
                self._drop_rejected_session(connection, err)
                _LOGGER.warning("Identify on %s failed: %s", address, err)
                return {"success": False, "error": str(err)}

            connection.identify_until = utcnow() + timedelta(seconds=effective)
            return {"success": True, "effective_duration": effective}

    def stop_identify(self, address: str) -> None:
        """Clear the local identify indicator. Nothing is sent to the device."""
        connection = self._connections.get(address)
        if connection is not None:
            connection.identify_until = None

    def is_identifying(self, address: str) -> bool:
        """Return True while a started identify signal should still be running."""
        connection = self._connections.get(address)
        if connection is None or connection.identify_until is None:
            return False
        return utcnow() < connection.identify_until

    @staticmethod
    def _drop_rejected_session(connection: DeviceConnection, err: NvxError) -> None:
        """Forget a session the device no longer accepts."""
        if isinstance(err, NvxAuthError) and connection.session is not None:
            connection.session = None

    # Status

    def get_connection_status(self, address: str) -> ConnectionStatus:
        """Return connection bookkeeping for an address."""
        status = self._statuses.get(address)
        if status is None:
            return {"is_connected": False}
        return ConnectionStatus(**status)

    @property
    def connected_devices(self) -> list[str]:
        """Return the addresses with stored credentials."""
        return list(self._connections)

    def get_parameters(self, address: str) -> NormalizedParameters | None:
        """Return the parameters from the last import, with local patches."""
        connection = self._connections.get(address)
        return connection.parameters if connection is not None else None

    def get_connection(self, address: str) -> DeviceConnection | None:
        """Return the connection bookkeeping object for an address."""
        return self._connections.get(address)

    # Lifecycle

    async def async_close(self) -> None:
        """Disconnect every device, stop the registry and release the session."""
        for address in list(self._connections):
            await self.async_disconnect(address)
        await self.registry.async_stop()
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> NvxManager:
        """Enter async context manager."""
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Exit async context manager."""
        await self.async_close()
