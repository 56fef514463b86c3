"""Parameter fetch/update engine and identify invoker for one DM-NVX device."""

from __future__ import annotations

import logging
from typing import Any

from .api import NvxClient
from .const import DEFAULT_IDENTIFY_DURATION
from .exceptions import NvxApiError, NvxAuthError, NvxError
from .models import NormalizedParameters, SessionContext
from .parameters import (
    RESOURCES,
    build_write_payload,
    coerce_write_value,
    normalize_parameters,
    resource_path,
    unwrap_resource,
    write_target,
)

_LOGGER = logging.getLogger(__name__)

NETWORK_ADAPTERS = "NetworkAdapters"
IDENTIFY = "Identify"
NETWORK_ADAPTERS_OK_STATUSES = (200, 204)


class NvxDeviceCoordinator:
    """Runs authenticated reads and writes against one device.

    Every call takes a SessionContext from the client's negotiator and
    never negotiates one itself. Calls against one session are issued
    strictly one after another.
    """

    def __init__(self, client: NvxClient) -> None:
        """Initialize the coordinator.

        Args:
            client: The client bound to the device address.
        """
        self.client = client

    @property
    def address(self) -> str:
        """Return the device address."""
        return self.client.address

    async def _async_fetch_optional(
        self,
        ctx: SessionContext,
        name: str,
    ) -> dict[str, Any] | None:
        """Fetch one sub-resource, returning None if it is unavailable.

        Not every firmware exposes every resource, so failures here are
        logged and swallowed. A rejected session is raised so the caller
        can tell it apart from a missing resource.

        Args:
            ctx: An authenticated session.
            name: Resource name.

        Returns:
            The unwrapped resource object, or None.

        Raises:
            NvxAuthError: If the device no longer accepts the session.
        """
        try:
            payload = await self.client.async_get_json(ctx, resource_path(name))
        except NvxAuthError:
            raise
        except NvxError as err:
            _LOGGER.debug("Resource %s not available on %s: %s", name, self.address, err)
            return None

        resource = unwrap_resource(name, payload)
        if resource is None:
            _LOGGER.debug("Resource %s on %s is not an object", name, self.address)
        return resource

    async def async_import_parameters(self, ctx: SessionContext) -> NormalizedParameters:
        """Read every sub-resource and merge them into one parameter set.

        Resources are fetched one at a time. A failing resource leaves its
        fields at their defaults. The session is logged out afterwards
        whatever happened.

        Args:
            ctx: An authenticated session. It is closed on return.

        Returns:
            The normalized parameters.

        Raises:
            NvxAuthError: If the session is rejected before any resource
                was read.
            NvxApiError: If no resource could be read at all.
        """
        resources: dict[str, dict[str, Any]] = {}
        try:
            for name in RESOURCES:
                try:
                    resource = await self._async_fetch_optional(ctx, name)
                except NvxAuthError as err:
                    if not resources:
                        raise
                    _LOGGER.debug("Resource %s rejected by %s: %s", name, self.address, err)
                    continue
                if resource is not None:
                    resources[name] = resource
        finally:
            await self.client.async_logout(ctx)

        if not resources:
            raise NvxApiError(f"No parameters could be read from {self.address}")

        missing = [name for name in RESOURCES if name not in resources]
        if missing:
            _LOGGER.debug("Import from %s missing resources: %s", self.address, ", ".join(missing))
        _LOGGER.info(
            "Imported %d of %d resources from %s", len(resources), len(RESOURCES), self.address
        )
        return normalize_parameters(self.address, resources)

    async def async_fetch_resource(self, ctx: SessionContext, name: str) -> dict[str, Any]:
        """Read a single sub-resource.

        Args:
            ctx: An authenticated session.
            name: Resource name (e.g., "EdidMgmnt").

        Returns:
            The unwrapped resource object.

        Raises:
            NvxApiError: If the response is not an object.
            NvxError: If the request fails.
        """
        payload = await self.client.async_get_json(ctx, resource_path(name))
        resource = unwrap_resource(name, payload)
        if resource is None:
            raise NvxApiError(f"Malformed {name} response from {self.address}")
        return resource

    async def async_update_parameter(
        self,
        ctx: SessionContext,
        name: str,
        value: Any,
    ) -> Any:
        """Write one field back to the device.

        Args:
            ctx: An authenticated session.
            name: NormalizedParameters field name.
            value: New value.

        Returns:
            The value as written, converted to the field's type.

        Raises:
            NvxApiError: If the field is unknown or read-only, the value is
                invalid, or the device rejects the write.
        """
        coerced = coerce_write_value(name, value)
        resource, keys = write_target(name)
        payload = build_write_payload(resource, keys, coerced)
        _LOGGER.debug("Updating %s on %s via %s", name, self.address, resource)
        await self.client.async_post_json(ctx, resource_path(resource), payload)
        return coerced

    async def async_update_network_adapters(
        self,
        ctx: SessionContext,
        tree: dict[str, Any],
    ) -> str:
        """Replace the whole network adapter configuration.

        Args:
            ctx: An authenticated session.
            tree: Complete NetworkAdapters object assembled by the caller.

        Returns:
            A confirmation message.

        Raises:
            NvxApiError: If the device does not answer 200 or 204.
        """
        if not isinstance(tree, dict):
            raise NvxApiError("Network adapter configuration must be an object")

        payload = build_write_payload(NETWORK_ADAPTERS, (), tree)
        status = await self.client.async_post_json(ctx, resource_path(NETWORK_ADAPTERS), payload)
        if status not in NETWORK_ADAPTERS_OK_STATUSES:
            raise NvxApiError(f"Update failed: {status}", status_code=status)
        return "Network adapter settings updated successfully"

    async def async_identify(
        self,
        ctx: SessionContext,
        duration: int = DEFAULT_IDENTIFY_DURATION,
    ) -> int:
        """Start the device identify signal.

        The device stops the signal on its own after ``duration`` seconds;
        there is no stop request.

        Returns:
            The duration sent to the device.
        """
        if isinstance(duration, bool) or not isinstance(duration, int) or duration <= 0:
            raise NvxApiError(f"Invalid identify duration: {duration!r}")

        payload = build_write_payload(IDENTIFY, (), {"Action": "Start", "Duration": duration})
        await self.client.async_post_json(ctx, resource_path(IDENTIFY), payload)
        _LOGGER.info("Identify started on %s for %d seconds", self.address, duration)
        return duration
