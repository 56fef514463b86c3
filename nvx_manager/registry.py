"""Device registry: deduplicated store of discovered DM-NVX endpoints."""

from __future__ import annotations

import asyncio
import contextlib
import functools
import logging
from collections.abc import Awaitable, Callable, Iterable, Iterator

import aiohttp

from .api import async_check_reachable
from .const import DEFAULT_REFRESH_INTERVAL, PRODUCT_PREFIX, REACHABILITY_TIMEOUT
from .models import CertificateOptions, DiscoveredDevice, LivenessState, utcnow

_LOGGER = logging.getLogger(__name__)

DevicesCallback = Callable[[list[DiscoveredDevice]], None]
ReachabilityChecker = Callable[[str], Awaitable[bool]]


class DeviceRegistry:
    """Holds one record per device address.

    The registry is the only owner of its records. Readers and subscribers
    always receive copies of the device list. A stored record is replaced
    only by one with an equal or later ``last_seen``, so overlapping merge
    and refresh cycles cannot roll an entry back.

    Lifecycle: create, subscribe/merge/refresh as often as needed, then
    ``async_stop``.
    """

    def __init__(
        self,
        checker: ReachabilityChecker | None = None,
        session: aiohttp.ClientSession | None = None,
        cert_options: CertificateOptions | None = None,
    ) -> None:
        """Initialize the registry.

        Args:
            checker: Coroutine function telling whether an address answers.
                Defaults to an HTTP check of the device login page.
            session: aiohttp session for the default checker. If not
                provided, one is created when first needed.
            cert_options: HTTPS certificate policy for the default checker.
        """
        self._devices: dict[str, DiscoveredDevice] = {}
        self._subscribers: list[DevicesCallback] = []
        self._checker = checker
        self._session = session
        self._owns_session = session is None
        self._cert_options = cert_options or CertificateOptions()
        self._refresh_task: asyncio.Task[None] | None = None
        self._discovering = 0

    @property
    def devices(self) -> list[DiscoveredDevice]:
        """Return a copy of all stored devices."""
        return list(self._devices.values())

    def get(self, address: str) -> DiscoveredDevice | None:
        """Return the stored record for an address."""
        return self._devices.get(address)

    def __contains__(self, address: object) -> bool:
        return address in self._devices

    def __len__(self) -> int:
        return len(self._devices)

    def _store(self, device: DiscoveredDevice) -> DiscoveredDevice:
        """Keep the newer of the stored and offered record."""
        stored = self._devices.get(device.address)
        if stored is not None and device.last_seen < stored.last_seen:
            return stored
        self._devices[device.address] = device
        return device

    def merge(self, candidates: Iterable[DiscoveredDevice]) -> list[DiscoveredDevice]:
        """Merge candidates into the registry.

        Duplicates are resolved by address, keeping the record with the
        latest ``last_seen``, both within the batch and against stored
        records.

        Args:
            candidates: Records from one or more probes.

        Returns:
            The stored record for every address in the batch.
        """
        batch: dict[str, DiscoveredDevice] = {}
        for device in candidates:
            current = batch.get(device.address)
            if current is None or device.last_seen > current.last_seen:
                batch[device.address] = device

        merged = [self._store(device) for device in batch.values()]
        _LOGGER.debug("Merged %d device(s), registry holds %d", len(merged), len(self._devices))
        self._notify()
        return merged

    def remove(self, address: str) -> bool:
        """Remove a device. Returns False if it was not registered."""
        if self._devices.pop(address, None) is None:
            return False
        self._notify()
        return True

    def clear(self) -> None:
        """Remove every device."""
        self._devices.clear()
        self._notify()

    def subscribe(self, callback: DevicesCallback) -> Callable[[], None]:
        """Register a callback invoked with the device list after each change.

        Args:
            callback: Called with a fresh copy of the device list.

        Returns:
            A function that removes the callback. Calling it more than once
            has no effect.
        """
        self._subscribers.append(callback)
        return functools.partial(self.unsubscribe, callback)

    def unsubscribe(self, callback: DevicesCallback) -> None:
        """Remove a callback. Unknown callbacks are ignored."""
        with contextlib.suppress(ValueError):
            self._subscribers.remove(callback)

    def _notify(self) -> None:
        for callback in list(self._subscribers):
            try:
                callback(self.devices)
            except Exception:
                _LOGGER.exception("Error in device registry subscriber %s", callback)

    @contextlib.contextmanager
    def discovery_in_progress(self) -> Iterator[None]:
        """Mark a discovery run; periodic refreshes are skipped meanwhile."""
        self._discovering += 1
        try:
            yield
        finally:
            self._discovering -= 1

    @property
    def is_discovering(self) -> bool:
        """Return True while a discovery run is active."""
        return self._discovering > 0

    async def _async_is_reachable(self, address: str) -> bool:
        if self._checker is not None:
            return await self._checker(address)
        if self._session is None:
            self._session = aiohttp.ClientSession(cookie_jar=aiohttp.DummyCookieJar())
        return await async_check_reachable(
            address, self._session, REACHABILITY_TIMEOUT, self._cert_options
        )

    async def _async_check(self, address: str) -> bool:
        try:
            return await self._async_is_reachable(address)
        except (aiohttp.ClientError, TimeoutError, OSError) as err:
            _LOGGER.debug("Reachability check for %s failed: %s", address, err)
            return False

    async def async_refresh(self) -> list[DiscoveredDevice]:
        """Re-check every known device and update its liveness.

        Unreachable devices are marked offline, never removed. A result is
        applied only if the stored record has not been replaced by a newer
        sighting while the check was running.

        Returns:
            A copy of the device list after the cycle.
        """
        snapshot = self.devices
        if not snapshot:
            return []

        results = await asyncio.gather(*(self._async_check(device.address) for device in snapshot))
        checked_at = utcnow()
        for before, reachable in zip(snapshot, results, strict=True):
            stored = self._devices.get(before.address)
            if stored is None:
                # Removed by the user during the cycle.
                continue
            if reachable:
                last_seen = max(checked_at, stored.last_seen)
                self._store(stored.with_status(LivenessState.ONLINE, last_seen))
            elif stored.last_seen <= before.last_seen:
                self._devices[before.address] = stored.with_status(LivenessState.OFFLINE)

        online = sum(1 for device in self._devices.values() if device.status is LivenessState.ONLINE)
        _LOGGER.debug("Refresh complete: %d of %d device(s) online", online, len(self._devices))
        self._notify()
        return self.devices

    async def async_add_device(self, address: str) -> DiscoveredDevice | None:
        """Register a device by address after checking that it answers.

        Args:
            address: Device address entered by the user.

        Returns:
            The stored record, or None if nothing answered.
        """
        address = address.strip()
        if not await self._async_is_reachable(address):
            _LOGGER.warning("No device answered at %s", address)
            return None

        existing = self._devices.get(address)
        if existing is not None:
            device = existing.with_status(LivenessState.ONLINE, utcnow())
        else:
            device = DiscoveredDevice(
                address=address,
                name=f"{PRODUCT_PREFIX} Device ({address})",
                model=PRODUCT_PREFIX,
                source="manual",
            )
        return self.merge([device])[0]

    async def async_start(self, interval: float = DEFAULT_REFRESH_INTERVAL) -> None:
        """Start the periodic refresh task."""
        if self._refresh_task is None or self._refresh_task.done():
            self._refresh_task = asyncio.create_task(self._refresh_loop(interval))

    async def _refresh_loop(self, interval: float) -> None:
        """Refresh every ``interval`` seconds, skipping cycles during discovery."""
        while True:
            await asyncio.sleep(interval)
            if self.is_discovering or not self._devices:
                continue
            try:
                await self.async_refresh()
            except Exception:
                _LOGGER.exception("Device refresh cycle failed")

    async def async_stop(self) -> None:
        """Stop the refresh task and release the checker session."""
        if self._refresh_task and not self._refresh_task.done():
            self._refresh_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._refresh_task
        self._refresh_task = None

        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None
