"""Device enumeration over the encrypted api.

Homes owned by the account are listed first, followed by the homes shared
with it. Devices are fetched home by home, and Bluetooth devices get their
beacon key attached under ``extra["ble_key"]``.

Progress is reported either through an awaitable callback given to
:meth:`DeviceEnumerator.fetch_devices` or as an async event stream:

>>> async for event in DeviceEnumerator(session).stream():  # doctest: +SKIP
...     print(event.to_dict())
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import replace
from functools import partial

from .cloudconfig import CloudConfig
from .device import Device, Home
from .exceptions import MiCloudException
from .progress import EventKind, ProgressEvent
from .protocol import CloudProtocol, create_protocol
from .session import Session

_LOGGER = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressEvent], Awaitable[None]]


async def validate_session(session: Session, config: CloudConfig | None = None) -> bool:
    """Return True if the cloud still accepts the session."""
    if not session.is_valid:
        return False
    protocol = create_protocol(session, config or CloudConfig())
    try:
        return await protocol.validate_session()
    finally:
        await protocol.close()


class DeviceEnumerator:
    """Collects the devices of every home of an account."""

    def __init__(
        self,
        session: Session,
        config: CloudConfig | None = None,
        *,
        protocol: CloudProtocol | None = None,
    ) -> None:
        self._session = session
        self._config = config or CloudConfig()
        self._protocol = protocol
        self._report: ProgressCallback | None = None
        self._background_tasks: set[asyncio.Task] = set()

    @property
    def protocol(self) -> CloudProtocol:
        """Return the protocol, creating it on first use."""
        if self._protocol is None:
            self._protocol = create_protocol(self._session, self._config)
        return self._protocol

    async def _progress(self, event: ProgressEvent) -> None:
        if self._report is None:
            return
        try:
            await self._report(event)
        except Exception as ex:
            _LOGGER.warning("Progress reporting failed, disabling it: %s", ex)
            self._report = None

    async def _step(self, message: str, step: str, **kwargs) -> None:
        await self._progress(
            ProgressEvent(EventKind.Progress, message, step=step, **kwargs)
        )

    async def get_homes(self) -> list[Home]:
        """Return the owned homes followed by the shared ones."""
        await self._step("Getting homes...", "homes")
        homes = [
            Home(str(home.get("id")), str(self._session.user_id), home.get("name"))
            for home in await self.protocol.get_homes()
        ]
        await self._step("Checking shared homes...", "shared")
        homes.extend(
            Home(str(home.get("home_id")), str(home.get("home_owner")))
            for home in await self.protocol.get_shared_homes()
        )
        return homes

    async def _attach_beacon_key(self, device: Device) -> Device:
        await self._step(
            f"Fetching BLE key for {device.name}...", "ble_key", device=device
        )
        try:
            record = await self.protocol.get_beacon_key(device.did)
        except MiCloudException as ex:
            _LOGGER.debug("Unable to fetch beacon key for %s: %s", device.did, ex)
            return device
        if record and (beacon_key := record.get("beaconkey")):
            return replace(device, extra={**device.extra, "ble_key": beacon_key})
        return device

    async def get_home_devices(self, home: Home) -> AsyncIterator[Device]:
        """Yield the devices of a home one by one.

        Bluetooth devices are yielded once their beacon key lookup is done.
        """
        infos = await self.protocol.get_home_devices(home.home_id, home.home_owner)
        for info in infos:
            device = Device.from_cloud(info)
            if device.is_bluetooth:
                device = await self._attach_beacon_key(device)
            yield device

    async def fetch_devices(
        self, report: ProgressCallback | None = None
    ) -> list[Device]:
        """Return every device of the account.

        Fetch failures propagate, beacon key failures are only logged.
        """
        self._report = report
        homes = await self.get_homes()
        await self._step(
            f"Found {len(homes)} home(s)", "homes_complete", total_homes=len(homes)
        )

        found: list[Device] = []
        for index, home in enumerate(homes, start=1):
            label = f" ({home.name})" if home.name else ""
            await self._step(
                f"Getting devices from home {index}/{len(homes)}{label}...",
                "devices",
                current_home=index,
                total_homes=len(homes),
            )
            async for device in self.get_home_devices(home):
                found.append(device)
                await self._progress(
                    ProgressEvent(
                        EventKind.DeviceFound,
                        f"Found device: {device.name}",
                        step="device_found",
                        device=device,
                        total_devices=len(found),
                    )
                )

        _LOGGER.debug("Found %s devices in %s homes", len(found), len(homes))
        return found

    async def _run(self, queue: asyncio.Queue[ProgressEvent], validate: bool) -> None:
        try:
            if validate:
                await queue.put(
                    ProgressEvent(EventKind.Status, "Validating session...")
                )
                if not (
                    self._session.is_valid and await self.protocol.validate_session()
                ):
                    await queue.put(ProgressEvent(EventKind.Error, "Session expired"))
                    return
                await queue.put(
                    ProgressEvent(
                        EventKind.Status, "Session validated. Fetching devices..."
                    )
                )
            devices = await self.fetch_devices(queue.put)
        except MiCloudException as ex:
            _LOGGER.debug("Device enumeration failed: %s", ex)
            await queue.put(ProgressEvent(EventKind.Error, str(ex)))
            return
        finally:
            if self._protocol is not None:
                await self._protocol.close()
        await queue.put(
            ProgressEvent(
                EventKind.Complete,
                f"Found {len(devices)} device(s)",
                total_devices=len(devices),
                devices=devices,
            )
        )

    @staticmethod
    def _report_crash(queue: asyncio.Queue[ProgressEvent], task: asyncio.Task) -> None:
        if not task.cancelled() and (ex := task.exception()):
            _LOGGER.error("Device enumeration crashed", exc_info=ex)
            queue.put_nowait(ProgressEvent(EventKind.Error, str(ex)))

    async def stream(self, *, validate: bool = True) -> AsyncIterator[ProgressEvent]:
        """Yield progress events until a complete or error event.

        The enumeration runs as a background task, stopping the iteration
        early does not stop it.
        """
        queue: asyncio.Queue[ProgressEvent] = asyncio.Queue()
        task = asyncio.create_task(self._run(queue, validate))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        task.add_done_callback(partial(self._report_crash, queue))

        while True:
            event = await queue.get()
            yield event
            if event.is_terminal:
                return
