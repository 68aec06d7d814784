"""Progress events emitted while enumerating devices."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .device import Device


class EventKind(Enum):
    """Kind of a progress event."""

    Status = "status"
    Progress = "progress"
    DeviceFound = "deviceFound"
    Complete = "complete"
    Error = "error"


@dataclass(frozen=True)
class ProgressEvent:
    """A single milestone of an enumeration run."""

    kind: EventKind
    message: str = ""
    #: Fine grained progress step, e.g. ``homes`` or ``ble_key``
    step: str | None = None
    current_home: int | None = None
    total_homes: int | None = None
    total_devices: int | None = None
    device: Device | None = None
    devices: list[Device] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        """Return True for the last event of a run."""
        return self.kind in (EventKind.Complete, EventKind.Error)

    def to_dict(self) -> dict[str, Any]:
        """Return the flat event shape used by stream consumers."""
        event: dict[str, Any] = {"type": self.kind.value, "message": self.message}
        optional = {
            "step": self.step,
            "currentHome": self.current_home,
            "totalHomes": self.total_homes,
            "totalDevices": self.total_devices,
        }
        event.update({key: val for key, val in optional.items() if val is not None})
        if self.device is not None:
            event["device"] = self.device.to_dict()
        if self.kind is EventKind.Complete:
            event["devices"] = [device.to_dict() for device in self.devices]
        return event
