"""Devices and homes as returned by the cloud."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from mashumaro import field_options
from mashumaro.config import BaseConfig

from .json import DataClassJSONMixin

#: Marker in the did of Bluetooth devices
BLUETOOTH_MARKER = "blt"


class _DeviceBaseMixin(DataClassJSONMixin):
    """Base class for serialization mixin."""

    class Config(BaseConfig):
        """Serialization config."""

        serialize_by_alias = True


@dataclass(frozen=True)
class Device(_DeviceBaseMixin):
    """A device with its local control secrets."""

    did: str
    name: str | None = None
    model: str | None = None
    #: Hex token for local miio control
    token: str | None = field(default=None, repr=False)
    ip: str | None = None
    mac: str | None = None
    ssid: str | None = None
    bssid: str | None = None
    rssi: int | None = None
    is_online: bool = field(default=False, metadata=field_options(alias="isOnline"))
    desc: str | None = None
    #: Free form data, ``ble_key`` holds the beacon key of Bluetooth devices
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def is_bluetooth(self) -> bool:
        """Return True for devices that may have a beacon key."""
        return BLUETOOTH_MARKER in self.did

    @property
    def ble_key(self) -> str | None:
        """Return the beacon key if one was fetched."""
        return self.extra.get("ble_key")

    @classmethod
    def from_cloud(cls, info: dict[str, Any]) -> Device:
        """Create a device from a home_device_list entry."""
        return cls(
            did=str(info.get("did", "")),
            name=info.get("name"),
            model=info.get("model"),
            token=info.get("token"),
            ip=info.get("localip"),
            mac=info.get("mac"),
            ssid=info.get("ssid"),
            bssid=info.get("bssid"),
            rssi=info.get("rssi"),
            is_online=bool(info.get("isOnline", False)),
            desc=info.get("desc"),
            extra=dict(info.get("extra") or {}),
        )


@dataclass(frozen=True)
class Home:
    """A home the account owns or is shared with."""

    home_id: str
    home_owner: str
    name: str | None = None
