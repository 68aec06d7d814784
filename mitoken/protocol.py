"""Implementation of the Xiaomi cloud api protocol.

Every api call is a POST of a single ``data`` parameter holding a JSON
document, sent through one of the transports in :mod:`mitoken.transports`.
The request documents are sent exactly as the mihome app formats them.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from .exceptions import CloudApiError, InvalidResponseError, MissingKeyMaterialError
from .transports import Rc4Transport, SignedTransport

if TYPE_CHECKING:
    from .cloudconfig import CloudConfig
    from .session import Session
    from .transports import BaseTransport


_LOGGER = logging.getLogger(__name__)

HOMES_LIMIT = 300
DEVICES_LIMIT = 200


class CloudProtocol:
    """Class for the cloud api calls used for device extraction."""

    def __init__(
        self,
        *,
        transport: BaseTransport,
    ) -> None:
        """Create a protocol object."""
        self._transport = transport

    @property
    def session(self) -> Session:
        """Return the session the protocol is using."""
        return self._transport.session

    @property
    def config(self) -> CloudConfig:
        """Return the cloud configuration the protocol is using."""
        return self._transport.config

    def _url(self, path: str) -> str:
        return self.config.api_url + path

    async def query(self, path: str, data: str) -> dict[str, Any]:
        """Call an api path with a raw data document, returning the envelope."""
        return await self._transport.send(self._url(path), {"data": data})

    async def get_homes(self) -> list[dict[str, Any]]:
        """Return the homes owned by the account.

        Only the first page is fetched, accounts with more homes than the
        limit are truncated.
        """
        data = (
            '{"fg": true, "fetch_share": true, "fetch_share_dev": true, '
            f'"limit": {HOMES_LIMIT}, "app_ver": 7}}'
        )
        response = await self.query("/v2/homeroom/gethome", data)
        return (response.get("result") or {}).get("homelist") or []

    async def get_device_count(self) -> dict[str, Any]:
        """Return the device count details, including shared homes."""
        data = '{ "fetch_own": true, "fetch_share": true}'
        response = await self.query("/v2/user/get_device_cnt", data)
        return response.get("result") or {}

    async def get_shared_homes(self) -> list[dict[str, Any]]:
        """Return the homes other accounts share with this one."""
        result = await self.get_device_count()
        return (result.get("share") or {}).get("share_family") or []

    async def get_home_devices(
        self, home_id: str | int, home_owner: str | int
    ) -> list[dict[str, Any]]:
        """Return the raw device entries of a home."""
        data = (
            f'{{"home_owner": {home_owner}, "home_id": {home_id}, '
            f'"limit": {DEVICES_LIMIT}, "get_split_device": true, '
            '"support_smart_home": true}'
        )
        response = await self.query("/v2/home/home_device_list", data)
        return (response.get("result") or {}).get("device_info") or []

    async def get_beacon_key(self, did: str) -> dict[str, Any] | None:
        """Return the beacon key record of a Bluetooth device."""
        data = f'{{"did":"{did}","pdid":1}}'
        response = await self.query("/v2/device/blt_get_beaconkey", data)
        return response.get("result") or None

    async def validate_session(self) -> bool:
        """Return True if the cloud still accepts the session."""
        if not self.session.is_valid:
            _LOGGER.debug("Session for %s is missing tokens", self.session.username)
            return False
        try:
            await self.get_device_count()
        except (CloudApiError, InvalidResponseError) as ex:
            _LOGGER.debug("Session for %s rejected: %s", self.session.username, ex)
            return False
        return True

    async def close(self) -> None:
        """Close the underlying transport."""
        await self._transport.close()


def create_protocol(
    session: Session, config: CloudConfig, *, encrypted: bool = True
) -> CloudProtocol:
    """Return a protocol for the session over the requested call class."""
    if not session.ssecurity:
        raise MissingKeyMaterialError(
            f"Session for {session.username} has no ssecurity, unable to sign calls"
        )
    transport_cls = Rc4Transport if encrypted else SignedTransport
    return CloudProtocol(transport=transport_cls(session=session, config=config))
