"""Authenticated cloud session.

A :class:`Session` is the only artifact needed to skip the login on a later
run. It is a plain value and can be stored anywhere:

>>> session = Session("user@example.com", user_id="123", service_token="tok",
...                   ssecurity="c2VjcmV0", device_id="abcdef")
>>> Session.from_dict(session.to_dict()) == session
True

Whether the cloud still accepts it can only be found out with
:func:`mitoken.validate_session`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from mashumaro import field_options
from mashumaro.config import BaseConfig

from .cookies import CookieJar
from .credentials import generate_device_id
from .json import DataClassJSONMixin
from .json import dumps as json_dumps
from .json import loads as json_loads

_LOGGER = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(UTC)


@dataclass
class Session(DataClassJSONMixin):
    """Result of a successful login."""

    class Config(BaseConfig):
        """Serialization config."""

        serialize_by_alias = True

    #: Username the session was created for
    username: str
    #: Numeric account id, kept as text
    user_id: str | None = field(default=None, metadata=field_options(alias="userId"))
    #: Service token obtained from the login redirect chain
    service_token: str | None = field(
        default=None, repr=False, metadata=field_options(alias="serviceToken")
    )
    #: Base64 secret used to derive the per call keys
    ssecurity: str | None = field(default=None, repr=False)
    #: Cookies collected during the login
    cookies: dict[str, str] = field(default_factory=dict, repr=False)
    #: Device id presented to the cloud
    device_id: str = field(
        default_factory=generate_device_id, metadata=field_options(alias="deviceId")
    )
    #: Creation time of the session
    saved_at: datetime = field(
        default_factory=_now, metadata=field_options(alias="savedAt")
    )

    @classmethod
    def __pre_deserialize__(cls, d: dict[Any, Any]) -> dict[Any, Any]:
        d = {**d}
        if not d.get("deviceId"):
            d["deviceId"] = d.pop("device_id", None) or generate_device_id()
        for key in ("userId", "serviceToken", "ssecurity"):
            if d.get(key) is not None:
                d[key] = str(d[key])
        if d.get("cookies") is None:
            d["cookies"] = {}
        if d.get("savedAt") is None:
            d["savedAt"] = _now().isoformat()
        return d

    @property
    def is_valid(self) -> bool:
        """Return True if the session holds the keys for encrypted calls."""
        return bool(self.service_token and self.ssecurity)

    def cookie_jar(self) -> CookieJar:
        """Return a new jar holding the session cookies."""
        jar = CookieJar(self.cookies)
        if self.user_id:
            jar["userId"] = self.user_id
        if self.service_token:
            jar["serviceToken"] = self.service_token
            jar["yetAnotherServiceToken"] = self.service_token
        return jar

    def save(self, path: str | Path) -> None:
        """Write the session as json to path."""
        Path(path).write_text(json_dumps(self.to_dict(), indent=True))
        _LOGGER.debug("Saved session for %s to %s", self.username, path)

    @classmethod
    def load(cls, path: str | Path) -> Session:
        """Read a session written by :meth:`save`."""
        session = cls.from_dict(json_loads(Path(path).read_text()))
        _LOGGER.debug("Loaded session for %s from %s", session.username, path)
        return session
