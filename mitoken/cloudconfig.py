"""Configuration for talking to the Xiaomi cloud.

The config is a plain serializable value so it can be stored alongside a
:class:`~mitoken.session.Session`:

>>> from mitoken import CloudConfig
>>> config = CloudConfig(server="de")
>>> config.api_url
'https://de.api.io.mi.com/app'
>>> CloudConfig.from_dict(config.to_dict()) == config
True

"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Self

from aiohttp import ClientSession
from mashumaro import field_options
from mashumaro.config import BaseConfig
from mashumaro.types import SerializationStrategy

from .exceptions import MiCloudException
from .json import DataClassJSONMixin


class CloudServer(Enum):
    """Regional api servers."""

    China = "cn"
    Germany = "de"
    UnitedStates = "us"
    Russia = "ru"
    Taiwan = "tw"
    Singapore = "sg"
    India = "in"
    International = "i2"


SERVERS = [server.value for server in CloudServer]


class _CloudConfigBaseMixin(DataClassJSONMixin):
    """Base class for serialization mixin."""

    class Config(BaseConfig):
        """Serialization config."""

        omit_none = True


class _DoNotSerialize(SerializationStrategy):
    def serialize(self, value: Any) -> None:
        return None

    def deserialize(self, value: Any) -> None:
        return None


@dataclass
class CloudConfig(_CloudConfigBaseMixin):
    """Class to represent parameters that determine how to reach the cloud."""

    DEFAULT_TIMEOUT = 10
    DEFAULT_MAX_REDIRECTS = 5

    #: Regional server the account lives on
    server: str = CloudServer.China.value
    #: Timeout for a single http exchange
    timeout: int | None = DEFAULT_TIMEOUT
    #: Maximum number of redirects followed by hand in one chain
    max_redirects: int = DEFAULT_MAX_REDIRECTS

    # compare=False will be excluded from object comparison.
    #: Set a custom http_client for the cloud calls to use.
    http_client: ClientSession | None = field(
        default=None,
        compare=False,
        metadata=field_options(serialization_strategy=_DoNotSerialize()),
    )

    def __post_init__(self) -> None:
        if self.server not in SERVERS:
            raise MiCloudException(
                f"Invalid server {self.server}, expected one of {', '.join(SERVERS)}"
            )

    def __pre_serialize__(self) -> Self:
        return replace(self, http_client=None)

    @property
    def api_url(self) -> str:
        """Return the base url of the api service for the server."""
        if self.server == CloudServer.China.value:
            return "https://api.io.mi.com/app"
        return f"https://{self.server}.api.io.mi.com/app"
