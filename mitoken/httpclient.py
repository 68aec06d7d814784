"""Module for HttpClient class."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

import aiohttp
from yarl import URL

from .cloudconfig import CloudConfig
from .exceptions import (
    MiCloudException,
    TimeoutError,
    _ConnectionError,
)

_LOGGER = logging.getLogger(__name__)


@dataclass
class HttpResponse:
    """Result of a single http exchange."""

    status: int
    text: str
    #: Raw location header, redirects are never followed automatically
    location: str | None = None
    #: Every Set-Cookie header of the response, in order
    set_cookies: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        """Return True for a 2xx status."""
        return 200 <= self.status < 300

    @property
    def is_redirect(self) -> bool:
        """Return True for a 3xx status carrying a location."""
        return 300 <= self.status < 400 and bool(self.location)


def to_url(url: URL | str) -> URL:
    """Return url as a yarl URL without re-encoding it."""
    return url if isinstance(url, URL) else URL(url, encoded=True)


class HttpClient:
    """HttpClient Class.

    Cookies are not stored by the underlying session, callers collect them
    from :attr:`HttpResponse.set_cookies` and send them back explicitly.
    """

    def __init__(self, config: CloudConfig) -> None:
        self._config = config
        self._client_session: aiohttp.ClientSession | None = None

    @property
    def client(self) -> aiohttp.ClientSession:
        """Return the underlying http client."""
        if self._config.http_client and issubclass(
            self._config.http_client.__class__, aiohttp.ClientSession
        ):
            return self._config.http_client

        if not self._client_session:
            self._client_session = aiohttp.ClientSession(
                cookie_jar=aiohttp.DummyCookieJar()
            )
        return self._client_session

    async def request(
        self,
        method: str,
        url: URL | str,
        *,
        data: dict[str, str] | str | bytes | None = None,
        headers: dict[str, str] | None = None,
    ) -> HttpResponse:
        """Perform one http request without following redirects."""
        url = to_url(url)
        _LOGGER.debug("%s %s", method, url.with_query(None))
        if self._config.timeout is None:
            _LOGGER.warning("Request timeout is set to None.")
        client_timeout = aiohttp.ClientTimeout(total=self._config.timeout)

        try:
            resp = await self.client.request(
                method,
                url,
                data=data,
                headers=headers,
                timeout=client_timeout,
                allow_redirects=False,
            )
            async with resp:
                response_data = await resp.read()
                location = resp.headers.get("Location")
                set_cookies = resp.headers.getall("Set-Cookie", [])
        except (aiohttp.ServerDisconnectedError, aiohttp.ClientOSError) as ex:
            raise _ConnectionError(
                f"Cloud connection error: {url.host}: {ex}", ex
            ) from ex
        except (aiohttp.ServerTimeoutError, asyncio.TimeoutError) as ex:
            raise TimeoutError(
                "Unable to query the cloud, " + f"timed out: {url.host}: {ex}",
                ex,
            ) from ex
        except Exception as ex:
            raise MiCloudException(
                f"Unable to query the cloud: {url.host}: {ex}", ex
            ) from ex

        if not 200 <= resp.status < 400:
            _LOGGER.debug(
                "%s received status code %s with response %r",
                url.host,
                resp.status,
                response_data[:200],
            )

        return HttpResponse(
            status=resp.status,
            text=response_data.decode(errors="replace"),
            location=location,
            set_cookies=list(set_cookies),
        )

    async def get(self, url: URL | str, **kwargs) -> HttpResponse:
        """Send a GET request."""
        return await self.request("GET", url, **kwargs)

    async def post(self, url: URL | str, **kwargs) -> HttpResponse:
        """Send a POST request."""
        return await self.request("POST", url, **kwargs)

    async def close(self) -> None:
        """Close the ClientSession."""
        client = self._client_session
        self._client_session = None
        if client:
            await client.close()
