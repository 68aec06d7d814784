"""Base class for all api transport implementations.

All transport classes must derive from this to implement the common interface.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from ..credentials import ClientIdentity
from ..exceptions import CloudApiError, CloudErrorCode, get_error_code
from ..httpclient import HttpClient

if TYPE_CHECKING:
    from ..cloudconfig import CloudConfig
    from ..session import Session


class BaseTransport(ABC):
    """Base class for all api service transports."""

    COMMON_HEADERS = {
        "Accept-Encoding": "identity",
        "Content-Type": "application/x-www-form-urlencoded",
        "x-xiaomi-protocal-flag-cli": "PROTOCAL-HTTP2",
    }

    def __init__(
        self,
        *,
        session: Session,
        config: CloudConfig,
        http_client: HttpClient | None = None,
    ) -> None:
        """Create a transport object."""
        self._session = session
        self._config = config
        self._http_client = http_client or HttpClient(config)
        self._identity = ClientIdentity.generate(session.device_id)
        self._jar = session.cookie_jar()

    @property
    def session(self) -> Session:
        """The session the transport signs calls with."""
        return self._session

    @property
    def config(self) -> CloudConfig:
        """The cloud configuration in use."""
        return self._config

    def _headers(self) -> dict[str, str]:
        return {
            **self.COMMON_HEADERS,
            "User-Agent": self._identity.agent,
            "Cookie": self._jar.api_header(
                user_id=self._session.user_id,
                service_token=self._session.service_token,
                device_id=self._session.device_id,
            ),
        }

    def _handle_response(self, url: str, response: Any) -> dict[str, Any]:
        if not isinstance(response, dict):
            raise CloudApiError(
                f"Unexpected response from {url}: {response!r}",
                error_code=CloudErrorCode.INTERNAL_UNKNOWN_ERROR,
            )
        error_code = get_error_code(response.get("code"))
        if error_code is CloudErrorCode.SUCCESS:
            return response
        message = response.get("message") or "Unknown error"
        raise CloudApiError(
            f"Error calling {url}: {message} (code {response.get('code')})",
            error_code=error_code,
        )

    @abstractmethod
    async def send(self, url: str, params: dict[str, str]) -> dict[str, Any]:
        """Send a call to the api service and return the response envelope."""

    async def close(self) -> None:
        """Close the http client."""
        await self._http_client.close()
