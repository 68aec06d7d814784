"""Implementation of the HMAC signed, unencrypted api transport.

Older api endpoints accept the ``data`` parameter in plaintext together with
an HMAC-SHA256 ``signature`` over the path, signed nonce, nonce and the
sorted parameters.
"""

from __future__ import annotations

import logging
from pprint import pformat as pf
from typing import Any

from ..crypto import generate_nonce, login_signature, signed_nonce
from ..exceptions import InvalidResponseError
from ..json import loads_response
from ..utils import redact_data
from .basetransport import BaseTransport

_LOGGER = logging.getLogger(__name__)


class SignedTransport(BaseTransport):
    """Transport for the HMAC signed api calls."""

    def sign_params(
        self, url: str, params: dict[str, str], nonce: str
    ) -> dict[str, str]:
        """Return the form fields for a signed call."""
        key = signed_nonce(self._session.ssecurity, nonce)
        signature = login_signature(url.replace("/app", "", 1), key, nonce, params)
        return {"signature": signature, "_nonce": nonce, **params}

    async def send(self, url: str, params: dict[str, str]) -> dict[str, Any]:
        """Sign and send the call, returning the response envelope."""
        fields = self.sign_params(url, params, generate_nonce())
        _LOGGER.debug("Sending signed call to %s: %s", url, params)

        response = await self._http_client.post(
            url, data=fields, headers=self._headers()
        )
        self._jar.update_from_headers(response.set_cookies)

        try:
            response_data = loads_response(response.text)
        except ValueError as ex:
            raise InvalidResponseError(
                f"Unable to parse response from {url} "
                f"(status {response.status}): {response.text[:100]!r}"
            ) from ex

        if _LOGGER.isEnabledFor(logging.DEBUG):
            _LOGGER.debug("%s << %s", url, pf(redact_data(response_data)))

        return self._handle_response(url, response_data)
