"""Implementation of the RC4 encrypted api transport.

Every call uses a fresh nonce. The signed nonce derived from it is the RC4 key
for the request parameters and for the response body:

1. ``rc4_hash__`` is the SHA-1 signature of the plaintext parameters
2. every parameter value, ``rc4_hash__`` included, is encrypted on its own
   with a fresh drop-1024 keystream
3. ``signature`` is the SHA-1 signature of the encrypted parameters
4. ``signature``, ``ssecurity`` and ``_nonce`` are appended in plaintext

The parameters are sent as the query string of an empty POST and the
response body is the base64 RC4 encrypted JSON envelope.
"""

from __future__ import annotations

import logging
from pprint import pformat as pf
from typing import Any
from urllib.parse import urlencode

from ..crypto import (
    decrypt_rc4,
    enc_signature,
    encrypt_rc4,
    generate_nonce,
    signed_nonce,
)
from ..exceptions import InvalidResponseError, MissingKeyMaterialError
from ..json import loads as json_loads
from ..utils import redact_data
from .basetransport import BaseTransport

_LOGGER = logging.getLogger(__name__)


class Rc4Transport(BaseTransport):
    """Transport for the RC4 encrypted api calls."""

    METHOD = "POST"
    COMMON_HEADERS = {
        **BaseTransport.COMMON_HEADERS,
        "MIOT-ENCRYPT-ALGORITHM": "ENCRYPT-RC4",
    }

    def encrypt_params(
        self, url: str, params: dict[str, str], nonce: str
    ) -> tuple[str, dict[str, str]]:
        """Return the signed nonce and the encrypted, signed parameters."""
        ssecurity = self._session.ssecurity
        if not ssecurity:
            raise MissingKeyMaterialError(
                "Session has no ssecurity, unable to encrypt the request"
            )
        key = signed_nonce(ssecurity, nonce)
        plain = {**params}
        plain["rc4_hash__"] = enc_signature(url, self.METHOD, key, plain)
        encrypted = {
            name: encrypt_rc4(key, str(value)) for name, value in plain.items()
        }
        encrypted["signature"] = enc_signature(url, self.METHOD, key, encrypted)
        encrypted["ssecurity"] = ssecurity
        encrypted["_nonce"] = nonce
        return key, encrypted

    async def send(self, url: str, params: dict[str, str]) -> dict[str, Any]:
        """Encrypt and send the call, returning the decrypted envelope."""
        key, encrypted = self.encrypt_params(url, params, generate_nonce())
        _LOGGER.debug("Sending encrypted call to %s: %s", url, params)

        response = await self._http_client.post(
            f"{url}?{urlencode(encrypted)}",
            headers=self._headers(),
        )
        self._jar.update_from_headers(response.set_cookies)

        try:
            decrypted = decrypt_rc4(key, response.text)
            response_data = json_loads(decrypted)
        except Exception as ex:
            raise InvalidResponseError(
                f"Unable to decrypt response from {url} "
                f"(status {response.status}): {response.text[:100]!r}"
            ) from ex

        if _LOGGER.isEnabledFor(logging.DEBUG):
            _LOGGER.debug("%s << %s", url, pf(redact_data(response_data)))

        return self._handle_response(url, response_data)
