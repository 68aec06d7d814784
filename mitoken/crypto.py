"""Cryptographic helpers for the Xiaomi cloud protocol.

The api service uses a nonce scoped to a one minute window::

    nonce = base64(random(8) | uint32_be(now_ms // 60000))
    signed_nonce = base64(sha256(b64decode(ssecurity) | b64decode(nonce)))

The signed nonce keys an RC4 stream with the first 1024 bytes of keystream
discarded, and is part of both request signature algorithms:

- encrypted calls sign ``METHOD&path&k=v...&signed_nonce`` with SHA-1
- signed calls and account calls sign ``path&signed_nonce&nonce&k=v...``
  with HMAC-SHA256 keyed by the decoded signed nonce

Parameters are always signed sorted by key.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import secrets
import struct
import time
from collections.abc import Mapping
from typing import Any

from cryptography.hazmat.decrepit.ciphers.algorithms import ARC4
from cryptography.hazmat.primitives.ciphers import Cipher

from .exceptions import MissingKeyMaterialError

RC4_DROP_BYTES = 1024
NONCE_WINDOW_MS = 60000

_UNSIGNED_INT_NETWORK_ORDER = struct.Struct(">I")


def _b64encode(payload: bytes) -> str:
    return base64.b64encode(payload).decode()


def hash_password(password: str) -> str:
    """Return the password hash the account service expects."""
    return hashlib.md5(password.encode()).hexdigest().upper()  # noqa: S324


def generate_nonce(millis: int | None = None) -> str:
    """Return a new nonce bound to the current minute."""
    if millis is None:
        millis = int(time.time() * 1000)
    window = _UNSIGNED_INT_NETWORK_ORDER.pack(millis // NONCE_WINDOW_MS)
    return _b64encode(secrets.token_bytes(8) + window)


def signed_nonce(ssecurity: str | None, nonce: str) -> str:
    """Derive the per call key from the ssecurity and the nonce."""
    if not ssecurity:
        raise MissingKeyMaterialError("Missing ssecurity, unable to sign the nonce")
    digest = hashlib.sha256(
        base64.b64decode(ssecurity) + base64.b64decode(nonce)
    ).digest()
    return _b64encode(digest)


def rc4_transform(key: bytes, data: bytes) -> bytes:
    """Run data through RC4 after dropping the first 1024 keystream bytes.

    Encryption and decryption are the same operation.
    """
    if not key:
        raise MissingKeyMaterialError("Missing RC4 key")
    cipher = Cipher(ARC4(key), mode=None).encryptor()
    cipher.update(bytes(RC4_DROP_BYTES))
    return cipher.update(data) + cipher.finalize()


def encrypt_rc4(key: str, payload: str) -> str:
    """Encrypt a text payload with a base64 key, returning base64."""
    return _b64encode(rc4_transform(base64.b64decode(key), payload.encode()))


def decrypt_rc4(key: str, payload: str | bytes) -> bytes:
    """Decrypt a base64 payload with a base64 key."""
    return rc4_transform(base64.b64decode(key), base64.b64decode(payload))


def _sorted_params(params: Mapping[str, Any]) -> list[str]:
    return [f"{key}={params[key]}" for key in sorted(params)]


def _api_path(url: str) -> str:
    _, _, path = url.partition("com")
    return path.replace("/app/", "/")


def enc_signature(
    url: str, method: str, signed_nonce: str, params: Mapping[str, Any]
) -> str:
    """Return the SHA-1 signature used on encrypted api calls."""
    signature_params = [method.upper(), _api_path(url)]
    signature_params.extend(_sorted_params(params))
    signature_params.append(signed_nonce)
    payload = "&".join(signature_params).encode()
    return _b64encode(hashlib.sha1(payload).digest())  # noqa: S324


def login_signature(
    url: str, signed_nonce: str, nonce: str, params: Mapping[str, Any] | None = None
) -> str:
    """Return the HMAC-SHA256 signature used on signed calls."""
    _, sep, path = url.partition(".com")
    signature_params = [path if sep else url, signed_nonce, nonce]
    if params:
        signature_params.extend(_sorted_params(params))
    payload = "&".join(signature_params).encode()
    key = base64.b64decode(signed_nonce)
    return _b64encode(hmac.new(key, payload, hashlib.sha256).digest())
