"""Credentials and client identity for the account service."""

from __future__ import annotations

import secrets
import string
from dataclasses import dataclass, field

from .json import DataClassJSONMixin

APP_VERSION = "APP/com.xiaomi.mihome APPV/10.5.201"


@dataclass
class Credentials:
    """Credentials for authentication."""

    #: Username (email, phone or user id) of the cloud account
    username: str = field(default="", repr=False)
    #: Password of the cloud account
    password: str = field(default="", repr=False)


def _random_chars(alphabet: str, length: int) -> str:
    return "".join(secrets.choice(alphabet) for _ in range(length))


def generate_agent() -> str:
    """Return a synthetic mihome app user agent."""
    agent_id = _random_chars("ABCDE", 13)
    random_text = _random_chars(string.ascii_lowercase, 18)
    return f"{random_text}-{agent_id} {APP_VERSION}"


def generate_device_id() -> str:
    """Return a random 6 letter device identifier."""
    return _random_chars(string.ascii_lowercase, 6)


@dataclass(frozen=True)
class ClientIdentity(DataClassJSONMixin):
    """User agent and device id presented for one login attempt.

    The account service binds the later login steps to the identity used in
    the first one, so the same instance has to be used for the whole attempt.
    """

    agent: str
    device_id: str

    @classmethod
    def generate(cls, device_id: str | None = None) -> ClientIdentity:
        """Create a new random identity, optionally keeping a device id."""
        return cls(generate_agent(), device_id or generate_device_id())
