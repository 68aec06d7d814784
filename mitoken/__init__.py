"""Python library to extract device tokens from the Xiaomi cloud.

Log in, keeping the session for later runs::

>>> from mitoken import CloudLogin, LoginSuccess
>>> result = await CloudLogin().start("user@example.com", "password")
>>> if isinstance(result, LoginSuccess):
...     result.session.save("session.json")

and list the devices of every home with their local control secrets::

>>> from mitoken import DeviceEnumerator, Session
>>> enumerator = DeviceEnumerator(Session.load("session.json"))
>>> async for event in enumerator.stream():
...     print(event.message)

Failures of the library are raised as `MiCloudException` and are expected
to be handled by the user of the library.
"""

from mitoken.auth import (
    AuthState,
    CloudLogin,
    LoginCheckpoint,
    LoginFailure,
    LoginResult,
    LoginSuccess,
    VerificationRequired,
)
from mitoken.cloudconfig import CloudConfig, CloudServer
from mitoken.credentials import ClientIdentity, Credentials
from mitoken.device import Device, Home
from mitoken.enumerator import DeviceEnumerator, validate_session
from mitoken.exceptions import (
    AuthenticationError,
    CloudApiError,
    CloudErrorCode,
    InvalidResponseError,
    MiCloudException,
    MissingKeyMaterialError,
    TimeoutError,
    TooManyRedirectsError,
    VerificationNotPersistedError,
)
from mitoken.progress import EventKind, ProgressEvent
from mitoken.protocol import CloudProtocol, create_protocol
from mitoken.session import Session
from mitoken.version import __version__

__all__ = [
    "__version__",
    "CloudLogin",
    "AuthState",
    "LoginCheckpoint",
    "LoginResult",
    "LoginSuccess",
    "LoginFailure",
    "VerificationRequired",
    "CloudConfig",
    "CloudServer",
    "Credentials",
    "ClientIdentity",
    "Session",
    "Device",
    "Home",
    "DeviceEnumerator",
    "validate_session",
    "EventKind",
    "ProgressEvent",
    "CloudProtocol",
    "create_protocol",
    "MiCloudException",
    "AuthenticationError",
    "CloudApiError",
    "CloudErrorCode",
    "InvalidResponseError",
    "MissingKeyMaterialError",
    "TimeoutError",
    "TooManyRedirectsError",
    "VerificationNotPersistedError",
]
