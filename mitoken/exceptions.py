"""python-mitoken exceptions."""

from __future__ import annotations

from asyncio import TimeoutError as _asyncioTimeoutError
from enum import IntEnum
from functools import cache
from typing import Any


class MiCloudException(Exception):
    """Base exception for library errors."""


class TimeoutError(MiCloudException, _asyncioTimeoutError):
    """Timeout exception for cloud errors."""

    def __repr__(self) -> str:
        return MiCloudException.__repr__(self)

    def __str__(self) -> str:
        return MiCloudException.__str__(self)


class _ConnectionError(MiCloudException):
    """Connection exception for cloud errors."""


class InvalidResponseError(MiCloudException):
    """Response did not have the shape the protocol expects."""


class MissingKeyMaterialError(MiCloudException):
    """Signing or encryption was attempted without an ssecurity."""


class CloudApiError(MiCloudException):
    """Base exception for errors reported by the cloud."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        self.error_code: CloudErrorCode | None = kwargs.get("error_code")
        super().__init__(*args)

    def __repr__(self) -> str:
        err_code = self.error_code.__repr__() if self.error_code else ""
        return f"{self.__class__.__name__}({err_code})"

    def __str__(self) -> str:
        err_code = f" (error_code={self.error_code.name})" if self.error_code else ""
        return super().__str__() + err_code


class AuthenticationError(CloudApiError):
    """Base exception for account login errors."""


class VerificationNotPersistedError(AuthenticationError):
    """Login asked for identity verification again after it succeeded."""


class TooManyRedirectsError(MiCloudException):
    """A redirect chain exceeded the configured hop limit."""


class CloudErrorCode(IntEnum):
    """Enum for cloud error codes."""

    def __str__(self) -> str:
        return f"{self.name}({self.value})"

    @staticmethod
    @cache
    def from_int(value: int) -> CloudErrorCode:
        """Convert an integer to a CloudErrorCode."""
        try:
            return CloudErrorCode(value)
        except ValueError:
            return CloudErrorCode.INTERNAL_UNKNOWN_ERROR

    SUCCESS = 0

    # Account service
    NEED_VERIFICATION = 20003
    INVALID_CREDENTIALS = 70016

    # Library internal for unknown error codes
    INTERNAL_UNKNOWN_ERROR = -100_000


def get_error_code(raw: Any) -> CloudErrorCode:
    """Return the error code enum for a raw response code."""
    try:
        return CloudErrorCode.from_int(int(raw))
    except (TypeError, ValueError):
        return CloudErrorCode.INTERNAL_UNKNOWN_ERROR
