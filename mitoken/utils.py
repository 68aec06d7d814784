"""Helpers shared by the python-mitoken modules."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, TypeVar, cast

_T = TypeVar("_T")

Redactor = Callable[[Any], Any] | None


def mask_mac(mac: str) -> str:
    """Return the mac address with the device specific half zeroed."""
    delim = next((d for d in ":-" if d in mac), "")
    octets = mac.split(delim) if delim else [mac[i : i + 2] for i in range(0, 12, 2)]
    return delim.join(octets[:3] + ["00"] * (len(octets) - 3))


def mask_secret(value: Any) -> str:
    """Return a placeholder keeping only the length of a secret."""
    return f"**REDACTED({len(str(value))})**"


REDACTORS: dict[str, Redactor] = {
    "token": mask_secret,
    "ssecurity": mask_secret,
    "serviceToken": mask_secret,
    "passToken": mask_secret,
    "signature": None,
    "rc4_hash__": None,
    "beaconkey": mask_secret,
    "ble_key": mask_secret,
    "mac": mask_mac,
    "bssid": mask_mac,
    "ssid": lambda x: "#MASKED_SSID#" if x else "",
}


def redact_data(data: _T, redactors: dict[str, Redactor] | None = None) -> _T:
    """Redact the secrets in an api document for logging.

    Keys with a ``None`` redactor are replaced entirely, others are passed
    through their redactor. Nested dicts and lists are walked.
    """
    if redactors is None:
        redactors = REDACTORS

    if isinstance(data, list):
        return cast(_T, [redact_data(val, redactors) for val in data])
    if not isinstance(data, dict):
        return data

    redacted = {}
    for key, value in data.items():
        if value is None or value == "":
            redacted[key] = value
        elif key in redactors:
            redactor = redactors[key]
            try:
                redacted[key] = redactor(value) if redactor else "**REDACTED**"
            except (TypeError, ValueError, IndexError):
                redacted[key] = "**REDACTEX**"
        else:
            redacted[key] = redact_data(value, redactors)

    return cast(_T, redacted)
