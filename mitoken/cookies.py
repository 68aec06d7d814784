"""Cookie accumulation across login and api exchanges."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Mapping, MutableMapping

_LOGGER = logging.getLogger(__name__)

#: Cookies the api service expects on every call besides the session ones
API_COOKIES = {
    "locale": "en_GB",
    "timezone": "GMT+02:00",
    "is_daylight": "1",
    "dst_offset": "3600000",
    "channel": "MI_APP_STORE",
    "sdkVersion": "accountsdk-18.8.15",
}

_SESSION_COOKIES = ("userId", "serviceToken", "yetAnotherServiceToken")


def parse_set_cookie(header: str) -> tuple[str, str] | None:
    """Return the name and value of a single Set-Cookie header."""
    name, sep, value = header.split(";", 1)[0].strip().partition("=")
    if not sep or not name or not value:
        return None
    return name.strip(), value.strip()


class CookieJar(MutableMapping[str, str]):
    """Additive mapping of cookie name to value.

    Cookies are never pruned, a later value for the same name overwrites the
    earlier one.
    """

    def __init__(self, cookies: Mapping[str, str] | None = None) -> None:
        self._cookies: dict[str, str] = dict(cookies or {})

    def __getitem__(self, key: str) -> str:
        return self._cookies[key]

    def __setitem__(self, key: str, value: str) -> None:
        self._cookies[key] = value

    def __delitem__(self, key: str) -> None:
        del self._cookies[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._cookies)

    def __len__(self) -> int:
        return len(self._cookies)

    def __repr__(self) -> str:
        return f"CookieJar({sorted(self._cookies)})"

    def update_from_headers(self, set_cookies: Iterable[str]) -> None:
        """Store every cookie found in the Set-Cookie headers."""
        for header in set_cookies:
            if parsed := parse_set_cookie(header):
                name, value = parsed
                _LOGGER.debug("Received cookie %s", name)
                self._cookies[name] = value

    def as_dict(self) -> dict[str, str]:
        """Return a copy of the jar contents."""
        return dict(self._cookies)

    def api_header(
        self,
        *,
        user_id: str | None,
        service_token: str | None,
        device_id: str,
        **extra: str,
    ) -> str:
        """Return the Cookie header sent to the account and api services.

        Session cookies and the fixed app cookies come first, followed by the
        rest of the jar and finally any keyword arguments.
        """
        entries: list[str] = []
        if user_id:
            entries.append(f"userId={user_id}")
        if service_token:
            entries.append(f"serviceToken={service_token}")
            entries.append(f"yetAnotherServiceToken={service_token}")
        entries.extend(f"{name}={value}" for name, value in API_COOKIES.items())
        entries.append(f"deviceId={device_id}")
        skip = {*_SESSION_COOKIES, *API_COOKIES, "deviceId", *extra}
        entries.extend(
            f"{name}={value}"
            for name, value in self._cookies.items()
            if name not in skip
        )
        entries.extend(f"{name}={value}" for name, value in extra.items() if value)
        return "; ".join(entries)
