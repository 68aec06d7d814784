"""Xiaomi account login.

The login is a three step exchange with the account service:

step1: GET ``serviceLogin`` with a ``userId`` cookie. The response carries the
``_sign`` token for the next step.

step2: POST ``serviceLoginAuth2`` with the sign, the MD5 password hash and the
device id. The response either completes the login with the ssecurity,
userId and a ``location`` to follow, or asks for an identity verification
(code 20003, or code 0 with security status 16).

verification: the user receives a one time code by text or email. The
available options are listed at ``identity/list``, the code is posted to the
matching verify endpoint and step2 is then repeated, this time without a
verification demand.

step3: follow ``location`` by hand through its redirect chain, collecting the
cookies of every hop. The ``serviceToken`` cookie completes the login.

Every transition takes a :class:`LoginCheckpoint` and returns a new one. A
checkpoint can be exported as an opaque blob and the login resumed from it in
another process, which is how the verification code is usually supplied.
"""

from __future__ import annotations

import base64
import logging
import re
import time
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from enum import Enum, IntEnum
from typing import Any

from mashumaro.config import BaseConfig
from yarl import URL

from .cloudconfig import CloudConfig
from .cookies import CookieJar
from .credentials import ClientIdentity, Credentials
from .crypto import hash_password
from .exceptions import (
    AuthenticationError,
    CloudErrorCode,
    InvalidResponseError,
    MiCloudException,
    TooManyRedirectsError,
    VerificationNotPersistedError,
    get_error_code,
)
from .httpclient import HttpClient, HttpResponse, to_url
from .json import DataClassJSONMixin, loads_response
from .json import dumps as json_dumps
from .json import loads as json_loads
from .session import Session

_LOGGER = logging.getLogger(__name__)

SECURITY_STATUS_VERIFY = 16


class AuthState(Enum):
    """State of a login attempt."""

    Init = "init"
    Step1Done = "step1_done"
    Step2Done = "step2_done"
    VerificationRequired = "verification_required"
    VerificationDone = "verification_done"
    Step3Done = "step3_done"
    Failed = "failed"


class IdentityOption(IntEnum):
    """Channels a verification code can be sent through."""

    Phone = 4
    Email = 8


@dataclass
class AuthProgress(DataClassJSONMixin):
    """Values collected by the steps of one login attempt."""

    class Config(BaseConfig):
        """Serialization config."""

        omit_none = True

    state: AuthState = AuthState.Init
    #: Hash of the password, step2 has to be repeated after a verification
    password_hash: str | None = field(default=None, repr=False)
    sign: str | None = None
    ssecurity: str | None = field(default=None, repr=False)
    user_id: str | None = None
    c_user_id: str | None = None
    pass_token: str | None = field(default=None, repr=False)
    location: str | None = None
    code: int | None = None
    verify_url: str | None = None
    identity_session: str | None = field(default=None, repr=False)
    identity_options: list[int] = field(default_factory=list)
    service_token: str | None = field(default=None, repr=False)
    #: Set once the identity verification succeeded
    verified: bool = False


@dataclass
class LoginCheckpoint(DataClassJSONMixin):
    """Everything needed to continue a login attempt."""

    username: str
    identity: ClientIdentity
    progress: AuthProgress = field(default_factory=AuthProgress)
    cookies: dict[str, str] = field(default_factory=dict, repr=False)

    @property
    def state(self) -> AuthState:
        """Return the state of the attempt."""
        return self.progress.state

    def to_blob(self) -> str:
        """Return the checkpoint as an opaque string."""
        return base64.urlsafe_b64encode(json_dumps(self.to_dict()).encode()).decode()

    @classmethod
    def from_blob(cls, blob: str) -> LoginCheckpoint:
        """Restore a checkpoint created by :meth:`to_blob`."""
        try:
            return cls.from_dict(json_loads(base64.urlsafe_b64decode(blob.encode())))
        except Exception as ex:
            raise MiCloudException(f"Invalid login checkpoint: {ex}") from ex


@dataclass(frozen=True)
class LoginSuccess:
    """The login completed."""

    session: Session


@dataclass(frozen=True)
class VerificationRequired:
    """The login is on hold until a verification code is supplied."""

    checkpoint: LoginCheckpoint

    @property
    def verify_url(self) -> str | None:
        """Return the url the user can follow to request the code."""
        return self.checkpoint.progress.verify_url

    @property
    def blob(self) -> str:
        """Return the checkpoint to pass to :meth:`CloudLogin.resume`."""
        return self.checkpoint.to_blob()


@dataclass(frozen=True)
class LoginFailure:
    """The login attempt failed."""

    reason: str
    #: Last state the attempt reached, None if it could not be restored
    failed_in: AuthState | None = None
    error: MiCloudException | None = None

    @property
    def state(self) -> AuthState:
        """Return the terminal state of the attempt."""
        return AuthState.Failed


LoginResult = LoginSuccess | VerificationRequired | LoginFailure


def _scavenge_session_fields(text: str) -> dict[str, str]:
    """Return session fields found in a verification redirect body."""
    if "ssecurity" not in text and "serviceToken" not in text:
        return {}
    try:
        data = loads_response(text)
    except ValueError:
        if not (match := re.search(r"\{.*?\}", text)):
            return {}
        try:
            data = json_loads(match.group(0))
        except ValueError:
            return {}
    if not isinstance(data, dict):
        return {}
    keys = {"ssecurity": "ssecurity", "userId": "user_id", "location": "location"}
    return {attr: str(data[key]) for key, attr in keys.items() if data.get(key)}


class CloudLogin:
    """Login state machine for the Xiaomi account service."""

    ACCOUNT_URL = "https://account.xiaomi.com"
    SERVICE_LOGIN_URL = f"{ACCOUNT_URL}/pass/serviceLogin?sid=xiaomiio&_json=true"
    LOGIN_AUTH_URL = f"{ACCOUNT_URL}/pass/serviceLoginAuth2"
    CALLBACK_URL = "https://sts.api.io.mi.com/sts"
    SERVICE_PARAM = '{"checkSafePhone":false}'
    VERIFY_APIS = {
        IdentityOption.Phone: "/identity/auth/verifyPhone",
        IdentityOption.Email: "/identity/auth/verifyEmail",
    }

    def __init__(
        self,
        config: CloudConfig | None = None,
        *,
        http_client: HttpClient | None = None,
    ) -> None:
        self._config = config or CloudConfig()
        self._http_client = http_client or HttpClient(self._config)

    @staticmethod
    def new_attempt(credentials: Credentials) -> LoginCheckpoint:
        """Return the initial checkpoint of a login attempt."""
        return LoginCheckpoint(
            username=credentials.username,
            identity=ClientIdentity.generate(),
            progress=AuthProgress(password_hash=hash_password(credentials.password)),
        )

    @staticmethod
    def _expect_state(checkpoint: LoginCheckpoint, *states: AuthState) -> None:
        if checkpoint.state not in states:
            expected = ", ".join(state.name for state in states)
            raise MiCloudException(
                f"Login is in state {checkpoint.state.name}, expected {expected}"
            )

    def _headers(
        self, checkpoint: LoginCheckpoint, jar: CookieJar, **extra: Any
    ) -> dict[str, str]:
        progress = checkpoint.progress
        return {
            "User-Agent": checkpoint.identity.agent,
            "Cookie": jar.api_header(
                user_id=progress.user_id,
                service_token=progress.service_token,
                device_id=checkpoint.identity.device_id,
                **extra,
            ),
        }

    @staticmethod
    def _parse(response: HttpResponse, step: str) -> dict[str, Any]:
        try:
            data = loads_response(response.text)
        except ValueError as ex:
            raise InvalidResponseError(
                f"Unable to parse {step} response "
                f"(status {response.status}): {response.text[:100]!r}"
            ) from ex
        if not isinstance(data, dict):
            raise InvalidResponseError(f"Unexpected {step} response: {data!r}")
        return data

    async def _follow_redirects(
        self,
        url: URL | str,
        jar: CookieJar,
        headers: Callable[[], dict[str, str]],
    ) -> HttpResponse:
        """GET url following redirects by hand, collecting every cookie."""
        url = to_url(url)
        for _ in range(self._config.max_redirects + 1):
            response = await self._http_client.get(url, headers=headers())
            jar.update_from_headers(response.set_cookies)
            if not response.is_redirect:
                return response
            url = url.join(to_url(response.location))  # type: ignore[arg-type]
            _LOGGER.debug("Following redirect to %s", url.with_query(None))
        raise TooManyRedirectsError(
            f"Gave up after {self._config.max_redirects} redirects at "
            f"{url.with_query(None)}"
        )

    async def step1(self, checkpoint: LoginCheckpoint) -> LoginCheckpoint:
        """Fetch the sign token."""
        self._expect_state(checkpoint, AuthState.Init)
        jar = CookieJar(checkpoint.cookies)
        response = await self._http_client.get(
            self.SERVICE_LOGIN_URL,
            headers={
                "User-Agent": checkpoint.identity.agent,
                "Cookie": f"userId={checkpoint.username}",
            },
        )
        jar.update_from_headers(response.set_cookies)
        data = self._parse(response, "login step 1")
        if not (sign := data.get("_sign")):
            raise InvalidResponseError("Login step 1 response has no _sign")

        _LOGGER.debug("Login step 1 complete for %s", checkpoint.username)
        return replace(
            checkpoint,
            cookies=jar.as_dict(),
            progress=replace(checkpoint.progress, sign=sign, state=AuthState.Step1Done),
        )

    async def step2(self, checkpoint: LoginCheckpoint) -> LoginCheckpoint:
        """Authenticate with the password hash.

        The returned checkpoint is either in state ``Step2Done`` or
        ``VerificationRequired``.
        """
        self._expect_state(
            checkpoint, AuthState.Step1Done, AuthState.VerificationDone
        )
        progress = checkpoint.progress
        jar = CookieJar(checkpoint.cookies)
        fields = {
            "_json": "true",
            "qs": "%3Fsid%3Dxiaomiio%26_json%3Dtrue",
            "sid": "xiaomiio",
            "_sign": progress.sign or "",
            "hash": progress.password_hash or "",
            "callback": self.CALLBACK_URL,
            "user": checkpoint.username,
            "deviceId": checkpoint.identity.device_id,
            "serviceParam": self.SERVICE_PARAM,
        }
        response = await self._http_client.post(
            self.LOGIN_AUTH_URL,
            data=fields,
            headers=self._headers(checkpoint, jar),
        )
        jar.update_from_headers(response.set_cookies)
        checkpoint = replace(checkpoint, cookies=jar.as_dict())
        if not response.ok:
            raise AuthenticationError(f"HTTP {response.status}")

        data = self._parse(response, "login step 2")
        code = data.get("code")
        if code == CloudErrorCode.SUCCESS:
            if (
                data.get("securityStatus") == SECURITY_STATUS_VERIFY
                and data.get("notificationUrl")
            ):
                return self._verification_required(checkpoint, data["notificationUrl"])
            if not data.get("location"):
                raise InvalidResponseError("Login step 2 response has no location")
            _LOGGER.debug("Login step 2 complete for %s", checkpoint.username)
            user_id = data.get("userId")
            # values recovered by a verification are kept when not repeated
            return replace(
                checkpoint,
                progress=replace(
                    progress,
                    ssecurity=data.get("ssecurity") or progress.ssecurity,
                    user_id=str(user_id) if user_id else progress.user_id,
                    c_user_id=data.get("cUserId") or progress.c_user_id,
                    pass_token=data.get("passToken") or progress.pass_token,
                    location=data["location"],
                    code=code,
                    state=AuthState.Step2Done,
                ),
            )
        if code == CloudErrorCode.NEED_VERIFICATION:
            if not (verify_url := data.get("notificationUrl")):
                raise InvalidResponseError(
                    "Login step 2 asked for verification without a notificationUrl"
                )
            return self._verification_required(checkpoint, verify_url)

        raise AuthenticationError(
            data.get("desc") or "Login failed", error_code=get_error_code(code)
        )

    @staticmethod
    def _verification_required(
        checkpoint: LoginCheckpoint, verify_url: str
    ) -> LoginCheckpoint:
        if checkpoint.progress.verified:
            raise VerificationNotPersistedError(
                "Login asked for verification again after a successful verification",
                error_code=CloudErrorCode.NEED_VERIFICATION,
            )
        _LOGGER.info("Identity verification required for %s", checkpoint.username)
        return replace(
            checkpoint,
            progress=replace(
                checkpoint.progress,
                verify_url=verify_url,
                identity_options=[],
                identity_session=None,
                state=AuthState.VerificationRequired,
            ),
        )

    async def check_identity_options(
        self, checkpoint: LoginCheckpoint
    ) -> LoginCheckpoint:
        """Fetch the verification channels available to the account.

        Falls back to the phone option when they cannot be fetched.
        """
        progress = checkpoint.progress
        jar = CookieJar(checkpoint.cookies)
        options = [IdentityOption.Phone.value]
        if progress.verify_url:
            list_url = progress.verify_url.replace(
                "identity/authStart", "identity/list"
            )
            try:
                response = await self._http_client.get(
                    list_url, headers=self._headers(checkpoint, jar)
                )
                jar.update_from_headers(response.set_cookies)
                data = self._parse(response, "identity list")
                flag = data.get("flag") or IdentityOption.Phone.value
                options = [int(option) for option in data.get("options") or [flag]]
            except (MiCloudException, TypeError, ValueError) as ex:
                _LOGGER.debug("Unable to fetch identity options, using phone: %s", ex)
        else:
            _LOGGER.warning("No verification url available, using phone")

        _LOGGER.debug("Identity options for %s: %s", checkpoint.username, options)
        return replace(
            checkpoint,
            cookies=jar.as_dict(),
            progress=replace(
                progress,
                identity_options=options,
                identity_session=jar.get("identity_session"),
            ),
        )

    async def _follow_verification_location(
        self, checkpoint: LoginCheckpoint, jar: CookieJar, location: str
    ) -> dict[str, str]:
        """Follow the verify location, returning any session fields seen."""
        identity_session = checkpoint.progress.identity_session
        try:
            response = await self._follow_redirects(
                location,
                jar,
                lambda: self._headers(
                    checkpoint, jar, identity_session=identity_session
                ),
            )
        except MiCloudException as ex:
            _LOGGER.debug("Unable to follow verification location: %s", ex)
            return {}
        return _scavenge_session_fields(response.text)

    async def verify(self, checkpoint: LoginCheckpoint, ticket: str) -> LoginCheckpoint:
        """Submit a verification code.

        Options are tried in order and the first accepting one wins. Step2
        has to be run again afterwards to complete the login.
        """
        self._expect_state(checkpoint, AuthState.VerificationRequired)
        if not checkpoint.progress.identity_options:
            checkpoint = await self.check_identity_options(checkpoint)

        progress = checkpoint.progress
        jar = CookieJar(checkpoint.cookies)
        for flag in progress.identity_options:
            if flag not in self.VERIFY_APIS:
                _LOGGER.debug("Skipping unknown identity option %s", flag)
                continue
            option = IdentityOption(flag)
            url = URL(self.ACCOUNT_URL + self.VERIFY_APIS[option]).with_query(
                _dc=str(int(time.time() * 1000))
            )
            form = {
                "_flag": str(flag),
                "ticket": ticket,
                "trust": "true",
                "_json": "true",
            }
            try:
                response = await self._http_client.post(
                    url,
                    data=form,
                    headers=self._headers(
                        checkpoint, jar, identity_session=progress.identity_session
                    ),
                )
                jar.update_from_headers(response.set_cookies)
                result = self._parse(response, f"verify {option.name.lower()}")
            except MiCloudException as ex:
                _LOGGER.warning("Verification by %s failed: %s", option.name, ex)
                continue

            if result.get("code") != CloudErrorCode.SUCCESS:
                _LOGGER.debug(
                    "Verification by %s rejected: %s",
                    option.name,
                    result.get("desc") or result.get("code"),
                )
                continue

            found: dict[str, Any] = {}
            if location := result.get("location"):
                found = await self._follow_verification_location(
                    checkpoint, jar, location
                )
            keys = {
                "ssecurity": "ssecurity",
                "userId": "user_id",
                "cUserId": "c_user_id",
                "passToken": "pass_token",
                "location": "location",
            }
            found.update(
                {
                    attr: str(result[key])
                    for key, attr in keys.items()
                    if result.get(key)
                }
            )
            _LOGGER.info("Identity verified by %s", option.name)
            return replace(
                checkpoint,
                cookies=jar.as_dict(),
                progress=replace(
                    progress,
                    **found,
                    identity_session=None,
                    verified=True,
                    state=AuthState.VerificationDone,
                ),
            )

        raise AuthenticationError("Invalid verification code")

    async def step3(self, checkpoint: LoginCheckpoint) -> LoginCheckpoint:
        """Follow the login location to obtain the service token."""
        self._expect_state(checkpoint, AuthState.Step2Done)
        if not (location := checkpoint.progress.location):
            raise InvalidResponseError("No location to complete the login with")

        jar = CookieJar(checkpoint.cookies)
        await self._follow_redirects(
            location, jar, lambda: self._headers(checkpoint, jar)
        )
        if not (service_token := jar.get("serviceToken")):
            raise AuthenticationError("Login step 3 did not return a serviceToken")

        _LOGGER.debug("Login step 3 complete for %s", checkpoint.username)
        return replace(
            checkpoint,
            cookies=jar.as_dict(),
            progress=replace(
                checkpoint.progress,
                service_token=service_token,
                state=AuthState.Step3Done,
            ),
        )

    @staticmethod
    def create_session(checkpoint: LoginCheckpoint) -> Session:
        """Return the session of a completed login."""
        CloudLogin._expect_state(checkpoint, AuthState.Step3Done)
        progress = checkpoint.progress
        if not progress.ssecurity:
            raise InvalidResponseError(
                "Login completed without an ssecurity, the session cannot sign calls"
            )
        return Session(
            username=checkpoint.username,
            user_id=progress.user_id or checkpoint.cookies.get("userId"),
            service_token=progress.service_token,
            ssecurity=progress.ssecurity,
            cookies=dict(checkpoint.cookies),
            device_id=checkpoint.identity.device_id,
        )

    async def _complete(self, checkpoint: LoginCheckpoint) -> LoginSuccess:
        checkpoint = await self.step3(checkpoint)
        session = self.create_session(checkpoint)
        _LOGGER.info("Logged in as %s", session.username)
        return LoginSuccess(session)

    @staticmethod
    def _failure(checkpoint: LoginCheckpoint, ex: MiCloudException) -> LoginFailure:
        _LOGGER.debug(
            "Login for %s failed in state %s: %s",
            checkpoint.username,
            checkpoint.state.name,
            ex,
        )
        return LoginFailure(reason=str(ex), failed_in=checkpoint.state, error=ex)

    async def start(self, username: str, password: str) -> LoginResult:
        """Log in, stopping if an identity verification is required."""
        checkpoint = self.new_attempt(Credentials(username, password))
        try:
            checkpoint = await self.step1(checkpoint)
            checkpoint = await self.step2(checkpoint)
            if checkpoint.state is AuthState.VerificationRequired:
                return VerificationRequired(checkpoint)
            return await self._complete(checkpoint)
        except MiCloudException as ex:
            return self._failure(checkpoint, ex)

    async def resume(
        self, checkpoint: LoginCheckpoint | str, ticket: str
    ) -> LoginSuccess | LoginFailure:
        """Continue a login on hold with the verification code."""
        if isinstance(checkpoint, str):
            try:
                checkpoint = LoginCheckpoint.from_blob(checkpoint)
            except MiCloudException as ex:
                return LoginFailure(reason=str(ex), error=ex)
        try:
            checkpoint = await self.verify(checkpoint, ticket)
            checkpoint = await self.step2(checkpoint)
            return await self._complete(checkpoint)
        except MiCloudException as ex:
            return self._failure(checkpoint, ex)

    async def close(self) -> None:
        """Close the http client."""
        await self._http_client.close()
