import base64

import pytest

from mitoken import (
    AuthenticationError,
    AuthState,
    CloudConfig,
    CloudErrorCode,
    CloudLogin,
    Credentials,
    InvalidResponseError,
    LoginCheckpoint,
    LoginFailure,
    LoginSuccess,
    MiCloudException,
    TooManyRedirectsError,
    VerificationNotPersistedError,
    VerificationRequired,
)
from mitoken.crypto import hash_password

from .fakecloud import SSECURITY, FakeResponse, json_response

ACCOUNT = "https://account.xiaomi.com"
SERVICE_LOGIN = f"{ACCOUNT}/pass/serviceLogin"
LOGIN_AUTH = f"{ACCOUNT}/pass/serviceLoginAuth2"
STS = "https://sts.api.io.mi.com/sts"
VERIFY_URL = f"{ACCOUNT}/identity/authStart?sid=xiaomiio&context=ctx"

USERNAME = "user@example.com"
PASSWORD = "password"

STEP2_OK = {
    "code": 0,
    "ssecurity": SSECURITY,
    "userId": 1234,
    "cUserId": "c-user",
    "passToken": "pass-token",
    "location": f"{STS}?d=abc&nonce=1",
}
NEED_VERIFICATION = {"code": 20003, "notificationUrl": VERIFY_URL}


def add_login_routes(fake_cloud, *step2_responses):
    fake_cloud.add(
        "GET",
        SERVICE_LOGIN,
        json_response({"_sign": "sign-123"}, marker=True, cookies={"pass_ua": "web"}),
    )
    fake_cloud.add(
        "POST",
        LOGIN_AUTH,
        *[json_response(data, marker=True) for data in step2_responses or [STEP2_OK]],
    )
    fake_cloud.add(
        "GET", STS, FakeResponse(302, location="/sts/final", cookies={"userId": "1234"})
    )
    fake_cloud.add(
        "GET",
        f"{STS}/final",
        FakeResponse(200, "ok", cookies={"serviceToken": "service/token=="}),
    )


def add_verification_routes(
    fake_cloud, options=(4,), phone_code=0, location=None, **recovered
):
    fake_cloud.add(
        "GET",
        f"{ACCOUNT}/identity/list",
        json_response(
            {"code": 0, "flag": 4, "options": list(options)},
            marker=True,
            cookies={"identity_session": "identity-session"},
        ),
    )
    phone = {"code": phone_code, **recovered}
    if location:
        phone["location"] = location
    fake_cloud.add("POST", f"{ACCOUNT}/identity/auth/verifyPhone", json_response(phone))
    fake_cloud.add(
        "POST",
        f"{ACCOUNT}/identity/auth/verifyEmail",
        json_response({"code": 70014, "desc": "wrong code"}),
    )


@pytest.fixture()
async def cloud_login():
    login = CloudLogin(CloudConfig())
    yield login
    await login.close()


async def test_login(fake_cloud, cloud_login):
    add_login_routes(fake_cloud)
    result = await cloud_login.start(USERNAME, PASSWORD)

    assert isinstance(result, LoginSuccess)
    session = result.session
    assert session.username == USERNAME
    assert session.user_id == "1234"
    assert session.service_token == "service/token=="
    assert session.ssecurity == SSECURITY
    assert session.cookies["pass_ua"] == "web"
    assert session.is_valid

    step1, step2, sts, final = fake_cloud.requests
    assert step1.headers["Cookie"] == f"userId={USERNAME}"
    assert step2.data == {
        "_json": "true",
        "qs": "%3Fsid%3Dxiaomiio%26_json%3Dtrue",
        "sid": "xiaomiio",
        "_sign": "sign-123",
        "hash": hash_password(PASSWORD),
        "callback": STS,
        "user": USERNAME,
        "deviceId": session.device_id,
        "serviceParam": '{"checkSafePhone":false}',
    }
    assert step2.cookies["pass_ua"] == "web"
    assert sts.url.query_string == "d=abc&nonce=1"
    assert final.url.path == "/sts/final"
    assert final.cookies["userId"] == "1234"
    agents = {request.headers["User-Agent"] for request in fake_cloud.requests}
    assert len(agents) == 1


async def test_login_verification(fake_cloud, cloud_login):
    add_login_routes(fake_cloud, NEED_VERIFICATION, STEP2_OK)
    add_verification_routes(fake_cloud, options=(8, 4))

    result = await cloud_login.start(USERNAME, PASSWORD)
    assert isinstance(result, VerificationRequired)
    assert result.verify_url == VERIFY_URL
    assert result.checkpoint.state is AuthState.VerificationRequired

    # the code is usually entered in another process
    other = CloudLogin(CloudConfig())
    resumed = await other.resume(result.blob, "123456")
    await other.close()

    assert isinstance(resumed, LoginSuccess)
    assert resumed.session.service_token == "service/token=="

    email, phone = (
        fake_cloud.sent("/identity/auth/verifyEmail")
        + fake_cloud.sent("/identity/auth/verifyPhone")
    )
    assert email.data["_flag"] == "8"
    assert phone.data == {
        "_flag": "4",
        "ticket": "123456",
        "trust": "true",
        "_json": "true",
    }
    assert "_dc" in phone.url.query
    assert phone.cookies["identity_session"] == "identity-session"

    first, second = fake_cloud.sent("/pass/serviceLoginAuth2")
    assert first.data["deviceId"] == second.data["deviceId"]
    assert first.data["hash"] == second.data["hash"]
    assert first.headers["User-Agent"] == second.headers["User-Agent"]
    assert resumed.session.device_id == first.data["deviceId"]


async def test_login_verification_keeps_recovered_values(fake_cloud, cloud_login):
    add_login_routes(fake_cloud, NEED_VERIFICATION, {"code": 0, "location": STS})
    add_verification_routes(
        fake_cloud, ssecurity=SSECURITY, userId=1234, passToken="pass-token"
    )

    result = await cloud_login.start(USERNAME, PASSWORD)
    resumed = await cloud_login.resume(result.blob, "123456")

    assert isinstance(resumed, LoginSuccess)
    assert resumed.session.ssecurity == SSECURITY
    assert resumed.session.user_id == "1234"
    assert resumed.session.service_token == "service/token=="
    assert resumed.session.is_valid


async def test_verification_flow_without_ssecurity(fake_cloud, cloud_login):
    add_login_routes(fake_cloud, NEED_VERIFICATION, {"code": 0, "location": STS})
    add_verification_routes(fake_cloud)

    checkpoint = cloud_login.new_attempt(Credentials(USERNAME, PASSWORD))
    checkpoint = await cloud_login.step2(await cloud_login.step1(checkpoint))
    assert checkpoint.state is AuthState.VerificationRequired
    checkpoint = await cloud_login.verify(checkpoint, "123456")
    checkpoint = await cloud_login.step2(checkpoint)
    checkpoint = await cloud_login.step3(checkpoint)

    assert checkpoint.state is AuthState.Step3Done
    assert checkpoint.progress.service_token == "service/token=="
    # no step handed out an ssecurity, the session could not sign any call
    with pytest.raises(InvalidResponseError, match="ssecurity"):
        cloud_login.create_session(checkpoint)


async def test_login_without_ssecurity_fails(fake_cloud, cloud_login):
    add_login_routes(fake_cloud, NEED_VERIFICATION, {"code": 0, "location": STS})
    add_verification_routes(fake_cloud)

    result = await cloud_login.start(USERNAME, PASSWORD)
    resumed = await cloud_login.resume(result.blob, "123456")

    assert isinstance(resumed, LoginFailure)
    assert resumed.state is AuthState.Failed
    assert resumed.failed_in is AuthState.Step3Done
    assert isinstance(resumed.error, InvalidResponseError)


async def test_unknown_identity_options_are_skipped(fake_cloud, cloud_login):
    add_login_routes(fake_cloud, NEED_VERIFICATION, STEP2_OK)
    add_verification_routes(fake_cloud, options=(1, 4))

    result = await cloud_login.start(USERNAME, PASSWORD)
    resumed = await cloud_login.resume(result.blob, "123456")

    assert isinstance(resumed, LoginSuccess)
    verify_calls = [
        request.url.path
        for request in fake_cloud.requests
        if request.url.path.startswith("/identity/auth/")
    ]
    assert verify_calls == ["/identity/auth/verifyPhone"]


async def test_login_security_hold(fake_cloud, cloud_login):
    hold = {"code": 0, "securityStatus": 16, "notificationUrl": VERIFY_URL}
    add_login_routes(fake_cloud, hold, STEP2_OK)
    add_verification_routes(fake_cloud)

    result = await cloud_login.start(USERNAME, PASSWORD)
    assert isinstance(result, VerificationRequired)
    resumed = await cloud_login.resume(result.checkpoint, "123456")
    assert isinstance(resumed, LoginSuccess)


async def test_identity_options_fallback(fake_cloud, cloud_login):
    add_login_routes(fake_cloud, NEED_VERIFICATION)
    fake_cloud.add(
        "GET", f"{ACCOUNT}/identity/list", FakeResponse(500, "<html></html>")
    )
    checkpoint = cloud_login.new_attempt(Credentials(USERNAME, PASSWORD))
    checkpoint = await cloud_login.step1(checkpoint)
    checkpoint = await cloud_login.step2(checkpoint)
    checkpoint = await cloud_login.check_identity_options(checkpoint)
    assert checkpoint.progress.identity_options == [4]
    assert checkpoint.progress.identity_session is None


async def test_verify_follows_location(fake_cloud, cloud_login):
    add_login_routes(fake_cloud, NEED_VERIFICATION)
    add_verification_routes(
        fake_cloud, location=f"{ACCOUNT}/identity/result/check?x=1"
    )
    fake_cloud.add(
        "GET",
        f"{ACCOUNT}/identity/result/check",
        FakeResponse(302, location="/identity/result/done"),
    )
    fake_cloud.add(
        "GET",
        f"{ACCOUNT}/identity/result/done",
        FakeResponse(
            200,
            '&&&START&&&{"ssecurity":"bmV3","userId":99}',
            cookies={"passToken": "fresh"},
        ),
    )
    checkpoint = cloud_login.new_attempt(Credentials(USERNAME, PASSWORD))
    checkpoint = await cloud_login.step2(await cloud_login.step1(checkpoint))
    verified = await cloud_login.verify(checkpoint, "123456")

    assert verified.state is AuthState.VerificationDone
    assert verified.progress.verified
    assert verified.progress.ssecurity == "bmV3"
    assert verified.progress.user_id == "99"
    assert verified.progress.identity_session is None
    assert verified.cookies["passToken"] == "fresh"
    assert checkpoint.state is AuthState.VerificationRequired


async def test_verify_location_failure_is_ignored(fake_cloud, cloud_login):
    add_login_routes(fake_cloud, NEED_VERIFICATION)
    add_verification_routes(fake_cloud, location=f"{ACCOUNT}/identity/loop")
    fake_cloud.add(
        "GET", f"{ACCOUNT}/identity/loop", FakeResponse(302, location="/identity/loop")
    )
    checkpoint = cloud_login.new_attempt(Credentials(USERNAME, PASSWORD))
    checkpoint = await cloud_login.step2(await cloud_login.step1(checkpoint))
    verified = await cloud_login.verify(checkpoint, "123456")
    assert verified.state is AuthState.VerificationDone


async def test_wrong_verification_code(fake_cloud, cloud_login):
    add_login_routes(fake_cloud, NEED_VERIFICATION)
    add_verification_routes(fake_cloud, options=(8, 4), phone_code=70014)

    result = await cloud_login.start(USERNAME, PASSWORD)
    resumed = await cloud_login.resume(result.blob, "000000")
    assert isinstance(resumed, LoginFailure)
    assert resumed.reason == "Invalid verification code"
    assert isinstance(resumed.error, AuthenticationError)
    assert resumed.failed_in is AuthState.VerificationRequired


async def test_verification_not_persisted(fake_cloud, cloud_login):
    add_login_routes(fake_cloud, NEED_VERIFICATION)
    add_verification_routes(fake_cloud)

    result = await cloud_login.start(USERNAME, PASSWORD)
    resumed = await cloud_login.resume(result.blob, "123456")
    assert isinstance(resumed, LoginFailure)
    assert isinstance(resumed.error, VerificationNotPersistedError)
    assert resumed.failed_in is AuthState.VerificationDone


@pytest.mark.parametrize(
    ("step2", "error", "state"),
    [
        pytest.param(
            {"code": 0, "ssecurity": SSECURITY},
            InvalidResponseError,
            AuthState.Step1Done,
            id="missing-location",
        ),
        pytest.param(
            {"code": 70016, "desc": "Wrong password"},
            AuthenticationError,
            AuthState.Step1Done,
            id="wrong-password",
        ),
        pytest.param(
            {"code": 20003},
            InvalidResponseError,
            AuthState.Step1Done,
            id="verification-without-url",
        ),
    ],
)
async def test_step2_failures(fake_cloud, cloud_login, step2, error, state):
    add_login_routes(fake_cloud, step2)
    result = await cloud_login.start(USERNAME, PASSWORD)
    assert isinstance(result, LoginFailure)
    assert isinstance(result.error, error)
    assert result.failed_in is state


async def test_wrong_password_error_code(fake_cloud, cloud_login):
    add_login_routes(fake_cloud, {"code": 70016, "desc": "Wrong password"})
    result = await cloud_login.start(USERNAME, PASSWORD)
    assert result.error.error_code is CloudErrorCode.INVALID_CREDENTIALS
    assert "Wrong password" in result.reason


async def test_step2_http_error(fake_cloud, cloud_login):
    add_login_routes(fake_cloud)
    fake_cloud.add("POST", LOGIN_AUTH, FakeResponse(503, "busy"))
    result = await cloud_login.start(USERNAME, PASSWORD)
    assert isinstance(result.error, AuthenticationError)
    assert "HTTP 503" in result.reason


async def test_step1_missing_sign(fake_cloud, cloud_login):
    add_login_routes(fake_cloud)
    fake_cloud.add("GET", SERVICE_LOGIN, json_response({"code": 0}, marker=True))
    result = await cloud_login.start(USERNAME, PASSWORD)
    assert isinstance(result, LoginFailure)
    assert isinstance(result.error, InvalidResponseError)
    assert result.failed_in is AuthState.Init


async def test_step3_redirect_cap(fake_cloud):
    add_login_routes(fake_cloud)
    fake_cloud.add("GET", STS, FakeResponse(302, location="/sts?again=1"))
    login = CloudLogin(CloudConfig(max_redirects=2))
    result = await login.start(USERNAME, PASSWORD)
    await login.close()

    assert isinstance(result.error, TooManyRedirectsError)
    assert result.failed_in is AuthState.Step2Done
    assert len(fake_cloud.sent("/sts")) == 3


async def test_step3_without_service_token(fake_cloud, cloud_login):
    add_login_routes(fake_cloud)
    fake_cloud.add("GET", f"{STS}/final", FakeResponse(200, "ok"))
    result = await cloud_login.start(USERNAME, PASSWORD)
    assert isinstance(result.error, AuthenticationError)
    assert "serviceToken" in result.reason


async def test_steps_do_not_mutate(fake_cloud, cloud_login):
    add_login_routes(fake_cloud)
    initial = cloud_login.new_attempt(Credentials(USERNAME, PASSWORD))
    after = await cloud_login.step1(initial)
    assert initial.state is AuthState.Init
    assert initial.progress.sign is None
    assert after.progress.sign == "sign-123"
    assert after.identity == initial.identity


async def test_step_out_of_order(cloud_login):
    checkpoint = cloud_login.new_attempt(Credentials(USERNAME, PASSWORD))
    with pytest.raises(MiCloudException, match="expected Step2Done"):
        await cloud_login.step3(checkpoint)


def test_checkpoint_blob_round_trip():
    checkpoint = CloudLogin.new_attempt(Credentials(USERNAME, "s3cret-Pass"))
    blob = checkpoint.to_blob()
    assert LoginCheckpoint.from_blob(blob) == checkpoint
    decoded = base64.urlsafe_b64decode(blob).decode()
    assert "s3cret-Pass" not in decoded
    assert hash_password("s3cret-Pass") in decoded


def test_checkpoint_invalid_blob():
    with pytest.raises(MiCloudException, match="Invalid login checkpoint"):
        LoginCheckpoint.from_blob("not a checkpoint")


async def test_resume_invalid_blob(cloud_login):
    result = await cloud_login.resume("garbage", "123456")
    assert isinstance(result, LoginFailure)
    assert result.state is AuthState.Failed
    assert result.failed_in is None
