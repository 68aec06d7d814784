from __future__ import annotations

import aiohttp
import pytest
from asyncclick.testing import CliRunner

from mitoken import CloudConfig, Session

from .fakecloud import SSECURITY, FakeCloud


@pytest.fixture()
def fake_cloud(mocker):
    """Patch aiohttp so every request is served by a fake cloud."""
    cloud = FakeCloud()
    mocker.patch.object(aiohttp.ClientSession, "request", side_effect=cloud.request)
    return cloud


@pytest.fixture()
def config():
    return CloudConfig()


@pytest.fixture()
def session():
    return Session(
        "user@example.com",
        user_id="1234",
        service_token="service-token",
        ssecurity=SSECURITY,
        cookies={"passToken": "pass"},
        device_id="abcdef",
    )


@pytest.fixture()
def runner():
    """Runner fixture that unsets the MITOKEN_ environment variables for tests."""
    runner = CliRunner(
        env={
            "MITOKEN_USERNAME": None,
            "MITOKEN_PASSWORD": None,
            "MITOKEN_SERVER": None,
            "MITOKEN_TIMEOUT": None,
            "MITOKEN_SESSION": None,
            "MITOKEN_DEBUG": None,
            "MITOKEN_JSON": None,
        }
    )
    return runner
