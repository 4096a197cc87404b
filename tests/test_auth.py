"""Tests for login and MFA completion"""

from datetime import datetime, timezone

import httpx
import pytest

from conftest import API_URL, form, make_token
from open_sense import APIError, Session
from open_sense.client import obfuscate_email


AUTH_RESPONSE = {
    "authorized": True,
    "account_id": 789,
    "user_id": 123,
    "monitors": [{"id": 456, "serial_number": "N1"}],
    "access_token": "T1",
    "refresh_token": "R1",
}

EXPECTED_SESSION = Session(user_id=123, monitor_ids=(456,), access_token="T1", refresh_token="R1")


@pytest.mark.asyncio
class TestLogin:

    async def test_login_creates_session(self, make_client):
        changes = []
        client, api = make_client(lambda request: httpx.Response(200, json=AUTH_RESPONSE))
        client.emitter.on("session_changed", changes.append)

        assert await client.login("a@b.com", "pw") is None

        assert client.session == EXPECTED_SESSION
        assert client.is_authenticated
        assert changes == [EXPECTED_SESSION]

        request = api.requests[0]
        assert str(request.url) == f"{API_URL}/authenticate"
        assert request.method == "POST"
        assert request.headers["content-type"] == "application/x-www-form-urlencoded"
        assert form(request) == {"email": "a@b.com", "password": "pw"}

    async def test_login_requiring_mfa_returns_token(self, make_client):
        changes = []
        client, _ = make_client(
            lambda request: httpx.Response(401, json={"status": "mfa_required", "mfa_token": "M1"})
        )
        client.emitter.on("session_changed", changes.append)

        assert await client.login("a@b.com", "pw") == "M1"
        assert client.session is None
        assert changes == []

    async def test_login_clears_existing_session_first(self, make_client, fresh_session):
        changes = []
        client, _ = make_client(lambda request: httpx.Response(500), session=fresh_session)
        client.emitter.on("session_changed", changes.append)

        with pytest.raises(APIError) as excinfo:
            await client.login("a@b.com", "pw")

        assert excinfo.value.status == 500
        assert client.session is None
        assert changes == [None]

    async def test_login_again_with_same_credentials(self, make_client):
        changes = []
        client, _ = make_client(lambda request: httpx.Response(200, json=AUTH_RESPONSE))
        client.emitter.on("session_changed", changes.append)

        await client.login("a@b.com", "pw")
        await client.login("a@b.com", "pw")

        assert changes == [EXPECTED_SESSION, None, EXPECTED_SESSION]

    async def test_401_without_challenge_is_an_error(self, make_client):
        client, _ = make_client(lambda request: httpx.Response(401, json={"error_reason": "bad password"}))

        with pytest.raises(APIError) as excinfo:
            await client.login("a@b.com", "wrong")
        assert excinfo.value.status == 401
        assert client.session is None

    async def test_401_with_non_json_body_is_an_error(self, make_client):
        client, _ = make_client(lambda request: httpx.Response(401, text="nope"))

        with pytest.raises(APIError):
            await client.login("a@b.com", "wrong")


@pytest.mark.asyncio
class TestCompleteMfaLogin:

    async def test_success_creates_session(self, make_client):
        changes = []
        client, api = make_client(lambda request: httpx.Response(200, json=AUTH_RESPONSE))
        client.emitter.on("session_changed", changes.append)

        client_time = datetime(2025, 3, 1, 12, 30, 15, 250000, tzinfo=timezone.utc)
        await client.complete_mfa_login("M1", "123456", client_time)

        request = api.requests[0]
        assert str(request.url) == f"{API_URL}/authenticate/mfa"
        assert form(request) == {
            "totp": "123456",
            "mfa_token": "M1",
            "client_time": "2025-03-01T12:30:15.250Z",
        }
        assert client.session == EXPECTED_SESSION
        assert changes == [EXPECTED_SESSION]

    async def test_rejected_code_raises(self, make_client):
        changes = []
        client, _ = make_client(lambda request: httpx.Response(401))
        client.emitter.on("session_changed", changes.append)

        with pytest.raises(APIError) as excinfo:
            await client.complete_mfa_login("M1", "000000")

        assert excinfo.value.status == 401
        assert client.session is None
        assert changes == []

    async def test_defaults_client_time_to_now(self, make_client):
        client, api = make_client(lambda request: httpx.Response(200, json=AUTH_RESPONSE))

        await client.complete_mfa_login("M1", "123456")

        sent = form(api.requests[0])["client_time"]
        assert sent.endswith("Z")
        parsed = datetime.fromisoformat(sent[:-1]).replace(tzinfo=timezone.utc)
        assert abs((datetime.now(timezone.utc) - parsed).total_seconds()) < 60


@pytest.mark.asyncio
async def test_logout_clears_session(make_client):
    session = Session(user_id=1, monitor_ids=(2,), access_token=make_token(3600), refresh_token="R")
    changes = []
    client, _ = make_client(session=session)
    client.emitter.on("session_changed", changes.append)

    await client.logout()
    await client.logout()

    assert client.session is None
    assert changes == [None]


@pytest.mark.parametrize(
    "email,expected",
    [
        ("johndoe@example.com", "jo****e@example.com"),
        ("abc@example.com", "abc@example.com"),
        ("a@b.com", "a@b.com"),
    ],
)
def test_obfuscate_email(email, expected):
    assert obfuscate_email(email) == expected
