from unittest.mock import MagicMock

import threading

import pytest
import requests

from portal_auth.api.idp_client import DEVICE_CODE_GRANT, IdPTokenClient, OAuthError
from portal_auth.auth.errors import Cancelled, ProviderUnavailable


def response(status_code=200, body=None, headers=None, text=""):
    resp = MagicMock()
    resp.status_code = status_code
    resp.headers = headers or {}
    resp.text = text
    if body is None:
        resp.json.side_effect = ValueError("no json")
    else:
        resp.json.return_value = body
    return resp


@pytest.fixture
def session():
    return MagicMock()


@pytest.fixture
def backoff():
    event = MagicMock()
    event.is_set.return_value = False
    event.wait.return_value = False
    return event


def waits(event):
    return [c.args[0] for c in event.wait.call_args_list]


@pytest.fixture
def client(session, backoff):
    return IdPTokenClient(
        client_id="portal-client",
        tenant_id="contoso",
        session=session,
        cancel_event=backoff,
    )


class TestTokenRequests:

    def test_password_grant_posts_form(self, client, session):
        session.post.return_value = response(body={"access_token": "at", "expires_in": 3600})

        body = client.password_grant("a@x.com", "p")

        assert body["access_token"] == "at"
        url = session.post.call_args.args[0]
        data = session.post.call_args.kwargs["data"]
        assert url == "https://login.microsoftonline.com/contoso/oauth2/v2.0/token"
        assert data["grant_type"] == "password"
        assert data["username"] == "a@x.com"
        assert data["client_id"] == "portal-client"
        assert "client_secret" not in data

    def test_tenant_override_and_secret(self, session):
        client = IdPTokenClient("portal-client", client_secret="shh", session=session)
        session.post.return_value = response(body={"access_token": "at"})

        client.refresh("rt", tenant="fabrikam")

        assert "/fabrikam/" in session.post.call_args.args[0]
        assert session.post.call_args.kwargs["data"]["client_secret"] == "shh"
        assert session.post.call_args.kwargs["data"]["grant_type"] == "refresh_token"

    def test_oauth_error_body(self, client, session):
        session.post.return_value = response(400, {
            "error": "invalid_grant",
            "error_description": "AADSTS50126: Error validating credentials due to invalid username or password.",
            "error_codes": [50126],
        })

        with pytest.raises(OAuthError) as excinfo:
            client.password_grant("a@x.com", "wrong")

        assert excinfo.value.error == "invalid_grant"
        assert excinfo.value.has_code(50126)
        assert not excinfo.value.has_code(50076)
        assert session.post.call_count == 1

    def test_code_found_in_description(self):
        error = OAuthError("invalid_grant", "AADSTS50076: MFA required")

        assert error.has_code(50076)

    def test_non_json_error(self, client, session):
        session.post.return_value = response(403, text="Forbidden")

        with pytest.raises(OAuthError) as excinfo:
            client.refresh("rt")

        assert excinfo.value.error == "http_403"
        assert excinfo.value.status_code == 403


class TestRetry:

    def test_retries_throttling_then_succeeds(self, client, session, backoff):
        session.post.side_effect = [
            response(429, headers={"Retry-After": "7"}),
            response(503),
            response(body={"access_token": "at"}),
        ]

        assert client.refresh("rt")["access_token"] == "at"
        assert waits(backoff) == [7.0, 2]

    def test_network_errors_exhaust_budget(self, client, session, backoff):
        session.post.side_effect = requests.ConnectionError("connection refused")

        with pytest.raises(ProviderUnavailable) as excinfo:
            client.password_grant("a@x.com", "p")

        assert session.post.call_count == 3
        assert waits(backoff) == [1, 2]
        assert excinfo.value.retryable
        assert "ConnectionError" in str(excinfo.value)

    def test_server_errors_exhaust_budget(self, client, session):
        session.post.return_value = response(502)

        with pytest.raises(ProviderUnavailable, match="HTTP 502"):
            client.refresh("rt")

    def test_cancel_interrupts_backoff(self, session):
        cancel = threading.Event()
        client = IdPTokenClient("portal-client", session=session, cancel_event=cancel)

        def throttled(url, data, timeout):
            cancel.set()
            return response(503)

        session.post.side_effect = throttled

        with pytest.raises(Cancelled):
            client.refresh("rt")

        assert session.post.call_count == 1


class TestDeviceFlow:

    def test_start_device_flow(self, client, session):
        session.post.return_value = response(body={
            "device_code": "dc",
            "user_code": "ABCD-EFGH",
            "verification_uri": "https://microsoft.com/devicelogin",
            "expires_in": 900,
            "interval": 5,
            "message": "To sign in, use a web browser",
        })

        flow = client.start_device_flow()

        assert session.post.call_args.args[0].endswith("/contoso/oauth2/v2.0/devicecode")
        assert flow.user_code == "ABCD-EFGH"
        assert flow.verification_uri == "https://microsoft.com/devicelogin"
        assert flow.interval == 5.0

    def test_poll_pending_raises_oauth_error(self, client, session):
        flow = MagicMock(device_code="dc")
        session.post.return_value = response(400, {"error": "authorization_pending"})

        with pytest.raises(OAuthError) as excinfo:
            client.poll_device_flow(flow)

        assert excinfo.value.error == "authorization_pending"
        data = session.post.call_args.kwargs["data"]
        assert data["grant_type"] == DEVICE_CODE_GRANT
        assert data["device_code"] == "dc"


class TestMalformedAnswers:

    @pytest.mark.parametrize("body", [
        {"token_type": "Bearer", "expires_in": 3600},
        {"access_token": "", "expires_in": 3600},
        ["not", "an", "object"],
    ])
    def test_token_answer_without_access_token(self, client, session, body):
        session.post.return_value = response(body=body)

        with pytest.raises(ProviderUnavailable, match="access_token"):
            client.password_grant("a@x.com", "p")

        assert session.post.call_count == 1

    def test_device_code_answer_without_user_code(self, client, session):
        session.post.return_value = response(body={"device_code": "dc", "verification_uri": "https://microsoft.com/devicelogin"})

        with pytest.raises(ProviderUnavailable, match="user_code"):
            client.start_device_flow()

    def test_device_code_answer_with_bad_interval(self, client, session):
        session.post.return_value = response(body={"device_code": "dc", "user_code": "ABCD", "interval": "soon"})

        with pytest.raises(ProviderUnavailable):
            client.start_device_flow()
