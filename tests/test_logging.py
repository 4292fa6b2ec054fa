import logging
from unittest.mock import patch

import pytest
import requests

from portal_auth.api.idp_client import DeviceFlow
from portal_auth.auth.device_prompt import WebhookDeviceCodePrompt
from portal_auth.utils.logger import SecretRedactingFilter, _get_component_from_logger_name, redact


FLOW = DeviceFlow("dc", "ABCD-EFGH", "https://microsoft.com/devicelogin", expires_at=0, message="Sign in")


class TestRedaction:

    @pytest.mark.parametrize("message,secret", [
        ("password=s3cret submitted", "s3cret"),
        ('{"access_token": "eyJ0eXAi.abc", "expires_in": 3600}', "eyJ0eXAi.abc"),
        ("refresh_token=rt-123&scope=openid", "rt-123"),
        ("Authorization: Bearer eyJ0eXAi.abc.def", "eyJ0eXAi.abc.def"),
    ])
    def test_masks_secret_values(self, message, secret):
        redacted = redact(message)

        assert secret not in redacted
        assert "***" in redacted

    def test_leaves_plain_messages(self):
        assert redact("Login attempt 1/3") == "Login attempt 1/3"

    def test_filter_rewrites_formatted_record(self):
        record = logging.LogRecord("portal_auth.auth", logging.INFO, __file__, 1, "payload %s", ("password=x1",), None)

        assert SecretRedactingFilter().filter(record)
        assert record.getMessage() == "payload password=***"

    @pytest.mark.parametrize("name,component", [
        ("portal_auth.auth.orchestrator", "auth"),
        ("portal_auth.auth.idp_authenticator", "idp"),
        ("portal_auth.auth.token_cache", "idp"),
        ("portal_auth.api.idp_client", "idp"),
        ("portal_auth.browser.driver", "browser"),
        ("__main__", "main"),
    ])
    def test_component_routing(self, name, component):
        assert _get_component_from_logger_name(name) == component


class TestWebhookPrompt:

    def test_posts_code(self):
        with patch("portal_auth.auth.device_prompt.requests.post") as post:
            WebhookDeviceCodePrompt("https://hooks.example.com/device").announce(FLOW, "a@x.com")

        payload = post.call_args.kwargs["json"]
        assert payload["user_code"] == "ABCD-EFGH"
        assert payload["account"] == "a@x.com"

    def test_failure_is_logged(self, caplog):
        with patch("portal_auth.auth.device_prompt.requests.post", side_effect=requests.ConnectionError("down")):
            with caplog.at_level(logging.WARNING):
                WebhookDeviceCodePrompt("https://hooks.example.com/device").announce(FLOW, "a@x.com")

        assert "ABCD-EFGH" in caplog.text
