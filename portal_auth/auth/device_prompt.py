"""Ways to show a device-code verification request to the operator."""

import logging
from abc import ABC, abstractmethod
import requests

from ..api.idp_client import DeviceFlow


logger = logging.getLogger(__name__)


class DeviceCodePrompt(ABC):
    """Abstract base class for surfacing a device code to the operator."""

    @abstractmethod
    def announce(self, flow: DeviceFlow, account: str) -> None:
        """Tell the operator where to go and which code to enter.

        Args:
            flow: The device authorization started at the IdP
            account: Account the code is being approved for
        """
        pass


class ConsoleDeviceCodePrompt(DeviceCodePrompt):
    """Print the verification URL and code on the console."""

    def announce(self, flow: DeviceFlow, account: str) -> None:
        print("=" * 60)
        print(f"  Sign-in approval needed for {account}")
        print(f"  Open:  {flow.verification_uri}")
        print(f"  Code:  {flow.user_code}")
        print("=" * 60)


class WebhookDeviceCodePrompt(DeviceCodePrompt):
    """Post the verification URL and code to a webhook (e.g. an n8n chat flow)."""

    def __init__(self, webhook_url: str, timeout: int = 10):
        """Initialize webhook prompt.

        Args:
            webhook_url: URL that receives {"account", "verification_uri", "user_code"}
            timeout: Seconds allowed for the webhook call (default: 10)
        """
        self.webhook_url = webhook_url
        self.timeout = timeout

    def announce(self, flow: DeviceFlow, account: str) -> None:
        payload = {
            "account": account,
            "verification_uri": flow.verification_uri,
            "user_code": flow.user_code,
            "message": flow.message,
        }
        try:
            response = requests.post(self.webhook_url, json=payload, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            # The operator can still read the code from the log
            logger.warning(f"Device code webhook failed: {e}")
            logger.warning(f"Approve sign-in at {flow.verification_uri} with code {flow.user_code}")
            return
        logger.info("Device code sent to webhook")
