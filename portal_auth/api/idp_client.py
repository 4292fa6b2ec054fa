"""OAuth2 token endpoint client for the corporate IdP, with retry logic."""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple
import requests

from ..auth.errors import Cancelled, ProviderUnavailable


logger = logging.getLogger(__name__)


DEVICE_CODE_GRANT = "urn:ietf:params:oauth:grant-type:device_code"

# Fields a 200 answer must carry
TOKEN_FIELDS = ("access_token",)
DEVICE_FLOW_FIELDS = ("device_code", "user_code")


class OAuthError(Exception):
    """Error body returned by the token endpoint (RFC 6749 §5.2)."""

    def __init__(
        self,
        error: str,
        description: str = "",
        error_codes: Optional[List[int]] = None,
        status_code: int = 400,
    ):
        super().__init__(f"{error}: {description[:200]}" if description else error)
        self.error = error
        self.description = description
        self.error_codes = list(error_codes or [])
        self.status_code = status_code

    def has_code(self, *codes: int) -> bool:
        """Check for IdP-specific codes (AADSTSxxxxx) in the body or description."""
        if any(code in self.error_codes for code in codes):
            return True
        return any(f"AADSTS{code}" in self.description for code in codes)


@dataclass
class DeviceFlow:
    """Device authorization started at the IdP."""
    device_code: str
    user_code: str
    verification_uri: str
    expires_at: float
    interval: float = 5.0
    message: str = ""


class IdPTokenClient:
    """Talks to the IdP's v2.0 token and device authorization endpoints."""

    # HTTP status codes that should trigger retry
    RETRY_STATUS_CODES = {429, 500, 502, 503, 504}

    DEFAULT_SCOPES = ("openid", "profile", "email", "offline_access", "User.Read")

    def __init__(
        self,
        client_id: str,
        tenant_id: str = "common",
        client_secret: Optional[str] = None,
        scopes: Optional[List[str]] = None,
        authority: str = "https://login.microsoftonline.com",
        request_timeout_seconds: float = 30,
        max_retries: int = 3,
        session: Optional[requests.Session] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        """Initialize token client.

        Args:
            client_id: Application (client) id registered at the IdP
            tenant_id: Directory (tenant) id or "common"/"organizations"
            client_secret: Secret for confidential clients (optional)
            scopes: Scopes to request (default: DEFAULT_SCOPES)
            authority: IdP base URL
            request_timeout_seconds: Timeout for each HTTP request (default: 30)
            max_retries: Maximum attempts for transient failures (default: 3)
            session: requests session to use (a new one by default)
            cancel_event: Event that interrupts backoff when set
        """
        self.client_id = client_id
        self.tenant_id = tenant_id or "common"
        self.client_secret = client_secret
        self.scopes = list(scopes or self.DEFAULT_SCOPES)
        self.authority = authority.rstrip("/")
        self.request_timeout = request_timeout_seconds
        self.max_retries = max(1, max_retries)
        self.session = session or requests.Session()
        self.cancel_event = cancel_event or threading.Event()

    def token_url(self, tenant: Optional[str] = None) -> str:
        return f"{self.authority}/{tenant or self.tenant_id}/oauth2/v2.0/token"

    def device_code_url(self, tenant: Optional[str] = None) -> str:
        return f"{self.authority}/{tenant or self.tenant_id}/oauth2/v2.0/devicecode"

    def _client_fields(self) -> Dict[str, str]:
        fields = {"client_id": self.client_id, "scope": " ".join(self.scopes)}
        if self.client_secret:
            fields["client_secret"] = self.client_secret
        return fields

    def refresh(self, refresh_token: str, tenant: Optional[str] = None) -> Dict[str, Any]:
        """Exchange a refresh token for a new access token.

        Raises:
            OAuthError: If the IdP rejects the refresh token
            ProviderUnavailable: If the IdP cannot be reached
        """
        data = {**self._client_fields(), "grant_type": "refresh_token", "refresh_token": refresh_token}
        return self._post(self.token_url(tenant), data, "refresh_token", TOKEN_FIELDS)

    def password_grant(self, username: str, password: str, tenant: Optional[str] = None) -> Dict[str, Any]:
        """Resource owner password credentials exchange.

        Raises:
            OAuthError: If the IdP rejects the grant or the credentials
            ProviderUnavailable: If the IdP cannot be reached
        """
        data = {**self._client_fields(), "grant_type": "password", "username": username, "password": password}
        return self._post(self.token_url(tenant), data, "password", TOKEN_FIELDS)

    def start_device_flow(self, tenant: Optional[str] = None) -> DeviceFlow:
        """Request a device code and the verification URI to show the operator."""
        data = {"client_id": self.client_id, "scope": " ".join(self.scopes)}
        body = self._post(self.device_code_url(tenant), data, "device_code_request", DEVICE_FLOW_FIELDS)
        try:
            expires_in = float(body.get("expires_in", 900))
            interval = float(body.get("interval", 5))
        except (TypeError, ValueError) as e:
            raise ProviderUnavailable(f"IdP device code response has a bad expiry or interval: {e}") from e
        return DeviceFlow(
            device_code=body["device_code"],
            user_code=body["user_code"],
            verification_uri=body.get("verification_uri") or body.get("verification_url", ""),
            expires_at=time.time() + expires_in,
            interval=interval,
            message=body.get("message", ""),
        )

    def poll_device_flow(self, flow: DeviceFlow, tenant: Optional[str] = None) -> Dict[str, Any]:
        """Poll the token endpoint once for a pending device authorization.

        Raises:
            OAuthError: "authorization_pending"/"slow_down" while waiting, or a
                terminal error ("authorization_declined", "expired_token", ...)
            ProviderUnavailable: If the IdP cannot be reached
        """
        data = {**self._client_fields(), "grant_type": DEVICE_CODE_GRANT, "device_code": flow.device_code}
        return self._post(self.token_url(tenant), data, "device_code", TOKEN_FIELDS)

    def _post(self, url: str, data: Dict[str, str], grant: str, required: Tuple[str, ...] = ()) -> Dict[str, Any]:
        """POST a form to the IdP with retry on transient failures.

        Args:
            url: Endpoint to call
            data: Form fields
            grant: Label used in log messages
            required: Fields a 200 answer must carry

        Returns:
            Response JSON body for a 200 answer

        Raises:
            OAuthError: For a 4xx answer carrying an OAuth error body
            ProviderUnavailable: When all attempts failed with network/server errors,
                or a 200 answer is missing a required field
            Cancelled: If the cancel event is set while backing off
        """
        last_problem = "no attempt made"
        for attempt in range(self.max_retries):
            if self.cancel_event.is_set():
                raise Cancelled("IdP request cancelled")
            try:
                logger.debug(f"IdP request attempt {attempt + 1}/{self.max_retries}: {grant} -> {url}")
                response = self.session.post(url, data=data, timeout=self.request_timeout)
            except requests.RequestException as e:
                last_problem = f"{e.__class__.__name__}: {e}"
                logger.warning(f"IdP request failed ({last_problem}), attempt {attempt + 1}/{self.max_retries}")
                self._backoff(attempt)
                continue

            if response.status_code in self.RETRY_STATUS_CODES:
                last_problem = f"HTTP {response.status_code}"
                logger.warning(
                    f"IdP request failed with status {response.status_code}, "
                    f"attempt {attempt + 1}/{self.max_retries}"
                )
                retry_after = response.headers.get("Retry-After")
                self._backoff(attempt, float(retry_after) if retry_after and retry_after.isdigit() else None)
                continue

            try:
                body = response.json()
            except ValueError:
                body = {}
            if not isinstance(body, dict):
                body = {}

            if response.status_code == 200:
                missing = [name for name in required if not body.get(name)]
                if missing:
                    raise ProviderUnavailable(f"IdP {grant} response is missing {', '.join(missing)}")
                logger.debug(f"IdP request successful ({grant})")
                return body

            error = OAuthError(
                error=body.get("error", f"http_{response.status_code}"),
                description=body.get("error_description", response.text[:200] if not body else ""),
                error_codes=body.get("error_codes"),
                status_code=response.status_code,
            )
            if error.error not in ("authorization_pending", "slow_down"):
                logger.info(f"IdP rejected {grant} request: {error.error} (HTTP {response.status_code})")
            raise error

        raise ProviderUnavailable(f"IdP unreachable after {self.max_retries} attempts ({last_problem})")

    def _backoff(self, attempt: int, seconds: Optional[float] = None) -> None:
        if attempt >= self.max_retries - 1:
            return
        delay = seconds if seconds is not None else 2 ** attempt
        logger.debug(f"Backing off for {delay} seconds")
        if self.cancel_event.wait(delay):
            raise Cancelled("IdP request cancelled during backoff")
