"""Token strategies against the corporate IdP: silent, password grant, device code.

The strategies are tried in a fixed priority order. Each one either yields a
token, hands over to the next strategy, or raises a typed failure that the
orchestrator's retry shell decides about. No strategy retries on its own.
"""

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from ..api.idp_client import DeviceFlow, IdPTokenClient, OAuthError
from .device_prompt import ConsoleDeviceCodePrompt, DeviceCodePrompt
from .errors import Cancelled, DeviceCodeExpired, InvalidCredentials, MfaRequired, ProviderUnavailable
from .models import AuthStrategy, Credentials, TokenCacheEntry
from .token_cache import TokenCache


logger = logging.getLogger(__name__)


class IdPState(Enum):
    IDLE = "idle"
    SILENT_ATTEMPT = "silent-attempt"
    PASSWORD_GRANT_ATTEMPT = "password-grant-attempt"
    DEVICE_CODE_ATTEMPT = "device-code-attempt"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class TokenResult:
    strategy: AuthStrategy
    entry: TokenCacheEntry


# AADSTS codes: account needs MFA / interactive verification
INTERACTION_CODES = (50076, 50079, 50158, 50074, 53003)
# AADSTS codes: this client/tenant does not allow the password grant
GRANT_UNSUPPORTED_CODES = (7000218, 65001, 50207, 9002313, 700016)
# AADSTS codes: wrong password, locked, disabled or unknown account
BAD_CREDENTIAL_CODES = (50126, 50053, 50057, 50034, 50055)


def token_entry(account: str, body: Dict[str, Any]) -> TokenCacheEntry:
    """Build a cache entry from a token response, rejecting malformed bodies.

    Raises:
        ProviderUnavailable: If the body lacks a usable access token or expiry
    """
    try:
        return TokenCacheEntry.from_token_response(account, body)
    except (KeyError, TypeError, ValueError) as e:
        raise ProviderUnavailable(f"IdP returned a malformed token response ({e.__class__.__name__})") from e


class IdPAuthenticator:
    """Runs the silent → password grant → device code chain for one account."""

    def __init__(
        self,
        client: IdPTokenClient,
        cache: TokenCache,
        prompt: Optional[DeviceCodePrompt] = None,
        device_code_timeout: float = 300,
        allow_password_grant: bool = True,
        allow_device_code: bool = True,
        cancel_event: Optional[threading.Event] = None,
    ):
        """Initialize authenticator.

        Args:
            client: Token endpoint client
            cache: Shared token cache
            prompt: Where to show device codes (default: console)
            device_code_timeout: Max seconds to wait for operator approval (default: 300)
            allow_password_grant: Try the password grant before the device code
            allow_device_code: Fall back to the device code flow
            cancel_event: Event that aborts device code polling when set
        """
        self.client = client
        self.cache = cache
        self.prompt = prompt or ConsoleDeviceCodePrompt()
        self.device_code_timeout = device_code_timeout
        self.allow_password_grant = allow_password_grant
        self.allow_device_code = allow_device_code
        self.bind_cancel_event(cancel_event or threading.Event())
        self.state = IdPState.IDLE
        self.trail: List[IdPState] = []

    def bind_cancel_event(self, event: threading.Event) -> None:
        """Share *event* with the token client so closing the owner stops polling and backoff."""
        self.cancel_event = event
        self.client.cancel_event = event

    def _enter(self, state: IdPState) -> None:
        self.state = state
        self.trail.append(state)
        logger.debug(f"IdP strategy state -> {state.value}")

    def authenticate(self, credentials: Credentials) -> TokenResult:
        """Obtain a token for *credentials.username*.

        Returns:
            TokenResult: The strategy that succeeded and the cached entry

        Raises:
            InvalidCredentials: The IdP rejected the account or the operator declined
            MfaRequired: Interactive verification is needed and no device code fallback is allowed
            DeviceCodeExpired: The operator did not approve in time
            ProviderUnavailable: The IdP could not be reached
            Cancelled: The owner was closed while polling
        """
        self.trail = []
        self.state = IdPState.IDLE
        account = credentials.username
        tenant = credentials.tenant_hint
        needs_interaction = False

        try:
            self._enter(IdPState.SILENT_ATTEMPT)
            result = self._try_silent(account, tenant)
            if result:
                self._enter(IdPState.SUCCESS)
                return result

            if self.allow_password_grant:
                self._enter(IdPState.PASSWORD_GRANT_ATTEMPT)
                result, needs_interaction = self._try_password_grant(credentials, tenant)
                if result:
                    self._enter(IdPState.SUCCESS)
                    return result

            if not self.allow_device_code:
                if needs_interaction:
                    raise MfaRequired("IdP requires interactive verification for this account")
                raise InvalidCredentials("No token strategy succeeded for this account")

            self._enter(IdPState.DEVICE_CODE_ATTEMPT)
            result = self._device_code(account, tenant)
            self._enter(IdPState.SUCCESS)
            return result
        except Exception:
            self._enter(IdPState.FAILED)
            raise

    def _try_silent(self, account: str, tenant: Optional[str]) -> Optional[TokenResult]:
        entry = self.cache.get(account)
        if entry is None:
            logger.info(f"No cached IdP token for {account}")
            return None
        if entry.is_expired():
            logger.info(f"Cached IdP token for {account} has expired")
            return None
        if not entry.can_refresh:
            logger.info(f"Reusing cached IdP token for {account}")
            return TokenResult(AuthStrategy.SSO_SILENT, entry)

        try:
            refreshed = token_entry(account, self.client.refresh(entry.refresh_token, tenant))
        except OAuthError as e:
            logger.info(f"Silent token refresh rejected ({e.error})")
            if e.status_code in (400, 401) and e.error in ("invalid_grant", "interaction_required", "invalid_client"):
                self.cache.invalidate(account)
            return None
        except ProviderUnavailable as e:
            logger.warning(f"Silent token refresh failed: {e}")
            return None

        if not refreshed.refresh_token:
            refreshed.refresh_token = entry.refresh_token
        self.cache.put(account, refreshed)
        logger.info(f"Silent authentication succeeded for {account}")
        return TokenResult(AuthStrategy.SSO_SILENT, refreshed)

    def _try_password_grant(self, credentials: Credentials, tenant: Optional[str]):
        """Returns (result, needs_interaction)."""
        account = credentials.username
        try:
            body = self.client.password_grant(account, credentials.password, tenant)
        except OAuthError as e:
            if e.error == "interaction_required" or e.has_code(*INTERACTION_CODES):
                logger.info(f"Password grant needs interactive verification for {account}")
                return None, True
            if e.error in ("unsupported_grant_type", "unauthorized_client") or e.has_code(*GRANT_UNSUPPORTED_CODES):
                logger.info(f"IdP does not allow the password grant here ({e.error})")
                return None, False
            if e.has_code(*BAD_CREDENTIAL_CODES) or e.error == "invalid_grant":
                raise InvalidCredentials("IdP rejected the credentials") from e
            logger.info(f"Password grant rejected ({e.error})")
            return None, False

        entry = token_entry(account, body)
        self.cache.put(account, entry)
        logger.info(f"Password grant succeeded for {account}")
        return TokenResult(AuthStrategy.SSO_PASSWORD_GRANT, entry), False

    def _device_code(self, account: str, tenant: Optional[str]) -> TokenResult:
        flow = self.client.start_device_flow(tenant)
        logger.warning(f"Device code sign-in required for {account}: {flow.verification_uri} (code {flow.user_code})")
        self.prompt.announce(flow, account)

        body = self._poll(flow, tenant)
        entry = token_entry(account, body)
        self.cache.put(account, entry)
        logger.info(f"Device code sign-in approved for {account}")
        return TokenResult(AuthStrategy.SSO_DEVICE_CODE, entry)

    def _poll(self, flow: DeviceFlow, tenant: Optional[str]):
        deadline = min(time.monotonic() + self.device_code_timeout, time.monotonic() + max(0.0, flow.expires_at - time.time()))
        interval = flow.interval

        while True:
            if self.cancel_event.is_set():
                raise Cancelled("Device code polling cancelled")
            try:
                return self.client.poll_device_flow(flow, tenant)
            except OAuthError as e:
                if e.error == "authorization_pending":
                    pass
                elif e.error == "slow_down":
                    interval += 5
                elif e.error in ("authorization_declined", "access_denied"):
                    raise InvalidCredentials("Operator declined the device code sign-in") from e
                elif e.error in ("expired_token", "code_expired", "bad_verification_code"):
                    raise DeviceCodeExpired("Device code expired before approval") from e
                else:
                    raise InvalidCredentials(f"Device code sign-in rejected ({e.error})") from e

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise DeviceCodeExpired(f"Device code not approved within {self.device_code_timeout:.0f} seconds")
            if self.cancel_event.wait(min(interval, remaining)):
                raise Cancelled("Device code polling cancelled")
