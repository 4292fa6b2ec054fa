"""Data types shared by the portal sign-in components."""

import secrets
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class PageKind(Enum):
    """Kinds of page the classifier can recognise."""
    STANDARD_LOGIN = "standard-login"
    IDP_LOGIN = "idp-login"
    IDP_CHALLENGE = "idp-challenge"
    APP_AUTHENTICATED = "app-authenticated"
    UNKNOWN = "unknown"


class AuthMethod(Enum):
    """Sign-in method requested by the caller."""
    STANDARD = "standard"
    SSO = "sso"


class AuthStrategy(Enum):
    """Concrete strategy that produced (or tried to produce) a session."""
    STANDARD = "standard"
    SSO_SILENT = "sso-silent"
    SSO_PASSWORD_GRANT = "sso-password-grant"
    SSO_DEVICE_CODE = "sso-device-code"
    SSO_FORM_FILL = "sso-form-fill"


class AttemptOutcome(Enum):
    SUCCESS = "success"
    RETRYABLE_ERROR = "retryable-error"
    FATAL_ERROR = "fatal-error"


@dataclass(frozen=True)
class Credentials:
    """Account identifier and secret supplied for a single login() call."""
    username: str
    password: str
    tenant_hint: Optional[str] = None

    def __repr__(self) -> str:
        return f"Credentials(username={self.username!r}, password='***', tenant_hint={self.tenant_hint!r})"

    def as_corporate_identity(self, corporate_email: Optional[str] = None, email_domain: Optional[str] = None) -> "Credentials":
        """Reinterpret portal credentials as the corporate IdP identity.

        Args:
            corporate_email: Explicit IdP e-mail to use instead of the username
            email_domain: Domain appended to a bare username (e.g. "example.com")

        Returns:
            Credentials whose username is an e-mail address
        """
        if corporate_email:
            username = corporate_email
        elif "@" not in self.username and email_domain:
            username = f"{self.username}@{email_domain}"
        else:
            username = self.username
        return Credentials(username=username, password=self.password, tenant_hint=self.tenant_hint)


@dataclass(frozen=True)
class PageClassification:
    """Result of classifying the currently loaded page."""
    kind: PageKind
    url: str = ""
    title: str = ""


@dataclass
class AuthAttempt:
    """Diagnostic record of one login try.

    Only coarse outcome information is kept here; credentials and tokens
    never end up in an attempt.
    """
    number: int
    strategy: Optional[AuthStrategy] = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    outcome: Optional[AttemptOutcome] = None
    error: Optional[str] = None
    notes: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "number": self.number,
            "strategy": self.strategy.value if self.strategy else None,
            "started_at": self.started_at.isoformat(),
            "outcome": self.outcome.value if self.outcome else None,
            "error": self.error,
            "notes": list(self.notes),
        }


@dataclass
class TokenCacheEntry:
    """Identity token issued by the IdP for one account."""
    account: str
    access_token: str
    expires_at: float
    refresh_token: Optional[str] = None

    @property
    def can_refresh(self) -> bool:
        return bool(self.refresh_token)

    def is_expired(self, skew_seconds: float = 60.0, now: Optional[float] = None) -> bool:
        """Check whether the access token is expired (or about to expire).

        Args:
            skew_seconds: Treat tokens expiring within this window as expired
            now: Current epoch time (defaults to time.time())

        Returns:
            bool: True if the token should not be used anymore
        """
        current = time.time() if now is None else now
        return self.expires_at - skew_seconds <= current

    def to_dict(self) -> Dict[str, Any]:
        return {
            "account": self.account,
            "access_token": self.access_token,
            "expires_at": self.expires_at,
            "refresh_token": self.refresh_token,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TokenCacheEntry":
        return cls(
            account=data["account"],
            access_token=data["access_token"],
            expires_at=float(data["expires_at"]),
            refresh_token=data.get("refresh_token"),
        )

    @classmethod
    def from_token_response(cls, account: str, data: Dict[str, Any], now: Optional[float] = None) -> "TokenCacheEntry":
        """Build an entry from an OAuth2 token endpoint response body."""
        current = time.time() if now is None else now
        return cls(
            account=account,
            access_token=data["access_token"],
            expires_at=current + float(data.get("expires_in", 3600)),
            refresh_token=data.get("refresh_token"),
        )


def generate_session_id() -> str:
    """Generate an opaque session identifier."""
    return f"rhev-{int(time.time() * 1000)}-{secrets.token_hex(5)}"


@dataclass(frozen=True)
class SessionRecord:
    """Authenticated session handed back to the caller."""
    session_id: str
    account: str
    method: AuthStrategy
    created_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "account": self.account,
            "method": self.method.value,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class SessionStatus:
    connected: bool
    authenticated: bool
    account: Optional[str] = None
    method: Optional[AuthStrategy] = None
