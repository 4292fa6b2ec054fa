"""Authentication components: page classification, field location, IdP strategies."""

from .errors import (
    AuthFailure,
    Cancelled,
    DeviceCodeExpired,
    DriverError,
    FieldNotFound,
    InvalidCredentials,
    MfaRequired,
    NavigationTimeout,
    ProviderUnavailable,
    SessionDetached,
    VerificationFailed,
)
from .field_locator import CredentialFieldLocator, FieldKind
from .idp_authenticator import IdPAuthenticator
from .orchestrator import LoginOrchestrator, OrchestratorSettings
from .page_classifier import PageClassifier
from .token_cache import TokenCache

__all__ = [
    'AuthFailure',
    'Cancelled',
    'DeviceCodeExpired',
    'DriverError',
    'FieldNotFound',
    'InvalidCredentials',
    'MfaRequired',
    'NavigationTimeout',
    'ProviderUnavailable',
    'SessionDetached',
    'VerificationFailed',
    'CredentialFieldLocator',
    'FieldKind',
    'IdPAuthenticator',
    'LoginOrchestrator',
    'OrchestratorSettings',
    'PageClassifier',
    'TokenCache',
]
