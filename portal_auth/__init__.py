"""Sign-in orchestration for the RH Evolution HR portal."""

from .auth.orchestrator import LoginOrchestrator, OrchestratorSettings
from .auth.errors import AuthFailure
from .auth.models import AuthMethod, Credentials, SessionRecord, SessionStatus

__version__ = "0.1.0"

__all__ = [
    'LoginOrchestrator',
    'OrchestratorSettings',
    'AuthFailure',
    'AuthMethod',
    'Credentials',
    'SessionRecord',
    'SessionStatus',
]
