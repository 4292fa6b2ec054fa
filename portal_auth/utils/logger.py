"""Logging configuration for the HR portal sign-in orchestrator.

Every component writes to its own file under the log directory; the console
only shows warnings unless DEBUG is requested. All handlers share one
redacting filter so passwords and tokens never reach a handler.
"""

import logging
import re
import sys
from pathlib import Path
from typing import Optional, Tuple


# Component to log file mapping
COMPONENT_LOG_FILES = {
    'auth': 'auth.log',
    'idp': 'idp.log',
    'browser': 'browser.log',
    'main': 'main.log',
}

# Module name fragments routed to each component, checked in order
COMPONENT_MODULES: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ('idp', ('idp', 'device_prompt', 'token')),
    ('browser', ('browser', 'driver')),
    ('auth', ('auth',)),
)

PACKAGE_PREFIX = 'portal_auth.'

# key=value / "key": "value" pairs whose value must never reach a log file
SECRET_PATTERN = re.compile(
    r'(?P<key>password|passwd|access_token|refresh_token|client_secret|device_code|secret)'
    r'(?P<sep>["\']?\s*[:=]\s*["\']?)'
    r'(?P<value>[^\s"\'&,}]+)',
    re.IGNORECASE,
)
BEARER_PATTERN = re.compile(r'(Bearer\s+)[A-Za-z0-9\-._~+/]+=*', re.IGNORECASE)


def redact(message: str) -> str:
    """Mask secret values in a log message."""
    message = SECRET_PATTERN.sub(lambda m: f"{m.group('key')}{m.group('sep')}***", message)
    return BEARER_PATTERN.sub(r'\1***', message)


def _get_component_from_logger_name(name: str) -> str:
    """Determine component from logger name.

    Args:
        name: Logger name (e.g., 'portal_auth.auth.orchestrator')

    Returns:
        Component name or 'main' if no match
    """
    if name.startswith(PACKAGE_PREFIX):
        name = name[len(PACKAGE_PREFIX):]
    for component, fragments in COMPONENT_MODULES:
        if any(fragment in name for fragment in fragments):
            return component
    return 'main'


class ComponentFilter(logging.Filter):
    """Only lets through records whose logger belongs to one component."""

    def __init__(self, component: str):
        super().__init__()
        self.component = component

    def filter(self, record: logging.LogRecord) -> bool:
        return _get_component_from_logger_name(record.name) == self.component


class SecretRedactingFilter(logging.Filter):
    """Rewrites records so passwords and tokens never reach a handler."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = redact(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def setup_logging(
    log_level: str = "INFO",
    log_to_console: bool = True,
    log_dir: Optional[Path] = None
) -> None:
    """Configure root logging with one file per component.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_to_console: Whether to log to console (default: True)
        log_dir: Directory for component log files (default: ./logs)
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)
    log_directory = Path(log_dir or './logs')
    log_directory.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()

    redacting_filter = SecretRedactingFilter()

    if log_to_console:
        # Sign-in progress is printed by main.py; the console only adds problems
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(logging.DEBUG if numeric_level == logging.DEBUG else logging.WARNING)
        console_handler.setFormatter(logging.Formatter(fmt='[%(levelname)s] %(message)s'))
        console_handler.addFilter(redacting_filter)
        root_logger.addHandler(console_handler)

    file_formatter = logging.Formatter(
        fmt='[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    for component, file_name in COMPONENT_LOG_FILES.items():
        handler = logging.FileHandler(log_directory / file_name, mode='a', encoding='utf-8')
        handler.setLevel(numeric_level)
        handler.setFormatter(file_formatter)
        handler.addFilter(redacting_filter)
        handler.addFilter(ComponentFilter(component))
        root_logger.addHandler(handler)

    # Suppress noisy third-party loggers
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("playwright").setLevel(logging.WARNING)
