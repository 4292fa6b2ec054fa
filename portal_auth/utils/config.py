"""Configuration management for the HR portal sign-in orchestrator."""

import os
from pathlib import Path
from typing import List, Optional
from dotenv import load_dotenv


# Values accepted for AUTH_METHOD
AUTH_METHODS = ("standard", "sso")


def _as_bool(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


def _as_list(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [item.strip() for item in value.replace(";", ",").split(",") if item.strip()]


class Config:
    """Application configuration loaded from environment variables."""

    def __init__(self, env_file: Optional[str] = None):
        """Initialize configuration.

        Args:
            env_file: Path to .env file (default: .env in project root)
        """
        if env_file:
            load_dotenv(env_file)
        else:
            # Try to find .env in project root
            project_root = Path(__file__).parent.parent.parent
            env_path = project_root / ".env"
            if env_path.exists():
                load_dotenv(env_path)

    # Portal
    @property
    def portal_url(self) -> str:
        """Portal entry URL (the page that starts the sign-in)."""
        value = os.getenv("PORTAL_URL", "")
        if not value:
            raise ValueError("PORTAL_URL not set in environment")
        return value

    @property
    def username(self) -> str:
        """Portal username (or corporate e-mail for SSO)."""
        value = os.getenv("PORTAL_USERNAME", "")
        if not value:
            raise ValueError("PORTAL_USERNAME not set in environment")
        return value

    @property
    def password(self) -> str:
        """Portal password."""
        value = os.getenv("PORTAL_PASSWORD", "")
        if not value:
            raise ValueError("PORTAL_PASSWORD not set in environment")
        return value

    @property
    def auth_method(self) -> str:
        """Default sign-in method: 'standard' or 'sso'."""
        return os.getenv("AUTH_METHOD", "standard").lower()

    @property
    def corporate_email(self) -> Optional[str]:
        """IdP e-mail to use when the portal forces SSO on a standard login."""
        return os.getenv("CORPORATE_EMAIL") or None

    @property
    def email_domain(self) -> Optional[str]:
        """Domain appended to a bare username to form the corporate e-mail."""
        return os.getenv("EMAIL_DOMAIN") or None

    # Identity provider
    @property
    def idp_hosts(self) -> List[str]:
        """Extra hosts served by the IdP (comma separated)."""
        return _as_list(os.getenv("IDP_HOSTS"))

    @property
    def tenant_id(self) -> str:
        """IdP directory (tenant) id."""
        return os.getenv("AZURE_TENANT_ID", "organizations")

    @property
    def client_id(self) -> Optional[str]:
        """Application (client) id; token strategies are disabled without it."""
        return os.getenv("AZURE_CLIENT_ID") or None

    @property
    def client_secret(self) -> Optional[str]:
        """Client secret for confidential clients (optional)."""
        return os.getenv("AZURE_CLIENT_SECRET") or None

    @property
    def idp_scopes(self) -> List[str]:
        """Scopes requested from the IdP (default: the token client's defaults)."""
        return _as_list(os.getenv("IDP_SCOPES"))

    @property
    def token_cache_file(self) -> Path:
        """JSON file holding cached IdP tokens."""
        return Path(os.getenv("TOKEN_CACHE_FILE", "./.cache/portal_tokens.json"))

    @property
    def device_code_timeout_seconds(self) -> float:
        """Maximum seconds to wait for device code approval."""
        return float(os.getenv("DEVICE_CODE_TIMEOUT_SECONDS", "300"))

    @property
    def device_code_webhook_url(self) -> Optional[str]:
        """Webhook that receives device codes (console output when unset)."""
        return os.getenv("DEVICE_CODE_WEBHOOK_URL") or None

    @property
    def keep_signed_in(self) -> bool:
        """Answer 'yes' to the IdP's 'stay signed in?' prompt."""
        return _as_bool(os.getenv("KEEP_SIGNED_IN", "false"))

    # Browser and retry settings
    @property
    def headless_mode(self) -> bool:
        """Run browser in headless mode (default: True)."""
        return _as_bool(os.getenv("HEADLESS_MODE", "true"))

    @property
    def navigation_timeout_seconds(self) -> float:
        """Timeout for one page navigation."""
        return float(os.getenv("NAVIGATION_TIMEOUT_SECONDS", "30"))

    @property
    def navigation_retries(self) -> int:
        """Navigation tries per attempt before giving up."""
        return int(os.getenv("NAVIGATION_RETRIES", "3"))

    @property
    def element_timeout_seconds(self) -> float:
        """Timeout for a single click/fill and for page step transitions."""
        return float(os.getenv("ELEMENT_TIMEOUT_SECONDS", "10"))

    @property
    def verify_timeout_seconds(self) -> float:
        """How long to wait for the portal to show the signed-in page."""
        return float(os.getenv("VERIFY_TIMEOUT_SECONDS", "30"))

    @property
    def login_max_attempts(self) -> int:
        """Maximum number of login attempts."""
        return int(os.getenv("LOGIN_MAX_ATTEMPTS", "3"))

    @property
    def retry_backoff_seconds(self) -> float:
        """Seconds to wait between login attempts."""
        return float(os.getenv("RETRY_BACKOFF_SECONDS", "2"))

    @property
    def snapshot_dir(self) -> Optional[Path]:
        """Directory for screenshots of failed attempts (disabled when unset)."""
        path_str = os.getenv("SNAPSHOT_DIR")
        return Path(path_str) if path_str else None

    # Logging
    @property
    def log_level(self) -> str:
        """Logging level."""
        return os.getenv("LOG_LEVEL", "INFO").upper()

    @property
    def log_dir(self) -> Path:
        """Directory for component log files."""
        return Path(os.getenv("LOG_DIR", "./logs"))

    def validate(self) -> bool:
        """Validate that all required configuration is present.

        Returns:
            bool: True if configuration is valid

        Raises:
            ValueError: If required configuration is missing or invalid
        """
        # Check required fields
        _ = self.portal_url
        _ = self.username
        _ = self.password

        if self.auth_method not in AUTH_METHODS:
            raise ValueError(f"Invalid AUTH_METHOD: {self.auth_method}. Must be 'standard' or 'sso'")

        if self.login_max_attempts < 1:
            raise ValueError("LOGIN_MAX_ATTEMPTS must be at least 1")
        if self.navigation_retries < 1:
            raise ValueError("NAVIGATION_RETRIES must be at least 1")

        if self.client_secret and not self.client_id:
            raise ValueError("AZURE_CLIENT_ID required when AZURE_CLIENT_SECRET is set")

        return True


# Global config instance
_config: Optional[Config] = None


def get_config(env_file: Optional[str] = None) -> Config:
    """Get global configuration instance.

    Args:
        env_file: Path to .env file (optional)

    Returns:
        Config: Global configuration instance
    """
    global _config
    if _config is None:
        _config = Config(env_file)
    return _config
