from pathlib import Path

import pytest

from portal_auth.auth.orchestrator import OrchestratorSettings
from portal_auth.utils.config import Config


ENV_VARS = (
    "PORTAL_URL", "PORTAL_USERNAME", "PORTAL_PASSWORD", "AUTH_METHOD", "CORPORATE_EMAIL", "EMAIL_DOMAIN",
    "IDP_HOSTS", "AZURE_TENANT_ID", "AZURE_CLIENT_ID", "AZURE_CLIENT_SECRET", "IDP_SCOPES",
    "TOKEN_CACHE_FILE", "KEEP_SIGNED_IN", "HEADLESS_MODE", "LOGIN_MAX_ATTEMPTS", "NAVIGATION_RETRIES",
    "SNAPSHOT_DIR", "LOG_LEVEL",
)


@pytest.fixture
def env(monkeypatch, tmp_path):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("PORTAL_URL", "https://rh.example.com/ords/rhportal/")
    monkeypatch.setenv("PORTAL_USERNAME", "jdoe")
    monkeypatch.setenv("PORTAL_PASSWORD", "s3cret")
    return monkeypatch


class TestConfig:

    def test_defaults(self, env, tmp_path):
        config = Config(str(tmp_path / "missing.env"))

        assert config.validate()
        assert config.auth_method == "standard"
        assert config.tenant_id == "organizations"
        assert config.client_id is None
        assert config.headless_mode is True
        assert config.keep_signed_in is False
        assert config.idp_hosts == []
        assert config.snapshot_dir is None
        assert config.token_cache_file == Path("./.cache/portal_tokens.json")

    def test_lists_and_flags(self, env, tmp_path):
        env.setenv("IDP_HOSTS", "sso.corp.example; adfs.corp.example ,")
        env.setenv("KEEP_SIGNED_IN", "Yes")
        env.setenv("AUTH_METHOD", "SSO")

        config = Config(str(tmp_path / "missing.env"))

        assert config.idp_hosts == ["sso.corp.example", "adfs.corp.example"]
        assert config.keep_signed_in is True
        assert config.auth_method == "sso"

    def test_env_file_is_loaded(self, env, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("CORPORATE_EMAIL=jdoe@corp.example\n")

        assert Config(str(env_file)).corporate_email == "jdoe@corp.example"

    @pytest.mark.parametrize("name,value,message", [
        ("PORTAL_PASSWORD", "", "PORTAL_PASSWORD"),
        ("AUTH_METHOD", "kerberos", "AUTH_METHOD"),
        ("LOGIN_MAX_ATTEMPTS", "0", "LOGIN_MAX_ATTEMPTS"),
        ("AZURE_CLIENT_SECRET", "shh", "AZURE_CLIENT_ID"),
    ])
    def test_validate_rejects(self, env, tmp_path, name, value, message):
        env.setenv(name, value)

        with pytest.raises(ValueError, match=message):
            Config(str(tmp_path / "missing.env")).validate()


class TestOrchestratorSettings:

    def test_from_config(self, env, tmp_path):
        env.setenv("LOGIN_MAX_ATTEMPTS", "5")
        env.setenv("SNAPSHOT_DIR", str(tmp_path))

        settings = OrchestratorSettings.from_config(Config(str(tmp_path / "missing.env")))

        assert settings.portal_url == "https://rh.example.com/ords/rhportal/"
        assert settings.max_attempts == 5
        assert settings.snapshot_dir == tmp_path

    def test_escape_urls(self):
        settings = OrchestratorSettings(
            portal_url="https://rh.example.com/ords/rhportal/?lang=pt",
            escape_paths=("/login", "?force_standard_login=true", "https://other.example.com/login"),
        )

        assert settings.escape_urls() == [
            "https://rh.example.com/login",
            "https://rh.example.com/ords/rhportal/?lang=pt&force_standard_login=true",
            "https://other.example.com/login",
        ]
