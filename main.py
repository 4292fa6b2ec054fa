#!/usr/bin/env python3
"""HR portal sign-in orchestrator.

This is the command line entry point: sign in to the portal, end a session,
and inspect or clear the IdP token cache.
"""

import sys
import argparse
from datetime import datetime
from typing import Optional

from portal_auth.utils.config import get_config, AUTH_METHODS
from portal_auth.utils.logger import setup_logging


EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG_ERROR = 2
EXIT_MFA_REQUIRED = 3


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Sign in to the HR portal (standard or corporate SSO)"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    login_parser = subparsers.add_parser("login", help="Sign in and report the session")
    login_parser.add_argument(
        "--method",
        choices=AUTH_METHODS,
        help="Sign-in method (overrides AUTH_METHOD env var)"
    )
    login_parser.add_argument(
        "--tenant",
        type=str,
        help="IdP tenant to use for this login (overrides AZURE_TENANT_ID)"
    )
    login_parser.add_argument(
        "--hold",
        action="store_true",
        help="Keep the browser signed in until Enter is pressed, then log out"
    )

    logout_parser = subparsers.add_parser("logout", help="Forget the cached IdP token for an account")
    logout_parser.add_argument(
        "--account",
        type=str,
        help="Account to log out (default: CORPORATE_EMAIL or PORTAL_USERNAME)"
    )

    subparsers.add_parser("status", help="Show cached IdP tokens")
    subparsers.add_parser("clear-cache", help="Delete every cached IdP token")

    # Configuration overrides
    parser.add_argument(
        "--env-file",
        type=str,
        help="Path to .env file (default: .env in project root)"
    )
    parser.add_argument(
        "--headless",
        action="store_true",
        help="Run browser in headless mode"
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (overrides LOG_LEVEL env var)"
    )

    return parser.parse_args(argv)


def build_token_cache(config):
    """Open the token cache backed by TOKEN_CACHE_FILE."""
    from portal_auth.auth.token_cache import TokenCache
    from portal_auth.storage.token_store import JsonFileTokenStore

    return TokenCache(JsonFileTokenStore(config.token_cache_file))


def build_orchestrator(config, token_cache, headless: bool):
    """Wire the orchestrator and its collaborators from configuration."""
    from portal_auth.api.idp_client import IdPTokenClient
    from portal_auth.auth.device_prompt import ConsoleDeviceCodePrompt, WebhookDeviceCodePrompt
    from portal_auth.auth.field_locator import CredentialFieldLocator
    from portal_auth.auth.idp_authenticator import IdPAuthenticator
    from portal_auth.auth.orchestrator import LoginOrchestrator, OrchestratorSettings
    from portal_auth.auth.page_classifier import PageClassifier
    from portal_auth.browser.driver import playwright_driver_factory

    idp_authenticator = None
    if config.client_id:
        if config.device_code_webhook_url:
            prompt = WebhookDeviceCodePrompt(config.device_code_webhook_url)
        else:
            prompt = ConsoleDeviceCodePrompt()
        client = IdPTokenClient(
            client_id=config.client_id,
            tenant_id=config.tenant_id,
            client_secret=config.client_secret,
            scopes=config.idp_scopes or None,
        )
        idp_authenticator = IdPAuthenticator(
            client=client,
            cache=token_cache,
            prompt=prompt,
            device_code_timeout=config.device_code_timeout_seconds,
        )

    return LoginOrchestrator(
        settings=OrchestratorSettings.from_config(config),
        driver_factory=playwright_driver_factory(
            headless=headless,
            element_timeout=config.element_timeout_seconds,
        ),
        idp_authenticator=idp_authenticator,
        token_cache=token_cache,
        classifier=PageClassifier(idp_hosts=config.idp_hosts),
        locator=CredentialFieldLocator(),
    )


def run_login(config, args) -> int:
    """Sign in once and print the resulting session."""
    from portal_auth.auth.errors import AuthFailure, MfaRequired
    from portal_auth.auth.models import AuthMethod, Credentials

    method = AuthMethod(args.method or config.auth_method)
    credentials = Credentials(username=config.username, password=config.password)
    headless = args.headless if args.headless else config.headless_mode

    print(f"Signing in as {credentials.username} ({method.value})...")
    print("-" * 60)

    token_cache = build_token_cache(config)
    with build_orchestrator(config, token_cache, headless) as orchestrator:
        try:
            record = orchestrator.login(credentials, method=method, tenant_hint=args.tenant)
        except MfaRequired as e:
            print(f"✗ Interactive verification required: {e}")
            print("  Approve the sign-in manually or configure AZURE_CLIENT_ID for the device code flow")
            return EXIT_MFA_REQUIRED
        except AuthFailure as e:
            print(f"✗ Login failed: {e.cause_name}: {e}")
            for attempt in e.diagnostics:
                strategy = attempt.strategy.value if attempt.strategy else "-"
                print(f"  attempt {attempt.number}: {strategy} -> {attempt.error or 'ok'}")
                for note in attempt.notes:
                    print(f"    {note}")
            return EXIT_FAILURE

        print("✓ Login successful")
        print(f"  Session: {record.session_id}")
        print(f"  Account: {record.account}")
        print(f"  Method:  {record.method.value}")

        if args.hold:
            input("\nPress Enter to log out...")
            orchestrator.logout()
            print("✓ Logged out")
    return EXIT_OK


def run_logout(config, account: Optional[str]) -> int:
    """Drop the cached token so the next SSO login cannot sign in silently."""
    account = account or config.corporate_email or config.username
    token_cache = build_token_cache(config)
    if token_cache.invalidate(account):
        print(f"✓ Forgot cached IdP token for {account}")
    else:
        print(f"No cached IdP token for {account}")
    return EXIT_OK


def run_status(config) -> int:
    """List cached accounts and whether their tokens are still usable."""
    token_cache = build_token_cache(config)
    accounts = token_cache.accounts()
    if not accounts:
        print(f"No cached IdP tokens in {config.token_cache_file}")
        return EXIT_OK

    print(f"Cached IdP tokens in {config.token_cache_file}:")
    for account in accounts:
        entry = token_cache.get(account)
        expires = datetime.fromtimestamp(entry.expires_at).strftime("%Y-%m-%d %H:%M:%S")
        state = "expired" if entry.is_expired() else "valid"
        refresh = "refreshable" if entry.can_refresh else "no refresh token"
        print(f"  {account}: {state} (expires {expires}, {refresh})")
    return EXIT_OK


def run_clear_cache(config) -> int:
    token_cache = build_token_cache(config)
    count = len(token_cache.accounts())
    token_cache.clear()
    print(f"✓ Cleared {count} cached IdP token(s)")
    return EXIT_OK


def main(argv=None):
    """Main entry point."""
    args = parse_args(argv)

    # Load configuration
    try:
        config = get_config(args.env_file)
        if args.command == "login":
            config.validate()
    except ValueError as e:
        print(f"Configuration error: {e}")
        print("\nPlease create a .env file based on .env.example")
        return EXIT_CONFIG_ERROR

    # Setup logging
    log_level = args.log_level or config.log_level
    setup_logging(log_level=log_level, log_to_console=True, log_dir=config.log_dir)

    print("=" * 60)
    print("HR Portal Sign-in")
    print("=" * 60)
    print()

    try:
        if args.command == "login":
            return run_login(config, args)
        if args.command == "logout":
            return run_logout(config, args.account)
        if args.command == "status":
            return run_status(config)
        return run_clear_cache(config)
    except ValueError as e:
        print(f"Configuration error: {e}")
        return EXIT_CONFIG_ERROR


if __name__ == "__main__":
    sys.exit(main())
