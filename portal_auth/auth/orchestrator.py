"""Login orchestrator: drives the browser from the portal entry URL to a signed-in session."""

import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Tuple
from urllib.parse import urlparse

from ..browser.driver import BrowserDriver
from .errors import (
    AuthFailure,
    Cancelled,
    DriverError,
    FieldNotFound,
    InvalidCredentials,
    MfaRequired,
    NavigationTimeout,
    SessionDetached,
    VerificationFailed,
)
from .field_locator import CredentialFieldLocator, FieldKind
from .idp_authenticator import IdPAuthenticator, TokenResult
from .models import (
    AttemptOutcome,
    AuthAttempt,
    AuthMethod,
    AuthStrategy,
    Credentials,
    PageClassification,
    PageKind,
    SessionRecord,
    SessionStatus,
    generate_session_id,
)
from .page_classifier import PageClassifier
from .retry import RetryShell
from .token_cache import TokenCache


logger = logging.getLogger(__name__)


# Portal URLs that sometimes show the plain login form even when SSO is enforced
DEFAULT_ESCAPE_PATHS: Tuple[str, ...] = (
    "/login",
    "/ords/rhportal/rhlgweb.login",
    "?force_standard_login=true",
    "/ords/rhportal/rhlgweb.login?disable_sso=true",
)

OVERRIDE_STANDARD_TO_SSO = "policy-override: standard->sso"
OVERRIDE_SSO_TO_STANDARD = "policy-override: sso->standard"


@dataclass
class OrchestratorSettings:
    """Timeouts, budgets and portal specifics for one orchestrator."""
    portal_url: str
    escape_paths: Tuple[str, ...] = DEFAULT_ESCAPE_PATHS
    navigation_timeout: float = 30.0
    navigation_retries: int = 3
    step_timeout: float = 10.0
    verify_timeout: float = 30.0
    max_attempts: int = 3
    backoff_seconds: float = 2.0
    poll_interval: float = 0.5
    corporate_email: Optional[str] = None
    email_domain: Optional[str] = None
    keep_signed_in: bool = False
    snapshot_dir: Optional[Path] = None

    @classmethod
    def from_config(cls, config) -> "OrchestratorSettings":
        """Build settings from a ``portal_auth.utils.config.Config``."""
        return cls(
            portal_url=config.portal_url,
            navigation_timeout=config.navigation_timeout_seconds,
            navigation_retries=config.navigation_retries,
            step_timeout=config.element_timeout_seconds,
            verify_timeout=config.verify_timeout_seconds,
            max_attempts=config.login_max_attempts,
            backoff_seconds=config.retry_backoff_seconds,
            corporate_email=config.corporate_email,
            email_domain=config.email_domain,
            keep_signed_in=config.keep_signed_in,
            snapshot_dir=config.snapshot_dir,
        )

    def escape_urls(self) -> List[str]:
        """Resolve escape paths against the portal URL."""
        parsed = urlparse(self.portal_url)
        origin = f"{parsed.scheme}://{parsed.netloc}"
        urls = []
        for path in self.escape_paths:
            if path.startswith(("http://", "https://")):
                urls.append(path)
            elif path.startswith("?"):
                separator = "&" if parsed.query else "?"
                urls.append(f"{self.portal_url}{separator}{path[1:]}")
            else:
                urls.append(origin + path)
        return urls


@dataclass
class _LoginRun:
    """Mutable state of one login() call, shared by its attempts."""
    credentials: Credentials
    requested: AuthMethod
    effective: AuthMethod
    attempts: List[AuthAttempt] = field(default_factory=list)
    override: Optional[str] = None
    token_result: Optional[TokenResult] = None
    identity: Optional[Credentials] = None

    @property
    def current(self) -> AuthAttempt:
        return self.attempts[-1]


class LoginOrchestrator:
    """Produces an authenticated portal session from a set of credentials.

    Each attempt navigates to the portal, classifies the landing page and runs
    the standard or SSO sub-flow, then verifies where the browser ended up.
    Attempts are wrapped by a ``RetryShell``; a failed attempt always discards
    the browser so the next one starts from a fresh driver.

    The orchestrator owns at most one driver at a time. It is not safe to call
    login() concurrently on one instance; use one orchestrator per caller and
    share the ``TokenCache`` between them.
    """

    # Content fragments of the IdP "Stay signed in?" interstitial
    STAY_SIGNED_IN_MARKERS: Tuple[str, ...] = (
        "kmsiForm",
        "KmsiCheckboxField",
        "Stay signed in?",
        "Continuar conectado?",
    )

    def __init__(
        self,
        settings: OrchestratorSettings,
        driver_factory: Callable[[], BrowserDriver],
        idp_authenticator: Optional[IdPAuthenticator] = None,
        token_cache: Optional[TokenCache] = None,
        classifier: Optional[PageClassifier] = None,
        locator: Optional[CredentialFieldLocator] = None,
    ):
        """Initialize orchestrator.

        Args:
            settings: Portal URL, timeouts and retry budget
            driver_factory: Creates a started BrowserDriver on every call
            idp_authenticator: Token strategy chain; without it SSO uses in-page form fill only
            token_cache: Cache whose entry is invalidated on logout (default: the authenticator's)
            classifier: Page classifier (default: PageClassifier())
            locator: Field locator (default: CredentialFieldLocator())
        """
        self.settings = settings
        self.driver_factory = driver_factory
        self.idp_authenticator = idp_authenticator
        self.token_cache = token_cache or (idp_authenticator.cache if idp_authenticator else None)
        self.classifier = classifier or PageClassifier()
        self.locator = locator or CredentialFieldLocator()

        self.cancel_event = threading.Event()
        if self.idp_authenticator is not None:
            self.idp_authenticator.bind_cancel_event(self.cancel_event)
        self.retry_shell = RetryShell(
            max_attempts=settings.max_attempts,
            backoff_seconds=settings.backoff_seconds,
            cancel_event=self.cancel_event,
        )

        self._lock = threading.Lock()
        self._driver: Optional[BrowserDriver] = None
        self._login_in_flight = False
        self._session: Optional[SessionRecord] = None
        self._token_account: Optional[str] = None

    def __enter__(self) -> "LoginOrchestrator":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def login(
        self,
        credentials: Credentials,
        method: AuthMethod = AuthMethod.STANDARD,
        tenant_hint: Optional[str] = None,
    ) -> SessionRecord:
        """Sign in to the portal.

        Args:
            credentials: Account and password for this call only
            method: Requested sign-in method (standard or sso)
            tenant_hint: IdP tenant to use instead of the configured one

        Returns:
            SessionRecord: The authenticated session

        Raises:
            AuthFailure: The fatal failure, or the last failure once the retry
                budget is spent, with ``attempts`` and ``diagnostics`` attached
        """
        method = AuthMethod(method)
        if tenant_hint:
            credentials = replace(credentials, tenant_hint=tenant_hint)

        with self._lock:
            if self._login_in_flight:
                raise RuntimeError("A login is already in progress on this orchestrator")
            if self.cancel_event.is_set():
                raise Cancelled("Orchestrator has been closed")
            self._login_in_flight = True

        run = _LoginRun(credentials=credentials, requested=method, effective=method)
        logger.info(f"Starting {method.value} login for {credentials.username}")
        try:
            reused = self._reuse_session(credentials)
            if reused is not None:
                return replace(reused)

            record = self.retry_shell.run(
                lambda number: self._attempt(number, run),
                on_failure=lambda number, error, fatal: self._on_attempt_failure(run, error, fatal),
            )
            if self.cancel_event.is_set():
                raise Cancelled("Orchestrator was closed while the login completed")
            logger.info(f"✓ Logged in as {record.account} via {record.method.value} ({record.session_id})")
            return record
        except AuthFailure as e:
            e.diagnostics = list(run.attempts)
            logger.error(f"✗ Login failed for {credentials.username}: {e.cause_name}: {e}")
            raise
        except Exception:
            # Not an AuthFailure; close the browser before propagating
            with self._lock:
                self._teardown_driver()
            raise
        finally:
            with self._lock:
                self._login_in_flight = False
                if self.cancel_event.is_set():
                    self._teardown_driver()

    def logout(self) -> bool:
        """End the current session.

        Clicks the portal's logout control when one is visible, invalidates the
        cached IdP token for the session's account and closes the browser.

        Returns:
            bool: True if there was a session to end
        """
        with self._lock:
            if self._login_in_flight:
                raise RuntimeError("Cannot log out while a login is in progress")
            driver = self._driver
            session = self._session

        if session is None:
            logger.info("No active session to log out from")
            with self._lock:
                self._teardown_driver()
            return False

        if driver is not None and not driver.is_closed():
            try:
                button = self.locator.locate(FieldKind.LOGOUT, PageKind.APP_AUTHENTICATED, driver)
                if button is not None:
                    driver.click(button)
                    driver.wait_for(
                        lambda: self._classify(driver).kind is not PageKind.APP_AUTHENTICATED,
                        timeout=self.settings.step_timeout,
                        poll_interval=self.settings.poll_interval,
                    )
                    logger.info("Clicked the portal logout control")
                else:
                    logger.warning("No logout control found; closing the browser session instead")
            except AuthFailure as e:
                logger.warning(f"Portal logout failed ({e.cause_name}: {e}); closing the browser session")

        if self._token_account and self.token_cache is not None:
            self.token_cache.invalidate(self._token_account)

        with self._lock:
            self._teardown_driver()
            self._session = None
            self._token_account = None
        logger.info(f"Logged out {session.account}")
        return True

    def status(self) -> SessionStatus:
        """Report whether a browser is open and still signed in."""
        with self._lock:
            driver = self._driver
            session = self._session
            in_flight = self._login_in_flight

        connected = driver is not None and not driver.is_closed()
        if not connected or session is None or in_flight:
            return SessionStatus(connected=connected, authenticated=False)

        try:
            authenticated = self._looks_authenticated(self._classify(driver))
        except AuthFailure as e:
            logger.warning(f"Could not read the session state: {e}")
            return SessionStatus(connected=False, authenticated=False)
        return SessionStatus(
            connected=True,
            authenticated=authenticated,
            account=session.account,
            method=session.method,
        )

    def close(self) -> None:
        """Cancel any login in progress and release the browser.

        A login running on another thread observes the cancellation at its next
        wait and tears the browser down itself.
        """
        self.cancel_event.set()
        with self._lock:
            if not self._login_in_flight:
                self._teardown_driver()
            self._session = None
        logger.debug("Orchestrator closed")

    def _attempt(self, number: int, run: _LoginRun) -> SessionRecord:
        run.attempts.append(AuthAttempt(number=number))
        driver = self._acquire_driver()

        logger.info(f"Step 1: Navigating to {self.settings.portal_url}")
        self._navigate(driver, self.settings.portal_url)

        page = self._settle(driver)
        logger.info(f"Step 2: Landed on {page.kind.value} page ({page.url})")

        strategy = self._run_flow(driver, page, run)
        run.current.strategy = strategy

        logger.info("Step 3: Verifying sign-in result...")
        self._verify(driver)

        run.current.outcome = AttemptOutcome.SUCCESS
        record = SessionRecord(
            session_id=generate_session_id(),
            account=run.credentials.username,
            method=strategy,
            created_at=datetime.now(timezone.utc),
        )
        with self._lock:
            self._session = replace(record)
            self._token_account = run.identity.username if run.token_result and run.identity else None
        return record

    def _on_attempt_failure(self, run: _LoginRun, error: AuthFailure, fatal: bool) -> None:
        if run.attempts:
            attempt = run.current
            attempt.outcome = AttemptOutcome.FATAL_ERROR if fatal else AttemptOutcome.RETRYABLE_ERROR
            attempt.error = f"{error.cause_name}: {error}"
            if isinstance(error, FieldNotFound):
                attempt.notes.append(f"available-controls: {len(error.available_controls)}")
            if not isinstance(error, (Cancelled, SessionDetached)):
                self._snapshot(attempt)
        self._teardown_driver()

    def _run_flow(self, driver: BrowserDriver, page: PageClassification, run: _LoginRun) -> AuthStrategy:
        if page.kind is PageKind.IDP_CHALLENGE:
            raise MfaRequired("IdP is asking for an interactive verification")
        if page.kind is PageKind.APP_AUTHENTICATED:
            run.current.notes.append("already-authenticated")
            return AuthStrategy.STANDARD if run.effective is AuthMethod.STANDARD else AuthStrategy.SSO_SILENT

        if run.effective is AuthMethod.STANDARD:
            if page.kind is PageKind.IDP_LOGIN:
                logger.info("Portal redirected to the IdP; looking for the standard login form")
                if self._escape_sso_redirect(driver) is None:
                    self._record_override(run, AuthMethod.SSO, OVERRIDE_STANDARD_TO_SSO)
                    return self._sso_flow(driver, self._classify(driver), run)
            return self._standard_flow(driver, run)

        if page.kind is PageKind.STANDARD_LOGIN:
            followed = self._follow_sso_button(driver)
            if followed is None:
                if run.requested is AuthMethod.SSO:
                    self._record_override(run, AuthMethod.STANDARD, OVERRIDE_SSO_TO_STANDARD)
                return self._standard_flow(driver, run)
            page = followed
        return self._sso_flow(driver, page, run)

    def _record_override(self, run: _LoginRun, method: AuthMethod, note: str) -> None:
        run.effective = method
        if run.override is not None:
            return
        run.override = note
        run.current.notes.append(note)
        logger.warning(
            f"Requested {run.requested.value} login is not available on this portal; "
            f"falling back to {method.value} ({note})"
        )

    def _standard_flow(self, driver: BrowserDriver, run: _LoginRun) -> AuthStrategy:
        run.current.strategy = AuthStrategy.STANDARD
        kind = PageKind.STANDARD_LOGIN
        logger.info("Filling the portal login form")

        username_field = self.locator.require(FieldKind.USERNAME, kind, driver)
        password_field = self.locator.require(FieldKind.PASSWORD, kind, driver)
        driver.type_text(username_field, run.credentials.username)
        driver.type_text(password_field, run.credentials.password)

        submit = self.locator.locate(FieldKind.SUBMIT, kind, driver)
        if submit is not None:
            driver.click(submit)
        else:
            logger.info("  No submit button, pressing Enter in the password field")
            driver.press(password_field, "Enter")
        return AuthStrategy.STANDARD

    def _sso_flow(self, driver: BrowserDriver, page: PageClassification, run: _LoginRun) -> AuthStrategy:
        identity = self._sso_identity(run)
        run.identity = identity

        if self.idp_authenticator is None or run.override == OVERRIDE_STANDARD_TO_SSO:
            # Portal credentials typed into the IdP page the portal forced us onto
            run.current.strategy = AuthStrategy.SSO_FORM_FILL
            self._complete_on_idp(driver, page, identity)
            return AuthStrategy.SSO_FORM_FILL

        if run.token_result is None:
            run.current.strategy = AuthStrategy.SSO_SILENT
            logger.info(f"Requesting an IdP token for {identity.username}")
            try:
                run.token_result = self.idp_authenticator.authenticate(identity)
            finally:
                trail = " -> ".join(state.value for state in self.idp_authenticator.trail)
                run.current.notes.append(f"idp: {trail}")
        strategy = run.token_result.strategy
        run.current.strategy = strategy
        logger.info(f"IdP token obtained via {strategy.value}; returning to the portal")

        self._navigate(driver, self.settings.portal_url)
        page = self._settle(driver)
        if page.kind is PageKind.STANDARD_LOGIN:
            page = self._follow_sso_button(driver) or page
        if page.kind in (PageKind.IDP_LOGIN, PageKind.IDP_CHALLENGE):
            run.current.notes.append("form-fill")
            self._complete_on_idp(driver, page, identity)
        return strategy

    def _sso_identity(self, run: _LoginRun) -> Credentials:
        credentials = run.credentials
        if run.requested is AuthMethod.STANDARD:
            # Portal credentials reused against the IdP
            return credentials.as_corporate_identity(self.settings.corporate_email, self.settings.email_domain)
        if "@" in credentials.username:
            return credentials
        return credentials.as_corporate_identity(None, self.settings.email_domain)

    def _complete_on_idp(self, driver: BrowserDriver, page: PageClassification, identity: Credentials) -> None:
        if page.kind not in (PageKind.IDP_LOGIN, PageKind.IDP_CHALLENGE, PageKind.APP_AUTHENTICATED):
            page = self._wait_for_kind(driver, (PageKind.IDP_LOGIN, PageKind.IDP_CHALLENGE, PageKind.APP_AUTHENTICATED))
        if page.kind is PageKind.IDP_CHALLENGE:
            raise MfaRequired("IdP is asking for an interactive verification")
        if page.kind is PageKind.APP_AUTHENTICATED:
            return
        self._form_fill(driver, identity)

    def _form_fill(self, driver: BrowserDriver, identity: Credentials) -> None:
        """Sign in on the IdP's hosted page: e-mail, password, "stay signed in"."""
        kind = PageKind.IDP_LOGIN
        logger.info("Filling the IdP sign-in form")

        password_field = self.locator.locate(FieldKind.PASSWORD, kind, driver)
        if password_field is None:
            email_field = self.locator.require(FieldKind.USERNAME, kind, driver)
            driver.type_text(email_field, identity.username)
            driver.click(self.locator.require(FieldKind.SUBMIT, kind, driver))
            logger.info("  E-mail submitted, waiting for the password step")

            driver.wait_for(
                lambda: self._idp_step_done(driver, FieldKind.PASSWORD),
                timeout=self.settings.step_timeout,
                poll_interval=self.settings.poll_interval,
            )
            page = self._classify(driver)
            if page.kind is PageKind.IDP_CHALLENGE:
                raise MfaRequired("IdP is asking for an interactive verification")
            if not self.classifier.is_idp_url(page.url):
                return
            if self._has_error_banner(driver, kind):
                raise InvalidCredentials("IdP did not accept the account")
            password_field = self.locator.require(FieldKind.PASSWORD, kind, driver)

        driver.type_text(password_field, identity.password)
        driver.click(self.locator.require(FieldKind.SUBMIT, kind, driver))
        logger.info("  Password submitted")

        self._answer_stay_signed_in(driver)
        driver.wait_for(
            lambda: self._idp_step_done(driver),
            timeout=self.settings.verify_timeout,
            poll_interval=self.settings.poll_interval,
        )

    def _idp_step_done(self, driver: BrowserDriver, next_field: Optional[FieldKind] = None) -> bool:
        page = self._classify(driver)
        if not self.classifier.is_idp_url(page.url) or page.kind is PageKind.IDP_CHALLENGE:
            return True
        if self._has_error_banner(driver, PageKind.IDP_LOGIN):
            return True
        return next_field is not None and self.locator.locate(next_field, PageKind.IDP_LOGIN, driver) is not None

    def _answer_stay_signed_in(self, driver: BrowserDriver) -> None:
        driver.wait_for(
            lambda: self._idp_step_done(driver) or self._is_stay_signed_in_prompt(driver),
            timeout=self.settings.step_timeout,
            poll_interval=self.settings.poll_interval,
        )
        if not self._is_stay_signed_in_prompt(driver):
            return
        field_kind = FieldKind.STAY_SIGNED_IN if self.settings.keep_signed_in else FieldKind.DECLINE_STAY_SIGNED_IN
        button = self.locator.locate(field_kind, PageKind.IDP_LOGIN, driver)
        if button is None:
            logger.warning("  'Stay signed in' prompt shown but no button found")
            return
        logger.info(f"  Answering 'stay signed in' prompt ({'yes' if self.settings.keep_signed_in else 'no'})")
        driver.click(button)

    def _is_stay_signed_in_prompt(self, driver: BrowserDriver) -> bool:
        url = driver.current_url()
        if not self.classifier.is_idp_url(url):
            return False
        if "kmsi" in url.lower():
            return True
        content = driver.content()
        return any(marker in content for marker in self.STAY_SIGNED_IN_MARKERS)

    def _navigate(self, driver: BrowserDriver, url: str, retries: Optional[int] = None) -> None:
        tries = max(1, retries if retries is not None else self.settings.navigation_retries)
        last_error: Optional[NavigationTimeout] = None
        for number in range(1, tries + 1):
            driver.check_cancelled()
            try:
                driver.navigate(url, self.settings.navigation_timeout)
                return
            except NavigationTimeout as e:
                last_error = e
                logger.warning(f"  Navigation to {url} timed out ({number}/{tries})")
        raise NavigationTimeout(f"Could not load {url} after {tries} tries") from last_error

    def _escape_sso_redirect(self, driver: BrowserDriver) -> Optional[PageClassification]:
        for url in self.settings.escape_urls():
            logger.info(f"  Trying {url}")
            try:
                self._navigate(driver, url, retries=1)
            except NavigationTimeout:
                continue
            page = self._settle(driver)
            if page.kind is PageKind.STANDARD_LOGIN:
                logger.info("  Standard login form reached")
                return page
            logger.debug(f"  {url} landed on {page.kind.value}")
        return None

    def _follow_sso_button(self, driver: BrowserDriver) -> Optional[PageClassification]:
        button = self.locator.locate(FieldKind.SSO_BUTTON, PageKind.STANDARD_LOGIN, driver)
        if button is None:
            return None
        logger.info("Clicking the portal's SSO button")
        driver.click(button)
        return self._wait_for_kind(
            driver, (PageKind.IDP_LOGIN, PageKind.IDP_CHALLENGE, PageKind.APP_AUTHENTICATED)
        )

    def _settle(self, driver: BrowserDriver) -> PageClassification:
        """Wait until the page classifies as something other than UNKNOWN."""
        kinds = tuple(kind for kind in PageKind if kind is not PageKind.UNKNOWN)
        return self._wait_for_kind(driver, kinds)

    def _wait_for_kind(self, driver: BrowserDriver, kinds: Iterable[PageKind]) -> PageClassification:
        kinds = tuple(kinds)
        driver.wait_for(
            lambda: self._classify(driver).kind in kinds,
            timeout=self.settings.step_timeout,
            poll_interval=self.settings.poll_interval,
        )
        return self._classify(driver)

    def _classify(self, driver: BrowserDriver) -> PageClassification:
        return self.classifier.classify(driver.current_url(), driver.title(), driver.content())

    def _verify(self, driver: BrowserDriver) -> None:
        def settled() -> bool:
            page = self._classify(driver)
            if page.kind in (PageKind.APP_AUTHENTICATED, PageKind.IDP_CHALLENGE):
                return True
            if self._has_error_banner(driver, page.kind):
                return True
            return self._looks_authenticated(page)

        driver.wait_for(settled, timeout=self.settings.verify_timeout, poll_interval=self.settings.poll_interval)

        page = self._classify(driver)
        if page.kind is PageKind.IDP_CHALLENGE:
            raise MfaRequired("IdP is asking for an interactive verification")
        if self._has_error_banner(driver, page.kind):
            raise InvalidCredentials("Sign-in rejected: the login page shows an error")
        if self._looks_authenticated(page):
            logger.info(f"  Signed in, now on {page.url}")
            return
        raise VerificationFailed(f"Still on a login page after submitting credentials ({page.url})")

    def _looks_authenticated(self, page: PageClassification) -> bool:
        if page.kind is PageKind.APP_AUTHENTICATED:
            return True
        if page.kind in (PageKind.STANDARD_LOGIN, PageKind.IDP_LOGIN, PageKind.IDP_CHALLENGE):
            return False
        return bool(page.url) and not self.classifier.is_login_host(page.url)

    def _has_error_banner(self, driver: BrowserDriver, page_kind: PageKind) -> bool:
        if page_kind not in (PageKind.STANDARD_LOGIN, PageKind.IDP_LOGIN):
            if not self.classifier.is_login_host(driver.current_url()):
                return False
        return self.locator.locate(FieldKind.ERROR_BANNER, page_kind, driver) is not None

    def _reuse_session(self, credentials: Credentials) -> Optional[SessionRecord]:
        with self._lock:
            driver = self._driver
            session = self._session
        if driver is None:
            return None

        if session is not None and not driver.is_closed():
            same_account = session.account.strip().lower() == credentials.username.strip().lower()
            if same_account:
                try:
                    authenticated = self._looks_authenticated(self._classify(driver))
                except AuthFailure as e:
                    logger.debug(f"Existing browser session unusable: {e}")
                    authenticated = False
                if authenticated:
                    logger.info(f"Reusing the signed-in browser session for {session.account}")
                    return session

        logger.info("Discarding the previous browser session")
        with self._lock:
            self._teardown_driver()
            self._session = None
            self._token_account = None
        return None

    def _acquire_driver(self) -> BrowserDriver:
        driver = self._driver
        if driver is not None and not driver.is_closed():
            return driver
        if driver is not None:
            self._teardown_driver()

        logger.info("Starting a fresh browser session")
        try:
            driver = self.driver_factory()
        except AuthFailure:
            raise
        except Exception as e:
            raise DriverError(f"Could not start the browser: {e}") from e
        driver.bind_cancel_event(self.cancel_event)
        with self._lock:
            self._driver = driver
        return driver

    def _teardown_driver(self) -> None:
        driver, self._driver = self._driver, None
        if driver is None:
            return
        logger.debug("Tearing down browser session")
        driver.close()

    def _snapshot(self, attempt: AuthAttempt) -> None:
        directory = self.settings.snapshot_dir
        driver = self._driver
        if directory is None or driver is None or driver.is_closed():
            return
        stamp = attempt.started_at.strftime("%Y%m%d_%H%M%S")
        written = driver.snapshot(Path(directory) / f"login_attempt{attempt.number}_{stamp}.png")
        if written is not None:
            attempt.notes.append(f"snapshot: {written.name}")
