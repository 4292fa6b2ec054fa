"""Classify the page currently loaded in the browser."""

import logging
from typing import Iterable, Optional, Tuple
from urllib.parse import urlparse

from .models import PageClassification, PageKind


logger = logging.getLogger(__name__)


class PageClassifier:
    """Maps (url, title, content) to a PageKind.

    The classifier is a pure function of its inputs so it can be called over
    and over while polling. It never raises: anything it cannot inspect is
    classified as UNKNOWN, which the orchestrator treats as "try again".
    """

    # Hosts that serve the corporate IdP sign-in pages
    IDP_HOSTS: Tuple[str, ...] = (
        "login.microsoftonline.com",
        "login.microsoft.com",
        "login.live.com",
        "login.windows.net",
    )

    # Text fragments that only appear on IdP MFA / verification pages
    MFA_MARKERS: Tuple[str, ...] = (
        "ConvergedTFA",
        "mfaAuthMethod",
        "rememberMFA",
        "idDiv_SAOTCAS_Title",
        "idDiv_SAOTCC_Title",
        "Verify your identity",
        "Verificar sua identidade",
        "Approve sign in request",
        "Aprovar solicitação de entrada",
    )
    MFA_TITLE_MARKERS: Tuple[str, ...] = ("Verification", "Verificação")

    # Text fragments of the IdP sign-in form (email / password steps)
    IDP_LOGIN_MARKERS: Tuple[str, ...] = (
        "Sign in to your account",
        "Entrar em sua conta",
        'name="loginfmt"',
        "ConvergedSignIn",
    )

    # Portal paths that only an authenticated user reaches
    APP_AUTHENTICATED_MARKERS: Tuple[str, ...] = (
        "rhlgweb.show",
        "rhportal/home",
        "/home",
        "dashboard",
        "rhlgweb.menu",
    )

    # Markup of the portal's own username/password form
    STANDARD_LOGIN_MARKERS: Tuple[str, ...] = (
        'name="p_username"',
        'name="p_password"',
        "rhlgweb.login",
        'type="password"',
    )

    def __init__(
        self,
        idp_hosts: Optional[Iterable[str]] = None,
        app_markers: Optional[Iterable[str]] = None,
    ):
        """Initialize classifier.

        Args:
            idp_hosts: Extra hosts that belong to the IdP
            app_markers: Extra URL fragments that mark an authenticated portal page
        """
        self.idp_hosts = tuple(h.lower() for h in self.IDP_HOSTS + tuple(idp_hosts or ()))
        self.app_markers = tuple(m.lower() for m in self.APP_AUTHENTICATED_MARKERS + tuple(app_markers or ()))

    def classify(self, url: str, title: str = "", content: str = "") -> PageClassification:
        """Classify a page.

        Args:
            url: Current page URL
            title: Current page title
            content: Current page HTML

        Returns:
            PageClassification: Exactly one page kind plus the url/title used
        """
        try:
            kind = self._classify(url or "", title or "", content or "")
        except Exception as e:
            logger.debug(f"Page classification failed ({e.__class__.__name__}: {e}) - treating as unknown")
            kind = PageKind.UNKNOWN
        return PageClassification(kind=kind, url=url or "", title=title or "")

    def _classify(self, url: str, title: str, content: str) -> PageKind:
        if self.is_idp_url(url):
            if self._has_mfa_markers(title, content):
                return PageKind.IDP_CHALLENGE
            return PageKind.IDP_LOGIN

        has_login_form = any(marker in content for marker in self.STANDARD_LOGIN_MARKERS)
        path = urlparse(url).path.lower() + "?" + urlparse(url).query.lower()
        if not has_login_form and "login" not in path and any(marker in path for marker in self.app_markers):
            return PageKind.APP_AUTHENTICATED

        if self._has_mfa_markers(title, content):
            return PageKind.IDP_CHALLENGE
        if has_login_form:
            return PageKind.STANDARD_LOGIN
        if any(marker in content or marker in title for marker in self.IDP_LOGIN_MARKERS):
            return PageKind.IDP_LOGIN
        return PageKind.UNKNOWN

    def _has_mfa_markers(self, title: str, content: str) -> bool:
        if any(marker in content for marker in self.MFA_MARKERS):
            return True
        return any(marker in title for marker in self.MFA_TITLE_MARKERS)

    def is_idp_url(self, url: str) -> bool:
        """Check whether *url* is served by the IdP."""
        try:
            host = (urlparse(url).hostname or "").lower()
        except ValueError:
            return False
        if not host:
            return False
        return any(host == idp or host.endswith("." + idp) for idp in self.idp_hosts) or host.endswith(".microsoftonline.com")

    def is_login_host(self, url: str, portal_login_paths: Iterable[str] = ("login",)) -> bool:
        """Check whether *url* is still one of the login pages (IdP or portal login form)."""
        if self.is_idp_url(url):
            return True
        try:
            path = urlparse(url).path.lower()
        except ValueError:
            return False
        return any(fragment in path for fragment in portal_login_paths)
