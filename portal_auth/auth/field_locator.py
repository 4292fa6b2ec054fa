"""Declarative control descriptors and the locator that resolves them.

Descriptors are attribute/role based CSS selectors (Playwright syntax), listed
in priority order per site and field kind. Both sites ship templates with
duplicate hidden inputs, so a control only counts as found when it is visible
and enabled.
"""

import logging
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ..browser.driver import BrowserDriver
from .errors import FieldNotFound
from .models import PageKind


logger = logging.getLogger(__name__)


class FieldKind(Enum):
    USERNAME = "username"
    PASSWORD = "password"
    SUBMIT = "submit"
    SSO_BUTTON = "sso-button"
    ERROR_BANNER = "error-banner"
    STAY_SIGNED_IN = "stay-signed-in"
    DECLINE_STAY_SIGNED_IN = "decline-stay-signed-in"
    LOGOUT = "logout"


class Site(Enum):
    PORTAL = "portal"
    IDP = "idp"


DESCRIPTORS: Dict[Tuple[Site, FieldKind], List[str]] = {
    # HR portal (Oracle ORDS login form and its newer template)
    (Site.PORTAL, FieldKind.USERNAME): [
        "input[name='p_username']",
        "input[name='username']",
        "input#username",
        "input[name='email']",
        "input[type='email']",
        "input#email",
        "input[autocomplete='username']",
    ],
    (Site.PORTAL, FieldKind.PASSWORD): [
        "input[name='p_password']",
        "input[name='password']",
        "input#password",
        "input[type='password']",
    ],
    (Site.PORTAL, FieldKind.SUBMIT): [
        "button[type='submit']",
        "input[type='submit']",
        "button#login-button",
        "button.login-button",
        "button.btn-login",
        "button:has-text('Entrar')",
        "button:has-text('Login')",
    ],
    (Site.PORTAL, FieldKind.SSO_BUTTON): [
        "button[data-provider='microsoft']",
        "a.btn-microsoft",
        "button.btn-microsoft",
        ".sso-microsoft",
        "a[href*='microsoft']",
        "button:has-text('Microsoft')",
        "a:has-text('Microsoft')",
        "button:has-text('Office 365')",
        "a:has-text('Office 365')",
        "button[title*='Microsoft']",
    ],
    (Site.PORTAL, FieldKind.ERROR_BANNER): [
        ".alert-danger",
        ".login-error",
        ".message-error",
        ".error",
        "[role='alert']",
    ],
    (Site.PORTAL, FieldKind.LOGOUT): [
        "a[href*='logout']",
        "button[data-action='logout']",
        ".btn-logout",
        "#logout",
        "a[title*='Sair']",
        "a[title*='Logout']",
    ],
    # Corporate IdP (converged sign-in page)
    (Site.IDP, FieldKind.USERNAME): [
        "input[name='loginfmt']",
        "input#i0116",
        "input[type='email']",
        "input[autocomplete='username']",
        "input[aria-label*='mail' i]",
    ],
    (Site.IDP, FieldKind.PASSWORD): [
        "input[name='passwd']",
        "input#i0118",
        "input[type='password']",
    ],
    (Site.IDP, FieldKind.SUBMIT): [
        "input#idSIButton9",
        "input[type='submit']",
        "button[type='submit']",
        "input[value='Next']",
        "input[value='Avançar']",
        "input[value='Sign in']",
        "input[value='Entrar']",
    ],
    (Site.IDP, FieldKind.ERROR_BANNER): [
        "#usernameError",
        "#passwordError",
        "#idTD_Error",
        "div[role='alert']",
        ".alert-error",
    ],
    (Site.IDP, FieldKind.STAY_SIGNED_IN): [
        "input#idSIButton9",
        "input[type='submit'][value='Yes']",
        "input[type='submit'][value='Sim']",
    ],
    (Site.IDP, FieldKind.DECLINE_STAY_SIGNED_IN): [
        "input#idBtn_Back",
        "input[type='button'][value='No']",
        "input[type='button'][value='Não']",
    ],
}


def site_for(page_kind: PageKind) -> Site:
    """Return which site's markup variants apply to a page kind."""
    if page_kind in (PageKind.IDP_LOGIN, PageKind.IDP_CHALLENGE):
        return Site.IDP
    return Site.PORTAL


class CredentialFieldLocator:
    """Resolve a field kind to the first visible, interactable control."""

    def __init__(self, descriptors: Optional[Dict[Tuple[Site, FieldKind], List[str]]] = None):
        """Initialize locator.

        Args:
            descriptors: Descriptor table to use instead of DESCRIPTORS
        """
        self.descriptors = descriptors if descriptors is not None else DESCRIPTORS

    def descriptors_for(self, field_kind: FieldKind, page_kind: PageKind) -> List[str]:
        return list(self.descriptors.get((site_for(page_kind), field_kind), []))

    def locate(self, field_kind: FieldKind, page_kind: PageKind, driver: BrowserDriver) -> Optional[Any]:
        """Find the control for *field_kind* on the current page.

        Args:
            field_kind: Which control to look for
            page_kind: Classification of the current page (selects the site)
            driver: Browser driver to query

        Returns:
            The control handle, or None when no descriptor matched a
            visible, interactable control
        """
        for descriptor in self.descriptors_for(field_kind, page_kind):
            handles = driver.find_controls(descriptor)
            for handle in handles:
                if driver.is_interactable(handle):
                    logger.debug(f"  Found {field_kind.value} control with selector '{descriptor}'")
                    return handle
            if handles:
                logger.debug(f"  Selector '{descriptor}' matched {len(handles)} hidden/disabled control(s)")
        logger.debug(f"  No visible {field_kind.value} control on {site_for(page_kind).value} page")
        return None

    def require(self, field_kind: FieldKind, page_kind: PageKind, driver: BrowserDriver) -> Any:
        """Like locate(), but raise FieldNotFound with the page's controls attached.

        Raises:
            FieldNotFound: If no descriptor matched
        """
        handle = self.locate(field_kind, page_kind, driver)
        if handle is None:
            available = describe_available_controls(driver)
            logger.warning(
                f"No {field_kind.value} control found on {site_for(page_kind).value} page; "
                f"{len(available)} control(s) available"
            )
            for control in available:
                logger.info(f"    {control}")
            raise FieldNotFound(field_kind.value, available)
        return handle


def describe_available_controls(driver: BrowserDriver) -> List[Dict[str, str]]:
    """List the page's inputs and buttons for diagnostics."""
    try:
        return driver.list_controls()
    except Exception as e:
        logger.warning(f"Could not describe page controls: {e}")
        return []
