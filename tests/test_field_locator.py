import pytest

from portal_auth.auth.errors import FieldNotFound
from portal_auth.auth.field_locator import DESCRIPTORS, CredentialFieldLocator, FieldKind, Site, site_for
from portal_auth.auth.models import PageKind

from fakes import LOGIN, FakeControl, FakeDriver, FakePage, FakeSite


def driver_on(*controls):
    site = FakeSite()
    site.add(FakePage(LOGIN, controls=list(controls)))
    driver = FakeDriver(site)
    driver.navigate(LOGIN, timeout=1)
    return driver


class TestLocate:

    def test_returns_first_visible_match(self):
        visible = FakeControl("input[name='p_username']")
        driver = driver_on(FakeControl("input[name='p_username']", visible=False), visible)

        handle = CredentialFieldLocator().locate(FieldKind.USERNAME, PageKind.STANDARD_LOGIN, driver)

        assert handle is visible

    def test_descriptor_priority_order(self):
        preferred = FakeControl("input[name='p_password']")
        driver = driver_on(FakeControl("input[type='password']"), preferred)

        handle = CredentialFieldLocator().locate(FieldKind.PASSWORD, PageKind.STANDARD_LOGIN, driver)

        assert handle is preferred

    def test_falls_through_to_later_descriptor(self):
        fallback = FakeControl("input#i0116")
        driver = driver_on(FakeControl("input[name='loginfmt']", enabled=False), fallback)

        handle = CredentialFieldLocator().locate(FieldKind.USERNAME, PageKind.IDP_LOGIN, driver)

        assert handle is fallback

    @pytest.mark.parametrize("controls", [
        [],
        [FakeControl("input[name='p_username']", visible=False)],
        [FakeControl("input[name='p_username']", enabled=False)],
        [FakeControl("input[name='loginfmt']")],
    ])
    def test_not_found_without_interactable_match(self, controls):
        driver = driver_on(*controls)

        assert CredentialFieldLocator().locate(FieldKind.USERNAME, PageKind.STANDARD_LOGIN, driver) is None

    def test_site_follows_page_kind(self):
        assert site_for(PageKind.IDP_LOGIN) is Site.IDP
        assert site_for(PageKind.IDP_CHALLENGE) is Site.IDP
        assert site_for(PageKind.STANDARD_LOGIN) is Site.PORTAL
        assert site_for(PageKind.UNKNOWN) is Site.PORTAL

    def test_custom_descriptor_table(self):
        control = FakeControl("#user")
        driver = driver_on(control)
        locator = CredentialFieldLocator({(Site.PORTAL, FieldKind.USERNAME): ["#user"]})

        assert locator.locate(FieldKind.USERNAME, PageKind.STANDARD_LOGIN, driver) is control
        assert locator.locate(FieldKind.PASSWORD, PageKind.STANDARD_LOGIN, driver) is None

    def test_every_credential_field_has_descriptors_on_both_sites(self):
        for site in Site:
            for kind in (FieldKind.USERNAME, FieldKind.PASSWORD, FieldKind.SUBMIT, FieldKind.ERROR_BANNER):
                assert DESCRIPTORS[(site, kind)]


class TestRequire:

    def test_raises_with_available_controls(self):
        driver = driver_on(FakeControl("input[name='p_password']"), FakeControl("button[type='submit']"))

        with pytest.raises(FieldNotFound) as excinfo:
            CredentialFieldLocator().require(FieldKind.USERNAME, PageKind.STANDARD_LOGIN, driver)

        assert excinfo.value.field_kind == "username"
        assert excinfo.value.retryable
        assert [c["selector"] for c in excinfo.value.available_controls] == [
            "input[name='p_password']",
            "button[type='submit']",
        ]
