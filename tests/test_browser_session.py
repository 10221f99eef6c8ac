"""
Tests for the Playwright element wrapper (no browser started).
"""

import pytest
from playwright.sync_api import Error as PlaywrightError

from browser_session import PlaywrightElementHandle, SessionError


class DetachedElement:
    def get_attribute(self, name):
        raise PlaywrightError("Element is not attached to the DOM")

    def click(self):
        raise PlaywrightError("Element is not attached to the DOM")

    def inner_text(self):
        raise PlaywrightError("Element is not attached to the DOM")

    def text_content(self):
        raise PlaywrightError("Element is not attached to the DOM")


class TestPlaywrightElementHandle:
    def test_attribute_errors_become_session_errors(self):
        with pytest.raises(SessionError, match="href"):
            PlaywrightElementHandle(DetachedElement()).attribute("href")

    def test_click_errors_become_session_errors(self):
        with pytest.raises(SessionError):
            PlaywrightElementHandle(DetachedElement()).click()

    def test_text_of_detached_element_is_empty(self):
        assert PlaywrightElementHandle(DetachedElement()).text() == ""
