"""
Identifier Tool: read the video ID from an NHK VOD page with Playwright.

NHK injects the player with JavaScript after page load, so the static
HTML holds nothing useful. A Chromium session waits for the player
element to become visible and reads its ``data-id`` attribute.
"""

from __future__ import annotations

import logging
from typing import Optional

from playwright.sync_api import (
    Error as PlaywrightError,
    TimeoutError as PlaywrightTimeoutError,
    sync_playwright,
)

from nhk_vod.config.constants import (
    BROWSER_HEADLESS,
    IDENTIFIER_WAIT_TIMEOUT,
    NAVIGATION_TIMEOUT,
    VIDEO_ELEMENT_SELECTOR,
    VIDEO_ID_ATTRIBUTE,
)
from nhk_vod.exceptions import NetworkError, NotFoundError

logger = logging.getLogger(__name__)


def _clean_identifier(raw: Optional[str], page_url: str) -> str:
    identifier = (raw or "").strip()
    if not identifier:
        raise NotFoundError(
            f"{VIDEO_ELEMENT_SELECTOR} on {page_url} has no {VIDEO_ID_ATTRIBUTE} value"
        )
    return identifier


def resolve_identifier(
    page_url: str,
    headless: bool = BROWSER_HEADLESS,
    timeout: float = IDENTIFIER_WAIT_TIMEOUT,
    navigation_timeout: float = NAVIGATION_TIMEOUT,
) -> str:
    """
    Load ``page_url`` in Chromium and return the player's content identifier.

    Raises:
        NotFoundError: The player element did not appear within ``timeout``
            seconds, or it carries no identifier.
        NetworkError: The page could not be loaded.
    """
    with sync_playwright() as playwright:
        browser = playwright.chromium.launch(headless=headless)
        try:
            page = browser.new_page()
            page.set_default_navigation_timeout(navigation_timeout * 1000)
            logger.info("Loading %s", page_url)
            page.goto(page_url)

            player = page.locator(VIDEO_ELEMENT_SELECTOR).first
            logger.debug("Waiting up to %.0fs for %s", timeout, VIDEO_ELEMENT_SELECTOR)
            player.wait_for(state="visible", timeout=timeout * 1000)
            raw = player.get_attribute(VIDEO_ID_ATTRIBUTE)
        except PlaywrightTimeoutError as e:
            raise NotFoundError(
                f"No {VIDEO_ELEMENT_SELECTOR} element on {page_url} within {timeout:.0f}s"
            ) from e
        except PlaywrightError as e:
            raise NetworkError(f"Cannot load {page_url}: {e}", url=page_url) from e
        finally:
            browser.close()

    identifier = _clean_identifier(raw, page_url)
    logger.info("Video ID: %s", identifier)
    return identifier
