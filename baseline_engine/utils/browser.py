"""Playwright helpers for capturing reference screenshots."""

from __future__ import annotations

from typing import Optional

from playwright.async_api import Browser, BrowserContext, Page, Playwright

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/122.0.0.0 Safari/537.36"
)

# Freeze CSS animations and transitions so captures are repeatable
_DISABLE_ANIMATIONS_SCRIPT = """
window.addEventListener('DOMContentLoaded', () => {
    const style = document.createElement('style');
    style.textContent = `*, *::before, *::after {
        animation-duration: 0s !important;
        animation-delay: 0s !important;
        transition-duration: 0s !important;
        caret-color: transparent !important;
    }`;
    document.head.appendChild(style);
});
"""


async def launch_capture_browser(playwright: Playwright, headless: bool = True) -> Browser:
    """Launch Chromium for baseline capture."""
    return await playwright.chromium.launch(
        headless=headless,
        args=["--disable-blink-features=AutomationControlled", "--hide-scrollbars"],
    )


async def create_capture_context(
    browser: Browser,
    user_agent: Optional[str] = None,
    freeze_animations: bool = True,
) -> BrowserContext:
    """Create the single context reused for every route and viewport."""
    context = await browser.new_context(
        user_agent=user_agent or DEFAULT_USER_AGENT,
        locale="en-US",
        timezone_id="America/New_York",
        device_scale_factor=1,
    )
    if freeze_animations:
        await context.add_init_script(_DISABLE_ANIMATIONS_SCRIPT)
    return context


def build_route_url(base_url: str, route: str) -> str:
    """Join a reference deployment URL and a route path."""
    base = base_url.rstrip("/")
    if not route:
        return base + "/"
    return f"{base}{route}" if route.startswith("/") else f"{base}/{route}"


async def capture_full_page(page: Page) -> bytes:
    return await page.screenshot(full_page=True, type="png")
