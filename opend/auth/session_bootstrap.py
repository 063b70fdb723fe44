"""
Session Bootstrap Utility
=========================
Drives the redirect login from a terminal by opening a headed browser.

Workflow:
    1. ``SessionManager.login()`` — returns at once if already logged in
    2. Launch headed Chromium at the provider URL
    3. User authenticates at the provider (passkey, device, ...)
    4. The provider redirects to ``redirect_uri``; that navigation is
       intercepted (no app server needs to be running) and its query
       string is handed to ``SessionManager.resume()``
    5. Browser closes

Usage::

    # From command line:
    python -m opend login

    # Programmatic:
    from opend.auth.session_bootstrap import bootstrap_login
    identity = asyncio.run(bootstrap_login(session))
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional
from urllib.parse import parse_qs, urlparse

from playwright.async_api import Route, async_playwright

from .identity import AnyIdentity
from .identity_provider import is_callback
from .session_manager import LoginRedirect, SessionManager

logger = logging.getLogger(__name__)


_DONE_PAGE = (
    "<html><body style='font-family: sans-serif; text-align: center; margin-top: 4rem'>"
    "<h2>Login received</h2><p>You can close this window and return to the terminal.</p>"
    "</body></html>"
)


def _callback_params(url: str) -> dict:
    return parse_qs(urlparse(url).query)


async def bootstrap_login(
    session: SessionManager,
    redirect_uri: Optional[str] = None,
    timeout_minutes: int = 10,
    viewport_width: int = 1280,
    viewport_height: int = 900,
) -> Optional[AnyIdentity]:
    """Run the whole redirect ceremony in a headed browser.

    Returns:
        The identity on success, None on failure, cancel or timeout.
        On timeout the login-in-progress marker stays set, exactly as if
        the user had abandoned the provider tab.
    """
    redirect_uri = redirect_uri or session.config.app_url
    result = session.login(redirect_uri)
    if not isinstance(result, LoginRedirect):
        return result

    redirect_base = redirect_uri.rstrip("/")
    loop = asyncio.get_running_loop()
    callback_url: asyncio.Future = loop.create_future()

    def _is_redirect(url: str) -> bool:
        return url.startswith(redirect_base) and is_callback(
            {k: v[-1] for k, v in _callback_params(url).items()}
        )

    async def _capture(route: Route) -> None:
        if not callback_url.done():
            callback_url.set_result(route.request.url)
        await route.fulfill(status=200, content_type="text/html", body=_DONE_PAGE)

    print("\n" + "=" * 60)
    print("  IDENTITY PROVIDER LOGIN")
    print("=" * 60)
    print(f"  Provider:  {result.url.split('?')[0]}")
    print(f"  Timeout:   {timeout_minutes} minutes")
    print("  A browser window will open. Complete the login there.")
    print("=" * 60)

    pw = await async_playwright().start()
    browser = None
    context = None

    try:
        browser = await pw.chromium.launch(
            headless=False,
            args=["--no-sandbox", "--disable-dev-shm-usage"],
        )
        context = await browser.new_context(
            viewport={"width": viewport_width, "height": viewport_height},
            locale="en-US",
        )
        await context.route(_is_redirect, _capture)

        page = await context.new_page()
        try:
            await page.goto(result.url, wait_until="load", timeout=60_000)
        except Exception as e:
            logger.warning(f"[BOOTSTRAP] Initial navigation issue: {e}")

        try:
            url = await asyncio.wait_for(callback_url, timeout=timeout_minutes * 60)
        except asyncio.TimeoutError:
            logger.error(f"[BOOTSTRAP] No provider callback within {timeout_minutes} minutes")
            print(f"\n  ⏰ Timeout ({timeout_minutes} min) — login not completed.")
            return None

        identity = session.resume(_callback_params(url))
        if identity is None:
            print("\n  ❌ Login failed — see log for details.\n")
            return None

        print(f"\n  ✅ Logged in as {identity.sender().to_str()}\n")
        return identity

    except KeyboardInterrupt:
        print("\n  Cancelled by user.")
        return None
    finally:
        if context:
            try:
                await context.close()
            except Exception:
                pass
        if browser:
            try:
                await browser.close()
            except Exception:
                pass
        try:
            await pw.stop()
        except Exception:
            pass
