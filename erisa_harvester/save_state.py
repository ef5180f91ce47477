#!/usr/bin/env python3

# First time:
#   python -m erisa_harvester.save_state
#   or
#   python -m erisa_harvester.save_state --login-url https://www.erisapedia.com/
#
#   Log in to ERISApedia in the window that opens, then press Enter here.
#   Later harvests load profiles/storage/<host>.json and skip the login.

import argparse
import asyncio
import os
import sys

from playwright.async_api import async_playwright

from .config import (
    BROWSER_ARGS,
    GOTO_TIMEOUT_MS,
    STATE_DIR,
    VIEWPORT,
    ConfigError,
    HarvestConfig,
    load_config,
)
from .session import open_target, refresh_storage_state


async def save_state(login_url: str, host: str) -> str:
    os.makedirs(STATE_DIR, exist_ok=True)

    print("=" * 60)
    print("💾 Save Storage State")
    print("=" * 60)
    print(f"🌐 Login URL: {login_url}")
    print(f"📁 Storage state will be saved under: {STATE_DIR}")
    print("=" * 60)

    async with async_playwright() as p:
        browser = await p.chromium.launch(headless=False, args=BROWSER_ARGS)
        # cookies/localStorage live in the context
        context = await browser.new_context(viewport=VIEWPORT)
        page = await context.new_page()

        print(f"\n🚀 Navigating to: {login_url}")
        await open_target(page, login_url, timeout_ms=GOTO_TIMEOUT_MS)

        print("\n💡 Instructions:")
        print("   1. Log in to ERISApedia in the browser window")
        print("   2. Wait until the document tree is visible")
        print("   3. Return here and press Enter to save the session state")
        await asyncio.to_thread(input, "\n👉 Press Enter here to save the session state... ")

        path = await refresh_storage_state(context, host)

        await context.close()
        await browser.close()

    if not path:
        raise RuntimeError("storage state was not saved")
    print("\n💡 You can now run the harvest without logging in:")
    print("   python -m erisa_harvester.harvest")
    return path


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description="Save browser storage state (cookies, localStorage) after logging in to ERISApedia.",
    )
    parser.add_argument("--login-url", help="Login URL (default: loginUrl from config.json)")
    parser.add_argument("--config", help="Path to config.json")
    args = parser.parse_args(argv)

    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        if not args.login_url:
            print(f"❌ Error: {e}")
            print("   Pass --login-url or fix config.json")
            return 1
        cfg = None

    login_url = args.login_url or cfg.login_url
    host = HarvestConfig(login_url=login_url).host

    try:
        asyncio.run(save_state(login_url, host))
    except KeyboardInterrupt:
        print("\n[ABORTED] KeyboardInterrupt.")
        return 130
    print("\n✅ Complete!")
    return 0


if __name__ == "__main__":
    sys.exit(main())
