"""
Browser session plumbing: launch, login wait, readiness wait, cookie refresh.

StorageState-first, Chromium only. If profiles/storage/<host>.json exists (see
save_state.py) it is loaded into a fresh context; otherwise a persistent
profile under profiles/chrome keeps the login between runs.
"""

import asyncio
import os
import time
from typing import Optional, Tuple

import psutil
from playwright.async_api import (
    BrowserContext,
    Error as PlaywrightError,
    Page,
    Playwright,
    TimeoutError as PwTimeout,
)

from .config import (
    BROWSER_ARGS,
    GOTO_TIMEOUT_MS,
    LOGIN_POLL_SEC,
    POST_READY_SETTLE_SEC,
    PROFILE_DIR,
    READY_RETRY_SEC,
    READY_TIMEOUT_MS,
    STATE_DIR,
    TREE_SELECTOR,
    VIEWPORT,
    storage_state_path,
)
from .tree_model import TreeUnavailable


async def launch_context(p: Playwright, host: str, headless: bool = False) -> Tuple[BrowserContext, Page]:
    """Open a browser context for `host` and return it with a single page."""
    storage_path = storage_state_path(host)

    if os.path.exists(storage_path):
        browser = await p.chromium.launch(headless=headless, args=BROWSER_ARGS)
        context = await browser.new_context(storage_state=storage_path, viewport=VIEWPORT)
        page = await context.new_page()
        print(f"[state] Loaded storage state for {host} → {storage_path}")
    else:
        os.makedirs(PROFILE_DIR, exist_ok=True)
        stopped = cleanup_orphans(PROFILE_DIR)
        if stopped:
            print(f"[state] Stopped {stopped} leftover browser process(es) holding the profile")
        context = await p.chromium.launch_persistent_context(
            user_data_dir=PROFILE_DIR,
            headless=headless,
            viewport=VIEWPORT,
            args=BROWSER_ARGS,
        )
        page = context.pages[0] if context.pages else await context.new_page()
        print(f"[state] No storage file for {host}. Using persistent profile at {PROFILE_DIR}")

    # restored tabs from a previous session
    for extra in context.pages:
        if extra is not page:
            await extra.close()

    return context, page


async def open_target(page: Page, url: str, timeout_ms: int = GOTO_TIMEOUT_MS) -> None:
    try:
        await page.goto(url, wait_until="networkidle", timeout=timeout_ms)
    except PwTimeout:
        print("[login] Page load timed out, continuing anyway (login page may still be loading).")


async def _tree_present(page: Page, selector: str) -> bool:
    try:
        return await page.query_selector(selector) is not None
    except PlaywrightError:
        # page is navigating (login redirect)
        return False


async def wait_for_login(
    page: Page,
    selector: str = TREE_SELECTOR,
    poll_interval: float = LOGIN_POLL_SEC,
    timeout: Optional[float] = None,
) -> None:
    """Block until the tree element shows up, i.e. the user is logged in."""
    print("[login] Checking login state...")
    if await _tree_present(page, selector):
        print("[login] Already logged in. Tree found.")
        return

    print("")
    print("==> Please log in to erisapedia.com in the browser window.")
    print("==> The harvest will continue automatically when the tree loads.")
    print("")

    started = time.monotonic()
    while True:
        await asyncio.sleep(poll_interval)
        if await _tree_present(page, selector):
            print("[login] Login detected. Tree found.")
            return
        if timeout is not None and time.monotonic() - started > timeout:
            raise TreeUnavailable(f"tree {selector} did not appear within {timeout:.0f}s")


async def wait_for_tree_ready(page: Page, selector: str = TREE_SELECTOR) -> None:
    """Wait until jQuery and the tree element are both on the page, retrying through navigations."""
    while True:
        try:
            await page.wait_for_function(
                "(sel) => typeof jQuery !== 'undefined' && jQuery(sel).length > 0",
                arg=selector,
                timeout=READY_TIMEOUT_MS,
            )
            break
        except PlaywrightError:
            await asyncio.sleep(READY_RETRY_SEC)
    await asyncio.sleep(POST_READY_SETTLE_SEC)


async def refresh_storage_state(context: BrowserContext, host: str) -> Optional[str]:
    """Save cookies + localStorage for the next run. Returns the path, or None on failure."""
    os.makedirs(STATE_DIR, exist_ok=True)
    path = storage_state_path(host)
    try:
        await context.storage_state(path=path)
    except PlaywrightError as e:
        print("[state] Could not refresh storage state:", e)
        return None
    print(f"[state] Refreshed storage state → {path}")
    return path


def cleanup_orphans(profile_dir: str, grace_sec: float = 3.0) -> int:
    """
    Stop browser processes left behind by an earlier run on the same profile.

    Chromium refuses to open a user-data-dir that another process holds, so a
    crashed run would otherwise block the next one.
    """
    marker = os.path.abspath(profile_dir)
    victims = []
    for proc in psutil.process_iter(["pid", "name", "cmdline"]):
        try:
            cmdline = " ".join(proc.info.get("cmdline") or [])
            if f"--user-data-dir={marker}" in cmdline:
                victims.append(proc)
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            pass

    for proc in victims:
        try:
            proc.terminate()
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            pass
    _, alive = psutil.wait_procs(victims, timeout=grace_sec)
    for proc in alive:
        try:
            proc.kill()
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            pass
    return len(victims)
