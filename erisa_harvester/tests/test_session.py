import asyncio
import os

import pytest
from playwright.async_api import Error as PlaywrightError

import erisa_harvester.session as session
from erisa_harvester.tree_model import TreeUnavailable


class LoginPage:
    """query_selector finds the tree after `appears_after` polls; one poll hits a navigation."""

    def __init__(self, appears_after, navigating_on=None):
        self.appears_after = appears_after
        self.navigating_on = navigating_on
        self.polls = 0

    async def query_selector(self, selector):
        self.polls += 1
        if self.polls == self.navigating_on:
            raise PlaywrightError("Execution context was destroyed")
        return object() if self.polls > self.appears_after else None


def test_already_logged_in_returns_immediately():
    page = LoginPage(appears_after=0)
    asyncio.run(session.wait_for_login(page, poll_interval=0))
    assert page.polls == 1


def test_waits_through_navigation_until_tree_appears():
    page = LoginPage(appears_after=3, navigating_on=2)
    asyncio.run(session.wait_for_login(page, poll_interval=0))
    assert page.polls == 4


def test_login_timeout_is_tree_unavailable():
    page = LoginPage(appears_after=10**9)
    with pytest.raises(TreeUnavailable):
        asyncio.run(session.wait_for_login(page, poll_interval=0.01, timeout=0.05))


class FakeProc:
    def __init__(self, pid, cmdline):
        self.pid = pid
        self.info = {"pid": pid, "name": "chrome", "cmdline": cmdline}
        self.terminated = False
        self.killed = False

    def terminate(self):
        self.terminated = True

    def kill(self):
        self.killed = True


def test_cleanup_orphans_targets_only_our_profile(monkeypatch, tmp_path):
    profile = str(tmp_path / "chrome")
    ours = FakeProc(1, ["chrome", f"--user-data-dir={os.path.abspath(profile)}"])
    stubborn = FakeProc(2, ["chrome", "--type=renderer", f"--user-data-dir={os.path.abspath(profile)}"])
    other = FakeProc(3, ["chrome", "--user-data-dir=/home/me/.config/google-chrome"])

    monkeypatch.setattr(session.psutil, "process_iter", lambda attrs: iter([ours, stubborn, other]))
    monkeypatch.setattr(session.psutil, "wait_procs", lambda procs, timeout: ([ours], [stubborn]))

    assert session.cleanup_orphans(profile, grace_sec=0) == 2
    assert ours.terminated and stubborn.terminated
    assert stubborn.killed and not ours.killed
    assert not other.terminated
