"""
Configuration for the ERISApedia tree harvester.

Tunables are module constants, overridable through environment variables.
Site settings (folders to harvest, login URL, Google Sheet webhook) live in
config.json next to this file, or wherever HARVEST_CONFIG points.

Optional (tuning):
  export EXPAND_DELAY_MS="100"      # settle delay after each expand request
  export EXPAND_BATCH_SIZE="5"      # siblings expanded concurrently
  export LOGIN_POLL_SEC="3"         # how often to look for the tree while waiting for login
  export GOTO_TIMEOUT_MS="30000"    # initial page load timeout
  export HEADLESS="0"               # 1 to hide the browser (needs saved storage state)
"""

import json
import os
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional
from urllib.parse import urlparse

BASE_DIR = os.path.dirname(os.path.abspath(__file__))

CONFIG_PATH = os.environ.get("HARVEST_CONFIG") or os.path.join(BASE_DIR, "config.json")

# Browser profiles
STATE_DIR = os.path.join(BASE_DIR, "profiles", "storage")
PROFILE_DIR = os.path.join(BASE_DIR, "profiles", "chrome")
VIEWPORT = {"width": 1280, "height": 900}
BROWSER_ARGS = ["--window-size=1280,900", "--no-restore-session-state"]
HEADLESS = bool(int(os.environ.get("HEADLESS", "0")))

# Page / login timing
TREE_SELECTOR = "#tree"
GOTO_TIMEOUT_MS = int(os.environ.get("GOTO_TIMEOUT_MS", "30000"))
LOGIN_POLL_SEC = float(os.environ.get("LOGIN_POLL_SEC", "3"))
READY_TIMEOUT_MS = 30_000
READY_RETRY_SEC = 2.0
POST_READY_SETTLE_SEC = 2.0

# Expansion
EXPAND_DELAY = int(os.environ.get("EXPAND_DELAY_MS", "100")) / 1000.0
BATCH_SIZE = int(os.environ.get("EXPAND_BATCH_SIZE", "5"))

# Google Sheet relay
SHEET_TIMEOUT_SEC = 60


class ConfigError(ValueError):
    """config.json is missing, unreadable or incomplete."""


@dataclass
class HarvestConfig:
    login_url: str
    folders: List[str] = field(default_factory=list)
    sheet_url: Optional[str] = None

    @property
    def host(self) -> str:
        return urlparse(self.login_url).hostname or "default"


def load_config(path: Optional[str] = None) -> HarvestConfig:
    """
    Read config.json.

    Expected keys:
        loginUrl              (required) page that hosts the tree, or redirects to login
        folders               root folder titles harvested by default
        googleSheetWebAppUrl  optional Apps Script endpoint for the CSV relay
    """
    path = path or CONFIG_PATH
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except FileNotFoundError:
        raise ConfigError(f"config file not found at {path}")
    except json.JSONDecodeError as e:
        raise ConfigError(f"config file {path} is not valid JSON: {e}")

    if not isinstance(raw, dict):
        raise ConfigError(f"config file {path} must contain a JSON object")

    login_url = (raw.get("loginUrl") or "").strip()
    if not login_url:
        raise ConfigError(f"'loginUrl' is missing from {path}")

    folders = raw.get("folders") or []
    if not isinstance(folders, list):
        raise ConfigError("'folders' must be a list of folder titles")

    return HarvestConfig(
        login_url=login_url,
        folders=[str(f).strip() for f in folders if str(f).strip()],
        sheet_url=(raw.get("googleSheetWebAppUrl") or "").strip() or None,
    )


def storage_state_path(host: str) -> str:
    return os.path.join(STATE_DIR, f"{host}.json")


def default_output_name(now: Optional[datetime] = None) -> str:
    """erisa-tree-2026-01-31T09-15-02.csv"""
    now = now or datetime.now()
    return f"erisa-tree-{now.strftime('%Y-%m-%dT%H-%M-%S')}.csv"
