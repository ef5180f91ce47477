"""
Push the harvested CSV to a Google Sheet through an Apps Script web app.

Apps Script answers a POST with a 302 to a one-shot URL that serves the
script's output, so the redirect is followed by hand with a GET.
"""

from dataclasses import dataclass
from typing import Optional

import requests

from .config import SHEET_TIMEOUT_SEC


@dataclass
class RelayResult:
    success: bool
    rows: Optional[int] = None
    error: Optional[str] = None
    status: Optional[int] = None


def _follow_redirect(res: requests.Response, timeout: float) -> requests.Response:
    if 300 <= res.status_code < 400:
        location = res.headers.get("Location")
        if location:
            return requests.get(location, allow_redirects=True, timeout=timeout)
    return res


def push_to_sheet(csv_text: str, url: str, timeout: float = SHEET_TIMEOUT_SEC) -> RelayResult:
    """POST the raw CSV body. Never raises; failures come back in the result."""
    print("[sheet] Pushing CSV to Google Sheet...")
    try:
        res = requests.post(
            url,
            data=csv_text.encode("utf-8"),
            headers={"Content-Type": "text/csv"},
            allow_redirects=False,
            timeout=timeout,
        )
        final = _follow_redirect(res, timeout)
    except requests.RequestException as e:
        print(f"[sheet] Failed to push to Google Sheet: {e}")
        return RelayResult(success=False, error=str(e))

    try:
        data = final.json()
    except ValueError:
        if final.ok:
            print("[sheet] Google Sheet updated (response was not JSON, but request succeeded).")
            return RelayResult(success=True, status=final.status_code)
        print("[sheet] Google Sheet error: unexpected response.")
        return RelayResult(success=False, error="unexpected response", status=final.status_code)

    if isinstance(data, dict) and data.get("success"):
        rows = data.get("rows")
        print(f"[sheet] Google Sheet updated ({rows} rows).")
        return RelayResult(success=True, rows=rows, status=final.status_code)

    error = data.get("error") if isinstance(data, dict) else None
    error = error or "unknown error"
    print(f"[sheet] Google Sheet error: {error}")
    return RelayResult(success=False, error=str(error), status=final.status_code)
