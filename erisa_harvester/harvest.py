# harvest.py
# ERISApedia tree harvester: expand the selected folders of the document tree
# to full depth and export every leaf as one CSV row.
#
# WHAT THIS DOES
#   1) Opens erisapedia.com in Chromium (saved storage state or persistent profile)
#   2) Waits for you to log in if needed (polls for the #tree widget)
#   3) Expands every folder under the selected root folders, lazy ones included
#   4) Flattens the tree: one row per leaf, "Level 1..N" columns + Source URL
#   5) Writes the CSV and, if configured, pushes it to a Google Sheet
#
# First time:
#   python -m erisa_harvester.save_state
#
# RUN:
#   python -m erisa_harvester.harvest
#   python -m erisa_harvester.harvest --folders "ERISA,DOL Regulations" --output erisa.csv
#   python -m erisa_harvester.harvest --sequential --settle-ms 300 --keep-open

import argparse
import asyncio
import json
import os
import sys
import time
import traceback
from datetime import datetime
from typing import Any, Dict, List, Optional

from playwright.async_api import async_playwright

from .config import (
    BATCH_SIZE,
    EXPAND_DELAY,
    HEADLESS,
    ConfigError,
    HarvestConfig,
    default_output_name,
    load_config,
)
from .expander import BatchedPolicy, SequentialPolicy, expand_selected
from .fancytree import FancytreeHandle
from .flattener import count_rows, flatten_tree, to_csv
from .relay import push_to_sheet
from .session import (
    launch_context,
    open_target,
    refresh_storage_state,
    wait_for_login,
    wait_for_tree_ready,
)
from .tree_model import TreeHandle

# =========================
# Report
# =========================

def new_report(site: str, folders: List[str]) -> Dict[str, Any]:
    return {
        "site": site,
        "ts_iso": datetime.utcnow().isoformat() + "Z",
        "folders": list(folders),
        "errors": [],
        "results": {
            "matched_roots": 0,
            "rows": 0,
            "max_depth": 0,
            "output": None,
            "sheet": None,
        },
        "metrics": {
            "run_start_ts": None,
            "run_end_ts": None,
            "total_runtime_sec": None,
            "expand_sec": None,
        },
    }


def save_report(report: Dict[str, Any], path: str) -> None:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(report, f, indent=2, ensure_ascii=False)
    print(f"[report] {path}")


def finish_report(report: Dict[str, Any], path: Optional[str] = None) -> Dict[str, Any]:
    """Stamp the end time and runtime, then save when a path is given."""
    report["metrics"]["run_end_ts"] = datetime.utcnow().isoformat() + "Z"
    t0 = datetime.fromisoformat(report["metrics"]["run_start_ts"].replace("Z", ""))
    t1 = datetime.fromisoformat(report["metrics"]["run_end_ts"].replace("Z", ""))
    report["metrics"]["total_runtime_sec"] = (t1 - t0).total_seconds()
    if path:
        save_report(report, path)
    return report


# =========================
# Expand + extract
# =========================

async def collect_csv(
    handle: TreeHandle,
    folders: List[str],
    policy=None,
    settle_delay: float = EXPAND_DELAY,
    with_citations: bool = True,
    reload=None,
    report: Optional[Dict[str, Any]] = None,
) -> str:
    """
    Expand the selected folders, then flatten them to CSV text.

    `reload` is an optional coroutine function returning a fresh handle; the
    live tree is re-read after expansion so the rows reflect the widget, not
    the mirror that was built while expanding.
    """
    t0 = time.monotonic()
    matched = await expand_selected(handle, folders, policy=policy, settle_delay=settle_delay)
    print(f"[expand] Expanded {matched} root folder(s) in {time.monotonic() - t0:.1f}s.")

    if reload is not None:
        handle = await reload()

    print("[extract] Extracting tree data...")
    table = flatten_tree(handle.roots(), folders, with_citations=with_citations)
    csv_text = to_csv(table)

    if report is not None:
        report["results"]["matched_roots"] = matched
        report["results"]["rows"] = len(table.rows)
        report["results"]["max_depth"] = table.max_depth
        report["metrics"]["expand_sec"] = round(time.monotonic() - t0, 3)
    return csv_text


def write_csv(csv_text: str, output: str) -> str:
    output_path = os.path.abspath(output)
    parent = os.path.dirname(output_path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    with open(output_path, "w", encoding="utf-8", newline="") as f:
        f.write(csv_text)
    print(f"[saved] Wrote {count_rows(csv_text)} rows to {output_path}")
    return output_path


# =========================
# Main flow
# =========================

async def harvest(cfg: HarvestConfig, args: argparse.Namespace) -> Dict[str, Any]:
    folders = args.folders or cfg.folders
    report = new_report(cfg.host, folders)
    report["metrics"]["run_start_ts"] = datetime.utcnow().isoformat() + "Z"

    policy = SequentialPolicy() if args.sequential else BatchedPolicy(args.batch_size)
    settle_delay = args.settle_ms / 1000.0

    async with async_playwright() as p:
        print("[state] Launching browser...")
        context, page = await launch_context(p, cfg.host, headless=args.headless)

        await open_target(page, cfg.login_url)
        await wait_for_login(page)
        await wait_for_tree_ready(page)

        handle = await FancytreeHandle.load(page)
        csv_text = await collect_csv(
            handle,
            folders,
            policy=policy,
            settle_delay=settle_delay,
            with_citations=not args.no_citations,
            reload=lambda: FancytreeHandle.load(page),
            report=report,
        )

        if args.snapshot:
            (await FancytreeHandle.load(page)).dump(args.snapshot)

        report["results"]["output"] = write_csv(csv_text, args.output)

        if cfg.sheet_url and not args.no_sheet:
            # requests is blocking; keep the event loop (and the browser) responsive
            result = await asyncio.to_thread(push_to_sheet, csv_text, cfg.sheet_url)
            report["results"]["sheet"] = vars(result)
            if not result.success:
                report["errors"].append({"ts": datetime.utcnow().isoformat() + "Z",
                                         "error": f"sheet: {result.error}"})

        await refresh_storage_state(context, cfg.host)

        # written before parking: --keep-open only ends with Ctrl+C
        finish_report(report, args.report)

        if args.keep_open:
            print("[done] Browser left open (--keep-open). Press Ctrl+C to exit.")
            await asyncio.Event().wait()
        else:
            await context.close()

    print("[done] Harvest complete.")
    return report


# =========================
# CLI
# =========================

def _folder_list(value: str) -> List[str]:
    return [s.strip() for s in value.split(",") if s.strip()]


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="erisa-harvest",
        description="Expand the ERISApedia document tree and export it as CSV.",
    )
    ap.add_argument("--folders", type=_folder_list, default=None,
                    help="Comma-separated root folder titles (default: folders in config.json)")
    ap.add_argument("--output", default=None,
                    help="CSV path (default: erisa-tree-<timestamp>.csv)")
    ap.add_argument("--config", default=None, help="Path to config.json")
    ap.add_argument("--keep-open", action="store_true", help="Leave the browser open when done")
    ap.add_argument("--headless", action="store_true", default=HEADLESS,
                    help="Run without a window (only useful with a saved login)")
    ap.add_argument("--sequential", action="store_true",
                    help="Expand one node at a time instead of in sibling batches")
    ap.add_argument("--batch-size", type=int, default=BATCH_SIZE,
                    help=f"Siblings expanded concurrently (default {BATCH_SIZE})")
    ap.add_argument("--settle-ms", type=int, default=int(EXPAND_DELAY * 1000),
                    help="Delay after each expand request, in ms")
    ap.add_argument("--no-citations", action="store_true", help="Leave out the Source URL column")
    ap.add_argument("--no-sheet", action="store_true", help="Do not push to the Google Sheet")
    ap.add_argument("--snapshot", default=None, help="Also dump the expanded tree as JSON")
    ap.add_argument("--report", default=None, help="Write a JSON run report")
    return ap


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    if args.batch_size < 1:
        print("[fatal] --batch-size must be at least 1")
        return 2
    if not args.output:
        args.output = default_output_name()

    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        print("[fatal]", e)
        return 1

    folders = args.folders or cfg.folders
    if not folders:
        print("[fatal] No folders selected. Pass --folders or list them in config.json.")
        return 2

    try:
        asyncio.run(harvest(cfg, args))
    except KeyboardInterrupt:
        print("\n[ABORTED] KeyboardInterrupt.")
        return 130
    except Exception as e:
        print("[fatal]", e)
        traceback.print_exc()
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
