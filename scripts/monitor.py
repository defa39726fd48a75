from __future__ import annotations

import argparse
import json
import sys
import time
import urllib.error
import urllib.request

from postback_tracker.app.persistence import JsonFilePersistence, PersistenceError
from postback_tracker.app.services.report import format_report, summarize
from postback_tracker.app.settings import load_settings
from postback_tracker.app.store import read_records


def fetch_health(base_url: str) -> tuple[dict | None, str | None]:
    request = urllib.request.Request(f"{base_url.rstrip('/')}/health", method="GET")
    request.add_header("Accept", "application/json")
    try:
        with urllib.request.urlopen(request, timeout=5) as response:
            return json.loads(response.read().decode("utf-8")), None
    except urllib.error.HTTPError as exc:
        return None, f"status {exc.code}"
    except (urllib.error.URLError, OSError, json.JSONDecodeError) as exc:
        return None, str(exc)


def render_once(*, storage_file: str, base_url: str) -> str:
    settings = load_settings()
    records = read_records(JsonFilePersistence(storage_file))
    health, health_error = fetch_health(base_url)
    return format_report(
        summarize(records),
        settings=settings,
        health=health,
        health_error=health_error,
    )


def main() -> int:
    settings = load_settings()
    parser = argparse.ArgumentParser(description="Show tracked attributions and service health.")
    parser.add_argument("--storage-file", default=settings.storage_file)
    parser.add_argument("--base-url", default="http://127.0.0.1:8000")
    parser.add_argument(
        "--refresh",
        type=float,
        default=0.0,
        help="seconds between refreshes; 0 prints once",
    )
    args = parser.parse_args()

    if args.refresh <= 0:
        print(render_once(storage_file=args.storage_file, base_url=args.base_url))
        return 0

    try:
        while True:
            print("\033[2J\033[H", end="")
            print(render_once(storage_file=args.storage_file, base_url=args.base_url))
            print(f"\nRefreshing every {args.refresh:g}s, Ctrl+C to stop.")
            time.sleep(args.refresh)
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    try:
        sys.exit(main())
    except PersistenceError as exc:
        print(f"Monitor failed: {exc}", file=sys.stderr)
        sys.exit(1)
