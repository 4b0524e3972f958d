"""CLI: hashwatch scan | show | history | add-hash | refresh-denylist."""
import argparse
import json
import sys
from pathlib import Path

import httpx

from .client import ScanClient, ScanTimeout


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="hashwatch", description="Scan files against the hashwatch API")
    parser.add_argument("--base-url", default="http://localhost:8000", help="API base URL")
    parser.add_argument("--email", required=True, help="Login email")
    parser.add_argument("--password", required=True, help="Login password")
    sub = parser.add_subparsers(dest="command", required=True)

    # scan
    p_scan = sub.add_parser("scan", help="Submit files for scanning")
    p_scan.add_argument("files", nargs="+", help="Local file paths to scan")
    p_scan.add_argument("--wait", action="store_true", help="Poll until each scan is completed")
    p_scan.add_argument("--interval", type=float, default=30.0, help="Seconds between polls")
    p_scan.add_argument("--timeout", type=float, default=600.0, help="Give up polling after this many seconds")
    p_scan.add_argument("--content-type", default=None, help="Override the content type sent for every file")
    p_scan.set_defaults(func=cmd_scan)

    # show
    p_show = sub.add_parser("show", help="Show one scan (refreshes a pending verdict)")
    p_show.add_argument("scan_id", help="Scan UUID")
    p_show.set_defaults(func=cmd_show)

    # history
    p_history = sub.add_parser("history", help="List past scans, newest first")
    p_history.add_argument("--page", type=int, default=1)
    p_history.add_argument("--limit", type=int, default=10)
    p_history.set_defaults(func=cmd_history)

    # add-hash (super-admin)
    p_add = sub.add_parser("add-hash", help="Add a SHA-256 fingerprint to the denylist")
    p_add.add_argument("fingerprint")
    p_add.add_argument("--description", default=None)
    p_add.add_argument("--source", default=None)
    p_add.set_defaults(func=cmd_add_hash)

    # refresh-denylist (super-admin)
    p_refresh = sub.add_parser("refresh-denylist", help="Import the recent-hash feed window by window")
    p_refresh.add_argument("--limit", type=int, default=None, help="Hashes per request")
    p_refresh.add_argument("--start-index", type=int, default=0)
    p_refresh.set_defaults(func=cmd_refresh)

    args = parser.parse_args(argv)
    client = ScanClient(base_url=args.base_url, email=args.email, password=args.password)
    try:
        client.login()
        return args.func(client, args)
    except (httpx.HTTPError, ScanTimeout, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        client.close()


def cmd_scan(client: ScanClient, args: argparse.Namespace) -> int:
    paths = [Path(f) for f in args.files]
    missing = [p for p in paths if not p.exists()]
    if missing:
        print(f"Missing files: {missing}", file=sys.stderr)
        return 1
    for p in paths:
        scan = client.submit_file(p, content_type=args.content_type)
        if args.wait and scan["status"] != "completed":
            scan = client.wait_for_scan(scan["id"], interval=args.interval, timeout=args.timeout)
        print(json.dumps(scan, indent=2))
        stats = (scan.get("analysis") or {}).get("stats") or {}
        print(f"  {p.name} -> {scan['status']} (malicious: {stats.get('malicious', 0)})", file=sys.stderr)
    return 0


def cmd_show(client: ScanClient, args: argparse.Namespace) -> int:
    out = client.get_scan(args.scan_id)
    print(json.dumps(out, indent=2))
    if out.get("warning"):
        print(f"Warning: {out['warning']}", file=sys.stderr)
    return 0


def cmd_history(client: ScanClient, args: argparse.Namespace) -> int:
    out = client.list_scans(page=args.page, limit=args.limit)
    print(json.dumps(out, indent=2))
    pg = out["pagination"]
    print(f"Page {pg['currentPage']}/{pg['totalPages']} ({pg['totalItems']} scans)", file=sys.stderr)
    return 0


def cmd_add_hash(client: ScanClient, args: argparse.Namespace) -> int:
    out = client.add_hash(args.fingerprint, description=args.description, source=args.source)
    print(json.dumps(out, indent=2))
    return 0


def cmd_refresh(client: ScanClient, args: argparse.Namespace) -> int:
    windows = client.refresh_denylist(limit=args.limit, start_index=args.start_index)
    for w in windows:
        print(f"  {w.get('message')} ({w.get('progress') or 0}%)", file=sys.stderr)
    last = windows[-1]
    print(json.dumps(last, indent=2))
    return 0 if last.get("success") else 1


if __name__ == "__main__":
    sys.exit(main())
