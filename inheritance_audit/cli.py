#!/usr/bin/env python3
"""
OneDrive Inheritance Audit - find items whose access differs from their parent.

The audit walks a folder tree breadth-first and writes every folder or file
with different permissions than its parent to CSV report pages. Each run is
limited in time; run "resume" until the audit completes.

Prerequisites:
- rclone must be installed and configured with OneDrive remote
- requests library (pip install requests)
- Valid OAuth token in ~/.config/rclone/rclone.conf

Usage:
    python -m inheritance_audit <command> [options]

Commands:
    start [dirname]  - Start a new audit (drive root when no dirname is given)
    resume           - Continue the active audit
    clear            - Discard the active audit state
    status           - Show whether an audit is active and how much is left

Examples:
    python -m inheritance_audit start "Documents/Projects"
    python -m inheritance_audit resume --session-budget 600
    python -m inheritance_audit clear
"""

import argparse
import logging
import sys
from typing import Optional, Sequence

from .config_utils import AUDIT_CONF_PATH, get_access_token, load_audit_settings
from .errors import DriveMismatch, GraphUnavailable, NoActiveAudit, RootUnavailable
from .graph_store import GraphTreeStore
from .session import AuditOutcome, audit_status, clear_audit, resume_audit, start_audit


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Audit OneDrive permission inheritance")
    parser.add_argument("--remote", default=None,
                        help="Name of the OneDrive remote (default: auto-detect)")
    parser.add_argument("--drive-id", default=None,
                        help="Audit this drive instead of your own OneDrive")
    parser.add_argument("--config", default=AUDIT_CONF_PATH,
                        help=f"Audit settings file (default: {AUDIT_CONF_PATH})")
    parser.add_argument("--state-dir", default=None, help="Where the audit queue is kept")
    parser.add_argument("--results-dir", default=None, help="Where report folders are created")
    parser.add_argument("--session-budget", type=float, default=None,
                        help="Seconds one run may spend before pausing (default: 1200)")
    parser.add_argument("--page-capacity", type=int, default=None,
                        help="Data rows per report page (default: 50000)")
    parser.add_argument("--domain", default=None,
                        help="Organization domain shown for organization-wide links")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log every processed folder")

    commands = parser.add_subparsers(dest="command", required=True)
    start = commands.add_parser("start", help="Start a new audit")
    start.add_argument("dirname", nargs="?", help="Optional: audit only under this directory path")
    commands.add_parser("resume", help="Continue the active audit")
    commands.add_parser("clear", help="Discard the active audit state")
    commands.add_parser("status", help="Show the active audit's progress")
    return parser


def _print_outcome(outcome: AuditOutcome) -> None:
    report = outcome.report
    print()
    print("=" * 80)
    print(f"📊 Folders processed this run: {report.processed}")
    print(f"   Differences written: {report.findings}")
    print(f"📂 Results folder: {outcome.results_folder}")
    if outcome.completed:
        print("✅ Audit completed successfully!")
    else:
        print(f"⏸️  Time limit reached, {report.remaining} folder(s) still queued.")
        print("Progress has been saved. Run 'resume' to continue.")


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main function"""
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        settings = load_audit_settings(
            args.config,
            state_dir=args.state_dir,
            results_dir=args.results_dir,
            session_budget_seconds=args.session_budget,
            page_capacity=args.page_capacity,
            organization_domain=args.domain,
        )
    except ValueError as e:
        print(f"❌ Invalid settings: {e}")
        return 2

    if args.command == "clear":
        if clear_audit(settings):
            print("✅ Audit state cleared. You can start a new audit.")
        else:
            print("ℹ️  No audit state to clear.")
        return 0

    if args.command == "status":
        status = audit_status(settings)
        if not status["active"]:
            print("ℹ️  No active audit.")
        else:
            print(f"📂 Auditing: {status['root_label']}")
            print(f"   Folders queued: {status['remaining']}")
            print(f"   Results folder: {status['results_folder']}")
        return 0

    access_token = get_access_token(args.remote)
    if not access_token:
        return 1
    print("✅ Successfully extracted access token from rclone.conf")

    drive_id = args.drive_id
    if args.command == "resume" and drive_id is None:
        # Resume walks the drive the audit was started on
        drive_id = audit_status(settings)["drive_id"]
    tree_store = GraphTreeStore(access_token, drive_id)

    try:
        if args.command == "start":
            print(f"🔍 Starting audit of {args.dirname or 'the drive root'}...")
            outcome = start_audit(settings, tree_store, args.dirname)
        else:
            outcome = resume_audit(settings, tree_store)
    except RootUnavailable as e:
        print(f"❌ {e}")
        print(f"   {e.remediation}")
        return 1
    except (NoActiveAudit, DriveMismatch) as e:
        print(f"❌ {e}")
        return 1
    except GraphUnavailable as e:
        print(f"❌ {e}")
        print("   Progress has been saved. Check your connection or refresh the token with:")
        print("   rclone config reconnect <remote>, then run 'resume'.")
        return 1

    _print_outcome(outcome)
    return 0


if __name__ == "__main__":
    sys.exit(main())
