"""Minimal CLI entry point for connecting Gmail and running digests."""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import UTC, datetime, timedelta

from gmail_digest.bootstrap import DigestApp
from gmail_digest.config.settings import GmailDigestSettings
from gmail_digest.core.auth import authorization_url, exchange_code
from gmail_digest.core.models import Digest, RunProgress


def setup_logging(level: str) -> None:
    """Configure logging with timestamp and module info."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def on_progress(progress: RunProgress) -> None:
    """Print progress updates to stdout."""
    print(
        f"[{progress.current_stage}] "
        f"listed={progress.messages_listed} "
        f"fetched={progress.messages_fetched} "
        f"classified={progress.messages_classified} "
        f"read={progress.messages_marked_read} "
        f"failed={progress.messages_failed}",
        end="\r",
        flush=True,
    )


def print_digest(digest: Digest, *, full: bool = True) -> None:
    """Print a digest header and, when full, its narrative and summaries."""
    print(f"\nDigest {digest.id} ({digest.created_at:%Y-%m-%d %H:%M}) - {digest.total_emails} emails")
    if not full:
        return
    print(f"\n{digest.summary_text}\n")
    for s in digest.summaries:
        flag = " [action]" if s.action_required else ""
        sender = s.sender_name or s.sender_email
        print(f"  - [{s.priority}/{s.category}/{s.sentiment}]{flag} {s.subject} ({sender})")
        print(f"      {s.summary}")


def _add_user_arg(subparser: argparse.ArgumentParser) -> None:
    subparser.add_argument("--user", "-u", required=True, help="Local user ID")


def _add_pagination_args(subparser: argparse.ArgumentParser) -> None:
    """Add --page and --limit flags to a subparser."""
    subparser.add_argument("--page", type=int, default=1, help="Page number (1-based)")
    subparser.add_argument("--limit", type=int, default=10, help="Digests per page")


def _validate_pagination_args(args: argparse.Namespace) -> None:
    """Reject non-positive pagination values."""
    if args.page < 1:
        print("Error: --page must be positive", file=sys.stderr)
        sys.exit(1)
    if args.limit < 1:
        print("Error: --limit must be positive", file=sys.stderr)
        sys.exit(1)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Gmail Digest - Classify unread Gmail and store digests"
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    auth_url_parser = subparsers.add_parser("auth-url", help="Print the Google consent URL")
    _add_user_arg(auth_url_parser)

    connect_parser = subparsers.add_parser("connect", help="Store and verify Gmail tokens")
    _add_user_arg(connect_parser)
    connect_parser.add_argument("--code", help="Authorization code from the consent redirect")
    connect_parser.add_argument("--access-token", dest="access_token")
    connect_parser.add_argument("--refresh-token", dest="refresh_token")
    connect_parser.add_argument(
        "--expires-in",
        type=int,
        default=3600,
        dest="expires_in",
        help="Access token lifetime in seconds (with --access-token)",
    )

    status_parser = subparsers.add_parser("status", help="Check the Gmail connection")
    _add_user_arg(status_parser)

    disconnect_parser = subparsers.add_parser("disconnect", help="Disable the Gmail connection")
    _add_user_arg(disconnect_parser)

    run_parser = subparsers.add_parser("run", help="Run a digest now")
    _add_user_arg(run_parser)

    subparsers.add_parser("run-all", help="Run digests for every connected user once")
    subparsers.add_parser("schedule", help="Run digests on the configured schedule")

    digests_parser = subparsers.add_parser("digests", help="List stored digests")
    _add_user_arg(digests_parser)
    _add_pagination_args(digests_parser)

    show_parser = subparsers.add_parser("show", help="Show one digest")
    _add_user_arg(show_parser)
    show_parser.add_argument("--id", type=int, required=True, dest="digest_id")

    delete_parser = subparsers.add_parser("delete", help="Delete one digest")
    _add_user_arg(delete_parser)
    delete_parser.add_argument("--id", type=int, required=True, dest="digest_id")

    return parser


def _connect(app: DigestApp, args: argparse.Namespace) -> None:
    if args.code:
        grant = exchange_code(app.settings, args.code)
        app.connections.connect(args.user, grant.access_token, grant.refresh_token, grant.expiry)
    elif args.access_token and args.refresh_token:
        expiry = datetime.now(UTC) + timedelta(seconds=args.expires_in)
        app.connections.connect(args.user, args.access_token, args.refresh_token, expiry)
    else:
        print("Error: pass --code, or --access-token with --refresh-token", file=sys.stderr)
        sys.exit(1)
    print("Gmail account connected successfully.")


def main() -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args()
    if not args.command:
        parser.print_help()
        sys.exit(1)

    if args.command == "digests":
        _validate_pagination_args(args)

    settings = GmailDigestSettings()
    setup_logging(settings.log_level)

    app = DigestApp(settings=settings, on_progress=on_progress)

    try:
        if args.command == "auth-url":
            print(authorization_url(settings, state=args.user))

        elif args.command == "connect":
            _connect(app, args)

        elif args.command == "status":
            status = app.connections.get_status(args.user)
            print(status.message)
            if status.last_connected:
                print(f"Last connected: {status.last_connected:%Y-%m-%d %H:%M:%S}")

        elif args.command == "disconnect":
            app.connections.disconnect(args.user)
            print("Gmail account disconnected.")

        elif args.command == "run":
            digest = app.orchestrator.run_digest(args.user)
            print()
            print_digest(digest)

        elif args.command == "run-all":
            report = app.scheduler.run_all()
            print(
                f"\nProcessed {report.users_total} users: "
                f"{report.users_succeeded} succeeded, {report.users_failed} failed"
            )

        elif args.command == "schedule":
            app.scheduler.start()

        elif args.command == "digests":
            page = app.history.get_digest_history(args.user, page=args.page, limit=args.limit)
            print(f"\nPage {page.page}/{page.pages} ({page.total} digests)")
            for digest in page.digests:
                print_digest(digest, full=False)

        elif args.command == "show":
            print_digest(app.history.get_digest(args.user, args.digest_id))

        elif args.command == "delete":
            app.history.delete_digest(args.user, args.digest_id)
            print("Digest deleted successfully")

    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        print(f"\nError: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        app.close()


if __name__ == "__main__":
    main()
