"""Command-line entry point for scheduled listener scans."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Sequence

from app.clients.fetch import FetchError
from app.config import settings
from app.models.listener import RunType
from app.models.scan import HNFeed, ScanMode, ScanOptions
from app.services.listener.errors import ListenerError
from app.services.listener.services import ListenerServices, build_listener_services

logger = logging.getLogger("pipelines.listener_scan")


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    """CLI argument parsing."""
    parser = argparse.ArgumentParser(description="Scan Hacker News and RSS feeds for buying signals.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    scan = subparsers.add_parser("scan", help="Run one scan and record it as a run.")
    scan.add_argument("--mode", choices=[mode.value for mode in ScanMode], required=True)
    scan.add_argument("--team-id", default=None, help="Team that owns created discoveries.")
    scan.add_argument(
        "--run-type",
        choices=[run_type.value for run_type in RunType],
        default=RunType.SCHEDULED.value,
    )
    scan.add_argument("--min-keyword-score", type=int, default=None)
    scan.add_argument("--auto-promote-threshold", type=int, default=None)
    scan.add_argument("--feed", choices=[feed.value for feed in HNFeed], default=None)
    scan.add_argument("--max-items", type=int, default=None, help="Posts mode: stories per feed.")
    scan.add_argument(
        "--no-comments",
        dest="include_comments",
        action="store_false",
        default=None,
        help="Posts mode: skip the commenter pass.",
    )
    scan.add_argument("--max-stories", dest="max_stories_per_scan", type=int, default=None)
    scan.add_argument("--max-users-per-story", type=int, default=None)
    scan.add_argument("--min-karma", type=int, default=None)
    scan.add_argument("--github", dest="enrich_with_github", action="store_true", default=None)
    scan.add_argument(
        "--feed-url",
        dest="feed_urls",
        action="append",
        default=None,
        help="RSS mode: feed URL to scan instead of the defaults (repeatable).",
    )
    scan.add_argument("--max-articles", type=int, default=None)
    scan.add_argument("--max-age-hours", type=float, default=None)

    subparsers.add_parser("seed-keywords", help="Load the default keyword taxonomy.")
    return parser.parse_args(argv)


def _scan_options(args: argparse.Namespace) -> ScanOptions:
    return ScanOptions.for_mode(
        args.mode,
        args.team_id or settings.listener_team_id,
        run_type=RunType(args.run_type),
        min_keyword_score=args.min_keyword_score,
        auto_promote_threshold=args.auto_promote_threshold,
        feed=args.feed,
        max_items=args.max_items,
        include_comments=args.include_comments,
        max_stories_per_scan=args.max_stories_per_scan,
        max_users_per_story=args.max_users_per_story,
        min_karma=args.min_karma,
        enrich_with_github=args.enrich_with_github,
        feed_urls=args.feed_urls,
        max_articles=args.max_articles,
        max_age_hours=args.max_age_hours,
    )


def run_command(args: argparse.Namespace, services: ListenerServices) -> dict:
    if args.command == "seed-keywords":
        added, skipped = services.keywords.seed_defaults()
        return {"added": added, "skipped": skipped}

    services.keywords.ensure_seeded()
    result = services.orchestrator.run(_scan_options(args))
    return {
        "run_id": str(result.run_id),
        "status": result.status.value,
        "duration_ms": round(result.duration_ms, 2),
        **result.stats.model_dump(),
    }


def main(argv: Sequence[str] | None = None, *, services: ListenerServices | None = None) -> int:
    """CLI entrypoint; exits 1 when the scan fails."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    args = parse_args(argv if argv is not None else sys.argv[1:])
    owned = services is None
    services = services or build_listener_services()
    try:
        summary = run_command(args, services)
    except (ListenerError, FetchError) as exc:
        logger.error("Listener command failed: %s (code=%s)", exc, exc.code)
        return 1
    finally:
        if owned:
            services.close()
    print(json.dumps(summary, indent=2))
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    raise SystemExit(main())
