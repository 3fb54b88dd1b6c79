"""CLI entry point for the marketplace search engine."""

import argparse
import asyncio
import logging
import sys
from datetime import date
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from src.core.config import Settings
from src.core.db import init_db
from src.core.schemas import (
    AppliedFilters,
    MarketplaceCategory,
    ProviderTier,
    SearchCandidate,
    SearchParams,
    SearchResponse,
    SortOption,
)
from src.pipeline.matcher import filter_summary
from src.pipeline.orchestrator import SearchOrchestrator
from src.stores.base import StoreError
from src.stores.sqlite import SQLiteMarketplaceStore

DEFAULT_CONFIG = "config/settings.yaml"


def _add_common(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        default=DEFAULT_CONFIG,
        help=f"Path to settings YAML file (default: {DEFAULT_CONFIG})",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Marketplace search - rank listings, browse facets and search history",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # --- search ---
    search_parser = subparsers.add_parser("search", help="Run a ranked marketplace search")
    _add_common(search_parser)
    search_parser.add_argument("query", nargs="?", default=None, help="Free-text query")
    search_parser.add_argument(
        "--category",
        choices=[c.value for c in MarketplaceCategory],
        help="Restrict to one marketplace category",
    )
    search_parser.add_argument(
        "--subcategory", action="append", default=[], help="Subcategory (repeatable)",
    )
    search_parser.add_argument("--min-price", type=float)
    search_parser.add_argument("--max-price", type=float)
    search_parser.add_argument("--min-rating", type=float)
    search_parser.add_argument("--location")
    search_parser.add_argument(
        "--tier",
        action="append",
        default=[],
        choices=[t.value for t in ProviderTier],
        help="Provider tier (repeatable)",
    )
    search_parser.add_argument(
        "--available-from", type=date.fromisoformat, metavar="YYYY-MM-DD",
        help="Start of the availability window",
    )
    search_parser.add_argument(
        "--available-to", type=date.fromisoformat, metavar="YYYY-MM-DD",
        help="End of the availability window",
    )
    search_parser.add_argument("--skill", action="append", default=[], help="Skill (repeatable)")
    search_parser.add_argument(
        "--all-skills", action="store_true", help="Require every --skill instead of any",
    )
    search_parser.add_argument(
        "--certification", action="append", default=[], help="Certification (repeatable)",
    )
    search_parser.add_argument("--verified-only", action="store_true")
    search_parser.add_argument(
        "--sort",
        default=SortOption.RELEVANCE.value,
        choices=[s.value for s in SortOption],
        help="Sort option (default: relevance)",
    )
    search_parser.add_argument("--order", default="desc", choices=["asc", "desc"])
    search_parser.add_argument("--page", type=int, default=1)
    search_parser.add_argument("--limit", type=int)
    search_parser.add_argument("--user", help="User ID; records the query in search history")
    search_parser.add_argument(
        "--export",
        choices=["json"],
        help="Export the response to format (json)",
    )

    # --- import-listings ---
    import_parser = subparsers.add_parser(
        "import-listings",
        help="Load listings, providers and reviews from a YAML file",
    )
    _add_common(import_parser)
    import_parser.add_argument("file", help="YAML file with a top-level 'listings' list")

    # --- history ---
    history_parser = subparsers.add_parser("history", help="Show or manage recent searches")
    _add_common(history_parser)
    history_parser.add_argument("--user", required=True, help="User ID")
    history_parser.add_argument("--delete", type=int, metavar="ID", help="Delete one entry")
    history_parser.add_argument("--clear", action="store_true", help="Delete every entry")

    # --- popular ---
    popular_parser = subparsers.add_parser("popular", help="Show popular searches")
    _add_common(popular_parser)
    popular_parser.add_argument("--limit", type=int, default=10)
    popular_parser.add_argument("--trending", action="store_true", help="Trending only")

    # --- refresh-trending ---
    trending_parser = subparsers.add_parser(
        "refresh-trending",
        help="Recompute trending flags on popular searches",
    )
    _add_common(trending_parser)
    trending_parser.add_argument("--window-days", type=int)
    trending_parser.add_argument("--top-n", type=int)

    # --- saved ---
    saved_parser = subparsers.add_parser("saved", help="List or manage saved searches")
    _add_common(saved_parser)
    saved_parser.add_argument("--user", required=True, help="User ID")
    saved_parser.add_argument("--add", metavar="NAME", help="Save a search under NAME")
    saved_parser.add_argument("--query", default="", help="Query for --add")
    saved_parser.add_argument(
        "--category",
        choices=[c.value for c in MarketplaceCategory],
        help="Category filter for --add",
    )
    saved_parser.add_argument(
        "--alert",
        choices=["daily", "weekly", "instant"],
        help="Enable alerts at this frequency for --add",
    )
    saved_parser.add_argument("--delete", type=int, metavar="ID", help="Delete one saved search")

    return parser.parse_args(argv)


def setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def load_settings(path: str) -> Settings:
    """Load settings, using defaults only when the default config file is absent."""
    if path == DEFAULT_CONFIG and not Path(path).exists():
        return Settings()
    return Settings.from_yaml(path)


def build_params(args: argparse.Namespace) -> SearchParams:
    return SearchParams(
        query=args.query,
        category=args.category,
        subcategories=args.subcategory,
        min_price=args.min_price,
        max_price=args.max_price,
        min_rating=args.min_rating,
        location=args.location,
        tiers=args.tier,
        available_from=args.available_from,
        available_to=args.available_to,
        skills=args.skill,
        skills_match_all=args.all_skills,
        certifications=args.certification,
        verified_only=args.verified_only,
        sort_by=args.sort,
        sort_order=args.order,
        page=args.page,
        limit=args.limit,
        user_id=args.user,
    )


def print_response(response: SearchResponse) -> None:
    start = (response.page - 1) * response.limit
    print(f"\n{response.total} results (page {response.page}, {len(response.results)} shown)")
    for line in filter_summary(response.applied_filters):
        print(f"  {line}")

    for i, result in enumerate(response.results, start=start + 1):
        c = result.candidate
        tier = c.provider.tier.value if c.provider else "-"
        print(f"{i:>3}. [{result.total_score:.3f}] {c.title} ({c.category.value}/{c.subcategory}) "
              f"tier={tier}")

    if response.suggestions:
        print("Suggestions: " + ", ".join(s.text for s in response.suggestions))
    if response.has_more:
        print(f"More results on page {response.page + 1}")


async def cmd_search(args: argparse.Namespace, settings: Settings) -> None:
    """Handle search subcommand."""
    params = build_params(args)
    conn = init_db(settings.database.path)
    try:
        store = SQLiteMarketplaceStore(conn)
        orchestrator = SearchOrchestrator(
            store, store, history=store, saved=store,
            ranking=settings.ranking, defaults=settings.search,
        )
        response = await orchestrator.search(params)
        await orchestrator.wait_for_background()
    finally:
        conn.close()

    if args.export == "json":
        print(response.model_dump_json(indent=2))
    else:
        print_response(response)


def cmd_import_listings(args: argparse.Namespace, settings: Settings) -> None:
    """Handle import-listings subcommand."""
    raw: dict[str, Any] = yaml.safe_load(Path(args.file).read_text()) or {}
    entries: list[dict[str, Any]] = raw.get("listings", [])

    conn = init_db(settings.database.path)
    try:
        store = SQLiteMarketplaceStore(conn)
        reviews_added = 0
        for entry in entries:
            ratings = entry.pop("reviews", [])
            provider_id = store.add_listing(SearchCandidate.model_validate(entry))
            if provider_id is None:
                continue
            for rating in ratings:
                store.add_review(provider_id, float(rating))
                reviews_added += 1
    finally:
        conn.close()

    print(f"Imported {len(entries)} listings and {reviews_added} reviews "
          f"into {settings.database.path}")


async def cmd_history(args: argparse.Namespace, settings: Settings) -> None:
    """Handle history subcommand."""
    conn = init_db(settings.database.path)
    try:
        store = SQLiteMarketplaceStore(conn)
        orchestrator = SearchOrchestrator(store, store, history=store, defaults=settings.search)
        if args.clear:
            result = await orchestrator.clear_recent_searches(args.user)
            print("Cleared recent searches" if result.success else f"Error: {result.error}")
            return
        if args.delete is not None:
            result = await orchestrator.delete_recent_search(args.user, args.delete)
            print(f"Deleted {args.delete}" if result.success else f"Error: {result.error}")
            return
        for recent in await orchestrator.recent_searches(args.user):
            print(f"{recent.id:>4}  {recent.created_at:%Y-%m-%d %H:%M}  "
                  f"{recent.query!r} ({recent.results_count} results)")
    finally:
        conn.close()


async def cmd_popular(args: argparse.Namespace, settings: Settings) -> None:
    """Handle popular subcommand."""
    conn = init_db(settings.database.path)
    try:
        store = SQLiteMarketplaceStore(conn)
        orchestrator = SearchOrchestrator(store, store, history=store, defaults=settings.search)
        for popular in await orchestrator.popular_searches(args.limit, args.trending):
            flag = " (trending)" if popular.trending else ""
            print(f"{popular.count:>6}  {popular.query}{flag}")
    finally:
        conn.close()


async def cmd_refresh_trending(args: argparse.Namespace, settings: Settings) -> None:
    """Handle refresh-trending subcommand."""
    conn = init_db(settings.database.path)
    try:
        store = SQLiteMarketplaceStore(conn)
        orchestrator = SearchOrchestrator(store, store, history=store, defaults=settings.search)
        result = await orchestrator.refresh_trending(args.window_days, args.top_n)
    finally:
        conn.close()
    if not result.success:
        print(f"Error: {result.error}", file=sys.stderr)
        sys.exit(1)
    print("Trending searches refreshed")


async def cmd_saved(args: argparse.Namespace, settings: Settings) -> None:
    """Handle saved subcommand."""
    conn = init_db(settings.database.path)
    try:
        store = SQLiteMarketplaceStore(conn)
        orchestrator = SearchOrchestrator(store, store, saved=store, defaults=settings.search)
        if args.add:
            result = await orchestrator.save_search(
                args.user,
                args.add,
                args.query,
                AppliedFilters(query=args.query or None, category=args.category),
                alert_enabled=args.alert is not None,
                alert_frequency=args.alert,
            )
            print(f"Saved search {result.id}" if result.success else f"Error: {result.error}")
            return
        if args.delete is not None:
            result = await orchestrator.delete_saved_search(args.user, args.delete)
            print(f"Deleted {args.delete}" if result.success else f"Error: {result.error}")
            return
        for saved in await orchestrator.saved_searches(args.user):
            alert = f" alert={saved.alert_frequency}" if saved.is_alert_enabled else ""
            print(f"{saved.id:>4}  {saved.name}: {saved.query!r}{alert}")
    finally:
        conn.close()


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    setup_logging(args.verbose)

    try:
        settings = load_settings(args.config)
    except (FileNotFoundError, ValueError) as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        if args.command == "search":
            asyncio.run(cmd_search(args, settings))
        elif args.command == "import-listings":
            cmd_import_listings(args, settings)
        elif args.command == "history":
            asyncio.run(cmd_history(args, settings))
        elif args.command == "popular":
            asyncio.run(cmd_popular(args, settings))
        elif args.command == "refresh-trending":
            asyncio.run(cmd_refresh_trending(args, settings))
        elif args.command == "saved":
            asyncio.run(cmd_saved(args, settings))
    except (FileNotFoundError, ValidationError, StoreError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
