import argparse
import asyncio
import logging
import sys

from rich.console import Console

from options_intel.config import IntelConfig
from options_intel.models.multi_source import MultiSourceQuery
from options_intel.models.research import RouterOptions
from options_intel.output.renderer import IntelRenderer
from options_intel.services import Services, build_services

logger = logging.getLogger(__name__)
console = Console()


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="intel",
        description="Multi-source intelligence for options trades",
    )
    p.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    sub = p.add_subparsers(dest="command")

    # --- query ---
    query = sub.add_parser("query", help="Multi-source intelligence report")
    query.add_argument("symbols", nargs="+", help="Stock ticker symbol(s)")
    query.add_argument("--context", default="general", help="Research context")
    query.add_argument(
        "--tavily", action="store_true", help="Include paid web research"
    )
    query.add_argument(
        "--no-rag", action="store_true", help="Skip internal trade patterns"
    )
    query.add_argument(
        "--no-external", action="store_true", help="Skip market intelligence"
    )
    query.add_argument("--max-news", type=int, default=20)
    query.add_argument("--max-quarters", type=int, default=4)
    query.add_argument("--news-days", type=int, default=30)

    # --- research ---
    research = sub.add_parser("research", help="Route a research query")
    research.add_argument("symbol", help="Stock ticker symbol")
    research.add_argument("--context", default="general", help="Research context")
    research.add_argument(
        "--force", action="store_true", help="Skip stored knowledge"
    )
    research.add_argument(
        "--no-hybrid", action="store_true", help="Never supplement stored knowledge"
    )
    research.add_argument("--max-age", type=float, default=7, help="Max age in days")

    # --- cache ---
    cache = sub.add_parser("cache", help="Intelligence cache maintenance")
    cache_sub = cache.add_subparsers(dest="cache_command")
    cache_sub.add_parser("stats", help="Show cache statistics")
    cache_sub.add_parser("cleanup", help="Delete expired entries")
    invalidate = cache_sub.add_parser("invalidate", help="Drop a symbol's entries")
    invalidate.add_argument("symbol")
    warm = cache_sub.add_parser("warm", help="Pre-fetch a watchlist")
    warm.add_argument("symbols", nargs="+")
    hot = cache_sub.add_parser("hot", help="Most accessed symbols")
    hot.add_argument("--days", type=int, default=7)
    hot.add_argument("--limit", type=int, default=20)

    # --- health ---
    sub.add_parser("health", help="Store connectivity and row counts")

    return p


async def _run_query(services: Services, args: argparse.Namespace) -> None:
    queries = [
        MultiSourceQuery(
            symbol=s,
            context=args.context,
            include_internal_rag=not args.no_rag,
            include_external_intelligence=not args.no_external,
            include_tavily=args.tavily,
            max_news_articles=args.max_news,
            max_earnings_quarters=args.max_quarters,
            news_max_age_days=args.news_days,
        )
        for s in args.symbols
    ]
    with console.status(f"[cyan]Querying {len(queries)} symbol(s)..."):
        results = await services.orchestrator.batch_query_multi_source(queries)

    renderer = IntelRenderer(console)
    for result in results.values():
        renderer.render_multi_source(result)


async def _run_research(services: Services, args: argparse.Namespace) -> None:
    options = RouterOptions(
        max_rag_age=args.max_age,
        force_refresh=args.force,
        enable_hybrid=not args.no_hybrid,
    )
    with console.status(f"[cyan]Researching {args.symbol.upper()}..."):
        result = await services.router.intelligent_research(
            args.symbol, args.context, options
        )
    renderer = IntelRenderer(console)
    renderer.render_research(args.symbol.upper(), result)
    renderer.render_router_stats(services.router.stats)


async def _run_cache(services: Services, args: argparse.Namespace) -> None:
    cache = services.cache
    renderer = IntelRenderer(console)
    if args.cache_command == "cleanup":
        removed = cache.cleanup()
        console.print(f"[green]Removed {removed} expired entries[/green]")
    elif args.cache_command == "invalidate":
        removed = cache.invalidate(args.symbol)
        console.print(
            f"[green]Invalidated {removed} entries for {args.symbol.upper()}[/green]"
        )
    elif args.cache_command == "warm":
        with console.status(f"[cyan]Warming {len(args.symbols)} symbol(s)..."):
            reports = await cache.warm(args.symbols)
        for symbol, report in reports.items():
            sources = ", ".join(sorted(report.sources_available)) or "no data"
            console.print(f"  {symbol}: {report.confidence.value} ({sources})")
    elif args.cache_command == "hot":
        renderer.render_hot_symbols(cache.hot_symbols(args.days, args.limit))
    else:
        renderer.render_cache_stats(cache.get_stats(), cache.health_summary())


def _run_health(services: Services) -> None:
    health = services.intelligence.health_check()
    if health.get("connected"):
        console.print("[green]Market intelligence store connected[/green]")
        for table, count in health["stats"].items():
            console.print(f"  {table}: {count}")
    else:
        error = health.get("error")
        console.print(f"[red]Market intelligence store error: {error}[/red]")

    for key, count in services.patterns.get_status_summary().items():
        console.print(f"  {key}: {count}")
    summary = services.cache.health_summary()
    console.print(
        f"  cache: {summary['valid_entries']} valid, "
        f"{summary['expired_entries']} expired"
    )


async def _dispatch(config: IntelConfig, args: argparse.Namespace) -> None:
    services = build_services(config)
    try:
        if args.command == "query":
            await _run_query(services, args)
        elif args.command == "research":
            await _run_research(services, args)
        elif args.command == "cache":
            await _run_cache(services, args)
        elif args.command == "health":
            _run_health(services)
    finally:
        await services.aclose()


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    level = logging.DEBUG if args.verbose else logging.WARNING
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")

    from dotenv import load_dotenv

    load_dotenv()
    config = IntelConfig.from_env()

    if args.command == "research" or getattr(args, "tavily", False):
        if not config.tavily_api_key:
            console.print(
                "[yellow]TAVILY_API_KEY not set; "
                "web research will return no results[/yellow]"
            )

    try:
        asyncio.run(_dispatch(config, args))
    except KeyboardInterrupt:
        console.print("\n[yellow]Cancelled.[/yellow]")
        sys.exit(1)
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        if args.verbose:
            import traceback

            traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    main()
