from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from options_intel.models.intelligence import CacheStats
from options_intel.models.multi_source import MultiSourceResult
from options_intel.models.research import ResearchResult, RouterStats
from options_intel.output.formatters import (
    confidence_color,
    fmt_age,
    fmt_pct,
    fmt_score,
    quality_bar,
    sentiment_color,
)


class IntelRenderer:
    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def render_multi_source(self, result: MultiSourceResult) -> None:
        conf = result.confidence
        agg = result.aggregate
        self.console.print()
        self.console.print(
            Panel(
                f"[bold]{result.symbol}[/bold]  "
                f"confidence [{confidence_color(conf)}]{conf.value}[/]  "
                f"sentiment [{sentiment_color(agg.overall_sentiment)}]"
                f"{agg.overall_sentiment.value}[/] ({fmt_score(agg.sentiment_score)})",
                title="Multi-Source Intelligence",
                style="cyan",
            )
        )

        table = Table(title="Sources", show_header=True)
        table.add_column("Source", style="cyan")
        table.add_column("Data")
        table.add_column("Detail")

        rag = result.internal_rag
        table.add_row(
            "Internal patterns",
            "yes" if rag.has_data else "no",
            f"{rag.similar_trades_count} similar trades, "
            f"win rate {fmt_pct(rag.win_rate)}, avg ROI {fmt_score(rag.avg_roi)}",
        )

        ext = result.external_intelligence
        quarters = len(ext.earnings.transcripts) if ext.earnings else 0
        articles = len(ext.news.articles) if ext.news else 0
        table.add_row(
            "Market intelligence",
            "yes" if ext.has_data else "no",
            f"{quarters} quarters, {articles} articles, "
            f"{ext.confidence.value} confidence, age {fmt_age(ext.data_age_days)}",
        )

        web = result.tavily
        table.add_row(
            "Web research",
            "yes" if web.has_data else "no",
            f"{web.results_count} results ({web.source or 'skipped'})",
        )
        self.console.print(table)

        self.console.print(
            f"Data quality {quality_bar(agg.data_quality_score)} "
            f"{agg.data_quality_score}  "
            f"recommendation [bold]{agg.recommendation_strength.value}[/bold]  "
            f"credits {result.credits_used}  "
            f"[dim]{result.total_fetch_time_ms}ms[/dim]"
        )

    def render_research(self, symbol: str, result: ResearchResult) -> None:
        table = Table(title=f"Research: {symbol}", show_header=False)
        table.add_column("Field", style="cyan")
        table.add_column("Value", justify="right")
        table.add_row("Source", result.source.value)
        table.add_row("Cached", "yes" if result.cached else "no")
        table.add_row("Freshness", f"{result.freshness_score:.2f}")
        table.add_row("Relevance", f"{result.relevance_score:.2f}")
        table.add_row("Stored insights", str(result.rag_results_count))
        table.add_row("Web results", str(result.tavily_results_count))
        table.add_row("Credits used", str(result.credits_used))
        self.console.print(table)

        results = (result.data or {}).get("results") or []
        for r in results[:10]:
            self.console.print(f"  [dim]{r.get('score') or 0:.2f}[/dim] {r['title']}")
            self.console.print(f"       [blue]{r['url']}[/blue]")

    def render_router_stats(self, stats: RouterStats) -> None:
        table = Table(title="Router", show_header=False)
        table.add_column("Metric", style="cyan")
        table.add_column("Value", justify="right")
        table.add_row("Queries", str(stats.total_queries))
        table.add_row("Knowledge hits", str(stats.rag_hits))
        table.add_row("Web fetches", str(stats.tavily_fetches))
        table.add_row("Hybrid", str(stats.hybrid_queries))
        table.add_row("Hit rate", f"{stats.cache_hit_rate:.1f}%")
        table.add_row("Credits", str(stats.total_credits_used))
        table.add_row("Credits / query", f"{stats.avg_credits_per_query:.2f}")
        self.console.print(table)

    def render_cache_stats(self, stats: CacheStats, health: dict) -> None:
        table = Table(title="Intelligence Cache", show_header=False)
        table.add_column("Metric", style="cyan")
        table.add_column("Value", justify="right")
        table.add_row("Entries", str(stats.total_entries))
        table.add_row("Expired", str(stats.expired_entries))
        table.add_row("Symbols", str(health.get("total_symbols", 0)))
        for source_type, count in sorted(health.get("by_source_type", {}).items()):
            table.add_row(f"  {source_type}", str(count))
        table.add_row("Hits / misses", f"{stats.hits} / {stats.misses}")
        table.add_row("Hit rate", f"{stats.hit_rate:.1f}%")
        table.add_row("Avg fetch", f"{stats.avg_fetch_time_ms:.1f}ms")
        self.console.print(table)

    def render_hot_symbols(self, rows: list[dict]) -> None:
        table = Table(title="Most Accessed Symbols", show_header=True)
        table.add_column("Symbol", style="cyan")
        table.add_column("Accesses", justify="right")
        table.add_column("Hit rate", justify="right")
        table.add_column("Last access")
        for r in rows:
            rate = r.get("cache_hit_rate")
            table.add_row(
                r["symbol"],
                str(r["total_accesses"]),
                "N/A" if rate is None else f"{rate:.1f}%",
                r.get("last_accessed") or "",
            )
        self.console.print(table)
