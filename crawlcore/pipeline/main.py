"""CLI entry point for the crawler.

Provides `run`, which crawls seed URLs until drained and writes a JSON
summary, and `inspect`, which shows the durable state left in a state
directory.
"""

import sys
from pathlib import Path
from typing import List, Optional, Tuple
from urllib.parse import urlsplit

import click
from rich.console import Console
from rich.table import Table

from crawlcore.engine.context import AllowAll, HostScope
from crawlcore.engine.crawler import build_crawler
from crawlcore.models.config import ConfigManager, CrawlerConfig
from crawlcore.models.data_models import CrawlSummary, RoutingHint
from crawlcore.persistence.repository import FileSnapshotRepository, FileWalRepository
from crawlcore.persistence.wrapper import PersistentFrontier, PersistentInFlightBuffer, PersistentRetryBuffer
from crawlcore.pipeline.output import JSONOutputFormatter
from crawlcore.pipeline.routing import Pipeline, Route, any_task
from crawlcore.pipeline.steps import EnqueueLinksStep, FetchStep, ParseStep
from crawlcore.state.buffers import InFlightBuffer, InMemoryRetryBuffer
from crawlcore.state.frontier import FifoFrontier


console = Console()


def default_routes(follow_links: bool) -> List[Route]:
    """Fetch and parse every task; optionally enqueue the links found in HTML."""
    steps = [FetchStep(), ParseStep()]
    if follow_links:
        steps.append(EnqueueLinksStep(hint=RoutingHint.HTML))
    return [Route("default", any_task, Pipeline("fetch-parse", steps))]


def _read_seeds(urls: Tuple[str, ...], seed_file: Optional[Path]) -> List[str]:
    seeds = list(urls)
    if seed_file is not None:
        with open(seed_file, "r", encoding="utf-8") as f:
            seeds.extend(line.strip() for line in f if line.strip() and not line.startswith("#"))
    return seeds


@click.group()
@click.version_option(version="0.1.0", prog_name="crawlcore")
def cli() -> None:
    """crawlcore - polite, durable crawl scheduling."""


@cli.command()
@click.argument("urls", nargs=-1)
@click.option(
    "--config",
    "-c",
    type=click.Path(path_type=Path),
    default="config/config.yaml",
    help="Path to configuration YAML file (ignored if missing)",
)
@click.option(
    "--seed-file",
    "-s",
    type=click.Path(exists=True, path_type=Path),
    help="File with one seed URL per line",
)
@click.option(
    "--mode",
    "-m",
    type=click.Choice(["single", "executor"], case_sensitive=False),
    help="Runner mode (overrides config)",
)
@click.option(
    "--workers",
    "-w",
    type=int,
    help="Number of worker threads (overrides config)",
)
@click.option(
    "--state-dir",
    type=click.Path(file_okay=False, path_type=Path),
    help="Enable persistence in this directory (overrides config)",
)
@click.option(
    "--output",
    "-o",
    type=click.Path(path_type=Path),
    help="Output JSON file path (overrides config)",
)
@click.option(
    "--log-level",
    "-l",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Logging level (overrides config)",
)
@click.option(
    "--follow-links",
    is_flag=True,
    help="Enqueue links found in HTML pages on the seed hosts",
)
def run(
    urls: Tuple[str, ...],
    config: Path,
    seed_file: Optional[Path],
    mode: Optional[str],
    workers: Optional[int],
    state_dir: Optional[Path],
    output: Optional[Path],
    log_level: Optional[str],
    follow_links: bool,
) -> None:
    """
    Crawl seed URLs until the frontier, retry and in-flight buffers are empty.

    Examples:

        # Crawl two pages with the default configuration
        $ crawlcore run https://example.com/ https://example.org/

        # Follow links, persist state so an interrupted crawl can resume
        $ crawlcore run --follow-links --state-dir state https://example.com/
    """
    try:
        cli_overrides = {}
        if mode is not None:
            cli_overrides["run_mode"] = mode.lower()
        if workers is not None:
            cli_overrides["worker_pool_size"] = workers
        if log_level is not None:
            cli_overrides["log_level"] = log_level.upper()
        if state_dir is not None:
            cli_overrides["persistence"] = {"enabled": True, "state_directory": str(state_dir)}

        crawler_config = ConfigManager(config).load_config(cli_overrides)
        output_path = output if output else crawler_config.output_path

        seeds = _read_seeds(urls, seed_file)
        scope = HostScope(urlsplit(url).hostname or "" for url in seeds) if follow_links else AllowAll()

        _display_config_summary(crawler_config, len(seeds))

        with build_crawler(crawler_config, default_routes(follow_links), scope=scope) as crawler:
            if crawler_config.persistence.enabled:
                orphans = crawler.recover()
                if orphans:
                    console.print(f"[yellow]Requeued {orphans} interrupted task(s)[/yellow]")
            crawler.seed_all(seeds, RoutingHint.HTML if follow_links else RoutingHint.DEFAULT)
            if crawler.frontier.size() == 0 and crawler.retry_buffer.size() == 0:
                raise click.UsageError("No seed URLs given and no saved state to resume")

            summary = crawler.run_until_drained()
            crawler.checkpoint()

        JSONOutputFormatter().save(summary, str(output_path))
        _display_results(summary, output_path)
        sys.exit(0)

    except click.UsageError:
        raise
    except KeyboardInterrupt:
        console.print("\n[yellow]Crawl interrupted by user[/yellow]")
        sys.exit(130)
    except Exception as e:
        console.print(f"\n[red]Error:[/red] {e}", style="bold red")
        if "--debug" in sys.argv:
            console.print_exception()
        sys.exit(1)


@cli.command()
@click.argument("state_dir", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option("--limit", "-n", type=int, default=10, help="Tasks listed per structure")
def inspect(state_dir: Path, limit: int) -> None:
    """Show the frontier, in-flight and retry state saved in STATE_DIR."""
    try:
        def storage(name: str):
            return (
                FileWalRepository(state_dir / f"{name}.wal", repair=False),
                FileSnapshotRepository(state_dir / f"{name}.snapshot.json"),
            )

        frontier = PersistentFrontier(FifoFrontier(), *storage("frontier"))
        in_flight = PersistentInFlightBuffer(InFlightBuffer(), *storage("inflight"))
        retry = PersistentRetryBuffer(InMemoryRetryBuffer(), *storage("retry"))
        for structure in (frontier, in_flight, retry):
            structure.restore()

        sizes = Table(title="Durable State", show_header=False)
        sizes.add_column("Structure", style="cyan")
        sizes.add_column("Tasks", justify="right", style="green")
        sizes.add_row("Frontier", str(frontier.size()))
        sizes.add_row("In flight", str(in_flight.size()))
        sizes.add_row("Retry", str(retry.size()))
        console.print(sizes)

        tasks = Table(title="Tasks")
        tasks.add_column("Where", style="cyan")
        tasks.add_column("URL")
        tasks.add_column("Attempt", justify="right", style="yellow")
        tasks.add_column("Due", justify="right", style="magenta")
        for task in frontier.delegate.tasks()[:limit]:
            tasks.add_row("frontier", task.url, str(task.attempt), "")
        for task in in_flight.tasks()[:limit]:
            tasks.add_row("in flight", task.url, str(task.attempt), "")
        for entry in retry.entries()[:limit]:
            tasks.add_row("retry", entry.task.url, str(entry.task.attempt), f"{entry.due_at:.3f}")
        console.print(tasks)

    except Exception as e:
        console.print(f"\n[red]Error:[/red] {e}", style="bold red")
        sys.exit(1)


def _display_config_summary(config: CrawlerConfig, seeds: int) -> None:
    """Display configuration summary before running."""
    console.print("\n[bold cyan]Crawler Configuration[/bold cyan]")
    console.print(f"  Seeds: {seeds}")
    console.print(f"  Mode: {config.run_mode} ({config.worker_pool_size} workers)")
    console.print(f"  Max attempts: {config.max_attempts}")
    console.print(f"  Persistence: {config.persistence.state_directory if config.persistence.enabled else 'off'}")
    console.print()


def _display_results(summary: CrawlSummary, output_path: Path) -> None:
    """Display final results summary."""
    console.print("\n[bold green]Crawl Complete![/bold green]\n")

    table = Table(title="Execution Summary", show_header=False)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Seeded", str(summary.seeded))
    table.add_row("Completed", str(summary.completed))
    table.add_row("Dead letters", str(summary.dead_lettered))
    table.add_row("Retries", str(summary.retries_scheduled))
    table.add_row("Politeness deferrals", str(summary.politeness_deferrals))
    table.add_row("Discarded", str(summary.discarded))
    table.add_row("Elapsed", f"{summary.elapsed_seconds:.2f}s")
    console.print(table)
    console.print()

    if summary.dead_letters:
        dead = Table(title="Dead Letters")
        dead.add_column("URL", style="cyan")
        dead.add_column("Attempt", justify="right", style="yellow")
        dead.add_column("Reason", style="red")
        for item in summary.dead_letters[:20]:
            dead.add_row(item.task.url, str(item.task.attempt), item.reason)
        console.print(dead)
        console.print()

    console.print(f"[bold]Output saved to:[/bold] {output_path}")
    console.print()


if __name__ == "__main__":
    cli()
