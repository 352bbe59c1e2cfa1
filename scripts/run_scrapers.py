#!/usr/bin/env python3
"""
Command-line interface for running keyword rank scrapes.

Uses typer for clean CLI with subcommands.
"""

import json
import sys
from pathlib import Path
from typing import Optional

import typer

# Add project root to path so we can import rankscout
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from rankscout.contexts.scraping.classifier import classify
from rankscout.contexts.scraping.errors import MarkupError
from rankscout.contexts.scraping.listings import count_by_placement
from rankscout.contexts.scraping.orchestration import (
    KeywordJob,
    jobs_from_config,
    run_cookie_refresh,
    run_identity_check,
    run_scrapers,
)
from rankscout.contexts.storage import SQLTaskStore
from rankscout.utils.config_helpers import load_scrape_config

app = typer.Typer(
    add_completion=False,
    help="rankscout keyword rank scraping",
)


@app.command("run")
def run_command(
    keyword: Optional[str] = typer.Option(
        None,
        "--keyword",
        "-k",
        help="Keyword to search. If omitted, runs every keyword in the config.",
    ),
    url: Optional[str] = typer.Option(
        None,
        "--url",
        "-u",
        help="Marketplace start URL for --keyword (e.g., https://www.amazon.com)",
    ),
    zip_code: str = typer.Option(
        "",
        "--zip-code",
        "-z",
        help="Delivery zip code recorded with the crawl task",
    ),
    concurrency: Optional[int] = typer.Option(
        None,
        "--concurrency",
        "-c",
        help="Maximum number of keywords scraped at once (default: pool.concurrency_limit)",
        min=1,
    ),
    max_pages: Optional[int] = typer.Option(
        None,
        "--max-pages",
        "-p",
        help="Result pages per keyword (default: search.max_pages)",
        min=1,
    ),
    use_db: bool = typer.Option(
        False,
        "--db",
        help="Record crawl tasks and listings in the database (DATABASE_URL or POSTGRES_*)",
    ),
    notify: bool = typer.Option(
        False,
        "--notify",
        "-n",
        help="Send completed crawl task ids to BASE_API when done",
    ),
    config_file: Optional[list[Path]] = typer.Option(
        None,
        "--config",
        help="Extra YAML file(s) merged over config/scrape.yaml",
    ),
):
    """
    Run keyword scrapes with logging to timestamped files.

    By default, runs every keyword listed in the config.

    Examples:

        # Run all configured keywords
        $ run_scrapers.py run

        # Run one keyword
        $ run_scrapers.py run -k "hdmi 90 degree" -u https://www.amazon.com -z 10008

        # Two at a time, first page only, stored in the database
        $ run_scrapers.py run -c 2 -p 1 --db
    """
    if (keyword is None) != (url is None):
        typer.secho("Error: --keyword and --url must be given together", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    config = load_scrape_config(overrides=config_file)
    if concurrency is not None:
        config.pool.concurrency_limit = concurrency
    if max_pages is not None:
        config.search.max_pages = max_pages

    jobs = [KeywordJob(keyword=keyword, url=url, zip_code=zip_code)] if keyword else None
    store = SQLTaskStore.from_env() if use_db else None

    try:
        results = run_scrapers(jobs, config=config, store=store, notify=notify)

        # Exit with error code if any keywords failed
        failures = sum(1 for r in results if r["status"] == "failed")
        if failures > 0:
            raise typer.Exit(code=1)

    except KeyboardInterrupt:
        typer.secho("\n\nInterrupted by user", fg=typer.colors.YELLOW, err=True)
        raise typer.Exit(code=130)


@app.command("classify")
def classify_command(
    html_file: Path = typer.Argument(
        ...,
        help="Saved search results page",
        exists=True,
        dir_okay=False,
        readable=True,
    ),
    as_json: bool = typer.Option(
        False,
        "--json",
        help="Print every record as JSON instead of counts",
    ),
):
    """Classify the listings of a saved search results page."""
    try:
        records = classify(html_file.read_text(encoding="utf-8"))
    except MarkupError as e:
        typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    if as_json:
        typer.echo(json.dumps([record.to_dict() for record in records], indent=2, ensure_ascii=False))
        return

    typer.secho(f"{len(records)} listings in {html_file.name}:", fg=typer.colors.BLUE, bold=True)
    for placement, count in count_by_placement(records).items():
        typer.echo(f"  • {placement.value}: {count}")


@app.command("refresh-cookies")
def refresh_cookies_command(
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Harvest every domain, even ones with fresh cookies",
    ),
):
    """Harvest delivery-location cookies for configured domains."""
    results = run_cookie_refresh(force=force)
    for result in results:
        color = typer.colors.RED if result["status"] == "failed" else typer.colors.GREEN
        typer.secho(f"  • {result['domain']}: {result['status']}", fg=color)

    if any(r["status"] == "failed" for r in results):
        raise typer.Exit(code=1)


@app.command("check-ip")
def check_ip_command():
    """Show the IP address the browser presents (uses PROXY_SERVER if set)."""
    typer.echo(run_identity_check())


@app.command("list-keywords")
def list_keywords_command():
    """List the keywords configured in scrape.yaml."""
    jobs = jobs_from_config(load_scrape_config())
    typer.secho(f"Configured keywords ({len(jobs)}):", fg=typer.colors.BLUE, bold=True)
    for job in jobs:
        zip_note = f", zip {job.zip_code}" if job.zip_code else ""
        typer.echo(f"  • {job.keyword} ({job.domain}{zip_note})")


if __name__ == "__main__":
    app()
