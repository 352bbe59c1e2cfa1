"""
Run orchestration for keyword scrapes.

Provides functionality to:
- Build the session manager, worker pool and task store from config
- Submit one search task per keyword job and wait for all of them
- Log execution details to timestamped files
- Return structured per-job results
"""

import asyncio
import os
import time
import traceback
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv
from loguru import logger
from omegaconf import DictConfig

from rankscout.contexts.orchestration import (
    JsonlStatusObserver,
    LoggingObserver,
    ProgressObserver,
    SessionConfig,
    SessionManager,
    WorkerPool,
)
from rankscout.contexts.scraping.browsing import PageTimings
from rankscout.contexts.scraping.cookies import (
    DEFAULT_EXPIRY_HOURS,
    CookieProvider,
    CookieStore,
    DomainCookieConfig,
    refresh_cookies,
)
from rankscout.contexts.scraping.identity import IPCheckTask, ProxySettings
from rankscout.contexts.scraping.notify import notify_completed_tasks
from rankscout.contexts.scraping.search import SearchOptions, SearchResult, SearchTask
from rankscout.contexts.storage import NullTaskStore, TaskStore, safe_store_call
from rankscout.utils.config_helpers import load_scrape_config
from rankscout.utils.helpers import extract_domain, format_duration

load_dotenv()
LOGS_PATH = Path(os.getenv("LOGS_PATH", "outs/logs"))


def setup_logger(log_dir: Path = LOGS_PATH) -> Path:
    """
    Configure loguru to write to timestamped log file.

    Args:
        log_dir: Directory for log files (default: LOGS_PATH from environment)

    Returns:
        Path to the created log file
    """
    log_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"scraping_{timestamp}.txt"

    # Remove default handler and add file handler
    logger.remove()  # Remove default stderr handler
    logger.add(log_file, format="{time:YYYY-MM-DD HH:mm:ss} | {level} | {message}")
    logger.add(
        lambda msg: print(msg, end=""),  # Also print to console
        format="{time:YYYY-MM-DD HH:mm:ss} | {level} | {message}\n",
        level="INFO",
    )

    return log_file


@dataclass
class KeywordJob:
    """One keyword to search on one marketplace."""

    keyword: str
    url: str
    zip_code: str = ""
    country_code: str = ""

    @classmethod
    def from_dict(cls, data) -> "KeywordJob":
        return cls(
            keyword=data["keyword"],
            url=data["url"],
            zip_code=str(data.get("zip_code") or ""),
            country_code=data.get("country_code") or "",
        )

    @property
    def domain(self) -> str:
        return extract_domain(self.url)


def jobs_from_config(config: DictConfig) -> list[KeywordJob]:
    return [KeywordJob.from_dict(item) for item in config.get("keywords") or []]


def domain_configs_from_config(config: DictConfig) -> list[DomainCookieConfig]:
    return [DomainCookieConfig.from_dict(item) for item in config.cookies.get("domains") or []]


def build_session_config(
    job: KeywordJob,
    provider: Optional[CookieProvider],
    proxy: Optional[str],
    locale: str = "en-US",
) -> SessionConfig:
    """Session settings for one job, with the stored cookies of its domain."""
    domain = job.domain
    cookie = ""
    zip_code = job.zip_code

    if provider is not None and domain:
        status = provider.cookies_for([domain])[domain]
        cookie = status.cookie
        zip_code = zip_code or status.zip_code
        if not cookie:
            logger.warning(f"No stored cookies for {domain}, results may use a default location")
        elif not status.fresh:
            logger.warning(f"Cookies for {domain} are stale, consider running refresh-cookies")

    return SessionConfig(
        proxy=proxy,
        cookies=cookie or None,
        cookie_domain=f".{domain}" if domain else None,
        locale=locale,
        zip_code=zip_code,
    )


def _job_result(job: KeywordJob, task: SearchTask, future: asyncio.Future) -> dict[str, Any]:
    result = {
        "keyword": job.keyword,
        "url": job.url,
        "status": "failed",
        "error": None,
        "traceback": None,
        "totals": None,
        "crawl_task_id": task.crawl_task_id,
        "time_elapsed": None,
    }
    error = future.exception()
    if error is not None:
        result["error"] = str(error)
        result["traceback"] = "".join(traceback.format_exception(error))
        return result

    search_result: SearchResult = future.result()
    result.update(
        status="success",
        totals=search_result.totals(),
        time_elapsed=search_result.elapsed,
    )
    return result


async def run_keyword_scrapes(
    jobs: list[KeywordJob],
    config: Optional[DictConfig] = None,
    store: Optional[TaskStore] = None,
    cookie_store: Optional[CookieStore] = None,
    notify: bool = False,
    log_dir: Path = LOGS_PATH,
    show_progress: bool = True,
) -> list[dict[str, Any]]:
    """
    Scrape every job through one worker pool.

    Args:
        jobs: Keyword jobs to run
        config: Scrape config (default: ``scrape.yaml`` from CONFIG_PATH)
        store: Task store (default: NullTaskStore)
        cookie_store: Where harvested cookies live (default: ``cookies.storage_path``)
        notify: Send completed crawl-task ids to BASE_API afterwards
        log_dir: Directory for the pool status JSONL file
        show_progress: Show a tqdm progress bar

    Returns:
        One dict per job (in submission order) with keys:
            - keyword, url
            - status: "success" or "failed"
            - error: Error message (if failed)
            - totals: pages/products/paid_standard/organic (if successful)
            - crawl_task_id: Store id, if the store assigned one
            - time_elapsed: Seconds spent in the final attempt (if successful)
    """
    if not jobs:
        logger.warning("No keyword jobs to run")
        return []

    config = config if config is not None else load_scrape_config()
    store = store if store is not None else NullTaskStore()
    options = SearchOptions.from_config(config)
    proxy = ProxySettings.from_env().proxy_url()

    if cookie_store is None:
        cookie_store = CookieStore(config.cookies.get("storage_path", "cookies_storage.json"))
    provider = CookieProvider(cookie_store, config.cookies.get("expiry_hours", DEFAULT_EXPIRY_HOURS))

    await safe_store_call(store, "connect")

    session_manager = SessionManager.from_config(config.browser)
    pool = WorkerPool.from_config(session_manager, config.pool)
    pool.subscribe(LoggingObserver())
    pool.subscribe(JsonlStatusObserver(log_dir))
    if show_progress:
        pool.subscribe(ProgressObserver(total=len(jobs), desc="Keywords"))

    logger.info(
        f"Running {len(jobs)} keyword job(s) with concurrency {pool.concurrency_limit} "
        f"(proxy: {'yes' if proxy else 'no'})"
    )
    start_time = time.time()

    submitted = []
    completed = []
    try:
        for job in jobs:
            task = SearchTask(
                keyword=job.keyword,
                url=job.url,
                session_config=build_session_config(job, provider, proxy, config.browser.get("locale", "en-US")),
                options=options,
                store=store,
            )
            submitted.append((job, task, pool.submit(task)))

        await asyncio.wait([future for _, _, future in submitted])
        completed = await pool.wait_completed()
    finally:
        await pool.close()
        await safe_store_call(store, "close")

    results = [_job_result(job, task, future) for job, task, future in submitted]

    successes = sum(1 for r in results if r["status"] == "success")
    elapsed = time.time() - start_time
    logger.info(
        f"Scrape complete: {successes}/{len(results)} keywords succeeded, "
        f"{len(results) - successes} failed ({format_duration(elapsed)})"
    )
    for result in results:
        if result["status"] == "failed":
            logger.error(f"[{result['keyword']}] {result['error']}")
            logger.debug(f"[{result['keyword']}] Traceback:\n{result['traceback']}")

    if notify:
        # Completion order, as the pool reported it
        crawl_task_ids = [r.crawl_task_id for r in completed if r.crawl_task_id is not None]
        await asyncio.to_thread(notify_completed_tasks, crawl_task_ids)

    return results


def run_scrapers(
    jobs: Optional[list[KeywordJob]] = None,
    config: Optional[DictConfig] = None,
    store: Optional[TaskStore] = None,
    notify: bool = False,
    log_dir: Path = LOGS_PATH,
) -> list[dict[str, Any]]:
    """
    Orchestrator: set up logging and run keyword scrapes to completion.

    Args:
        jobs: Keyword jobs (default: the ``keywords`` list of the config)
        config: Scrape config (default: ``scrape.yaml`` from CONFIG_PATH)
        store: Task store (default: NullTaskStore)
        notify: Send completed crawl-task ids to BASE_API afterwards
        log_dir: Directory for log files (default: LOGS_PATH)

    Example:
        # Run the keywords listed in config/scrape.yaml
        results = run_scrapers()

        # Run one keyword
        results = run_scrapers([KeywordJob("hdmi 90 degree", "https://www.amazon.com", "10008")])
    """
    log_file = setup_logger(log_dir)
    logger.info(f"Logging to: {log_file}")

    config = config if config is not None else load_scrape_config()
    if jobs is None:
        jobs = jobs_from_config(config)
        logger.info(f"Loaded {len(jobs)} keyword job(s) from config")

    return asyncio.run(run_keyword_scrapes(jobs, config=config, store=store, notify=notify, log_dir=log_dir))


def run_cookie_refresh(
    config: Optional[DictConfig] = None,
    force: bool = False,
    log_dir: Path = LOGS_PATH,
) -> list[dict[str, Any]]:
    """Harvest cookies for every configured domain that needs it."""
    log_file = setup_logger(log_dir)
    logger.info(f"Logging to: {log_file}")

    config = config if config is not None else load_scrape_config()
    cookies = config.cookies
    return asyncio.run(
        refresh_cookies(
            domain_configs_from_config(config),
            store=CookieStore(cookies.get("storage_path", "cookies_storage.json")),
            session_manager=SessionManager.from_config(config.browser),
            proxy=ProxySettings.from_env().proxy_url(),
            concurrency_limit=cookies.get("concurrency_limit", 5),
            expiry_hours=cookies.get("expiry_hours", DEFAULT_EXPIRY_HOURS),
            force=force,
            max_retries=cookies.get("max_retries", 50),
            timings=PageTimings.from_config(config.get("search", {})),
        )
    )


async def check_identity(config: DictConfig, proxy: Optional[str] = None) -> str:
    """Report the IP address the browser presents, through the configured proxy."""
    session_manager = SessionManager.from_config(config.browser)
    pool = WorkerPool(session_manager, concurrency_limit=1)
    try:
        return await pool.submit(IPCheckTask(SessionConfig(proxy=proxy)))
    finally:
        await pool.close()


def run_identity_check(config: Optional[DictConfig] = None, log_dir: Path = LOGS_PATH) -> str:
    setup_logger(log_dir)
    config = config if config is not None else load_scrape_config()
    return asyncio.run(check_identity(config, ProxySettings.from_env().proxy_url()))
