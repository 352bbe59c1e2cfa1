"""HTTP helpers for telling the rules API that crawl tasks have finished."""

import os
import time
from typing import Optional

import requests
from dotenv import load_dotenv
from loguru import logger

load_dotenv()
BASE_API = os.getenv("BASE_API")

EXECUTION_RULES_PATH = "/api/keywordPositionRule/executionRules"


def request_with_retry(url, method="GET", max_attempts=3, delay=1.0, **kwargs):
    """
    Make an HTTP request with automatic retry on failure.

    Args:
        url (str): The URL to request
        method (str): HTTP method - either 'GET' or 'POST' (default: 'GET')
        max_attempts (int): How many times to try the request (default: 3)
        delay (float): Initial delay in seconds between retries (default: 1.0)
        **kwargs: Any additional arguments to pass to requests.get() or requests.post()

    Returns:
        requests.Response: The response object from successful request

    Raises:
        requests.RequestException: If all retry attempts fail
    """
    most_recent_exception = None

    for attempt in range(max_attempts):
        try:
            if method == "GET":
                response = requests.get(url, **kwargs)
            elif method == "POST":
                response = requests.post(url, **kwargs)
            else:
                raise ValueError(f"Unsupported method: {method}")
            response.raise_for_status()
            return response

        except requests.RequestException as e:
            most_recent_exception = e

            if attempt < max_attempts - 1:
                wait_time = delay * (2**attempt)
                logger.warning(f"Request failed, retrying in {wait_time}s...")
                time.sleep(wait_time)

    raise most_recent_exception


def notify_completed_tasks(
    crawl_task_ids: list[int],
    base_api: Optional[str] = BASE_API,
    timeout: float = 30.0,
    max_attempts: int = 3,
) -> bool:
    """
    Send finished crawl-task ids to the execution-rules endpoint.

    Failures are logged, never raised.

    Returns:
        True if the API accepted the call
    """
    if not crawl_task_ids:
        logger.warning("No successful crawl tasks, skipping notification")
        return False
    if not base_api:
        logger.warning("BASE_API is not set, skipping notification")
        return False

    url = base_api.rstrip("/") + EXECUTION_RULES_PATH
    try:
        response = request_with_retry(
            url,
            max_attempts=max_attempts,
            params={"crawlTaskIdList": crawl_task_ids},
            timeout=timeout,
        )
    except requests.RequestException as e:
        logger.error(f"Notification to {url} failed: {e}")
        return False

    logger.info(f"Notified {url} of {len(crawl_task_ids)} crawl task(s) (HTTP {response.status_code})")
    return True
