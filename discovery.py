"""
discovery.py - Find the third-party request URLs a page loads.

Usage:
    candidates = await discover(driver, classifier, "https://example.com")
"""

from __future__ import annotations

import logging
from typing import Optional

import config_string
from execution import ExecutionRecord
from measurement_driver import MeasurementDriver, NetworkRequest, Session
from third_party import ThirdPartyClassifier

logger = logging.getLogger(__name__)


def is_image(request: NetworkRequest) -> bool:
    return "image" in request.content_type.lower()


def third_party_urls(requests: list[NetworkRequest], classifier: ThirdPartyClassifier) -> set[str]:
    """Full URLs of the non-image requests the classifier recognises."""
    found: set[str] = set()
    for request in requests:
        if is_image(request):
            continue
        if classifier.classify(request.url):
            found.add(request.url)
    return found


async def discover(
    driver: MeasurementDriver,
    classifier: ThirdPartyClassifier,
    url: str,
    user_agent: str = "",
    cookies: str = "",
    local_storage: str = "",
    session: Optional[Session] = None,
) -> set[str]:
    """
    Loads the page once with request capture and returns the deduplicated set
    of third-party request URLs. Cookies and local storage are given in the
    ``key=value;...`` text format and seeded before navigation.

    When ``session`` is given it is used as is and left open; otherwise a
    session is opened for this load and closed afterwards.
    """
    own_session = session is None
    if own_session:
        session = await driver.new_session(
            user_agent,
            config_string.parse(cookies),
            config_string.parse(local_storage),
        )
    try:
        requests = await session.load_and_capture_requests(url)
    finally:
        if own_session:
            await session.close()

    found = third_party_urls(requests, classifier)
    logger.info(f"Discovered {len(found)} third-party URLs out of {len(requests)} requests on {url}")
    return found


async def identify_third_parties(
    driver: MeasurementDriver,
    classifier: ThirdPartyClassifier,
    record: ExecutionRecord,
) -> list[str]:
    """Discovery only, for picking URLs before scheduling an audit. Sorted for display."""
    cfg = record.configuration
    found = await discover(
        driver,
        classifier,
        record.url,
        user_agent=cfg.user_agent,
        cookies=cfg.cookies,
        local_storage=cfg.local_storage,
    )
    return sorted(found)
