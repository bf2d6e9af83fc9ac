"""
scheduler.py - Runs an audit: baseline, third-party discovery, one scenario per block set.

Usage:
    scheduler = AuditScheduler(PlaywrightDriver(), default_classifier(), store)
    ack = await scheduler.start(record)      # returns after baseline + discovery
    ...
    store.status(ack.execution_id)           # poll while the scenarios run
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import config
import config_string
from discovery import discover
from errors import AuditError, DriverError
from execution import STATUS_RUNNING, AuditResponse, ExecutionRecord, StartResponse
from execution_store import ExecutionStore
from measurement_driver import MeasurementDriver, Session
from metrics import average, compare_to_baseline, to_response
from third_party import ThirdPartyClassifier

logger = logging.getLogger(__name__)

# (block set, label shown as blockedURL)
Scenario = tuple[list[str], str]


def _error_message(exc: BaseException) -> str:
    if isinstance(exc, AuditError):
        return exc.reason
    return str(exc) or type(exc).__name__


def url_limit(max_urls_to_try: int, candidate_count: int) -> int:
    if max_urls_to_try == -1:
        return candidate_count
    return min(max_urls_to_try, candidate_count)


def plan_scenarios(candidates: list[str], max_urls_to_try: int, block_all: bool) -> tuple[list[Scenario], int]:
    """
    Scenarios to run after the baseline, and the total number of results
    (baseline included) the execution is expected to produce.
    """
    if block_all:
        return [(list(candidates), ",".join(candidates))], 2
    limit = url_limit(max_urls_to_try, len(candidates))
    return [([url], url) for url in candidates[:limit]], limit + 1


class AuditScheduler:
    def __init__(
        self,
        driver: MeasurementDriver,
        classifier: ThirdPartyClassifier,
        store: Optional[ExecutionStore] = None,
        scenario_timeout_s: float = config.SCENARIO_TIMEOUT_S,
    ):
        self.driver = driver
        self.classifier = classifier
        self.store = store if store is not None else ExecutionStore()
        self.scenario_timeout_s = scenario_timeout_s
        self._tasks: dict[str, asyncio.Task] = {}

    async def start(self, record: ExecutionRecord) -> StartResponse:
        """
        Measures the baseline and finds the block candidates, then leaves the
        remaining scenarios to a background task and returns right away.
        Failures up to that point come back as ``StartResponse(error=...)``.
        """
        if record.id not in self.store:
            self.store.add(record)
        cfg = record.configuration
        logger.info(f"[{record.id}] Started {record.url}")

        session: Optional[Session] = None
        try:
            session = await self.driver.new_session(
                cfg.user_agent,
                config_string.parse(cfg.cookies),
                config_string.parse(cfg.local_storage),
            )
            baseline = await self._timed_scenario(session, record, [], "")
            record.append_result(baseline)

            candidates = await self._candidates(session, record)
            scenarios, expected = plan_scenarios(candidates, cfg.max_urls_to_try, cfg.block_all)
            record.set_expected_results(expected)
            logger.info(f"[{record.id}] Will block {len(candidates)} URLs, expecting {expected} results")
        except Exception as e:
            message = _error_message(e)
            record.fail(message)
            logger.error(f"[{record.id}] Failed: {message}")
            if session is not None:
                await self._close(session, record)
            return StartResponse(error=message)

        task = asyncio.create_task(self._run_scenarios(session, record, scenarios))
        self._tasks[record.id] = task
        task.add_done_callback(lambda _t: self._tasks.pop(record.id, None))
        return StartResponse(execution_id=record.id, expected_results=expected)

    async def _candidates(self, session: Session, record: ExecutionRecord) -> list[str]:
        cfg = record.configuration
        if cfg.block_specific_urls:
            return list(dict.fromkeys(cfg.block_specific_urls))
        found = await discover(
            self.driver,
            self.classifier,
            record.url,
            user_agent=cfg.user_agent,
            cookies=cfg.cookies,
            local_storage=cfg.local_storage,
            session=session,
        )
        return sorted(found)

    async def _run_scenario(
        self,
        session: Session,
        record: ExecutionRecord,
        block_set: list[str],
        label: str,
    ) -> AuditResponse:
        cfg = record.configuration
        samples = []
        for _ in range(cfg.number_of_reports):
            raw = await session.measure(record.url, block_set, cfg.device, cfg.network)
            samples.append(to_response(raw, label))
        result = average(samples)
        result.delta_baseline = compare_to_baseline(result, record.baseline())
        return result

    async def _timed_scenario(
        self,
        session: Session,
        record: ExecutionRecord,
        block_set: list[str],
        label: str,
    ) -> AuditResponse:
        if self.scenario_timeout_s <= 0:
            return await self._run_scenario(session, record, block_set, label)
        try:
            return await asyncio.wait_for(
                self._run_scenario(session, record, block_set, label),
                timeout=self.scenario_timeout_s,
            )
        except asyncio.TimeoutError:
            raise DriverError(f"Scenario '{label or 'baseline'}' timed out after {self.scenario_timeout_s:g}s")

    async def _run_scenarios(self, session: Session, record: ExecutionRecord, scenarios: list[Scenario]) -> None:
        try:
            for block_set, label in scenarios:
                if record.status != STATUS_RUNNING:
                    logger.info(f"[{record.id}] {record.status.capitalize()}, skipping remaining scenarios")
                    break
                logger.info(f"[{record.id}] Blocking {label}")
                result = await self._timed_scenario(session, record, block_set, label)
                if not record.append_result(result):
                    logger.info(f"[{record.id}] Dropped result for {label}, execution is {record.status}")
        except asyncio.CancelledError:
            record.fail("Execution was interrupted")
            raise
        except Exception as e:
            message = _error_message(e)
            record.fail(message)
            logger.error(f"[{record.id}] Failed: {message}")
        finally:
            await self._close(session, record)
            if record.complete():
                logger.info(f"[{record.id}] Completed")

    async def _close(self, session: Session, record: ExecutionRecord) -> None:
        try:
            await session.close()
        except Exception as e:
            logger.warning(f"[{record.id}] Closing measurement session failed: {e}")

    def is_active(self, execution_id: str) -> bool:
        return execution_id in self._tasks

    async def wait(self, execution_id: str) -> ExecutionRecord:
        """Waits for the background scenarios of an execution, then returns its snapshot."""
        task = self._tasks.get(execution_id)
        if task is not None:
            await task
        return self.store.status(execution_id)

    async def shutdown(self) -> None:
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
