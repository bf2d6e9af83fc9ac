"""
execution.py - Execution records and scenario results.

An ExecutionRecord is shared between the background scenario loop that
writes to it and the status / cancel callers that read it, so every mutation
goes through a method holding the record's lock and readers get snapshots.
"""

from __future__ import annotations

import copy
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional
from urllib.parse import unquote

import config

STATUS_RUNNING = "running"
STATUS_COMPLETE = "complete"
STATUS_ERROR = "error"
STATUS_CANCELED = "canceled"

TERMINAL_STATUSES = {STATUS_COMPLETE, STATUS_ERROR, STATUS_CANCELED}

DEVICE_PROFILES = ("mobile", "desktop")
NETWORK_PROFILES = ("none", "4g", "slow-3g")


def new_id() -> str:
    return uuid.uuid4().hex


@dataclass
class Scores:
    LCP: float = 0.0
    FCP: float = 0.0
    CLS: float = 0.0
    TBT: int = 0
    consoleErrors: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "LCP": self.LCP,
            "FCP": self.FCP,
            "CLS": self.CLS,
            "TBT": self.TBT,
            "consoleErrors": self.consoleErrors,
        }


@dataclass
class AuditResponse:
    """One aggregated scenario outcome."""

    id: str
    blocked_url: str
    scores: Scores
    report_url: Optional[str] = None
    screenshot: Optional[str] = None
    delta_baseline: Optional[dict[str, float]] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "blockedURL": self.blocked_url,
            "scores": self.scores.to_dict(),
        }
        if self.report_url:
            data["reportUrl"] = self.report_url
        if self.screenshot:
            data["screenshot"] = self.screenshot
        if self.delta_baseline is not None:
            data["deltaBaseline"] = dict(self.delta_baseline)
        return data


@dataclass(frozen=True)
class AuditConfiguration:
    user_agent: str = ""
    cookies: str = ""
    local_storage: str = ""
    max_urls_to_try: int = -1
    number_of_reports: int = 1
    block_all: bool = False
    block_specific_urls: Optional[tuple[str, ...]] = None
    device: str = config.DEFAULT_DEVICE
    network: str = config.DEFAULT_NETWORK

    def __post_init__(self) -> None:
        if self.number_of_reports < 1:
            raise ValueError(f"number_of_reports must be >= 1, got {self.number_of_reports}")
        if self.max_urls_to_try < -1:
            raise ValueError(f"max_urls_to_try must be -1 or >= 0, got {self.max_urls_to_try}")
        if self.device not in DEVICE_PROFILES:
            raise ValueError(f"Unknown device profile: {self.device}")
        if self.network not in NETWORK_PROFILES:
            raise ValueError(f"Unknown network profile: {self.network}")


@dataclass
class StartResponse:
    """Acknowledgement returned by ``AuditScheduler.start``."""

    execution_id: Optional[str] = None
    expected_results: Optional[int] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        if self.error is not None:
            return {"error": self.error}
        return {"executionId": self.execution_id, "expectedResults": self.expected_results}


class ExecutionRecord:
    def __init__(self, url: str, configuration: AuditConfiguration | None = None, execution_id: str | None = None):
        self._id = execution_id or new_id()
        self._url = url
        self._configuration = configuration or AuditConfiguration()
        self._lock = threading.Lock()
        self._status = STATUS_RUNNING
        self._results: list[AuditResponse] = []
        self._error: Optional[str] = None
        self._expected_results: Optional[int] = None
        self.created_at = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")

    @classmethod
    def from_request(cls, payload: dict[str, Any]) -> "ExecutionRecord":
        """
        Builds a record from an analysis request body.

        Missing or zero ``maxUrlsToTry`` means no limit, missing or zero
        ``numberOfReports`` means a single sample per scenario.
        """
        url = unquote(str(payload.get("url") or "")).strip()
        block_specific = payload.get("blockSpecificUrls") or None
        configuration = AuditConfiguration(
            user_agent=str(payload.get("userAgentOverride") or "").strip(),
            cookies=str(payload.get("cookies") or ""),
            local_storage=str(payload.get("localStorage") or ""),
            max_urls_to_try=int(payload.get("maxUrlsToTry") or -1),
            number_of_reports=int(payload.get("numberOfReports") or 1),
            block_all=bool(payload.get("blockAll")),
            block_specific_urls=tuple(block_specific) if block_specific else None,
            device=payload.get("device") or config.DEFAULT_DEVICE,
            network=payload.get("network") or config.DEFAULT_NETWORK,
        )
        return cls(url, configuration)

    @property
    def id(self) -> str:
        return self._id

    @property
    def url(self) -> str:
        return self._url

    @property
    def configuration(self) -> AuditConfiguration:
        return self._configuration

    @property
    def status(self) -> str:
        with self._lock:
            return self._status

    @property
    def error(self) -> Optional[str]:
        with self._lock:
            return self._error

    @property
    def expected_results(self) -> Optional[int]:
        with self._lock:
            return self._expected_results

    @property
    def results(self) -> list[AuditResponse]:
        with self._lock:
            return copy.deepcopy(self._results)

    def set_expected_results(self, expected: int) -> None:
        with self._lock:
            self._expected_results = expected

    def append_result(self, response: AuditResponse) -> bool:
        """Appends a scenario result; refused once the record left ``running``."""
        with self._lock:
            if self._status != STATUS_RUNNING:
                return False
            if self._expected_results is not None and len(self._results) >= self._expected_results:
                return False
            self._results.append(response)
            return True

    def baseline(self) -> Optional[AuditResponse]:
        with self._lock:
            return copy.deepcopy(self._results[0]) if self._results else None

    def request_cancel(self) -> bool:
        with self._lock:
            if self._status != STATUS_RUNNING:
                return False
            self._status = STATUS_CANCELED
            return True

    def fail(self, message: str) -> bool:
        with self._lock:
            if self._status in TERMINAL_STATUSES:
                return False
            self._status = STATUS_ERROR
            self._error = message
            return True

    def complete(self) -> bool:
        with self._lock:
            if self._status != STATUS_RUNNING:
                return False
            self._status = STATUS_COMPLETE
            return True

    def snapshot(self) -> "ExecutionRecord":
        with self._lock:
            clone = ExecutionRecord(self._url, self._configuration, execution_id=self._id)
            clone._status = self._status
            clone._results = copy.deepcopy(self._results)
            clone._error = self._error
            clone._expected_results = self._expected_results
            clone.created_at = self.created_at
            return clone

    def to_dict(self) -> dict[str, Any]:
        with self._lock:
            data: dict[str, Any] = {
                "id": self._id,
                "url": self._url,
                "status": self._status,
                "createdAt": self.created_at,
                "expectedResults": self._expected_results,
                "results": [r.to_dict() for r in self._results],
                "userAgentOverride": self._configuration.user_agent,
                "maxUrlsToTry": self._configuration.max_urls_to_try,
                "numberOfReports": self._configuration.number_of_reports,
                "blockAll": self._configuration.block_all,
                "device": self._configuration.device,
                "network": self._configuration.network,
            }
            if self._configuration.block_specific_urls:
                data["blockSpecificUrls"] = list(self._configuration.block_specific_urls)
            if self._error:
                data["error"] = self._error
            return data

    def __repr__(self) -> str:
        return f"ExecutionRecord(id={self._id!r}, url={self._url!r}, status={self.status!r})"
