"""
metrics.py - Scenario sample conversion, averaging and baseline comparison.

Usage:
    response = to_response(raw_sample, blocked_label="https://cdn.example/tag.js")
    averaged = average([response_1, response_2])
    averaged.delta_baseline = compare_to_baseline(averaged, baseline)
"""

from __future__ import annotations

import math
from typing import Optional

from errors import EmptyInputError, MeasurementBlockedError
from execution import AuditResponse, Scores, new_id
from measurement_driver import PAINT_ERROR, RawSample

# Metrics reported with two decimals; the rest are whole numbers.
DECIMAL_METRICS = ("LCP", "FCP", "CLS")
INTEGER_METRICS = ("TBT", "consoleErrors")
DELTA_METRICS = ("LCP", "FCP", "CLS", "TBT")


def _round(value: float, digits: int = 0) -> float:
    # half-up, so 2.125 s is reported as 2.13 s
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


def to_response(sample: RawSample, blocked_label: str) -> AuditResponse:
    """
    Turns one raw driver sample into an AuditResponse.
    Raises MeasurementBlockedError when the driver saw no first paint.
    """
    if sample.paint_status == PAINT_ERROR:
        raise MeasurementBlockedError(
            "The measurement did not return any paint metrics. The request may be blocked."
        )
    return AuditResponse(
        id=new_id(),
        blocked_url=blocked_label,
        scores=Scores(
            LCP=float(sample.lcp),
            FCP=float(sample.fcp),
            CLS=float(sample.cls),
            TBT=int(round(sample.tbt)),
            consoleErrors=int(sample.console_errors),
        ),
        report_url=sample.report_url,
        screenshot=sample.screenshot,
    )


def average(samples: list[AuditResponse]) -> AuditResponse:
    """Averages repeated samples of the same scenario into one response."""
    if not samples:
        raise EmptyInputError("Cannot average an empty list of samples")

    count = len(samples)
    totals = {
        name: sum(getattr(s.scores, name) for s in samples)
        for name in DECIMAL_METRICS + INTEGER_METRICS
    }
    scores = Scores(
        LCP=_round(totals["LCP"] / count, 2),
        FCP=_round(totals["FCP"] / count, 2),
        CLS=_round(totals["CLS"] / count, 2),
        TBT=int(_round(totals["TBT"] / count)),
        consoleErrors=int(_round(totals["consoleErrors"] / count)),
    )
    first = samples[0]
    return AuditResponse(
        id=first.id,
        blocked_url=first.blocked_url,
        scores=scores,
        report_url=first.report_url,
        screenshot=first.screenshot,
    )


def compare_to_baseline(result: AuditResponse, baseline: Optional[AuditResponse]) -> Optional[dict[str, float]]:
    """
    Percent improvement of each metric over the baseline run.
    Positive numbers mean the blocked scenario was faster / more stable.
    Metrics whose baseline value is zero are left out.
    """
    if baseline is None or baseline.id == result.id:
        return None
    delta: dict[str, float] = {}
    for name in DELTA_METRICS:
        base_value = getattr(baseline.scores, name)
        if not base_value:
            continue
        value = getattr(result.scores, name)
        delta[name] = _round(100 - value / (base_value / 100), 2)
    return delta
