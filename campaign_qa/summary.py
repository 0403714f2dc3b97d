from __future__ import annotations

from typing import Collection, Sequence

from .models import (
    STATUS_FAIL,
    STATUS_PASS,
    STATUS_WARNING,
    QAReport,
    QAResult,
    QASummary,
)

DEFAULT_CRITICAL_CATEGORIES = ("budget", "dates")
DEFAULT_FAILURE_THRESHOLD = 0.2


def summarize(results: Sequence[QAResult]) -> QASummary:
    return QASummary(
        total=len(results),
        passed=sum(1 for result in results if result.status == STATUS_PASS),
        failed=sum(1 for result in results if result.status == STATUS_FAIL),
        warnings=sum(1 for result in results if result.status == STATUS_WARNING),
    )


def determine_overall_status(
    results: Sequence[QAResult],
    *,
    critical_categories: Collection[str] = DEFAULT_CRITICAL_CATEGORIES,
    failure_threshold: float = DEFAULT_FAILURE_THRESHOLD,
) -> str:
    """FAIL on any critical-category failure or when too many checks failed."""

    failed = [result for result in results if result.status == STATUS_FAIL]
    critical_failures = sum(
        1 for result in failed if result.element.category in critical_categories
    )
    failure_rate = len(failed) / len(results) if results else 0.0
    if critical_failures > 0 or failure_rate > failure_threshold:
        return STATUS_FAIL
    return STATUS_PASS


def aggregate(
    results: Sequence[QAResult],
    *,
    critical_categories: Collection[str] = DEFAULT_CRITICAL_CATEGORIES,
    failure_threshold: float = DEFAULT_FAILURE_THRESHOLD,
) -> QAReport:
    return QAReport(
        results=list(results),
        summary=summarize(results),
        overall_status=determine_overall_status(
            results,
            critical_categories=critical_categories,
            failure_threshold=failure_threshold,
        ),
    )
