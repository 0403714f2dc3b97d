from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from .agent_client import AgentRun, AutomationAgent
from .categories import categorize_elements
from .config import QAConfig
from .errors import AgentTimeoutError, SourceAccessError
from .google_sheets import GoogleSheetsClient
from .grid_parser import parse_campaign_grid
from .models import CATEGORIES, CampaignElement, QAReport
from .prompt_builder import (
    PARSING_INSTRUCTIONS,
    QA_INSTRUCTIONS,
    build_parse_instruction,
    build_qa_instruction,
)
from .reconciler import find_json_list, reconcile_verdicts
from .summary import aggregate

LOGGER = logging.getLogger("campaign_qa.pipeline")

METHOD_SHEETS_API = "google-sheets-api"
METHOD_AGENT = "agent"

REPORT_HEADER = [
    "Element ID",
    "Label",
    "Category",
    "Expected Value",
    "Actual Value",
    "Status",
    "Confidence",
    "Notes",
    "Screenshot",
    "Checked At",
]


@dataclass(slots=True)
class ExtractionOutcome:
    elements: List[CampaignElement]
    method: str


def _run_with_timeout(func: Callable[..., Any], timeout: float, *args: Any, **kwargs: Any) -> Any:
    """Run ``func`` in a daemon thread and give up after ``timeout`` seconds.

    A timed-out call is abandoned; the daemon thread never delays interpreter exit.
    """

    outcome: Dict[str, Any] = {}

    def _target() -> None:
        try:
            outcome["result"] = func(*args, **kwargs)
        except BaseException as exc:  # re-raised in the calling thread
            outcome["error"] = exc

    worker = threading.Thread(target=_target, name="campaign-qa-agent", daemon=True)
    worker.start()
    worker.join(timeout)
    if worker.is_alive():
        raise AgentTimeoutError(f"Agent run timed out after {timeout} seconds")
    if "error" in outcome:
        raise outcome["error"]
    return outcome["result"]


def parse_agent_elements(text: str) -> List[CampaignElement]:
    """Read the ``{"elements": [...]}`` payload an extraction agent returns."""

    entries = find_json_list(text or "", "elements")
    if entries is None:
        if not (text or "").strip():
            return []
        LOGGER.warning("Agent extraction output has no elements payload; keeping raw text")
        return [
            CampaignElement(
                id="raw-result",
                category="other",
                label="Raw Extraction Result",
                expected_value=text.strip(),
            )
        ]

    elements: List[CampaignElement] = []
    seen_ids: set[str] = set()
    for index, entry in enumerate(entries, start=1):
        if not isinstance(entry, dict):
            continue
        element_id = str(entry.get("id") or f"element-{index}")
        if element_id in seen_ids:
            LOGGER.debug("Duplicate element id '%s' from agent ignored", element_id)
            continue
        seen_ids.add(element_id)
        category = str(entry.get("category") or "other").strip().lower()
        xpath = entry.get("xpath")
        elements.append(
            CampaignElement(
                id=element_id,
                category=category if category in CATEGORIES else "other",
                label=str(entry.get("label") or "Unknown Element").strip(),
                expected_value=str(entry.get("expectedValue") or "").strip(),
                xpath=str(xpath) if xpath else None,
            )
        )
    return elements


def extract_elements(
    source: str,
    sheets_client: GoogleSheetsClient,
    agent: Optional[AutomationAgent] = None,
    *,
    sheet_name: str | None = None,
    categorize: bool = False,
    parse_timeout: float = 300,
) -> ExtractionOutcome:
    """Build the element catalog, falling back to the agent when the API is unreachable."""

    try:
        LOGGER.info("Attempting Google Sheets API parsing for %s", source)
        grid = sheets_client.fetch_grid(source, sheet_name)
        elements = parse_campaign_grid(grid)
        method = METHOD_SHEETS_API
    except SourceAccessError as exc:
        if agent is None:
            raise
        LOGGER.warning("Google Sheets API failed (%s); falling back to agent extraction", exc)
        run: AgentRun = _run_with_timeout(
            agent.execute,
            parse_timeout,
            build_parse_instruction(source),
            system_instructions=PARSING_INSTRUCTIONS,
        )
        elements = parse_agent_elements(run.text)
        method = METHOD_AGENT

    if categorize:
        elements = categorize_elements(elements)

    LOGGER.info("Found %s campaign elements via %s", len(elements), method)
    return ExtractionOutcome(elements=elements, method=method)


def select_elements(
    elements: Sequence[CampaignElement],
    ids: Iterable[str] | None = None,
) -> List[CampaignElement]:
    """Mark the chosen elements as selected and return them in catalog order."""

    if ids is None:
        wanted = {element.id for element in elements}
    else:
        wanted = {item.strip() for item in ids if item.strip()}
        known = {element.id for element in elements}
        unknown = sorted(wanted - known)
        if unknown:
            raise ValueError(f"Unknown element ids: {', '.join(unknown)}")

    selected: List[CampaignElement] = []
    for element in elements:
        element.selected = element.id in wanted
        if element.selected:
            selected.append(element)
    return selected


def run_qa(
    qa_url: str,
    elements: Sequence[CampaignElement],
    agent: AutomationAgent,
    qa_conf: QAConfig,
    *,
    timeout_seconds: float = 600,
) -> QAReport:
    """Validate the elements on the QA URL and reconcile the agent's findings."""

    if not elements:
        raise ValueError("No campaign elements selected for QA")

    elements = list(elements)
    LOGGER.info("Starting QA validation of %s elements on %s", len(elements), qa_url)
    run: AgentRun = _run_with_timeout(
        agent.execute,
        timeout_seconds,
        build_qa_instruction(qa_url, elements),
        system_instructions=QA_INSTRUCTIONS,
        elements=elements,
    )
    if not run.completed:
        LOGGER.warning("Agent reported an incomplete run; reconciling the output it produced")

    results = reconcile_verdicts(run.text, elements, context_window=qa_conf.context_window)
    for result in results:
        if result.screenshot is None:
            result.screenshot = run.screenshots.get(result.element.id)

    report = aggregate(
        results,
        critical_categories=qa_conf.critical_categories,
        failure_threshold=qa_conf.failure_threshold,
    )
    LOGGER.info(
        "QA completed: %s passed, %s failed, %s warnings; overall %s",
        report.summary.passed,
        report.summary.failed,
        report.summary.warnings,
        report.overall_status,
    )
    return report


def report_to_rows(report: QAReport, *, include_header: bool = True) -> List[List[str]]:
    rows: List[List[str]] = []
    if include_header:
        rows.append(list(REPORT_HEADER))
    for result in report.results:
        element = result.element
        rows.append(
            [
                element.id,
                element.label,
                element.category or "",
                element.expected_value,
                result.actual_value,
                result.status,
                str(result.confidence),
                result.notes or "",
                result.screenshot or "",
                result.timestamp,
            ]
        )
    summary = report.summary
    rows.append([])
    rows.append(["Overall Status", report.overall_status])
    rows.append(["Total", str(summary.total)])
    rows.append(["Passed", str(summary.passed)])
    rows.append(["Failed", str(summary.failed)])
    rows.append(["Warnings", str(summary.warnings)])
    return rows
