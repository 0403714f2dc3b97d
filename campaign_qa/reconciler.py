"""Turn raw automation-agent output into one verdict per requested element.

The agent is not deterministic, so its output is read through a chain of
strategies with decreasing structure assumptions:

1. an embedded JSON payload with a ``validationResults`` array;
2. per-element labeled text blocks (``ELEMENT:``/``STATUS:``/``CONFIDENCE:``);
3. a keyword sniff around the first mention of the element.

Whatever happens, ``reconcile_verdicts`` returns exactly one ``QAResult`` per
requested element, in the order the elements were given.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from .models import (
    STATUS_FAIL,
    STATUS_PASS,
    STATUS_WARNING,
    VALID_STATUSES,
    CampaignElement,
    QAResult,
)

LOGGER = logging.getLogger(__name__)

DEFAULT_CONTEXT_WINDOW = 500

_RESULTS_KEY = "validationResults"
_JSON_DECODER = json.JSONDecoder()

_ACTUAL_PATTERNS = (
    re.compile(r"ACTUAL:\s*([^\n\r]+)", re.IGNORECASE),
    re.compile(r'Actual value found:\s*"([^"]+)"', re.IGNORECASE),
    re.compile(r'On page:.*?"([^"]+)"', re.IGNORECASE),
    re.compile(r'Actual\s+"([^"]+)"', re.IGNORECASE),
)
_STATUS_PATTERN = re.compile(r"STATUS:\s*(PASS|FAIL|WARNING)", re.IGNORECASE)
_CONFIDENCE_PATTERN = re.compile(r"CONFIDENCE:\s*(\d+)%?", re.IGNORECASE)
_NOTES_PATTERN = re.compile(r"NOTES:\s*([^\n\r]+)", re.IGNORECASE)


@dataclass(slots=True)
class PartialVerdict:
    """Fields a strategy managed to extract; ``None`` keeps the default."""

    actual_value: Optional[str] = None
    status: Optional[str] = None
    confidence: Optional[int] = None
    notes: Optional[str] = None
    screenshot: Optional[str] = None

    def is_empty(self) -> bool:
        return (
            self.actual_value is None
            and self.status is None
            and self.confidence is None
            and self.notes is None
        )


_UNCLEAR = PartialVerdict(
    actual_value="Unable to determine",
    status=STATUS_WARNING,
    confidence=50,
    notes="QA validation completed but specific result unclear",
)
_MISSING_FROM_JSON = PartialVerdict(
    actual_value="Not found",
    status=STATUS_WARNING,
    confidence=0,
    notes="Element missing from validation results",
)
_PROCESSING_ERROR = PartialVerdict(
    actual_value="Processing error",
    status=STATUS_WARNING,
    confidence=0,
    notes="Error occurred during result processing",
)


def _build_result(
    element: CampaignElement,
    verdict: PartialVerdict,
    defaults: PartialVerdict = _UNCLEAR,
) -> QAResult:
    def _pick(value: Any, fallback: Any) -> Any:
        return fallback if value is None else value

    return QAResult(
        element=element,
        actual_value=_pick(verdict.actual_value, defaults.actual_value),
        status=_pick(verdict.status, defaults.status),
        confidence=_pick(verdict.confidence, defaults.confidence),
        notes=_pick(verdict.notes, defaults.notes),
        screenshot=verdict.screenshot,
    )


def _text_or(value: Any, default: str) -> str:
    if value is None:
        return default
    text = str(value).strip()
    return text or default


def _normalize_status(value: Any) -> str:
    text = str(value or "").strip().upper()
    return text if text in VALID_STATUSES else STATUS_WARNING


def _normalize_confidence(value: Any, default: int) -> int:
    if value is None or isinstance(value, bool):
        return default
    try:
        number = int(round(float(str(value).strip().rstrip("%"))))
    except (TypeError, ValueError, OverflowError):
        return default
    return max(0, min(100, number))


# Strategy 1 --------------------------------------------------------------------
def find_json_list(text: str, key: str) -> Optional[List[Any]]:
    """Return the list under ``key`` of the first embedded JSON object holding one."""

    last_key = text.rfind(f'"{key}"')
    if last_key == -1:
        return None

    for match in re.finditer(r"\{", text[:last_key]):
        try:
            payload, _ = _JSON_DECODER.raw_decode(text, match.start())
        except json.JSONDecodeError:
            continue
        if isinstance(payload, dict) and isinstance(payload.get(key), list):
            return payload[key]
    return None


def find_validation_payload(text: str) -> Optional[List[Any]]:
    return find_json_list(text, _RESULTS_KEY)


def json_strategy(
    text: str,
    elements: Sequence[CampaignElement],
) -> Optional[Dict[str, PartialVerdict]]:
    """Map JSON entries to requested elements by ``elementId``."""

    entries = find_validation_payload(text)
    if entries is None:
        return None

    known_ids = {element.id for element in elements}
    verdicts: Dict[str, PartialVerdict] = {}
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        element_id = entry.get("elementId")
        if element_id is None:
            continue
        element_id = str(element_id)
        if element_id not in known_ids:
            LOGGER.debug("Ignoring result for unknown element '%s'", element_id)
            continue
        if element_id in verdicts:
            continue
        screenshot = entry.get("screenshot")
        verdicts[element_id] = PartialVerdict(
            actual_value=_text_or(entry.get("actualValue"), "Not found"),
            status=_normalize_status(entry.get("status")),
            confidence=_normalize_confidence(entry.get("confidence"), 50),
            notes=_text_or(entry.get("notes"), "No notes provided"),
            screenshot=screenshot if isinstance(screenshot, str) and screenshot else None,
        )

    return verdicts or None


# Strategy 2 --------------------------------------------------------------------
def find_element_block(
    text: str,
    element: CampaignElement,
    next_label: Optional[str] = None,
) -> Optional[str]:
    """Return the longest text block anchored on the element's label."""

    label = re.escape(element.label)
    terminator = re.escape(next_label) if next_label else "END"
    patterns = (
        re.compile(rf"ELEMENT:\s*{label}[\s\S]*?(?=ELEMENT:|\Z)", re.IGNORECASE),
        re.compile(rf"{label}[\s\S]*?(?=ELEMENT:|{terminator}|\Z)", re.IGNORECASE),
    )

    block = ""
    for pattern in patterns:
        match = pattern.search(text)
        if match and len(match.group(0)) > len(block):
            block = match.group(0)
    return block or None


def parse_element_block(block: str) -> PartialVerdict:
    verdict = PartialVerdict()

    for pattern in _ACTUAL_PATTERNS:
        match = pattern.search(block)
        if match:
            verdict.actual_value = match.group(1).strip()
            break

    status_match = _STATUS_PATTERN.search(block)
    if status_match:
        verdict.status = status_match.group(1).upper()

    confidence_match = _CONFIDENCE_PATTERN.search(block)
    if confidence_match:
        verdict.confidence = min(100, int(confidence_match.group(1)))

    notes_match = _NOTES_PATTERN.search(block)
    if notes_match:
        verdict.notes = notes_match.group(1).strip()

    return verdict


def block_strategy(
    text: str,
    element: CampaignElement,
    next_label: Optional[str] = None,
) -> Optional[PartialVerdict]:
    block = find_element_block(text, element, next_label)
    if block is None:
        return None
    LOGGER.debug("Found block for '%s': %s", element.label, block[:200])
    return parse_element_block(block)


# Strategy 3 --------------------------------------------------------------------
def keyword_strategy(
    text: str,
    element: CampaignElement,
    window: int = DEFAULT_CONTEXT_WINDOW,
) -> Optional[PartialVerdict]:
    """Classify the text right after the first mention of the element."""

    haystack = text.lower()
    start = -1
    for needle in (element.label, element.expected_value):
        needle = needle.strip().lower()
        if needle:
            start = haystack.find(needle)
            if start != -1:
                break
    if start == -1:
        return None

    context = haystack[start : start + window]
    if "pass" in context:
        return PartialVerdict(
            actual_value="Found and validated",
            status=STATUS_PASS,
            confidence=75,
            notes="Element found and appears to match expected value",
        )
    if "fail" in context:
        return PartialVerdict(
            actual_value="Found but does not match",
            status=STATUS_FAIL,
            confidence=25,
            notes="Element found but validation failed",
        )
    return None


# Pipeline ----------------------------------------------------------------------
def _reconcile(
    text: str,
    elements: Sequence[CampaignElement],
    context_window: int,
) -> List[QAResult]:
    json_verdicts = json_strategy(text, elements)
    if json_verdicts is not None:
        LOGGER.info(
            "Parsed JSON validation results for %s of %s elements",
            len(json_verdicts),
            len(elements),
        )
        results = []
        for element in elements:
            verdict = json_verdicts.get(element.id)
            if verdict is None:
                results.append(_build_result(element, PartialVerdict(), _MISSING_FROM_JSON))
            else:
                results.append(_build_result(element, verdict))
        return results

    LOGGER.info("No JSON validation results found; using text block parsing")
    results = []
    for index, element in enumerate(elements):
        next_label = elements[index + 1].label if index + 1 < len(elements) else None
        verdict = block_strategy(text, element, next_label)
        if verdict is None:
            verdict = keyword_strategy(text, element, context_window) or PartialVerdict()
        result = _build_result(element, verdict)
        LOGGER.debug(
            "Result for '%s': status=%s confidence=%s actual=%s",
            element.label,
            result.status,
            result.confidence,
            result.actual_value[:50],
        )
        results.append(result)
    return results


def reconcile_verdicts(
    raw_output: str | None,
    elements: Sequence[CampaignElement],
    *,
    context_window: int = DEFAULT_CONTEXT_WINDOW,
) -> List[QAResult]:
    """Extract one verdict per element from raw agent output; never raises."""

    elements = list(elements)
    try:
        text = "" if raw_output is None else raw_output
        return _reconcile(text, elements, context_window)
    except Exception:
        LOGGER.exception("Error processing QA results; marking all elements as warnings")
        return [_build_result(element, PartialVerdict(), _PROCESSING_ERROR) for element in elements]
