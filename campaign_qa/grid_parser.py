from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence

from .errors import MalformedInputError
from .models import CampaignElement

LOGGER = logging.getLogger(__name__)

LAYOUT_KEY_VALUE = "key-value"
LAYOUT_COLUMNAR = "columnar"

FIELD_NUMBER = "number"
FIELD_DATE = "date"
FIELD_ARRAY = "array"
FIELD_STRING = "string"

_HEADER_SCAN_ROWS = 5
_NOISE_VALUES = {"n/a", "none", "-"}

# Ordered; the first matching keyword group decides the type.
_FIELD_TYPE_RULES = (
    (("budget", "cost", "price", "bid"), FIELD_NUMBER),
    (("date", "start", "end", "schedule"), FIELD_DATE),
    (("zip", "target", "audience"), FIELD_ARRAY),
)

Grid = Sequence[Sequence[Any]]


@dataclass(slots=True)
class LayoutDetection:
    layout: str
    header_row: int  # zero-based index of the row holding the headers


@dataclass(slots=True)
class ParsedGrid:
    """Everything learned from one grid snapshot."""

    layout: str
    fields: List[str]
    field_types: Dict[str, str]
    records: List[Dict[str, Any]]
    elements: List[CampaignElement] = field(default_factory=list)


def _cell(row: Sequence[Any] | None, idx: int) -> str:
    if not row or idx >= len(row):
        return ""
    value = row[idx]
    if value is None:
        return ""
    return str(value)


def _is_key_value_header(row: Sequence[Any] | None) -> bool:
    if not row or len(row) < 2:
        return False
    first = _cell(row, 0).strip().lower()
    second = _cell(row, 1).strip().lower()
    if first == "key" and second == "value":
        return True
    return "key" in first and "value" in second


def _is_noise(value: str) -> bool:
    text = value.strip()
    return not text or text.lower() in _NOISE_VALUES


def detect_layout(grid: Grid) -> LayoutDetection:
    """Decide whether the grid is key/value pairs or a header row with records."""

    for idx, row in enumerate(grid[:_HEADER_SCAN_ROWS]):
        if _is_key_value_header(row):
            return LayoutDetection(layout=LAYOUT_KEY_VALUE, header_row=idx)
    return LayoutDetection(layout=LAYOUT_COLUMNAR, header_row=0)


def infer_field_type(field_name: str) -> str:
    name = field_name.lower()
    for keywords, field_type in _FIELD_TYPE_RULES:
        if any(keyword in name for keyword in keywords):
            return field_type
    return FIELD_STRING


def coerce_value(value: str, field_type: str) -> Any:
    """Convert a raw cell into the typed value used for columnar records."""

    if field_type == FIELD_NUMBER:
        try:
            number = float(value.replace(",", "").replace("$", "").strip())
        except ValueError:
            return 0.0
        return 0.0 if math.isnan(number) else number
    if field_type == FIELD_ARRAY:
        return [item.strip() for item in value.split(",") if item.strip()]
    return value


def _parse_key_value(grid: Grid, header_row: int) -> tuple[List[str], Dict[str, str]]:
    fields: List[str] = []
    values: Dict[str, str] = {}
    for row in grid[header_row + 1 :]:
        key = _cell(row, 0).strip()
        if not key or key.lower() == "key":
            continue
        if key in values:
            LOGGER.debug("Duplicate key '%s' ignored; keeping first occurrence", key)
            continue
        fields.append(key)
        values[key] = _cell(row, 1).strip()
    return fields, values


def _parse_columnar(grid: Grid) -> tuple[List[str], Dict[str, str], List[Dict[str, Any]]]:
    header_map: Dict[str, int] = {}
    header = grid[0] or []
    for idx in range(len(header)):
        name = _cell(header, idx).strip()
        if not name:
            continue
        if name in header_map:
            LOGGER.debug("Duplicate header '%s' in column %s ignored", name, idx + 1)
            continue
        header_map[name] = idx

    fields = list(header_map)
    field_types = {name: infer_field_type(name) for name in fields}

    records: List[Dict[str, Any]] = []
    for row in grid[1:]:
        records.append(
            {
                name: coerce_value(_cell(row, idx), field_types[name])
                for name, idx in header_map.items()
            }
        )

    # The first data row is the authoritative sample for the element catalog.
    first_row = grid[1]
    sample = {name: _cell(first_row, idx).strip() for name, idx in header_map.items()}
    return fields, sample, records


def _build_elements(fields: List[str], values: Dict[str, str]) -> List[CampaignElement]:
    elements: List[CampaignElement] = []
    for name in fields:
        value = values.get(name, "").strip()
        if _is_noise(value):
            LOGGER.debug("Skipping field '%s' with empty or placeholder value", name)
            continue
        elements.append(
            CampaignElement(
                id=f"element-{len(elements) + 1}",
                label=name,
                expected_value=value,
            )
        )
    return elements


def parse_grid(grid: Grid) -> ParsedGrid:
    """Parse raw sheet values into fields, typed records and campaign elements."""

    if not grid or len(grid) < 2:
        raise MalformedInputError("Invalid sheet data - no headers or data rows found")

    detection = detect_layout(grid)
    if detection.layout == LAYOUT_KEY_VALUE:
        LOGGER.info("Detected key-value layout (header on row %s)", detection.header_row + 1)
        fields, values = _parse_key_value(grid, detection.header_row)
        field_types = {name: FIELD_STRING for name in fields}
        records: List[Dict[str, Any]] = [dict(values)]
    else:
        LOGGER.info("Using columnar layout with %s data rows", len(grid) - 1)
        fields, values, records = _parse_columnar(grid)
        field_types = {name: infer_field_type(name) for name in fields}
        if len(records) > 1:
            LOGGER.debug(
                "Only the first of %s data rows is used for campaign elements",
                len(records),
            )

    elements = _build_elements(fields, values)
    LOGGER.info("Extracted %s campaign elements from %s fields", len(elements), len(fields))
    return ParsedGrid(
        layout=detection.layout,
        fields=fields,
        field_types=field_types,
        records=records,
        elements=elements,
    )


def parse_campaign_grid(grid: Grid) -> List[CampaignElement]:
    return parse_grid(grid).elements
