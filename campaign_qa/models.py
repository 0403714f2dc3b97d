from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

STATUS_PASS = "PASS"
STATUS_FAIL = "FAIL"
STATUS_WARNING = "WARNING"
VALID_STATUSES = (STATUS_PASS, STATUS_FAIL, STATUS_WARNING)

CATEGORIES = ("budget", "targeting", "creative", "dates", "placement", "other")


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(slots=True)
class CampaignElement:
    """One labeled fact discovered in a campaign planning sheet."""

    id: str
    label: str
    expected_value: str
    category: Optional[str] = None
    selected: bool = False
    xpath: Optional[str] = None

    def with_category(self, category: str) -> "CampaignElement":
        return replace(self, category=category)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "label": self.label,
            "expectedValue": self.expected_value,
            "selected": self.selected,
        }
        if self.category is not None:
            data["category"] = self.category
        if self.xpath is not None:
            data["xpath"] = self.xpath
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CampaignElement":
        if not isinstance(data, dict) or not str(data.get("id") or "").strip():
            raise ValueError("campaign element needs a non-empty 'id'")
        category = data.get("category")
        return cls(
            id=str(data["id"]),
            label=str(data.get("label", "")),
            expected_value=str(data.get("expectedValue", data.get("expected_value", ""))),
            category=str(category) if category else None,
            selected=bool(data.get("selected", False)),
            xpath=data.get("xpath"),
        )


def make_custom_element(
    sequence: int,
    label: str,
    expected_value: str,
    *,
    prefix: str = "custom",
    category: Optional[str] = None,
) -> CampaignElement:
    """Create a user-added element whose id cannot collide with parsed ones."""

    return CampaignElement(
        id=f"{prefix}-{sequence}",
        label=label.strip(),
        expected_value=expected_value.strip(),
        category=category,
        selected=True,
    )


@dataclass(slots=True)
class QAResult:
    """Verdict for a single campaign element after checking the platform."""

    element: CampaignElement
    actual_value: str
    status: str
    confidence: int
    notes: Optional[str] = None
    screenshot: Optional[str] = None
    timestamp: str = field(default_factory=utc_timestamp)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "element": self.element.to_dict(),
            "actualValue": self.actual_value,
            "status": self.status,
            "confidence": self.confidence,
            "timestamp": self.timestamp,
        }
        if self.notes is not None:
            data["notes"] = self.notes
        if self.screenshot is not None:
            data["screenshot"] = self.screenshot
        return data


@dataclass(slots=True, frozen=True)
class QASummary:
    total: int
    passed: int
    failed: int
    warnings: int

    def to_dict(self) -> Dict[str, int]:
        return {
            "total": self.total,
            "passed": self.passed,
            "failed": self.failed,
            "warnings": self.warnings,
        }


@dataclass(slots=True)
class QAReport:
    """Aggregated outcome of one QA run."""

    results: List[QAResult]
    summary: QASummary
    overall_status: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "results": [result.to_dict() for result in self.results],
            "summary": self.summary.to_dict(),
            "overallStatus": self.overall_status,
        }
