from __future__ import annotations

import threading
from typing import Callable, Dict, List, Optional

import pytest

from campaign_qa.agent_client import AgentRun, AgentTranscript
from campaign_qa.models import CampaignElement


class FakeAgent:
    """Agent double that replays a canned transcript."""

    def __init__(
        self,
        text: str = "",
        *,
        steps: Optional[List[str]] = None,
        screenshots: Optional[Dict[str, str]] = None,
        block: Optional[threading.Event] = None,
        completed: bool = True,
    ) -> None:
        self.text = text
        self.steps = steps or []
        self.screenshots = screenshots or {}
        self.block = block
        self.completed = completed
        self.calls: List[dict] = []

    def execute(self, instruction, *, system_instructions, elements=()):
        self.calls.append(
            {
                "instruction": instruction,
                "system_instructions": system_instructions,
                "elements": list(elements),
            }
        )
        if self.block is not None:
            self.block.wait(timeout=5)
        transcript = AgentTranscript()
        for step in self.steps:
            transcript.add_step(step)
        transcript.set_final_message(self.text)
        return AgentRun(
            transcript=transcript,
            completed=self.completed,
            model_name="fake",
            screenshots=self.screenshots,
        )


class FakeSheetsClient:
    def __init__(self, grid=None, error: Optional[Exception] = None) -> None:
        self.grid = grid or []
        self.error = error
        self.requests: List[tuple] = []
        self.written: List[list] = []

    def fetch_grid(self, source, sheet_name=None):
        self.requests.append((source, sheet_name))
        if self.error is not None:
            raise self.error
        return self.grid

    def write_report(self, values):
        self.written.append([list(row) for row in values])


@pytest.fixture
def make_element() -> Callable[..., CampaignElement]:
    def _make(
        index: int,
        label: str,
        expected_value: str = "value",
        category: Optional[str] = None,
    ) -> CampaignElement:
        return CampaignElement(
            id=f"element-{index}",
            label=label,
            expected_value=expected_value,
            category=category,
        )

    return _make


@pytest.fixture
def fake_agent() -> Callable[..., FakeAgent]:
    return FakeAgent


@pytest.fixture
def fake_sheets() -> Callable[..., FakeSheetsClient]:
    return FakeSheetsClient
