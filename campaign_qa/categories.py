from __future__ import annotations

from typing import Iterable, List

from .models import CampaignElement

# Ordered; the first matching group wins.
_CATEGORY_RULES = (
    ("budget", ("budget", "cost", "price", "bid")),
    ("targeting", ("target", "audience", "demo", "geo")),
    ("creative", ("creative", "ad", "banner", "image")),
    ("dates", ("date", "start", "end", "schedule")),
    ("placement", ("placement", "site", "inventory")),
)


def classify_category(label: str) -> str:
    """Map a field label to a coarse campaign category."""

    name = label.lower()
    for category, keywords in _CATEGORY_RULES:
        if any(keyword in name for keyword in keywords):
            return category
    return "other"


def categorize_elements(elements: Iterable[CampaignElement]) -> List[CampaignElement]:
    """Return copies of the elements with a category filled in where missing."""

    return [
        element if element.category else element.with_category(classify_category(element.label))
        for element in elements
    ]
