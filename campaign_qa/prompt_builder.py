from __future__ import annotations

from textwrap import dedent
from typing import Sequence

from .models import CampaignElement

QA_INSTRUCTIONS = dedent(
    """
    You are a campaign QA specialist. Your task is to validate campaign elements against
    a DSP platform.

    VALIDATION PROCESS:
    1. Navigate to the provided QA URL
    2. For each campaign element, locate the corresponding field/value on the page
    3. Compare actual vs expected values
    4. Take screenshots when discrepancies are found or confidence is low
    5. Document findings with confidence levels

    VALIDATION RULES:
    - Exact match for critical values (budgets, dates): PASS with 100% confidence
    - Fuzzy match for text content (allowing for formatting differences): PASS with 85-95% confidence
    - Range validation for numerical targets: PASS/WARNING based on tolerance
    - Presence validation for required elements: PASS if found, FAIL if missing

    CONFIDENCE SCORING:
    - 100%: Exact match found
    - 85-95%: Close match (minor formatting differences)
    - 60-80%: Partial match or within acceptable range
    - 30-60%: Questionable match, needs review
    - 0-30%: No match or significant discrepancy
    - 0%: Element not found on page

    RESULT FORMAT:
    After completing all validations, provide your results in JSON format only.
    Do not include any other text before or after the JSON.

    Use this exact JSON structure:

    {
      "validationResults": [
        {
          "elementId": "element-1",
          "elementLabel": "Line Name",
          "expectedValue": "Spring Sports Line",
          "actualValue": "Spring Sports Line",
          "status": "PASS",
          "confidence": 100,
          "notes": "Exact match found"
        }
      ],
      "summary": {
        "totalElements": 1,
        "passed": 1,
        "failed": 0,
        "warnings": 0,
        "overallStatus": "PASS"
      }
    }

    IMPORTANT:
    - Only output valid JSON, no additional text
    - Include every requested element in the validationResults array
    - Use the exact elementId values provided
    - Status must be exactly "PASS", "FAIL", or "WARNING"
    - Confidence must be an integer 0-100
    - Provide a clean actualValue without "Expected:" text

    Work systematically through each element. Be thorough but efficient.
    """
).strip()

PARSING_INSTRUCTIONS = dedent(
    """
    You are a campaign data extraction specialist. Your task is to:

    1. Navigate to the provided Google Sheets URL
    2. Identify and extract ALL campaign-related information
    3. Categorize each element (budget, targeting, creative, dates, etc.)
    4. Return structured data for user selection

    Extraction Rules:
    - Look for numerical values (budgets, bids, quantities)
    - Identify date ranges and schedules
    - Extract targeting criteria (demographics, geo, interests)
    - Find creative specifications and requirements
    - Note any special instructions or constraints

    Be thorough but avoid duplicates. If you see the same information in multiple
    cells, only extract it once.

    After extracting all elements, provide a JSON response with the following structure:
    {
      "elements": [
        {
          "id": "unique-id",
          "category": "budget|targeting|creative|dates|placement|other",
          "label": "Human readable label",
          "expectedValue": "The value found",
          "selected": false
        }
      ]
    }
    """
).strip()


def format_element_manifest(elements: Sequence[CampaignElement]) -> str:
    blocks = []
    for index, element in enumerate(elements, start=1):
        blocks.append(
            f"{index}. {element.label} (Category: {element.category or 'other'})\n"
            f'   Expected Value: "{element.expected_value}"\n'
            f"   Element ID: {element.id}"
        )
    return "\n\n".join(blocks)


def build_qa_instruction(qa_url: str, elements: Sequence[CampaignElement]) -> str:
    """Compose the per-run instruction listing every element to validate."""

    return (
        f"Navigate to {qa_url} and validate the following {len(elements)} campaign elements:\n\n"
        f"{format_element_manifest(elements)}\n\n"
        "For each element:\n"
        "1. Locate the corresponding field/value on the page\n"
        "2. Compare actual vs expected value\n"
        "3. Determine status (PASS/FAIL/WARNING) and confidence (0-100)\n"
        "4. Take screenshot if confidence < 80% or status is FAIL\n"
        "5. Provide clear notes explaining your findings\n\n"
        "After validating all elements, provide a summary with:\n"
        "- Total elements checked\n"
        "- Number passed/failed/warnings\n"
        "- Overall assessment (PASS/FAIL)\n"
        "- Any critical issues found\n\n"
        "Work through each element systematically and be thorough in your validation."
    )


def build_parse_instruction(source_url: str) -> str:
    return (
        f"Navigate to {source_url} and extract all campaign elements. "
        "Return the results as JSON in the specified format."
    )
