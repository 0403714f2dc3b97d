from __future__ import annotations

import argparse
import json
import logging
import re
import sys
from pathlib import Path
from typing import Any, List, Sequence

from dotenv import load_dotenv

from .agent_client import LLMAgentClient
from .categories import categorize_elements
from .config import AppConfig, load_config
from .errors import AgentError, CampaignQAError
from .google_sheets import GoogleSheetsClient
from .models import STATUS_FAIL, CampaignElement, make_custom_element
from .pipeline import extract_elements, report_to_rows, run_qa, select_elements


def _load_env_files(config_path: Path) -> None:
    """Load environment variables from .env files."""

    # Load default .env in current working directory if present
    load_dotenv(override=False)

    # Load .env placed next to the config file if it exists
    config_env = config_path.parent / ".env"
    if config_env.exists():
        load_dotenv(dotenv_path=config_env, override=False)


LOGGER = logging.getLogger("campaign_qa")

_CUSTOM_ID_PATTERN = re.compile(r"custom-(\d+)")


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", required=True, help="Path to the YAML configuration file")
    common.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    common.add_argument(
        "--output",
        default=None,
        help="Write JSON output to this file instead of stdout",
    )

    parser = argparse.ArgumentParser(
        description="Extract campaign elements from a media plan and QA them on a DSP"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    parse_cmd = subparsers.add_parser(
        "parse", parents=[common], help="Extract campaign elements from a sheet"
    )
    parse_cmd.add_argument("--source", required=True, help="Google Sheets URL or spreadsheet id")
    parse_cmd.add_argument("--sheet", default=None, help="Tab name to read")
    parse_cmd.add_argument(
        "--categorize",
        action="store_true",
        help="Assign a category to every extracted element",
    )

    qa_cmd = subparsers.add_parser(
        "qa", parents=[common], help="Validate campaign elements against the QA URL"
    )
    qa_cmd.add_argument("--qa-url", required=True, help="Platform page to validate against")
    source_group = qa_cmd.add_mutually_exclusive_group(required=True)
    source_group.add_argument("--source", help="Google Sheets URL or spreadsheet id")
    source_group.add_argument(
        "--elements",
        help="JSON file with previously extracted elements",
    )
    qa_cmd.add_argument("--sheet", default=None, help="Tab name to read")
    qa_cmd.add_argument(
        "--select",
        default=None,
        help="Comma separated element ids to validate (default: all)",
    )
    qa_cmd.add_argument(
        "--add",
        action="append",
        default=None,
        metavar="LABEL=VALUE",
        help="Extra element to validate; may be repeated",
    )
    qa_cmd.add_argument(
        "--dry-run",
        action="store_true",
        help="Do not write results to the report sheet",
    )
    return parser.parse_args(argv)


def _load_elements_file(path: str) -> List[CampaignElement]:
    with Path(path).expanduser().open("r", encoding="utf-8") as fh:
        data = json.load(fh)
    if isinstance(data, dict):
        data = data.get("elements", [])
    if not isinstance(data, list):
        raise ValueError(f"Elements file must contain a list of elements: {path}")
    elements: List[CampaignElement] = []
    for index, item in enumerate(data, start=1):
        try:
            elements.append(CampaignElement.from_dict(item))
        except ValueError as exc:
            raise ValueError(f"{path}: entry {index}: {exc}") from exc
    return elements


def _custom_elements(
    items: Sequence[str] | None,
    existing: Sequence[CampaignElement],
    categorize: bool,
) -> List[CampaignElement]:
    # Numbering continues after custom ids already in the catalog.
    taken = [
        int(match.group(1))
        for match in (_CUSTOM_ID_PATTERN.fullmatch(element.id) for element in existing)
        if match
    ]
    elements: List[CampaignElement] = []
    for sequence, item in enumerate(items or [], start=max(taken, default=0) + 1):
        label, sep, value = item.partition("=")
        if not sep or not label.strip():
            raise ValueError(f"Extra element must look like LABEL=VALUE: {item!r}")
        elements.append(make_custom_element(sequence, label, value))
    return categorize_elements(elements) if categorize else elements


def _emit_json(payload: Any, output: str | None) -> None:
    text = json.dumps(payload, ensure_ascii=False, indent=2)
    if output:
        output_path = Path(output).expanduser()
        output_path.write_text(text + "\n", encoding="utf-8")
        LOGGER.info("Wrote output to %s", output_path)
    else:
        print(text)


def _optional_agent(config: AppConfig) -> LLMAgentClient | None:
    try:
        return LLMAgentClient(config.agent)
    except AgentError as exc:
        LOGGER.warning("Agent fallback unavailable: %s", exc)
        return None


def _cmd_parse(args: argparse.Namespace, config: AppConfig) -> int:
    sheets_client = GoogleSheetsClient(config.sheets)
    outcome = extract_elements(
        args.source,
        sheets_client,
        _optional_agent(config),
        sheet_name=args.sheet,
        categorize=args.categorize or config.qa.categorize,
        parse_timeout=config.agent.parse_timeout_seconds,
    )
    _emit_json(
        {
            "success": True,
            "method": outcome.method,
            "message": f"Found {len(outcome.elements)} campaign elements",
            "elements": [element.to_dict() for element in outcome.elements],
        },
        args.output,
    )
    return 0


def _cmd_qa(args: argparse.Namespace, config: AppConfig) -> int:
    sheets_client = GoogleSheetsClient(config.sheets)
    agent = LLMAgentClient(config.agent)

    if args.elements:
        elements = _load_elements_file(args.elements)
    else:
        elements = extract_elements(
            args.source,
            sheets_client,
            agent,
            sheet_name=args.sheet,
            categorize=config.qa.categorize,
            parse_timeout=config.agent.parse_timeout_seconds,
        ).elements

    ids = args.select.split(",") if args.select else None
    selected = select_elements(elements, ids)
    selected += _custom_elements(args.add, elements, config.qa.categorize)
    if not selected:
        LOGGER.warning("No campaign elements to validate")
        return 0

    report = run_qa(
        args.qa_url,
        selected,
        agent,
        config.qa,
        timeout_seconds=config.agent.timeout_seconds,
    )

    if args.dry_run:
        LOGGER.info("Dry run enabled; report sheet not updated")
    elif config.sheets.has_report_target:
        LOGGER.info("Writing %s result rows to report sheet", len(report.results))
        sheets_client.write_report(report_to_rows(report))

    _emit_json(report.to_dict(), args.output)
    return 1 if report.overall_status == STATUS_FAIL else 0


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    config_path = Path(args.config).expanduser().resolve()
    _load_env_files(config_path)

    try:
        config = load_config(config_path)
        if args.command == "parse":
            return _cmd_parse(args, config)
        return _cmd_qa(args, config)
    except (CampaignQAError, ValueError, FileNotFoundError) as exc:
        LOGGER.error("%s", exc)
        return 2


def run() -> None:
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("Interrupted", file=sys.stderr)
        sys.exit(130)


if __name__ == "__main__":
    run()
