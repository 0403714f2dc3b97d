import json
from textwrap import dedent

import pytest

from campaign_qa import main as cli

from conftest import FakeAgent, FakeSheetsClient

CONFIG = dedent(
    """
    sheets:
      api_key: test-key
      report_spreadsheet_id: report-sheet
      report_sheet_name: QA Results
    agent:
      providers:
        1:
          model: test-model
          api_key: test-key
    qa:
      categorize: true
    """
)

GRID = [["Key", "Value"], ["Budget", "5000"], ["Start Date", "2024-03-01"]]


@pytest.fixture
def cli_env(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    config_path = tmp_path / "config.yaml"
    config_path.write_text(CONFIG, encoding="utf-8")

    doubles = {"sheets": FakeSheetsClient(GRID), "agent": FakeAgent("")}
    monkeypatch.setattr(cli, "GoogleSheetsClient", lambda conf: doubles["sheets"])
    monkeypatch.setattr(cli, "LLMAgentClient", lambda conf: doubles["agent"])
    return config_path, doubles


def _validation_output(*verdicts):
    return json.dumps(
        {
            "validationResults": [
                {"elementId": element_id, "status": status, "confidence": 90}
                for element_id, status in verdicts
            ]
        }
    )


def test_parse_command_prints_elements(cli_env, capsys):
    config_path, _ = cli_env

    exit_code = cli.main(["parse", "--config", str(config_path), "--source", "sheet-url"])

    assert exit_code == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["success"] is True
    assert payload["method"] == "google-sheets-api"
    assert payload["message"] == "Found 2 campaign elements"
    assert [(e["id"], e["category"]) for e in payload["elements"]] == [
        ("element-1", "budget"),
        ("element-2", "dates"),
    ]


def test_parse_command_writes_output_file(cli_env, tmp_path):
    config_path, _ = cli_env
    output = tmp_path / "elements.json"

    cli.main(
        ["parse", "--config", str(config_path), "--source", "sheet-url", "--output", str(output)]
    )

    assert len(json.loads(output.read_text(encoding="utf-8"))["elements"]) == 2


def test_qa_command_writes_report_and_passes(cli_env, capsys):
    config_path, doubles = cli_env
    doubles["agent"].text = _validation_output(("element-1", "PASS"), ("element-2", "PASS"))

    exit_code = cli.main(
        ["qa", "--config", str(config_path), "--qa-url", "https://dsp", "--source", "sheet-url"]
    )

    assert exit_code == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["overallStatus"] == "PASS"
    assert payload["summary"] == {"total": 2, "passed": 2, "failed": 0, "warnings": 0}
    (rows,) = doubles["sheets"].written
    assert rows[0][0] == "Element ID"
    assert ["Overall Status", "PASS"] in rows


def test_qa_command_fails_on_critical_failure(cli_env, capsys):
    config_path, doubles = cli_env
    doubles["agent"].text = _validation_output(("element-1", "FAIL"), ("element-2", "PASS"))

    exit_code = cli.main(
        [
            "qa",
            "--config",
            str(config_path),
            "--qa-url",
            "https://dsp",
            "--source",
            "sheet-url",
            "--dry-run",
        ]
    )

    assert exit_code == 1
    assert json.loads(capsys.readouterr().out)["overallStatus"] == "FAIL"
    assert doubles["sheets"].written == []


def test_qa_command_with_elements_file_and_selection(cli_env, tmp_path, capsys):
    config_path, doubles = cli_env
    elements_file = tmp_path / "elements.json"
    elements_file.write_text(
        json.dumps(
            {
                "elements": [
                    {"id": "a", "label": "Budget", "expectedValue": "5000", "category": "budget"},
                    {"id": "b", "label": "Geo", "expectedValue": "US", "category": "targeting"},
                ]
            }
        ),
        encoding="utf-8",
    )
    doubles["agent"].text = _validation_output(("b", "PASS"))

    exit_code = cli.main(
        [
            "qa",
            "--config",
            str(config_path),
            "--qa-url",
            "https://dsp",
            "--elements",
            str(elements_file),
            "--select",
            "b",
            "--dry-run",
        ]
    )

    assert exit_code == 0
    payload = json.loads(capsys.readouterr().out)
    assert [result["element"]["id"] for result in payload["results"]] == ["b"]
    assert doubles["sheets"].requests == []
    assert [element.id for element in doubles["agent"].calls[0]["elements"]] == ["b"]


def test_unknown_selection_exits_with_error(cli_env):
    config_path, _ = cli_env

    exit_code = cli.main(
        [
            "qa",
            "--config",
            str(config_path),
            "--qa-url",
            "https://dsp",
            "--source",
            "sheet-url",
            "--select",
            "element-9",
        ]
    )

    assert exit_code == 2


def test_missing_config_exits_with_error(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    assert cli.main(["parse", "--config", str(tmp_path / "nope.yaml"), "--source", "x"]) == 2


def test_qa_requires_a_source(cli_env):
    config_path, _ = cli_env

    with pytest.raises(SystemExit):
        cli.main(["qa", "--config", str(config_path), "--qa-url", "https://dsp"])


def test_qa_command_validates_extra_elements(cli_env, capsys):
    config_path, doubles = cli_env
    doubles["agent"].text = _validation_output(
        ("element-1", "PASS"), ("element-2", "PASS"), ("custom-1", "WARNING")
    )

    exit_code = cli.main(
        [
            "qa",
            "--config",
            str(config_path),
            "--qa-url",
            "https://dsp",
            "--source",
            "sheet-url",
            "--add",
            "Creative Size = 300x250",
            "--dry-run",
        ]
    )

    assert exit_code == 0
    results = json.loads(capsys.readouterr().out)["results"]
    assert results[-1]["element"]["id"] == "custom-1"
    assert results[-1]["element"]["label"] == "Creative Size"
    assert results[-1]["element"]["expectedValue"] == "300x250"
    assert results[-1]["element"]["category"] == "creative"
    assert results[-1]["status"] == "WARNING"


def test_malformed_extra_element_exits_with_error(cli_env):
    config_path, _ = cli_env

    exit_code = cli.main(
        [
            "qa",
            "--config",
            str(config_path),
            "--qa-url",
            "https://dsp",
            "--source",
            "sheet-url",
            "--add",
            "no separator",
        ]
    )

    assert exit_code == 2


def test_extra_elements_continue_saved_custom_ids(cli_env, tmp_path, capsys):
    config_path, doubles = cli_env
    elements_file = tmp_path / "elements.json"
    elements_file.write_text(
        json.dumps(
            [
                {"id": "custom-1", "label": "Geo", "expectedValue": "US", "category": "targeting"},
                {"id": "custom-3", "label": "Bid", "expectedValue": "2.50", "category": "budget"},
            ]
        ),
        encoding="utf-8",
    )
    doubles["agent"].text = _validation_output(
        ("custom-1", "PASS"), ("custom-3", "PASS"), ("custom-4", "FAIL")
    )

    exit_code = cli.main(
        [
            "qa",
            "--config",
            str(config_path),
            "--qa-url",
            "https://dsp",
            "--elements",
            str(elements_file),
            "--add",
            "Frequency Cap=3/day",
            "--dry-run",
        ]
    )

    results = json.loads(capsys.readouterr().out)["results"]
    assert [result["element"]["id"] for result in results] == ["custom-1", "custom-3", "custom-4"]
    assert [result["status"] for result in results] == ["PASS", "PASS", "FAIL"]
    assert exit_code == 1


def test_elements_file_entry_without_id_exits_with_error(cli_env, tmp_path, caplog):
    config_path, doubles = cli_env
    elements_file = tmp_path / "elements.json"
    elements_file.write_text(
        json.dumps({"elements": [{"label": "Budget", "expectedValue": "5000"}]}),
        encoding="utf-8",
    )

    exit_code = cli.main(
        [
            "qa",
            "--config",
            str(config_path),
            "--qa-url",
            "https://dsp",
            "--elements",
            str(elements_file),
        ]
    )

    assert exit_code == 2
    assert "entry 1" in caplog.text
    assert doubles["agent"].calls == []
