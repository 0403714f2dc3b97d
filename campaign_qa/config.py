from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .models import CATEGORIES


class SheetsConfig(BaseModel):
    credentials_file: Optional[Path] = Field(
        None, description="Path to the Google service account JSON credentials"
    )
    api_key: Optional[str] = Field(
        None,
        description="API key for reading public sheets; used when no credentials file is set",
    )
    api_key_env: Optional[str] = Field(
        "GOOGLE_SHEETS_API_KEY",
        description="Environment variable with the Sheets API key",
    )
    default_sheet_name: str = Field("Sheet1", description="Tab read when none is requested")
    read_range: str = Field(
        "A1:ZZ1000",
        description="A1 range read from the campaign tab",
    )
    report_spreadsheet_id: Optional[str] = Field(
        None, description="Optional spreadsheet that receives QA result rows"
    )
    report_sheet_name: Optional[str] = Field(
        None, description="Tab name in the report spreadsheet"
    )

    @field_validator("credentials_file")
    @classmethod
    def _expand_credentials_path(cls, value: Optional[Path]) -> Optional[Path]:
        if value is None:
            return None
        return value.expanduser().resolve()

    @model_validator(mode="after")
    def _validate_report_target(self) -> "SheetsConfig":
        if self.report_spreadsheet_id and not self.report_sheet_name:
            raise ValueError("report_sheet_name is required when report_spreadsheet_id is set")
        return self

    @property
    def has_report_target(self) -> bool:
        return bool(self.report_spreadsheet_id and self.report_sheet_name)


class AgentProviderConfig(BaseModel):
    """Settings for a single prioritized agent provider."""

    name: str | None = Field(
        None,
        description="Human-friendly name for the provider; used for logging",
    )
    model: str | None = Field(
        None,
        description="Model identifier; optional when model_env is provided",
    )
    model_env: str | None = Field(
        None,
        description="Environment variable with the model identifier",
    )
    temperature: float = Field(
        0.0,
        ge=0.0,
        le=2.0,
        description="Sampling temperature for this provider",
    )
    max_output_tokens: int = Field(
        4096,
        gt=0,
        description="Maximum number of tokens returned by the provider",
    )
    api_key: str | None = Field(
        None,
        description="Explicit API key; if omitted the key is read from api_key_env",
    )
    api_key_env: str | None = Field(
        None,
        description="Environment variable with the API key",
    )
    base_url: str | None = Field(
        None,
        description="Optional override for the API base URL",
    )
    base_url_env: str | None = Field(
        None,
        description="Environment variable name for the API base URL",
    )
    organization: str | None = Field(
        None,
        description="Optional OpenAI organization identifier",
    )
    request_timeout: int = Field(
        300,
        gt=0,
        description="Timeout in seconds for a single API request",
    )

    @model_validator(mode="after")
    def _ensure_required_fields(self) -> "AgentProviderConfig":
        if not self.model and not self.model_env:
            raise ValueError("Agent provider must define 'model' or 'model_env'")
        if not self.api_key and not self.api_key_env:
            raise ValueError("Agent provider must define 'api_key' or 'api_key_env'")
        return self


class AgentConfig(BaseModel):
    max_retries: int = Field(
        2,
        ge=1,
        description="Number of attempts per provider before switching to the next one",
    )
    timeout_seconds: int = Field(
        600,
        gt=0,
        description="Wall-clock limit for a whole QA run",
    )
    parse_timeout_seconds: int = Field(
        300,
        gt=0,
        description="Wall-clock limit for agent-based sheet extraction",
    )
    http_referer: str | None = Field(
        None,
        description="HTTP Referer header sent for OpenRouter app attribution",
    )
    x_title: str | None = Field(
        None,
        description="X-Title header sent for OpenRouter app attribution",
    )
    providers: dict[int, AgentProviderConfig] = Field(
        ...,
        description="Mapping of priority -> provider configuration",
    )

    @field_validator("providers")
    @classmethod
    def _validate_providers(
        cls, value: dict[int, AgentProviderConfig]
    ) -> dict[int, AgentProviderConfig]:
        if not value:
            raise ValueError("At least one agent provider must be configured")

        ordered_items = sorted(value.items(), key=lambda item: item[0])
        priorities = [priority for priority, _ in ordered_items]

        expected = list(range(1, len(ordered_items) + 1))
        if priorities != expected:
            raise ValueError(
                "Agent provider priorities must be consecutive integers starting from 1"
            )

        return dict(ordered_items)

    @property
    def provider_sequence(self) -> List[tuple[int, AgentProviderConfig]]:
        return list(self.providers.items())


class QAConfig(BaseModel):
    critical_categories: List[str] = Field(
        default_factory=lambda: ["budget", "dates"],
        description="A single failure in any of these categories fails the run",
    )
    failure_threshold: float = Field(
        0.2,
        ge=0.0,
        le=1.0,
        description="Share of failed checks above which the run fails",
    )
    context_window: int = Field(
        500,
        gt=0,
        description="Characters inspected after an element mention in keyword fallback",
    )
    categorize: bool = Field(
        False,
        description="Assign categories to extracted elements",
    )

    @field_validator("critical_categories")
    @classmethod
    def _validate_categories(cls, value: List[str]) -> List[str]:
        normalized = [item.strip().lower() for item in value]
        unknown = sorted(set(normalized) - set(CATEGORIES))
        if unknown:
            raise ValueError(f"Unknown categories: {', '.join(unknown)}")
        return normalized


class AppConfig(BaseModel):
    sheets: SheetsConfig = Field(default_factory=SheetsConfig)
    agent: AgentConfig
    qa: QAConfig = Field(default_factory=QAConfig)


def load_config(path: str | Path) -> AppConfig:
    """Load configuration from a YAML file and return a validated object."""

    config_path = Path(path).expanduser().resolve()
    if not config_path.exists():
        msg = f"Configuration file not found: {config_path}"
        raise FileNotFoundError(msg)

    with config_path.open("r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh)

    if data is None:
        msg = f"Configuration file is empty: {config_path}"
        raise ValueError(msg)

    try:
        return AppConfig.model_validate(data)
    except ValidationError as exc:  # pragma: no cover - passthrough for readability
        raise ValueError(f"Invalid configuration: {exc}") from exc
