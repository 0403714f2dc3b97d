from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from openai import APIError, OpenAI

from .config import AgentConfig, AgentProviderConfig
from .errors import AgentError
from .models import CampaignElement

LOGGER = logging.getLogger(__name__)

_RETRY_EMPTY_MESSAGE = (
    "The previous reply was empty. Finish the task and report the results in the required format."
)
_RETRY_TRUNCATED_MESSAGE = (
    "The previous reply was cut off due to length limits. Keep notes short but return the "
    "complete result in the required format."
)


class AgentTranscript:
    """Collects step messages streamed by an agent run.

    Fragments are only accumulated here; consumers read ``final_text`` once the
    run has finished.
    """

    def __init__(self) -> None:
        self._messages: List[str] = []
        self._final_message: str = ""

    def add_step(self, message: str) -> None:
        if message:
            self._messages.append(message)

    def set_final_message(self, message: str) -> None:
        self._final_message = message or ""

    @property
    def messages(self) -> List[str]:
        return list(self._messages)

    @property
    def final_message(self) -> str:
        return self._final_message

    def final_text(self) -> str:
        return "\n".join(self._messages) + "\n" + self._final_message


@dataclass(slots=True)
class AgentRun:
    """Outcome of one agent execution."""

    transcript: AgentTranscript
    completed: bool = True
    model_name: Optional[str] = None
    screenshots: Dict[str, str] = field(default_factory=dict)

    @property
    def text(self) -> str:
        return self.transcript.final_text()


class AutomationAgent(Protocol):
    """Anything that can carry out an instruction and report back as an ``AgentRun``.

    Step messages, screenshots and ``completed=False`` are produced by
    browser-backed agents that stream progress; ``LLMAgentClient`` only sets
    the final message.
    """

    def execute(
        self,
        instruction: str,
        *,
        system_instructions: str,
        elements: Sequence[CampaignElement] = (),
    ) -> AgentRun:
        ...


def _append_system_hints(messages: List[Dict[str, str]], hints: List[str]) -> List[Dict[str, str]]:
    """Return a fresh copy of messages extended with additional system hints."""

    updated = [msg.copy() for msg in messages]
    for hint in hints:
        updated.append({"role": "system", "content": hint})
    return updated


def _manifest_message(elements: Sequence[CampaignElement]) -> Dict[str, str]:
    manifest = [
        {
            "elementId": element.id,
            "elementLabel": element.label,
            "expectedValue": element.expected_value,
            "category": element.category,
        }
        for element in elements
    ]
    return {
        "role": "user",
        "content": "Requested elements manifest:\n"
        + json.dumps(manifest, ensure_ascii=False, indent=2),
    }


@dataclass
class _ProviderClient:
    priority: int
    config: AgentProviderConfig
    client: OpenAI
    model_name: str
    display_name: str


class LLMAgentClient:
    """Agent backed by OpenAI-compatible chat completions with provider fallbacks."""

    def __init__(self, conf: AgentConfig) -> None:
        self._conf = conf
        self._providers: List[_ProviderClient] = []
        self._last_model_name: str | None = None

        for priority, provider_conf in conf.provider_sequence:
            provider = self._build_provider(priority, provider_conf)
            if provider is not None:
                self._providers.append(provider)

        if not self._providers:
            msg = (
                "No valid agent providers configured. Ensure that API keys and model identifiers "
                "are provided in the configuration or environment."
            )
            raise AgentError(msg)

    @property
    def model_name(self) -> str:
        """Return the model identifier used by the most recent call."""

        if self._last_model_name:
            return self._last_model_name
        return self._providers[0].model_name

    def execute(
        self,
        instruction: str,
        *,
        system_instructions: str,
        elements: Sequence[CampaignElement] = (),
    ) -> AgentRun:
        messages = [
            {"role": "system", "content": system_instructions},
            {"role": "user", "content": instruction},
        ]
        if elements:
            messages.append(_manifest_message(elements))

        last_error_messages: List[Tuple[str, str]] = []
        for provider in self._providers:
            try:
                content = self._generate_with_provider(provider, messages)
            except AgentError as exc:
                LOGGER.warning(
                    "Agent provider '%s' failed after %s attempts: %s",
                    provider.display_name,
                    self._conf.max_retries,
                    exc,
                )
                last_error_messages.append((provider.display_name, str(exc)))
                continue

            self._last_model_name = provider.model_name
            transcript = AgentTranscript()
            transcript.set_final_message(content)
            return AgentRun(transcript=transcript, model_name=provider.model_name)

        errors_joined = ", ".join(
            f"{name}: {message}" for name, message in last_error_messages
        ) or "no providers produced a usable response"
        raise AgentError(f"All agent providers failed: {errors_joined}")

    def _build_provider(
        self,
        priority: int,
        provider_conf: AgentProviderConfig,
    ) -> _ProviderClient | None:
        display_name = provider_conf.name or f"provider-{priority}"

        api_key = provider_conf.api_key
        if not api_key and provider_conf.api_key_env:
            api_key = os.environ.get(provider_conf.api_key_env)
        if not api_key:
            LOGGER.warning(
                "Skipping agent provider '%s': API key is not configured",
                display_name,
            )
            return None

        model_name = provider_conf.model
        if not model_name and provider_conf.model_env:
            model_name = os.environ.get(provider_conf.model_env)
        if not model_name:
            LOGGER.warning(
                "Skipping agent provider '%s': model identifier is not configured",
                display_name,
            )
            return None

        base_url = provider_conf.base_url
        if not base_url and provider_conf.base_url_env:
            base_url = os.environ.get(provider_conf.base_url_env)

        client_kwargs: Dict[str, Any] = {
            "api_key": api_key,
            "base_url": base_url,
            "organization": provider_conf.organization,
        }

        default_headers: Dict[str, str] = {}
        if self._conf.http_referer:
            default_headers["HTTP-Referer"] = self._conf.http_referer
        if self._conf.x_title:
            default_headers["X-Title"] = self._conf.x_title
        if default_headers:
            client_kwargs["default_headers"] = default_headers

        client = OpenAI(**client_kwargs)

        return _ProviderClient(
            priority=priority,
            config=provider_conf,
            client=client,
            model_name=model_name,
            display_name=display_name,
        )

    def _generate_with_provider(
        self,
        provider: _ProviderClient,
        messages: List[Dict[str, str]],
    ) -> str:
        max_attempts = self._conf.max_retries
        current_messages = [msg.copy() for msg in messages]
        last_content: str | None = None

        for attempt in range(1, max_attempts + 1):
            try:
                response = provider.client.chat.completions.create(
                    model=provider.model_name,
                    messages=current_messages,
                    temperature=provider.config.temperature,
                    max_tokens=provider.config.max_output_tokens,
                    timeout=provider.config.request_timeout,
                )
            except APIError as exc:  # pragma: no cover - passthrough
                raise AgentError(f"Agent request failed: {exc}") from exc

            if not response.choices:
                raise AgentError("Agent response does not contain choices")

            choice = response.choices[0]
            content = (choice.message.content or "").strip()
            last_content = content
            finish_reason = getattr(choice, "finish_reason", None)

            if finish_reason == "length" and attempt < max_attempts:
                LOGGER.warning(
                    "Agent response truncated (finish_reason=length); retrying (%s/%s)",
                    attempt,
                    max_attempts,
                )
                current_messages = _append_system_hints(messages, [_RETRY_TRUNCATED_MESSAGE])
                continue

            if not content:
                if attempt < max_attempts:
                    LOGGER.warning(
                        "Agent returned empty content; retrying (%s/%s)", attempt, max_attempts
                    )
                    current_messages = _append_system_hints(messages, [_RETRY_EMPTY_MESSAGE])
                    continue
                raise AgentError("Agent response is empty")

            return content

        raise AgentError(
            f"Agent produced no usable response after {max_attempts} attempts: {last_content or ''}"
        )
