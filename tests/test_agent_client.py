from types import SimpleNamespace

import pytest

from campaign_qa import agent_client
from campaign_qa.agent_client import AgentTranscript, LLMAgentClient
from campaign_qa.config import AgentConfig, AgentProviderConfig
from campaign_qa.errors import AgentError


class _Completions:
    def __init__(self, replies):
        self.replies = list(replies)
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        content, finish_reason = self.replies.pop(0)
        choice = SimpleNamespace(
            message=SimpleNamespace(content=content),
            finish_reason=finish_reason,
        )
        return SimpleNamespace(choices=[choice])


@pytest.fixture
def fake_openai(monkeypatch):
    """Install an OpenAI double; replies are keyed by API key."""

    replies = {}
    clients = {}

    class _FakeOpenAI:
        def __init__(self, **kwargs):
            self.kwargs = kwargs
            completions = _Completions(replies.get(kwargs["api_key"], []))
            self.chat = SimpleNamespace(completions=completions)
            clients[kwargs["api_key"]] = self

    monkeypatch.setattr(agent_client, "OpenAI", _FakeOpenAI)
    return replies, clients


def _config(*providers, **kwargs):
    return AgentConfig(
        providers={index: provider for index, provider in enumerate(providers, start=1)},
        **kwargs,
    )


def test_execute_returns_final_text_and_manifest(fake_openai, make_element):
    replies, clients = fake_openai
    replies["k1"] = [('{"validationResults": []}', "stop")]
    client = LLMAgentClient(
        _config(AgentProviderConfig(model="m1", api_key="k1"), x_title="Campaign QA")
    )

    run = client.execute(
        "Validate these",
        system_instructions="You are a QA agent",
        elements=[make_element(1, "Budget", "5000")],
    )

    assert run.text.strip() == '{"validationResults": []}'
    assert run.model_name == "m1"
    assert client.model_name == "m1"
    call = clients["k1"].chat.completions.calls[0]
    assert call["model"] == "m1"
    assert [message["role"] for message in call["messages"]] == ["system", "user", "user"]
    assert '"elementId": "element-1"' in call["messages"][2]["content"]
    assert clients["k1"].kwargs["default_headers"] == {"X-Title": "Campaign QA"}


def test_retries_empty_and_truncated_replies(fake_openai):
    replies, clients = fake_openai
    replies["k1"] = [("", "stop"), ("partial", "length"), ("complete", "stop")]
    client = LLMAgentClient(
        _config(AgentProviderConfig(model="m1", api_key="k1"), max_retries=3)
    )

    run = client.execute("go", system_instructions="sys")

    assert run.transcript.final_message == "complete"
    calls = clients["k1"].chat.completions.calls
    assert len(calls) == 3
    assert calls[1]["messages"][-1]["role"] == "system"


def test_falls_back_to_next_provider(fake_openai):
    replies, _ = fake_openai
    replies["k1"] = [("", "stop"), ("", "stop")]
    replies["k2"] = [("from backup", "stop")]
    client = LLMAgentClient(
        _config(
            AgentProviderConfig(name="primary", model="m1", api_key="k1"),
            AgentProviderConfig(name="backup", model="m2", api_key="k2"),
        )
    )

    run = client.execute("go", system_instructions="sys")

    assert run.transcript.final_message == "from backup"
    assert client.model_name == "m2"


def test_all_providers_failing_raises(fake_openai):
    replies, _ = fake_openai
    replies["k1"] = [("", "stop"), ("", "stop")]
    client = LLMAgentClient(_config(AgentProviderConfig(model="m1", api_key="k1")))

    with pytest.raises(AgentError, match="All agent providers failed"):
        client.execute("go", system_instructions="sys")


def test_providers_without_credentials_are_skipped(fake_openai, monkeypatch):
    monkeypatch.delenv("CAMPAIGN_QA_TEST_AGENT_KEY", raising=False)
    monkeypatch.setenv("CAMPAIGN_QA_TEST_AGENT_MODEL", "env-model")
    replies, _ = fake_openai
    replies["k2"] = [("ok", "stop")]
    client = LLMAgentClient(
        _config(
            AgentProviderConfig(model="m1", api_key_env="CAMPAIGN_QA_TEST_AGENT_KEY"),
            AgentProviderConfig(model_env="CAMPAIGN_QA_TEST_AGENT_MODEL", api_key="k2"),
        )
    )

    assert client.model_name == "env-model"


def test_no_usable_provider(fake_openai, monkeypatch):
    monkeypatch.delenv("CAMPAIGN_QA_TEST_AGENT_KEY", raising=False)

    with pytest.raises(AgentError):
        LLMAgentClient(
            _config(AgentProviderConfig(model="m1", api_key_env="CAMPAIGN_QA_TEST_AGENT_KEY"))
        )


def test_transcript_joins_steps_before_final_message():
    transcript = AgentTranscript()
    transcript.add_step("Opened the line item")
    transcript.add_step("")
    transcript.add_step("Checked budget")
    transcript.set_final_message('{"validationResults": []}')

    assert transcript.messages == ["Opened the line item", "Checked budget"]
    assert transcript.final_text() == (
        'Opened the line item\nChecked budget\n{"validationResults": []}'
    )
