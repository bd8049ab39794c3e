########## Sanity Tests ##########
# Model-output cleanup and the LLM client factory.

from __future__ import annotations

from datetime import timedelta
from types import SimpleNamespace

from parley.core import config, llm
from parley.core.agentic_helpers import extract_line, parse_json_loose, tidy_line
from parley.core.logs import log_run_event
from parley.core.personas import resolve_persona
from parley.core.types import ContextSnapshot, TimerState


class _FakeCompletions:
    def __init__(self, content=None, error=None, empty=False) -> None:
        self.content = content
        self.error = error
        self.empty = empty
        self.requests = []

    def create(self, **kwargs):
        self.requests.append(kwargs)
        if self.error is not None:
            raise self.error
        if self.empty:
            return SimpleNamespace(choices=[])
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=self.content))])


def _fake_openai(completions: _FakeCompletions):
    def build(**kwargs):
        return SimpleNamespace(chat=SimpleNamespace(completions=completions), options=kwargs)

    return build


########## Helpers ##########


def test_parse_json_loose_skips_think_blocks_and_string_braces() -> None:
    raw = '<think>maybe {"line": "no"}</think>Sure: {"line": "Hi {there}"} done'
    assert parse_json_loose(raw) == {"line": "Hi {there}"}
    assert parse_json_loose('```json\n{"line": "Fenced."}\n```') == {"line": "Fenced."}
    assert parse_json_loose("[1, 2]") is None
    assert parse_json_loose(None) is None


def test_extract_line_handles_json_and_plain_text() -> None:
    assert extract_line('{"line": "  Indeed.  "}') == "Indeed."
    assert extract_line('Ayla: "Well met."\n\nSecond paragraph.') == "Well met."
    assert extract_line('{"line": 5}') == ""
    assert extract_line('{"line": "unfinished') == ""
    assert extract_line('{"text": "Other key."}', key="text") == "Other key."
    assert extract_line("") == ""


def test_tidy_line_collapses_whitespace() -> None:
    assert tidy_line("  'Mind   the gap.'  ") == "Mind the gap."


########## LLM Clients ##########


def test_polish_messages_carry_voice_and_scene() -> None:
    context = ContextSnapshot(
        room_id="latticeLibrary",
        timers={config.PRIMARY_COUNTDOWN_TIMER: TimerState(remaining=timedelta(seconds=42))},
    )
    messages = llm.build_polish_messages("ayla", resolve_persona("ayla"), "Hello there!", context)
    assert messages[0] == {"role": "system", "content": config.POLISH_SYSTEM_PROMPT}
    assert "Draft line: Hello there!" in messages[1]["content"]
    assert '"countdown_seconds": 42' in messages[1]["content"]
    assert "direct puzzle solutions unless asked twice" in messages[1]["content"]


def test_stub_env_var_forces_stub(monkeypatch) -> None:
    monkeypatch.setenv(llm.STUB_ENV_VAR, "1")
    client = llm.LLMClient()
    assert isinstance(client, llm.StubLLMClient)
    assert client.polish_line("ayla", resolve_persona("ayla"), "Draft.", ContextSnapshot()) == "Draft."
    assert client.calls == ["ayla"]


def test_missing_openrouter_key_falls_back_to_stub(monkeypatch) -> None:
    monkeypatch.delenv(llm.STUB_ENV_VAR, raising=False)
    monkeypatch.setattr(config, "LLM_PROVIDER", "openrouter")
    monkeypatch.setattr(config, "LLM_OPENROUTER_API_KEY", "")
    assert isinstance(llm.LLMClient(), llm.StubLLMClient)


def test_ollama_client_polishes_through_chat_completions(monkeypatch) -> None:
    """JSON replies are unwrapped; errors and empty replies keep the draft."""

    monkeypatch.delenv(llm.STUB_ENV_VAR, raising=False)
    monkeypatch.setattr(config, "LLM_PROVIDER", "ollama")
    completions = _FakeCompletions(content='<think>hm</think>{"line": "Good day, traveller."}')
    monkeypatch.setattr(llm, "OpenAI", _fake_openai(completions))

    client = llm.LLMClient()
    assert isinstance(client, llm.OllamaLLMClient)
    persona = resolve_persona("mr wendell")
    assert client.polish_line("mr wendell", persona, "Good day to you.", ContextSnapshot()) == "Good day, traveller."
    assert completions.requests[0]["model"] == config.LLM_MODEL_NAME
    assert completions.requests[0]["max_tokens"] == config.POLISH_MAX_TOKENS

    completions.error = TimeoutError("slow model")
    assert client.polish_line("mr wendell", persona, "Good day to you.", ContextSnapshot()) == "Good day to you."
    completions.error = None
    completions.empty = True
    assert client.polish_line("mr wendell", persona, "Good day to you.", ContextSnapshot()) == "Good day to you."


def test_run_log_writes_to_configured_dir(isolated_storage) -> None:
    log_run_event("sanity: hello log")
    log_file = isolated_storage / "logs" / config.LOG_TEXT_FILENAME
    assert "sanity: hello log" in log_file.read_text(encoding="utf-8")
