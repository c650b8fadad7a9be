"""Pytest configuration and shared fixtures."""
from __future__ import annotations

from pathlib import Path

import pytest

from config import Config
from memory import SessionDatabase
from providers import ModelResponse


def text_response(text: str, tokens: int = 10) -> ModelResponse:
    return ModelResponse(parts=[{"text": text}], usage={"totalTokenCount": tokens})


def call_response(name: str, args: dict, call_id: str | None = None, tokens: int = 10) -> ModelResponse:
    call = {"name": name, "args": args}
    if call_id:
        call["id"] = call_id
    return ModelResponse(parts=[{"functionCall": call}], usage={"totalTokenCount": tokens})


class FakeLLM:
    """Scripted stand-in for LLMClient: returns queued responses in order."""

    def __init__(self, responses=None, summary: str = "Summarized.", summary_error: Exception | None = None):
        self.responses = list(responses or [])
        self.default = None
        self.summary = summary
        self.summary_error = summary_error
        self.calls: list[dict] = []
        self.summary_prompts: list[str] = []
        self.closed = False

    async def generate(self, system_prompt, contents, tool_schemas=None, **kwargs):
        self.calls.append({
            "system_prompt": system_prompt,
            "contents": [dict(c) for c in contents],
            "tool_schemas": tool_schemas,
        })
        if self.responses:
            item = self.responses.pop(0)
        else:
            item = self.default
        if isinstance(item, Exception):
            raise item
        if item is None:
            return ModelResponse()
        return item

    async def summarize(self, prompt: str) -> str:
        self.summary_prompts.append(prompt)
        if self.summary_error is not None:
            raise self.summary_error
        return self.summary

    async def aclose(self):
        self.closed = True


class FakeTransport:
    """Records everything the bot sends instead of talking to Telegram."""

    def __init__(self, prompt_error: Exception | None = None):
        self.username = None
        self.running = False
        self.sent: list[tuple[str, str]] = []
        self.typing: list[str] = []
        self.prompts: list[tuple[str, str, list]] = []
        self.answers: list[tuple[str, str | None]] = []
        self.edits: list[tuple[str, int, str]] = []
        self.prompt_error = prompt_error
        self.stopped = False
        self._next_id = 100

    async def initialize(self):
        pass

    async def shutdown(self):
        pass

    def stop(self):
        self.stopped = True

    async def poll(self, on_message, on_callback):
        self.running = True
        self.running = False

    async def send_message(self, conversation_id: str, text: str) -> list[int]:
        self.sent.append((conversation_id, text))
        self._next_id += 1
        return [self._next_id]

    async def send_typing(self, conversation_id: str):
        self.typing.append(conversation_id)

    async def send_confirmation_prompt(self, conversation_id: str, text: str, buttons) -> int:
        if self.prompt_error is not None:
            raise self.prompt_error
        self.prompts.append((conversation_id, text, buttons))
        self._next_id += 1
        return self._next_id

    async def answer_callback(self, callback_id: str, text: str | None = None):
        self.answers.append((callback_id, text))

    async def edit_message(self, conversation_id: str, message_id: int, text: str):
        self.edits.append((conversation_id, message_id, text))


@pytest.fixture(scope="function")
def workspace(tmp_path: Path) -> Path:
    """Temporary workspace directory for file tools."""
    d = tmp_path / "workspace"
    d.mkdir(parents=True, exist_ok=True)
    return d


@pytest.fixture(scope="function")
def config(tmp_path: Path, workspace: Path) -> Config:
    return Config(
        llm_provider="gemini",
        llm_model="gemini-2.5-flash",
        summary_model="gemini-2.5-flash",
        gemini_api_key="test-key",
        telegram_bot_token="123:TEST",
        workspace_path=str(workspace),
        session_db_path=str(tmp_path / "sessions.db"),
        confirmation_timeout_sec=5.0,
        max_tool_iterations=5,
    )


@pytest.fixture(scope="function")
def session_db(tmp_path: Path):
    db = SessionDatabase(str(tmp_path / "sessions.db"))
    yield db
    db.close()


@pytest.fixture(scope="function")
def fake_llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture(scope="function")
def fake_transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture(scope="function")
def clean_env(monkeypatch: pytest.MonkeyPatch):
    """Ensure tests run with a clean environment (no leftover vars)."""
    for var in [
        "LLM_PROVIDER", "LLM_MODEL", "SUMMARY_MODEL", "GEMINI_API_KEY", "OPENAI_API_KEY",
        "XAI_API_KEY", "DEEPSEEK_API_KEY", "ZAI_API_KEY", "TELEGRAM_ALLOWED_USERS",
        "MEMORY_WINDOW_SIZE", "SUMMARIZE_THRESHOLD", "DESTRUCTIVE_COMMANDS",
        "MAX_TOOL_ITERATIONS", "CONFIRMATION_TIMEOUT_SEC",
    ]:
        monkeypatch.delenv(var, raising=False)
    yield
