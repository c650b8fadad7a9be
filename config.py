"""
DevGate — Configuration
Flat .env-based configuration system.
"""

import os
import re
from dataclasses import dataclass, field
from dotenv import load_dotenv

load_dotenv()


LATEST_MODEL_DEFAULTS = {
    "gemini": "gemini-2.5-flash",
    "openai": "gpt-4.1",
    "xai": "grok-4-latest",
    "deepseek": "deepseek-chat",
    "zai": "glm-4.6",
}

# OpenAI-compatible endpoints (the openai SDK is pointed at these).
OPENAI_COMPATIBLE_BASE_URLS = {
    "openai": None,
    "xai": "https://api.x.ai/v1",
    "deepseek": "https://api.deepseek.com",
    "zai": "https://open.bigmodel.cn/api/paas/v4",
}

SUPPORTED_PROVIDERS = ("gemini", *OPENAI_COMPATIBLE_BASE_URLS)

_MODEL_DEFAULT_SENTINELS = {"", "latest", "auto", "default"}


def _strip_inline_comment(value: str) -> str:
    """Strip shell-style inline comments for unquoted env values."""
    if not value:
        return ""
    cleaned = value.strip()
    if not cleaned:
        return ""
    if cleaned.startswith("#"):
        return ""
    return re.sub(r"\s+#.*$", "", cleaned).strip()


def _parse_allowed_users(raw: str) -> list[str]:
    """Parse TELEGRAM_ALLOWED_USERS as comma-separated numeric user IDs."""
    cleaned = _strip_inline_comment(raw)
    if not cleaned:
        return []

    users: list[str] = []
    for chunk in cleaned.split(","):
        token = chunk.strip()
        if not token:
            continue
        if token.startswith("#"):
            break
        token = token.split("#", 1)[0].strip()
        if not token:
            continue
        # Telegram user IDs are numeric; ignore placeholder/comment text safely.
        if token.lstrip("-").isdigit():
            users.append(token)
    return users


def _parse_markers(raw: str) -> list[str]:
    """Parse DESTRUCTIVE_COMMANDS as comma-separated, lower-cased substrings."""
    cleaned = _strip_inline_comment(raw)
    if not cleaned:
        return []
    return [chunk.strip().lower() for chunk in cleaned.split(",") if chunk.strip()]


def _env_int(name: str, default: int) -> int:
    raw = _strip_inline_comment(os.getenv(name, ""))
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass
class Config:
    # LLM Provider
    llm_provider: str = ""
    llm_model: str = ""
    summary_model: str = ""
    max_output_tokens: int = 8192

    # API Keys
    gemini_api_key: str = ""
    openai_api_key: str = ""
    xai_api_key: str = ""
    deepseek_api_key: str = ""
    zai_api_key: str = ""
    gemini_api_base: str = "https://generativelanguage.googleapis.com/v1beta"

    # Telegram
    telegram_bot_token: str = ""
    telegram_allowed_users: list[str] = field(default_factory=list)
    telegram_poll_timeout: int = 30
    poll_retry_delay_sec: float = 3.0

    # Agent
    max_tool_iterations: int = 25
    confirmation_timeout_sec: float = 300.0
    destructive_commands: list[str] = field(default_factory=list)
    command_timeout_sec: int = 120

    # Memory / Sessions
    memory_window_size: int = 15
    summarize_threshold: int = 20
    session_db_path: str = ".devgate/sessions.db"

    # Workspace
    workspace_path: str = ".devgate/workspace"

    def api_key_for(self, provider: str | None = None) -> str:
        """Return the API key matching ``provider`` (defaults to the active one)."""
        name = (provider or self.llm_provider or "").lower()
        return getattr(self, f"{name}_api_key", "") or ""


def _resolve_model(provider: str, model: str) -> str:
    """Resolve empty/default model values to provider-specific latest defaults."""
    provider_name = _strip_inline_comment(provider or "").lower()
    requested = _strip_inline_comment(model or "")
    if requested.lower() in _MODEL_DEFAULT_SENTINELS:
        return LATEST_MODEL_DEFAULTS.get(provider_name, LATEST_MODEL_DEFAULTS["gemini"])
    return requested


def load_config() -> Config:
    """Load config from environment variables with auto-detection."""
    allowed = _parse_allowed_users(os.getenv("TELEGRAM_ALLOWED_USERS", ""))

    cfg = Config(
        llm_provider=_strip_inline_comment(os.getenv("LLM_PROVIDER", "")),
        llm_model=os.getenv("LLM_MODEL", ""),
        summary_model=_strip_inline_comment(os.getenv("SUMMARY_MODEL", "")),
        max_output_tokens=_env_int("MAX_OUTPUT_TOKENS", 8192),
        gemini_api_key=os.getenv("GEMINI_API_KEY", ""),
        openai_api_key=os.getenv("OPENAI_API_KEY", ""),
        xai_api_key=os.getenv("XAI_API_KEY", ""),
        deepseek_api_key=os.getenv("DEEPSEEK_API_KEY", ""),
        zai_api_key=os.getenv("ZAI_API_KEY", ""),
        gemini_api_base=(
            _strip_inline_comment(os.getenv("GEMINI_API_BASE", ""))
            or "https://generativelanguage.googleapis.com/v1beta"
        ),
        telegram_bot_token=os.getenv("TELEGRAM_BOT_TOKEN", ""),
        telegram_allowed_users=allowed,
        telegram_poll_timeout=_env_int("TELEGRAM_POLL_TIMEOUT", 30),
        poll_retry_delay_sec=float(_env_int("POLL_RETRY_DELAY_SEC", 3)),
        max_tool_iterations=_env_int("MAX_TOOL_ITERATIONS", 25),
        confirmation_timeout_sec=float(_env_int("CONFIRMATION_TIMEOUT_SEC", 300)),
        destructive_commands=_parse_markers(os.getenv("DESTRUCTIVE_COMMANDS", "")),
        command_timeout_sec=_env_int("COMMAND_TIMEOUT_SEC", 120),
        memory_window_size=_env_int("MEMORY_WINDOW_SIZE", 15),
        summarize_threshold=_env_int("SUMMARIZE_THRESHOLD", 20),
        session_db_path=os.getenv("SESSION_DB_PATH", ".devgate/sessions.db") or ".devgate/sessions.db",
        workspace_path=os.getenv("WORKSPACE_PATH", ".devgate/workspace") or ".devgate/workspace",
    )

    # Auto-detect provider from API keys if not explicitly set
    if not cfg.llm_provider:
        for provider in SUPPORTED_PROVIDERS:
            if cfg.api_key_for(provider):
                cfg.llm_provider = provider
                break

    cfg.llm_provider = cfg.llm_provider.strip().lower()
    cfg.llm_model = _resolve_model(cfg.llm_provider, cfg.llm_model)
    cfg.summary_model = cfg.summary_model or cfg.llm_model
    cfg.max_output_tokens = max(512, int(cfg.max_output_tokens))
    cfg.max_tool_iterations = max(1, int(cfg.max_tool_iterations))
    cfg.memory_window_size = max(1, int(cfg.memory_window_size))
    # The threshold must leave room for messages to fold beyond the hot window.
    cfg.summarize_threshold = max(cfg.memory_window_size + 1, int(cfg.summarize_threshold))
    cfg.confirmation_timeout_sec = max(1.0, float(cfg.confirmation_timeout_sec))
    cfg.command_timeout_sec = max(5, int(cfg.command_timeout_sec))

    return cfg
