"""Application entrypoint: configuration, startup banner, and signal handling."""

from __future__ import annotations

import asyncio
import signal
from pathlib import Path

from config import SUPPORTED_PROVIDERS, load_config

from .bot import DevGateBot
from .logging_setup import configure_optional_json_logging, log
from .personality import PERSONALITY_FILES, resolve_runtime_path, runtime_root_from_workspace


async def _serve(bot: DevGateBot):
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, bot.request_stop)
        except NotImplementedError:
            # Windows event loops have no signal handler support; Ctrl+C still raises.
            pass
    await bot.run()


def main():
    """Start the DevGate Telegram gateway."""
    config = load_config()

    # Resolve runtime paths relative to DEVGATE_HOME (if set) or project root.
    config.workspace_path = str(resolve_runtime_path(config.workspace_path))
    config.session_db_path = str(resolve_runtime_path(config.session_db_path))

    workspace = Path(config.workspace_path)
    workspace.mkdir(parents=True, exist_ok=True)
    Path(config.session_db_path).parent.mkdir(parents=True, exist_ok=True)
    runtime_root = runtime_root_from_workspace(config.workspace_path)
    configure_optional_json_logging(runtime_root)

    # Validate required config
    if not config.telegram_bot_token:
        log.error("TELEGRAM_BOT_TOKEN is required. Set it in .env")
        return

    if config.llm_provider not in SUPPORTED_PROVIDERS:
        log.error(
            "No LLM provider configured. Set LLM_PROVIDER "
            f"({', '.join(SUPPORTED_PROVIDERS)}) and the corresponding API key in .env"
        )
        return

    log.info("🛰️ DevGate starting...")
    log.info(f"   Provider: {config.llm_provider} ({config.llm_model})")
    log.info(f"   Summary model: {config.summary_model}")
    log.info(f"   Session DB: {config.session_db_path}")
    log.info(f"   Workspace: {config.workspace_path}")
    log.info(f"   Max tool iterations: {config.max_tool_iterations}")
    log.info(
        f"   Memory window: {config.memory_window_size} messages "
        f"(summarize at {config.summarize_threshold})"
    )
    log.info(f"   Confirmation timeout: {config.confirmation_timeout_sec:.0f}s")
    if config.destructive_commands:
        log.info(f"   Extra destructive markers: {', '.join(config.destructive_commands)}")
    if config.telegram_allowed_users:
        log.info(f"   Allowed users: {', '.join(config.telegram_allowed_users)}")
    else:
        log.info("   Allowed users: everyone")

    loaded = [name for name in PERSONALITY_FILES if (runtime_root / name).is_file()]
    if loaded:
        log.info(f"   Personality: {', '.join(loaded)} ({runtime_root})")
    else:
        log.info("   Personality: built-in default")

    bot = DevGateBot(config)
    log.info(f"   Tools: {', '.join(bot.registry.names())}")
    sessions = bot.sessions.list_sessions()
    log.info(f"   Sessions: {len(sessions)} stored")

    log.info("🛰️ DevGate is running! Press Ctrl+C to stop.")
    try:
        asyncio.run(_serve(bot))
    except KeyboardInterrupt:
        log.info("Interrupted")


if __name__ == "__main__":
    main()
