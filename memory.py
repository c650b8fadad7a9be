"""
DevGate — Conversation Memory
SQLite-backed session persistence plus rolling-window compaction.

Each conversation keeps a hot window of recent messages. Older messages are
folded into a running summary by an auxiliary model call, with a deterministic
fallback so the window still trims when the model is unavailable.
"""

import json
import logging
import sqlite3
import time
from dataclasses import dataclass, field
from typing import Any, Protocol

log = logging.getLogger("devgate.memory")

DEFAULT_WINDOW_SIZE = 15
DEFAULT_SUMMARIZE_THRESHOLD = 20
MIN_MESSAGES_TO_FOLD = 5
MAX_MESSAGE_CHARS = 500
BASIC_REQUEST_CHARS = 100


def now_ms() -> int:
    return int(time.time() * 1000)


class Summarizer(Protocol):
    async def summarize(self, prompt: str) -> str: ...


# ──────────────────────────────────────────────────────────────
# Records
# ──────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Message:
    role: str
    content: str
    timestamp: int = field(default_factory=now_ms)

    def to_record(self) -> dict:
        return {"role": self.role, "content": self.content, "timestamp": self.timestamp}

    @classmethod
    def from_record(cls, data: dict) -> "Message":
        if not isinstance(data, dict):
            raise TypeError(f"message record must be an object, got {type(data).__name__}")
        return cls(
            role=str(data.get("role", "user")),
            content=str(data.get("content", "")),
            timestamp=int(data.get("timestamp") or now_ms()),
        )


@dataclass
class Conversation:
    """Per-chat state persisted by the session store."""

    id: str
    created_at: int = field(default_factory=now_ms)
    last_active: int = field(default_factory=now_ms)
    summary: str = ""
    messages: list[Message] = field(default_factory=list)
    goals: list[str] = field(default_factory=list)
    tech_stack: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_record(self) -> dict:
        return {
            "id": self.id,
            "created_at": self.created_at,
            "last_active": self.last_active,
            "summary": self.summary,
            "messages": [m.to_record() for m in self.messages],
            "goals": list(self.goals),
            "tech_stack": list(self.tech_stack),
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_record(cls, data: dict) -> "Conversation":
        return cls(
            id=str(data["id"]),
            created_at=int(data.get("created_at") or now_ms()),
            last_active=int(data.get("last_active") or now_ms()),
            summary=data.get("summary") or "",
            messages=[Message.from_record(m) for m in data.get("messages") or []],
            goals=list(data.get("goals") or []),
            tech_stack=list(data.get("tech_stack") or []),
            metadata=dict(data.get("metadata") or {}),
        )


# ──────────────────────────────────────────────────────────────
# Session Database
# ──────────────────────────────────────────────────────────────


class SessionDatabase:
    """
    Persistent conversation records keyed by conversation id.

    Each row stores the full conversation as one JSON document, so a record is
    always written and read as a unit.
    """

    def __init__(self, db_path: str = "devgate.db"):
        self.db_path = db_path
        self.db = sqlite3.connect(db_path, check_same_thread=False)
        self._init_db()

    def _init_db(self):
        """Create tables if they don't exist."""
        self.db.executescript("""
            CREATE TABLE IF NOT EXISTS sessions (
                conversation_id TEXT PRIMARY KEY,
                record TEXT NOT NULL,
                updated REAL
            );
            CREATE INDEX IF NOT EXISTS idx_sessions_updated
                ON sessions(updated);
        """)
        self.db.commit()

    def load(self, conversation_id: str) -> dict | None:
        """Return the stored record, or None when missing or unreadable."""
        row = self.db.execute(
            "SELECT record FROM sessions WHERE conversation_id = ?", (conversation_id,)
        ).fetchone()
        if row is None:
            return None
        try:
            record = json.loads(row[0])
        except ValueError as e:
            log.warning(f"[{conversation_id}] Corrupted session record ignored: {e}")
            return None
        if not isinstance(record, dict):
            log.warning(f"[{conversation_id}] Session record is not an object; ignored")
            return None
        return record

    def save(self, conversation_id: str, record: dict):
        payload = json.dumps(record, ensure_ascii=False)
        now = time.time()
        self.db.execute(
            "INSERT INTO sessions (conversation_id, record, updated) VALUES (?, ?, ?) "
            "ON CONFLICT(conversation_id) DO UPDATE SET record = ?, updated = ?",
            (conversation_id, payload, now, payload, now),
        )
        self.db.commit()

    def delete(self, conversation_id: str) -> bool:
        cursor = self.db.execute("DELETE FROM sessions WHERE conversation_id = ?", (conversation_id,))
        self.db.commit()
        return cursor.rowcount > 0

    def list(self) -> list[dict]:
        """Return every readable record, most recently updated first."""
        records: list[dict] = []
        cursor = self.db.execute("SELECT conversation_id, record FROM sessions ORDER BY updated DESC")
        for conversation_id, raw in cursor:
            try:
                record = json.loads(raw)
            except ValueError:
                log.warning(f"[{conversation_id}] Skipping corrupted session record")
                continue
            if isinstance(record, dict):
                records.append(record)
        return records

    def close(self):
        self.db.close()


# ──────────────────────────────────────────────────────────────
# Rolling Window Compaction
# ──────────────────────────────────────────────────────────────


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


class ConversationMemory:
    """
    Keeps a conversation's message list bounded.

    ``manage`` is called after every append. Once the list reaches the
    summarize threshold, everything older than the hot window is folded into
    ``conversation.summary`` and dropped from ``conversation.messages``.
    """

    def __init__(
        self,
        llm: Summarizer | None = None,
        window_size: int = DEFAULT_WINDOW_SIZE,
        summarize_threshold: int = DEFAULT_SUMMARIZE_THRESHOLD,
        min_fold: int = MIN_MESSAGES_TO_FOLD,
        max_chars: int = MAX_MESSAGE_CHARS,
    ):
        self.llm = llm
        self.window_size = max(1, int(window_size))
        self.summarize_threshold = max(self.window_size + 1, int(summarize_threshold))
        self.min_fold = max(1, int(min_fold))
        self.max_chars = max(50, int(max_chars))

    def get_recent_messages(self, conversation: Conversation) -> list[Message]:
        return list(conversation.messages[-self.window_size:])

    async def manage(self, conversation: Conversation) -> bool:
        """Compact the conversation if needed. Returns True when it was compacted."""
        messages = conversation.messages
        if len(messages) < self.summarize_threshold:
            return False

        older = messages[:-self.window_size]
        if len(older) < self.min_fold:
            return False
        recent = messages[-self.window_size:]

        summary = ""
        if self.llm is not None:
            try:
                summary = await self._generate_summary(older, conversation.summary)
            except Exception as e:
                log.warning(f"[{conversation.id}] Summarization failed, using basic summary: {e}")
                summary = ""

        if not summary:
            summary = self.basic_summary(older, conversation.summary)
        if not summary:
            log.warning(f"[{conversation.id}] Nothing to summarize; window left untrimmed")
            return False

        conversation.summary = summary
        conversation.messages = list(recent)
        log.info(
            f"[{conversation.id}] Compacted {len(older)} messages into summary "
            f"({len(summary)} chars, {len(recent)} kept)"
        )
        return True

    async def _generate_summary(self, messages: list[Message], existing_summary: str) -> str:
        """Ask the auxiliary model to fold ``messages`` into the running summary."""
        transcript = "\n\n".join(
            f"{'User' if m.role == 'user' else 'Assistant'}: {_truncate(m.content, self.max_chars)}"
            for m in messages
        )
        existing = (
            f"Existing summary (extend it, do not drop facts from it):\n{existing_summary}\n\n"
            if existing_summary
            else ""
        )
        prompt = (
            "You maintain the long-term memory of a coding assistant.\n"
            "Summarize the conversation below in under 300 words.\n\n"
            "Cover these categories when present:\n"
            "- Requests: what the user asked for\n"
            "- Actions: files created or modified, commands run\n"
            "- Decisions: technical choices that were made\n"
            "- Pending: work that is still open\n\n"
            "Write in the past tense only (\"created\", \"fixed\", \"decided\"). "
            "Describe what happened, never the current state of files.\n\n"
            f"{existing}"
            f"Conversation:\n{transcript}\n\n"
            "Summary:"
        )
        summary = await self.llm.summarize(prompt)
        return (summary or "").strip()

    @staticmethod
    def basic_summary(messages: list[Message], existing_summary: str = "") -> str:
        """Deterministic fallback: truncated user requests plus an assistant-turn count."""
        requests = [_truncate(m.content, BASIC_REQUEST_CHARS) for m in messages if m.role == "user" and m.content]
        replies = sum(1 for m in messages if m.role == "assistant")
        if not requests and not replies:
            return existing_summary

        summary = f"User requests: {'; '.join(requests)}\nAI responses: {replies}"
        if existing_summary:
            return f"{existing_summary}\n\n--- Recent ---\n{summary}"
        return summary
