"""Per-conversation session cache with write-through persistence."""

from __future__ import annotations

from memory import ConversationMemory, SessionDatabase, now_ms

from .logging_setup import log
from .types import Conversation, ConversationContext, Message

SUMMARY_PREVIEW_CHARS = 100


class SessionStore:
    """
    One cached ``Conversation`` per conversation id, persisted on every change.

    The cache is the only conversation state shared across queue workers; each
    conversation id is mutated only by its own worker.
    """

    def __init__(self, db: SessionDatabase, memory: ConversationMemory, workspace_path: str | None = None):
        self.db = db
        self.memory = memory
        self.workspace_path = workspace_path
        self._cache: dict[str, Conversation] = {}

    def get_session(self, conversation_id: str) -> Conversation:
        """Load-or-create the conversation, caching it for later calls."""
        key = str(conversation_id)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        conversation = None
        record = self.db.load(key)
        if record is not None:
            try:
                conversation = Conversation.from_record({**record, "id": key})
            except (KeyError, TypeError, ValueError) as e:
                log.warning(f"[{key}] Failed to load session, starting fresh: {e}")
        if conversation is None:
            conversation = Conversation(id=key)

        self._cache[key] = conversation
        return conversation

    def save_session(self, conversation_id: str):
        key = str(conversation_id)
        conversation = self._cache.get(key)
        if conversation is None:
            return
        conversation.last_active = now_ms()
        self.db.save(key, conversation.to_record())

    async def add_message(self, conversation_id: str, role: str, content: str) -> Message:
        """Append a message, run memory compaction, then persist."""
        conversation = self.get_session(conversation_id)
        message = Message(role=role, content=content)
        conversation.messages.append(message)
        await self.memory.manage(conversation)
        self.save_session(conversation_id)
        return message

    def build_context(self, conversation_id: str) -> ConversationContext:
        conversation = self.get_session(conversation_id)
        return ConversationContext(
            conversation_id=conversation.id,
            summary=conversation.summary,
            recent_messages=self.memory.get_recent_messages(conversation),
            goals=list(conversation.goals),
            tech_stack=list(conversation.tech_stack),
            workspace_path=self.workspace_path,
        )

    def clear_session(self, conversation_id: str) -> Conversation:
        """Reset memory for the conversation while keeping its id and tech stack."""
        conversation = self.get_session(conversation_id)
        conversation.summary = ""
        conversation.messages = []
        conversation.goals = []
        conversation.created_at = now_ms()
        self.save_session(conversation_id)
        log.info(f"[{conversation.id}] Session cleared")
        return conversation

    def delete_session(self, conversation_id: str) -> bool:
        key = str(conversation_id)
        self._cache.pop(key, None)
        deleted = self.db.delete(key)
        log.info(f"[{key}] Session deleted")
        return deleted

    def evict(self, conversation_id: str):
        """Drop the cache entry only; the persisted record is untouched."""
        self._cache.pop(str(conversation_id), None)

    def is_cached(self, conversation_id: str) -> bool:
        return str(conversation_id) in self._cache

    def list_sessions(self) -> list[dict]:
        sessions = []
        for record in self.db.list():
            summary = record.get("summary") or ""
            sessions.append({
                "id": record.get("id"),
                "created_at": record.get("created_at"),
                "last_active": record.get("last_active"),
                "message_count": len(record.get("messages") or []),
                "summary": summary[:SUMMARY_PREVIEW_CHARS],
            })
        return sessions
