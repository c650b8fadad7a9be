"""Per-conversation FIFO work queues."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

from ..logging_setup import log

Job = Callable[[], Awaitable[None]]


class ConversationQueues:
    """
    One FIFO queue and one worker task per conversation id.

    Jobs for the same conversation run strictly one after another in arrival
    order; different conversations run concurrently. A worker is created on
    demand and retires as soon as its queue is empty. A failing job is logged
    and never stops the worker.
    """

    def __init__(self):
        self._queues: dict[str, asyncio.Queue[Job]] = {}
        self._workers: dict[str, asyncio.Task] = {}

    def enqueue(self, conversation_id: str, job: Job) -> int:
        """Queue ``job``; returns how many jobs are now waiting for this conversation."""
        queue = self._queues.get(conversation_id)
        if queue is None:
            queue = asyncio.Queue()
            self._queues[conversation_id] = queue
        queue.put_nowait(job)

        if conversation_id not in self._workers:
            self._workers[conversation_id] = asyncio.create_task(
                self._worker(conversation_id, queue), name=f"conversation-{conversation_id}"
            )
        return queue.qsize()

    async def _worker(self, conversation_id: str, queue: asyncio.Queue[Job]):
        try:
            while True:
                # No await between the emptiness check and retirement, so a job
                # enqueued meanwhile always finds either this worker or none.
                try:
                    job = queue.get_nowait()
                except asyncio.QueueEmpty:
                    break
                try:
                    await job()
                except Exception as e:
                    log.exception(f"[{conversation_id}] Queued job failed: {e}")
                finally:
                    queue.task_done()
        finally:
            if self._workers.get(conversation_id) is asyncio.current_task():
                self._workers.pop(conversation_id, None)
            if queue.empty() and self._queues.get(conversation_id) is queue:
                self._queues.pop(conversation_id, None)

    def pending(self, conversation_id: str) -> int:
        queue = self._queues.get(conversation_id)
        return queue.qsize() if queue is not None else 0

    def is_busy(self, conversation_id: str) -> bool:
        return conversation_id in self._workers

    def active_conversations(self) -> list[str]:
        return list(self._workers)

    async def join(self, conversation_id: str | None = None):
        """Wait until the given conversation (or every conversation) has drained."""
        if conversation_id is not None:
            worker = self._workers.get(conversation_id)
            if worker is not None:
                await asyncio.shield(worker)
            return
        while self._workers:
            await asyncio.gather(*[asyncio.shield(w) for w in list(self._workers.values())])

    async def shutdown(self, timeout: float = 10.0):
        """Let in-flight work finish for up to ``timeout`` seconds, then cancel the rest."""
        workers = list(self._workers.values())
        if not workers:
            return
        _, pending = await asyncio.wait(workers, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            log.warning(f"Cancelled {len(pending)} conversation worker(s) at shutdown")
        self._workers.clear()
        self._queues.clear()
