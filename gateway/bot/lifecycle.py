"""Polling lifecycle and graceful shutdown."""

from __future__ import annotations

from ..logging_setup import log


class BotLifecycleMixin:
    _closed = False

    async def run(self):
        """Poll Telegram until stopped, then release every resource."""
        await self.transport.initialize()
        try:
            await self.transport.poll(self.on_message, self.on_callback)
        finally:
            await self.shutdown()

    def request_stop(self):
        log.info("Stop requested; finishing in-flight work")
        self.transport.stop()

    async def shutdown(self, drain_timeout: float = 10.0):
        if self._closed:
            return
        self._closed = True

        self.transport.stop()
        # Denying pending confirmations unblocks workers waiting on a button press.
        self.confirmations.clear_all()
        await self.queues.shutdown(timeout=drain_timeout)
        await self.llm.aclose()
        self.session_db.close()
        await self.transport.shutdown()
        log.info("DevGate stopped")
