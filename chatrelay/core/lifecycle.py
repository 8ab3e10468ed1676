from __future__ import annotations

import asyncio
import logging
from enum import Enum, auto

from aiohttp import web

from chatrelay.core import telemetry
from chatrelay.core.chatbot import Chatbot
from chatrelay.core.containers import Container
from chatrelay.history.backends import ConversationStore
from chatrelay.web.http import create_app, start_http_server

logger = logging.getLogger(__name__)


class LifecycleState(Enum):
    IDLE = auto()
    STARTING = auto()
    RUNNING = auto()
    SHUTTING_DOWN = auto()
    STOPPED = auto()


class ServerLifecycle:
    """Owns the HTTP server, the limiter cleanup task and orderly shutdown."""

    def __init__(
        self,
        container: Container | None = None,
        *,
        host: str | None = None,
        port: int | None = None,
        prefix: str | None = None,
    ) -> None:
        self._container = container or Container()
        self._host = host
        self._port = port
        self._prefix = prefix
        self._state: LifecycleState = LifecycleState.IDLE
        self._chatbot: Chatbot | None = None
        self._store: ConversationStore | None = None
        self._runner: web.AppRunner | None = None
        self._cleanup_task: asyncio.Task[None] | None = None
        self._shutdown_event = asyncio.Event()
        self._stopped = asyncio.Event()

    @property
    def state(self) -> LifecycleState:
        return self._state

    def _set_state(self, new_state: LifecycleState) -> None:
        if self._state == new_state:
            return
        logger.info("Lifecycle state changing from %s to %s", self._state.name, new_state.name)
        self._state = new_state

    async def start(self) -> None:
        """Build services and start serving; returns once the socket is bound."""
        if self._state != LifecycleState.IDLE:
            logger.warning("start() called in state %s; ignoring", self._state.name)
            return
        self._set_state(LifecycleState.STARTING)

        settings = self._container.settings()
        try:
            telemetry.start_exporter(settings.metrics_port)
        except OSError as e:
            logger.warning("Failed to start telemetry exporter: %s", e)

        self._chatbot = self._container.chatbot()
        self._store = self._container.conversation_store()
        app = create_app(
            self._chatbot,
            prefix=self._prefix or settings.chatbot_route_prefix,
            conversation_store=self._store,
        )
        self._runner = await start_http_server(
            app,
            host=self._host or settings.chatbot_host,
            port=self._port if self._port is not None else settings.chatbot_port,
        )
        self._cleanup_task = self._chatbot.limiter.start_cleanup_task(self._shutdown_event)
        self._set_state(LifecycleState.RUNNING)

    async def run(self) -> None:
        """Start, then block until :meth:`shutdown` completes."""
        try:
            await self.start()
            await self._shutdown_event.wait()
        finally:
            await self.shutdown()
            await self._stopped.wait()

    async def shutdown(self, *, signal_name: str | None = None) -> None:
        if self._state in (LifecycleState.SHUTTING_DOWN, LifecycleState.STOPPED):
            return
        if signal_name:
            logger.info("Shutdown requested by %s", signal_name)
        self._set_state(LifecycleState.SHUTTING_DOWN)
        self._shutdown_event.set()
        try:
            if self._cleanup_task is not None:
                await asyncio.wait({self._cleanup_task})
            if self._runner is not None:
                await self._runner.cleanup()
            if self._chatbot is not None:
                await self._chatbot.close()
            if self._store is not None:
                await self._store.close()
        finally:
            self._set_state(LifecycleState.STOPPED)
            self._stopped.set()


__all__ = ["ServerLifecycle", "LifecycleState"]
