"""Route SIGINT/SIGTERM to the relay's graceful shutdown."""

from __future__ import annotations

import asyncio
import logging
import signal
from collections.abc import Iterable
from typing import Any, Protocol

logger = logging.getLogger(__name__)

DEFAULT_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class _Stoppable(Protocol):
    async def shutdown(self, *, signal_name: str | None = None) -> None: ...


def install_handlers(
    loop: asyncio.AbstractEventLoop,
    manager: _Stoppable,
    *,
    signals: Iterable[signal.Signals] = DEFAULT_SIGNALS,
) -> list[signal.Signals]:
    """Call ``manager.shutdown(signal_name=...)`` when any of *signals* arrives.

    Returns the signals the loop accepted; platforms without
    ``add_signal_handler`` support simply get fewer.
    """
    tasks: set[asyncio.Task[None]] = set()

    def _on_signal(sig: signal.Signals) -> None:
        logger.info("Received signal %s, shutting down", sig.name)
        task = loop.create_task(manager.shutdown(signal_name=sig.name))
        tasks.add(task)
        task.add_done_callback(tasks.discard)

    installed: list[signal.Signals] = []
    for sig in signals:
        try:
            loop.add_signal_handler(sig, _on_signal, sig)
        except (NotImplementedError, RuntimeError, ValueError) as exc:
            logger.warning("Could not set %s handler: %s", sig.name, exc)
            continue
        installed.append(sig)
    return installed


class SignalHandlers:
    """``async with`` scope that owns the shutdown signal handlers."""

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        manager: _Stoppable,
        *,
        signals: Iterable[signal.Signals] = DEFAULT_SIGNALS,
    ) -> None:
        self._loop = loop
        self._manager = manager
        self._signals = signals
        self._installed: list[signal.Signals] = []

    async def __aenter__(self) -> SignalHandlers:
        self._installed = install_handlers(self._loop, self._manager, signals=self._signals)
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        for sig in self._installed:
            self._loop.remove_signal_handler(sig)
        self._installed = []


__all__ = ["install_handlers", "SignalHandlers", "DEFAULT_SIGNALS"]
