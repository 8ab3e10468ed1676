from __future__ import annotations

import asyncio
import logging

from chatrelay.core.containers import Container
from chatrelay.core.lifecycle import ServerLifecycle
from chatrelay.utils.signals import SignalHandlers

logger = logging.getLogger(__name__)


async def launch(
    *,
    host: str | None = None,
    port: int | None = None,
    prefix: str | None = None,
    container: Container | None = None,
) -> None:
    """Build the services and serve until SIGINT/SIGTERM.

    Configuration errors and bind failures propagate to the caller.
    """
    lifecycle = ServerLifecycle(container, host=host, port=port, prefix=prefix)
    loop = asyncio.get_running_loop()
    async with SignalHandlers(loop, lifecycle):
        await lifecycle.run()
    logger.info("launch completed.")
