"""
ASGI lifespan handler.

Timers need the server's event loop, which only exists once the server is
running, so the periodic backup starts on ``lifespan.startup`` and every
timer is cancelled on ``lifespan.shutdown``.
"""
import logging

from .container import get_container

logger = logging.getLogger(__name__)


class StoreLifespan:
    async def __call__(self, scope, receive, send):
        while True:
            message = await receive()
            if message["type"] == "lifespan.startup":
                try:
                    await get_container().start()
                except Exception as exc:
                    logger.exception("local store failed to start")
                    await send({"type": "lifespan.startup.failed", "message": str(exc)})
                    return
                await send({"type": "lifespan.startup.complete"})
            elif message["type"] == "lifespan.shutdown":
                get_container().close()
                await send({"type": "lifespan.shutdown.complete"})
                return
