"""Websocket implementation of the per-connection transport handle."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from fastapi import WebSocket
from starlette.websockets import WebSocketState

logger = logging.getLogger(__name__)


class WebSocketTransport:
    """Wrap an accepted :class:`WebSocket` so concurrent senders never interleave."""

    def __init__(self, websocket: WebSocket) -> None:
        self._websocket = websocket
        self._send_lock = asyncio.Lock()

    async def send_json(self, message: dict[str, Any]) -> None:
        async with self._send_lock:
            await self._websocket.send_json(message)

    async def close(self, code: int = 1000) -> None:
        if self._websocket.application_state == WebSocketState.DISCONNECTED:
            return
        try:
            await self._websocket.close(code=code)
        except RuntimeError as exc:
            logger.debug("Websocket already closed: %s", exc)


__all__ = ["WebSocketTransport"]
