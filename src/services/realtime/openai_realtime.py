"""OpenAI Realtime API link over a WebSocket."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from typing import TYPE_CHECKING, Any

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from src.config import Settings, get_settings
from src.logging_config import get_logger
from src.services.realtime.exceptions import RealtimeConnectionError
from src.services.realtime.protocol import JsonDict

if TYPE_CHECKING:
    from websockets.asyncio.client import ClientConnection

logger: Any = get_logger(__name__)

# Upstream audio deltas can be large; the default 1 MiB frame cap is too small
MAX_MESSAGE_BYTES = 20_000_000
CONNECT_TIMEOUT = 10.0


class OpenAIRealtimeClient:
    """One upstream realtime connection.

    Created per caller session and never reused: once closed, a new
    client is needed for a new connection.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        url: str | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._url = url or self._settings.realtime_endpoint
        self._ws: ClientConnection | None = None
        self._closed = False

    @property
    def is_open(self) -> bool:
        return self._ws is not None and not self._closed

    async def connect(self) -> None:
        if self._ws is not None:
            return
        if self._closed:
            raise RealtimeConnectionError("Realtime link already closed")

        headers = [
            ("Authorization", f"Bearer {self._settings.openai_api_key.get_secret_value()}"),
            ("OpenAI-Beta", "realtime=v1"),
        ]
        try:
            self._ws = await websockets.connect(
                self._url,
                additional_headers=headers,
                max_size=MAX_MESSAGE_BYTES,
                open_timeout=CONNECT_TIMEOUT,
            )
        except (OSError, TimeoutError, WebSocketException) as e:
            raise RealtimeConnectionError(f"Realtime connect failed: {e}") from e

        logger.debug(f"Realtime link open: {self._settings.realtime_model}")

    async def send(self, event: JsonDict) -> None:
        if self._ws is None or self._closed:
            raise RealtimeConnectionError("Realtime link is not open")
        try:
            await self._ws.send(json.dumps(event))
        except ConnectionClosed as e:
            raise RealtimeConnectionError(f"Realtime link closed: {e}") from e

    async def events(self) -> AsyncIterator[JsonDict]:
        if self._ws is None:
            raise RealtimeConnectionError("Realtime link is not open")
        try:
            async for raw in self._ws:
                try:
                    event = json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning("Discarding non-JSON realtime frame")
                    continue
                if isinstance(event, dict):
                    yield event
        except ConnectionClosed as e:
            if not self._closed:
                raise RealtimeConnectionError(f"Realtime link dropped: {e}") from e

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._ws is not None:
            try:
                await self._ws.close()
            except Exception as e:
                logger.debug(f"Error closing realtime link: {e}")
