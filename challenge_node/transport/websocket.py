from __future__ import annotations

import json
import uuid
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from challenge_node.errors import ConnectionClosedError


class WebSocketConnection:
    """Live transport adapter: one accepted WebSocket speaking `{"event", "data"}` frames."""

    def __init__(self, websocket: WebSocket, connection_id: str | None = None):
        self.websocket = websocket
        self.connection_id = connection_id or f"ws-{uuid.uuid4().hex[:12]}"

    async def send(self, event: str, payload: dict[str, Any]) -> None:
        if self.websocket.application_state != WebSocketState.CONNECTED:
            raise ConnectionClosedError(f"{self.connection_id} is no longer connected")
        try:
            await self.websocket.send_json({"event": event, "data": payload})
        except (WebSocketDisconnect, RuntimeError) as exc:
            raise ConnectionClosedError(f"{self.connection_id}: {exc}") from exc

    async def receive(self) -> Any:
        """Next decoded frame. Text and binary frames both carry JSON; anything
        that does not decode raises ValueError."""
        message = await self.websocket.receive()
        if message["type"] == "websocket.disconnect":
            raise WebSocketDisconnect(message.get("code", 1000), message.get("reason"))

        text = message.get("text")
        if text is not None:
            return json.loads(text)
        return json.loads(message.get("bytes") or b"")

    def __repr__(self) -> str:
        return f"WebSocketConnection({self.connection_id!r})"
