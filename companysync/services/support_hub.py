import asyncio
from typing import Any, Dict, Set, Tuple

from fastapi import WebSocket

from ..logging import get_logger

log = get_logger("companysync.support_hub")

# (user_id, connected as moderator)
ConnKey = Tuple[int, bool]


class SupportHub:
    """WebSocket fan-out for support chat. One instance per app, kept on app.state."""

    def __init__(self) -> None:
        self._connections: Dict[ConnKey, Set[WebSocket]] = {}
        self._lock = asyncio.Lock()

    async def connect(self, user_id: int, ws: WebSocket, moderator: bool = False) -> None:
        async with self._lock:
            conns = self._connections.setdefault((user_id, moderator), set())
            conns.add(ws)

    async def disconnect(self, user_id: int, ws: WebSocket, moderator: bool = False) -> None:
        async with self._lock:
            conns = self._connections.get((user_id, moderator))
            if conns is not None:
                conns.discard(ws)
                if not conns:
                    self._connections.pop((user_id, moderator), None)

    async def send(self, user_id: int, event: str, payload: Any, moderator: bool = False) -> int:
        """Best-effort push; returns the number of sockets reached."""
        data = {"event": event, "data": payload}
        async with self._lock:
            targets = list(self._connections.get((user_id, moderator), set()))
        sent = 0
        for ws in targets:
            try:
                await ws.send_json(data)
                sent += 1
            except (RuntimeError, ConnectionError) as e:
                log.info("support_hub.send_failed", user_id=user_id, moderator=moderator, error=str(e))
        return sent

    def is_connected(self, user_id: int, moderator: bool = False) -> bool:
        return bool(self._connections.get((user_id, moderator)))
