"""HTTP polling transport between the call client and the signaling mailbox."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from chatcall.config import settings
from chatcall.models import SignalingMessage

logger = logging.getLogger(__name__)

Dispatch = Callable[[Dict[str, Any]], Awaitable[None]]


class SignalingClient:
    """Request/response access to ``/api/calls``.

    Network failures are logged and reported as ``False`` or an empty batch;
    the next poll tick is the retry.
    """

    def __init__(
        self,
        base_url: str = settings.SIGNALING_URL,
        http: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ) -> None:
        self._http = http or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def _action(self, action: str, room_id: str, user_id: str) -> Optional[Any]:
        try:
            response = await self._http.get(
                "/api/calls", params={"action": action, "userId": user_id, "roomId": room_id}
            )
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"❌ Call {action} failed for {user_id} in {room_id}: {e}")
            return None

    async def join(self, room_id: str, user_id: str) -> bool:
        return await self._action("join", room_id, user_id) is not None

    async def leave(self, room_id: str, user_id: str) -> bool:
        return await self._action("leave", room_id, user_id) is not None

    async def poll(self, room_id: str, user_id: str) -> List[Dict[str, Any]]:
        body = await self._action("poll", room_id, user_id)
        messages = body.get("messages") if isinstance(body, dict) else None
        if not isinstance(messages, list):
            if body is not None:
                logger.warning("Unexpected poll response for %s in %s: %r", user_id, room_id, body)
            return []
        return [message for message in messages if isinstance(message, dict)]

    async def send(self, message: SignalingMessage) -> bool:
        try:
            response = await self._http.post("/api/calls", json=message.to_wire())
            response.raise_for_status()
            return True
        except httpx.HTTPError as e:
            logger.error(f"❌ Failed to send {message.type} signaling message: {e}")
            return False

    async def aclose(self) -> None:
        await self._http.aclose()


class PollingTransport:
    """Drains one user's mailbox on a fixed interval.

    Only one timer runs at a time; ``start`` replaces any running one.
    """

    def __init__(self, client: SignalingClient, dispatch: Dispatch, interval: float = settings.POLL_INTERVAL) -> None:
        self._client = client
        self._dispatch = dispatch
        self.interval = interval
        self._task: Optional[asyncio.Task] = None
        self.room_id: Optional[str] = None
        self.user_id: Optional[str] = None

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, room_id: str, user_id: str) -> None:
        self.stop()
        self.room_id = room_id
        self.user_id = user_id
        self._task = asyncio.create_task(self._run(room_id, user_id))
        logger.debug("Polling %s for %s every %.2fs", room_id, user_id, self.interval)

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None
        self.room_id = None
        self.user_id = None

    async def poll_once(self, room_id: str, user_id: str) -> int:
        messages = await self._client.poll(room_id, user_id)
        if messages:
            logger.info(f"📞 Received {len(messages)} signaling messages")
        for message in messages:
            try:
                await self._dispatch(message)
            except Exception:
                logger.exception("Error handling %s message", message.get("type"))
        return len(messages)

    async def _run(self, room_id: str, user_id: str) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.poll_once(room_id, user_id)
            except Exception:
                logger.exception("Poll for %s in %s failed", user_id, room_id)
