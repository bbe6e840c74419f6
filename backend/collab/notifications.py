"""
Notification hub - tells viewers of a project that someone committed.

Two transports share one contract:
- long poll: a request waits on a future until an update or a timeout
- websocket rooms: every live connection of a project gets a message

Delivery is at most once. Nothing is queued for viewers that are not
waiting when an update is published; they re-fetch on (re)connect anyway.
"""

import asyncio
import json
import logging
from typing import Dict, List, Optional, Set

from fastapi import WebSocket

from config import LONG_POLL_TIMEOUT_SECONDS
from storage.models import Update

logger = logging.getLogger(__name__)


class NotificationHub:
    """Project-keyed long-poll waiters and websocket rooms."""

    def __init__(self, poll_timeout: float = LONG_POLL_TIMEOUT_SECONDS):
        self.poll_timeout = poll_timeout
        # project_id -> futures of requests currently waiting
        self._waiters: Dict[str, List[asyncio.Future]] = {}
        # project_id -> live websocket connections
        self._rooms: Dict[str, Set[WebSocket]] = {}
        self._lock = asyncio.Lock()

    # ─────────────────────────────────────────────────────────────────────────
    # Long poll
    # ─────────────────────────────────────────────────────────────────────────

    async def subscribe(self, project_id: str, timeout: Optional[float] = None) -> Optional[Update]:
        """
        Wait for the next update on a project.

        Returns:
            The update, or None if nothing was published before the timeout
        """
        waiter = asyncio.get_running_loop().create_future()
        async with self._lock:
            self._waiters.setdefault(project_id, []).append(waiter)

        try:
            return await asyncio.wait_for(waiter, timeout if timeout is not None else self.poll_timeout)
        except asyncio.TimeoutError:
            return None
        finally:
            # Runs on delivery, timeout and on cancellation (client went away)
            async with self._lock:
                waiters = self._waiters.get(project_id)
                if waiters and waiter in waiters:
                    waiters.remove(waiter)
                    if not waiters:
                        del self._waiters[project_id]

    def waiting_count(self, project_id: str) -> int:
        return len(self._waiters.get(project_id, []))

    # ─────────────────────────────────────────────────────────────────────────
    # Websocket rooms
    # ─────────────────────────────────────────────────────────────────────────

    async def join(self, project_id: str, websocket: WebSocket) -> None:
        async with self._lock:
            self._rooms.setdefault(project_id, set()).add(websocket)
            count = len(self._rooms[project_id])
        logger.info(f"Room {project_id}: {count} connected")

    async def leave(self, project_id: str, websocket: WebSocket) -> None:
        async with self._lock:
            self._remove_from_room(project_id, websocket)

    def _remove_from_room(self, project_id: str, websocket: WebSocket) -> None:
        # Caller holds the lock
        room = self._rooms.get(project_id)
        if room is None:
            return
        room.discard(websocket)
        if not room:
            del self._rooms[project_id]
            logger.info(f"Room {project_id}: no connections left, room closed")

    def get_room_size(self, project_id: str) -> int:
        return len(self._rooms.get(project_id, set()))

    def get_active_rooms(self) -> Dict[str, int]:
        return {project: len(clients) for project, clients in self._rooms.items()}

    async def broadcast(self, project_id: str, message: str,
                        sender: Optional[WebSocket] = None) -> int:
        """
        Send a text message to every connection in a room except sender.

        Sends go to a snapshot of the room, outside the lock. Connections
        that fail to receive are dropped from the room afterwards.

        Returns:
            Number of connections the message reached
        """
        async with self._lock:
            room = [ws for ws in self._rooms.get(project_id, set()) if ws is not sender]

        delivered = 0
        failed = []
        for websocket in room:
            try:
                await websocket.send_text(message)
                delivered += 1
            except Exception as e:
                logger.warning(f"Room {project_id}: dropping connection after send failure: {e}")
                failed.append(websocket)

        if failed:
            async with self._lock:
                for websocket in failed:
                    self._remove_from_room(project_id, websocket)
        return delivered

    async def relay(self, project_id: str, message: str, sender: WebSocket) -> int:
        """Forward a client's message to the rest of its room."""
        return await self.broadcast(project_id, message, sender=sender)

    # ─────────────────────────────────────────────────────────────────────────
    # Publish
    # ─────────────────────────────────────────────────────────────────────────

    async def publish(self, project_id: str, updated_by: str,
                      sender: Optional[WebSocket] = None) -> int:
        """
        Wake every viewer of a project.

        With nobody listening this does nothing; the update is not kept.

        Returns:
            Number of waiters and connections notified
        """
        update = Update(updated_by=updated_by)

        async with self._lock:
            waiters = self._waiters.pop(project_id, [])
        woken = 0
        for waiter in waiters:
            if not waiter.done():
                waiter.set_result(update)
                woken += 1

        message = json.dumps({"type": "update", **update.to_dict()})
        sent = await self.broadcast(project_id, message, sender=sender)

        if woken or sent:
            logger.info(f"Project {project_id}: update by {updated_by} sent to {woken} pollers, {sent} sockets")
        return woken + sent


# Global instance
notification_hub: Optional[NotificationHub] = None


def initialize_notification_hub(poll_timeout: float = LONG_POLL_TIMEOUT_SECONDS) -> NotificationHub:
    """Initialize the global notification hub."""
    global notification_hub
    notification_hub = NotificationHub(poll_timeout=poll_timeout)
    return notification_hub
