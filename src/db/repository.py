"""
Protocol for the shared room store (implemented in memory and with SQLAlchemy).

The store is passive storage: it keeps plain JSON-like dicts and validates nothing.
Every peer talks to the store through its own client object, which also remembers
the peer's live-feed subscriptions and "on disconnect" writes.
"""

import logging
from collections import deque
from typing import Any, Callable, Optional, Protocol

logger = logging.getLogger(__name__)

RoomData = dict[str, Any]
MoveData = dict[str, Any]
RoomCallback = Callable[[Optional[RoomData]], None]
MovesCallback = Callable[[dict[int, MoveData]], None]


class RoomStore(Protocol):
    """Persistence + live feeds for rooms"""

    def is_ready(self) -> bool:
        """Connected and usable."""
        ...

    def get_room(self, room_id: str) -> RoomData | None:
        """Read the room record once, if it exists. Includes its `sequence`."""
        ...

    def create_room(self, room_id: str, data: RoomData) -> None:
        """Write a full room record (overwrites whatever was there). Sequence starts at 0."""
        ...

    def update_room(
        self, room_id: str, changes: RoomData, expected_sequence: Optional[int] = None
    ) -> RoomData:
        """Merge changes into the record and bump its sequence.

        Raises SequenceConflictError if `expected_sequence` is given and does not match.
        """
        ...

    def set_seat(self, room_id: str, color: str, occupied: bool) -> None:
        """Mark a seat in `players` as (un)occupied."""
        ...

    def delete_room(self, room_id: str) -> None:
        """Remove the room and its move log."""
        ...

    def put_move(self, room_id: str, index: int, data: MoveData) -> None:
        """Write one move-log entry at the given index."""
        ...

    def get_moves(self, room_id: str) -> dict[int, MoveData]:
        ...

    def subscribe_room(self, room_id: str, callback: RoomCallback) -> "Subscription":
        """Live feed of the room record (None once deleted). Fires once right away."""
        ...

    def subscribe_moves(self, room_id: str, callback: MovesCallback) -> "Subscription":
        """Live feed of the whole move log. Fires once right away."""
        ...

    def on_disconnect_seat(self, room_id: str, color: str) -> None:
        """Register: free this seat when this client loses its connection."""
        ...

    def cancel_on_disconnect(self, room_id: str) -> None:
        ...

    def disconnect(self) -> None:
        """Close the connection: run the registered disconnect writes, drop subscriptions."""
        ...


class Subscription:
    """Handle to a live feed. Once cancelled, pending notifications are dropped."""

    def __init__(self, room_id: str, callback: Callable[[Any], None]) -> None:
        self.room_id = room_id
        self.callback = callback
        self.active = True

    def cancel(self) -> None:
        self.active = False


class NotificationQueue:
    """
    Delivers notifications one at a time, each running to completion.

    A callback that writes to the store (and so triggers new notifications) does not
    re-enter other callbacks: the new notifications get queued and delivered afterwards.
    """

    def __init__(self) -> None:
        self._pending: deque[tuple[Subscription, Any]] = deque()
        self._draining = False

    def push(self, subscription: Subscription, payload: Any) -> None:
        self._pending.append((subscription, payload))
        self.drain()

    def drain(self) -> None:
        if self._draining:
            return
        self._draining = True
        try:
            while self._pending:
                subscription, payload = self._pending.popleft()
                if not subscription.active:
                    logger.debug("Dropping notification for cancelled subscription")
                    continue
                subscription.callback(payload)
        finally:
            self._draining = False
