"""Implementation of RoomStore keeping everything in process memory (push notifications)"""

import logging
from copy import deepcopy
from typing import Optional

from src.core.exceptions import RoomNotFoundError, SequenceConflictError
from src.db.repository import (
    MoveData,
    MovesCallback,
    NotificationQueue,
    RoomCallback,
    RoomData,
    Subscription,
)

logger = logging.getLogger(__name__)


class InMemoryRoomBackend:
    """The shared 'server'. Peers connect to it with an InMemoryRoomStore each."""

    def __init__(self) -> None:
        self.rooms: dict[str, RoomData] = {}
        self.moves: dict[str, dict[int, MoveData]] = {}
        self.room_subscriptions: list[Subscription] = []
        self.move_subscriptions: list[Subscription] = []
        self.queue = NotificationQueue()

    def notify_room(self, room_id: str) -> None:
        data = self.rooms.get(room_id)
        for subscription in self._live(self.room_subscriptions, room_id):
            self.queue.push(subscription, deepcopy(data))

    def notify_moves(self, room_id: str) -> None:
        moves = self.moves.get(room_id, {})
        for subscription in self._live(self.move_subscriptions, room_id):
            self.queue.push(subscription, deepcopy(moves))

    @staticmethod
    def _live(subscriptions: list[Subscription], room_id: str) -> list[Subscription]:
        # drop cancelled ones while we are at it
        subscriptions[:] = [sub for sub in subscriptions if sub.active]
        return [sub for sub in subscriptions if sub.room_id == room_id]


class InMemoryRoomStore:
    """One peer's client connection to an InMemoryRoomBackend"""

    def __init__(self, backend: InMemoryRoomBackend, ready: bool = True) -> None:
        self.backend = backend
        self.ready = ready
        self._subscriptions: list[Subscription] = []
        self._disconnect_seats: dict[str, str] = {}

    def is_ready(self) -> bool:
        return self.ready

    def get_room(self, room_id: str) -> RoomData | None:
        data = self.backend.rooms.get(room_id)
        return deepcopy(data) if data is not None else None

    def create_room(self, room_id: str, data: RoomData) -> None:
        record = deepcopy(data)
        record["sequence"] = 0
        self.backend.rooms[room_id] = record
        self.backend.moves[room_id] = {}
        self.backend.notify_room(room_id)

    def update_room(
        self, room_id: str, changes: RoomData, expected_sequence: Optional[int] = None
    ) -> RoomData:
        record = self._fetch_room(room_id)
        current = record.get("sequence", 0)
        if expected_sequence is not None and expected_sequence != current:
            raise SequenceConflictError(
                f"Room {room_id} is at sequence {current}, expected {expected_sequence}"
            )
        record.update(deepcopy(changes))
        record["sequence"] = current + 1
        self.backend.notify_room(room_id)
        return deepcopy(record)

    def set_seat(self, room_id: str, color: str, occupied: bool) -> None:
        record = self._fetch_room(room_id)
        record.setdefault("players", {})[color] = occupied
        self.backend.notify_room(room_id)

    def delete_room(self, room_id: str) -> None:
        self.backend.rooms.pop(room_id, None)
        self.backend.moves.pop(room_id, None)
        self.backend.notify_room(room_id)
        self.backend.notify_moves(room_id)

    def put_move(self, room_id: str, index: int, data: MoveData) -> None:
        self._fetch_room(room_id)
        self.backend.moves.setdefault(room_id, {})[index] = deepcopy(data)
        self.backend.notify_moves(room_id)

    def get_moves(self, room_id: str) -> dict[int, MoveData]:
        return deepcopy(self.backend.moves.get(room_id, {}))

    def subscribe_room(self, room_id: str, callback: RoomCallback) -> Subscription:
        subscription = Subscription(room_id, callback)
        self._subscriptions.append(subscription)
        self.backend.room_subscriptions.append(subscription)
        self.backend.queue.push(subscription, self.get_room(room_id))
        return subscription

    def subscribe_moves(self, room_id: str, callback: MovesCallback) -> Subscription:
        subscription = Subscription(room_id, callback)
        self._subscriptions.append(subscription)
        self.backend.move_subscriptions.append(subscription)
        self.backend.queue.push(subscription, self.get_moves(room_id))
        return subscription

    def on_disconnect_seat(self, room_id: str, color: str) -> None:
        self._disconnect_seats[room_id] = color

    def cancel_on_disconnect(self, room_id: str) -> None:
        self._disconnect_seats.pop(room_id, None)

    def disconnect(self) -> None:
        """Simulates the connection dropping: the server runs the registered writes."""
        for subscription in self._subscriptions:
            subscription.cancel()
        self._subscriptions.clear()
        self.ready = False

        for room_id, color in self._disconnect_seats.items():
            if room_id in self.backend.rooms:
                logger.info("Connection lost: freeing %s seat in room %s", color, room_id)
                self.backend.rooms[room_id].setdefault("players", {})[color] = False
                self.backend.notify_room(room_id)
        self._disconnect_seats.clear()

    def _fetch_room(self, room_id: str) -> RoomData:
        record = self.backend.rooms.get(room_id)
        if record is None:
            raise RoomNotFoundError(f"Room {room_id} not found.")
        return record
