"""
Implementation of RoomStore using SQLAlchemy
----

A SQL database cannot push changes. Writes made through this client notify its own
subscribers right away; writes made by other clients (other processes, other sessions)
are picked up by `poll()`, which the host calls on a timer.
"""

import logging
from copy import deepcopy
from typing import Any, Callable, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.core.exceptions import RepositoryError, RoomNotFoundError, SequenceConflictError
from src.db.repository import (
    MoveData,
    MovesCallback,
    NotificationQueue,
    RoomCallback,
    RoomData,
    Subscription,
)
from src.db.schema import DBMove, DBRoom, utc_now

logger = logging.getLogger(__name__)

# read-modify-write attempts before giving up on a busy room
WRITE_ATTEMPTS = 5


class SQLRoomStore:
    """Data stored using SQL / methods implemented using SQLAlchemy"""

    def __init__(self, db_session: Session) -> None:
        self.db = db_session
        self.queue = NotificationQueue()
        self._connected = True
        self._room_subscriptions: list[Subscription] = []
        self._move_subscriptions: list[Subscription] = []
        # last state delivered per room: revision (None = no room) and move count
        self._seen_revision: dict[str, Optional[int]] = {}
        self._seen_move_count: dict[str, int] = {}
        self._disconnect_seats: dict[str, str] = {}

    def is_ready(self) -> bool:
        if not self._connected:
            return False
        try:
            self.db.execute(select(1))
            self.db.commit()
        except SQLAlchemyError as exc:
            logger.warning("Room store not reachable: %s", exc)
            self.db.rollback()
            return False
        return True

    # --- READS ---
    def get_room(self, room_id: str) -> RoomData | None:
        room_db = self._fetch_room(room_id)
        if room_db is None:
            return None
        return self._to_data(room_db)

    def get_moves(self, room_id: str) -> dict[int, MoveData]:
        query = (
            select(DBMove)
            .where(DBMove.room_id == room_id)
            .order_by(DBMove.move_index)
            .execution_options(populate_existing=True)
        )
        return {move.move_index: deepcopy(move.data) for move in self.db.scalars(query)}

    # --- WRITES ---
    def create_room(self, room_id: str, data: RoomData) -> None:
        record = {key: value for key, value in data.items() if key != "sequence"}
        self._replace_room(room_id, record)
        self._commit()
        self.poll()

    def update_room(
        self, room_id: str, changes: RoomData, expected_sequence: Optional[int] = None
    ) -> RoomData:
        changes = {key: value for key, value in changes.items() if key != "sequence"}

        def _merge(data: RoomData) -> RoomData:
            data.update(deepcopy(changes))
            return data

        self._write_room(room_id, _merge, expected_sequence, bump_sequence=True)
        room = self.get_room(room_id)
        if room is None:
            raise RoomNotFoundError(f"Room {room_id} not found.")
        return room

    def set_seat(self, room_id: str, color: str, occupied: bool) -> None:
        def _seat(data: RoomData) -> RoomData:
            data.setdefault("players", {})[color] = occupied
            return data

        self._write_room(room_id, _seat)

    def delete_room(self, room_id: str) -> None:
        self.db.execute(delete(DBMove).where(DBMove.room_id == room_id))
        self.db.execute(delete(DBRoom).where(DBRoom.id == room_id))
        self._commit()
        self.poll()

    def put_move(self, room_id: str, index: int, data: MoveData) -> None:
        self._require_room(room_id)
        self.db.merge(DBMove(room_id=room_id, move_index=index, data=deepcopy(data)))
        self._commit()
        self.poll()

    # --- LIVE FEEDS ---
    def subscribe_room(self, room_id: str, callback: RoomCallback) -> Subscription:
        subscription = Subscription(room_id, callback)
        self._room_subscriptions.append(subscription)
        room = self.get_room(room_id)
        self._seen_revision[room_id] = self._current_revision(room_id)
        self.db.commit()
        self.queue.push(subscription, room)
        return subscription

    def subscribe_moves(self, room_id: str, callback: MovesCallback) -> Subscription:
        subscription = Subscription(room_id, callback)
        self._move_subscriptions.append(subscription)
        moves = self.get_moves(room_id)
        self._seen_move_count[room_id] = len(moves)
        self.db.commit()
        self.queue.push(subscription, moves)
        return subscription

    def poll(self) -> None:
        """Deliver whatever changed in the watched rooms since the last delivery."""
        self.db.expire_all()
        self._room_subscriptions = [s for s in self._room_subscriptions if s.active]
        self._move_subscriptions = [s for s in self._move_subscriptions if s.active]

        pending: list[tuple[Subscription, Any]] = []
        for room_id in {sub.room_id for sub in self._room_subscriptions}:
            revision = self._current_revision(room_id)
            if revision == self._seen_revision.get(room_id):
                continue
            self._seen_revision[room_id] = revision
            room = self.get_room(room_id)
            pending.extend(
                (sub, deepcopy(room))
                for sub in self._room_subscriptions
                if sub.room_id == room_id
            )

        for room_id in {sub.room_id for sub in self._move_subscriptions}:
            count = self._move_count(room_id)
            if count == self._seen_move_count.get(room_id):
                continue
            self._seen_move_count[room_id] = count
            moves = self.get_moves(room_id)
            pending.extend(
                (sub, deepcopy(moves))
                for sub in self._move_subscriptions
                if sub.room_id == room_id
            )
        self.db.commit()

        for subscription, payload in pending:
            self.queue.push(subscription, payload)

    # --- PRESENCE ---
    def on_disconnect_seat(self, room_id: str, color: str) -> None:
        self._disconnect_seats[room_id] = color

    def cancel_on_disconnect(self, room_id: str) -> None:
        self._disconnect_seats.pop(room_id, None)

    def disconnect(self) -> None:
        """A clean shutdown runs the disconnect writes. A crashed process cannot, its seat stays taken."""
        for subscription in self._room_subscriptions + self._move_subscriptions:
            subscription.cancel()
        for room_id, color in self._disconnect_seats.items():
            if self._fetch_room(room_id) is not None:
                logger.info("Disconnecting: freeing %s seat in room %s", color, room_id)
                self.set_seat(room_id, color, False)
        self._disconnect_seats.clear()
        self._connected = False
        self.db.close()

    # --- INTERNAL HELPERS ---
    def _replace_room(self, room_id: str, record: RoomData) -> None:
        self.db.execute(delete(DBMove).where(DBMove.room_id == room_id))
        room_db = self._fetch_room(room_id)
        if room_db is None:
            self.db.add(DBRoom(id=room_id, data=record, sequence=0, revision=0))
        else:
            room_db.data = record
            room_db.sequence = 0
            room_db.revision += 1

    def _write_room(
        self,
        room_id: str,
        change: Callable[[RoomData], RoomData],
        expected_sequence: Optional[int] = None,
        bump_sequence: bool = False,
    ) -> None:
        """
        Read-modify-write of the room record, as a compare-and-set on `revision`
        ----

        1. read the record (and fail early on a stale `expected_sequence`)
        2. write the changed record only if nobody else wrote since the read
        3. lost the race: read again and re-apply the change, or report the conflict
        """
        for _ in range(WRITE_ATTEMPTS):
            room_db = self._require_room(room_id)
            sequence, revision = room_db.sequence, room_db.revision
            if expected_sequence is not None and expected_sequence != sequence:
                self.db.rollback()
                raise SequenceConflictError(
                    f"Room {room_id} is at sequence {sequence}, expected {expected_sequence}"
                )

            data = change(deepcopy(room_db.data))
            query = (
                update(DBRoom)
                .where(DBRoom.id == room_id, DBRoom.revision == revision)
                .values(
                    data=data,
                    sequence=DBRoom.sequence + 1 if bump_sequence else DBRoom.sequence,
                    revision=DBRoom.revision + 1,
                    updated_at=utc_now(),
                )
                .execution_options(synchronize_session=False)
            )
            try:
                result = self.db.execute(query)
            except SQLAlchemyError as exc:
                self.db.rollback()
                raise RepositoryError(f"Could not write to the room store: {exc}") from exc
            if result.rowcount == 1:
                self._commit()
                self.poll()
                return
            self.db.rollback()
            logger.debug("Room %s changed while writing it, retrying", room_id)

        raise SequenceConflictError(f"Room {room_id} kept changing, gave up writing it")

    def _commit(self) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise RepositoryError(f"Could not write to the room store: {exc}") from exc

    def _fetch_room(self, room_id: str) -> DBRoom | None:
        query = (
            select(DBRoom)
            .where(DBRoom.id == room_id)
            .execution_options(populate_existing=True)
        )
        return self.db.scalar(query)

    def _require_room(self, room_id: str) -> DBRoom:
        room_db = self._fetch_room(room_id)
        if room_db is None:
            raise RoomNotFoundError(f"Room {room_id} not found.")
        return room_db

    def _current_revision(self, room_id: str) -> Optional[int]:
        query = select(DBRoom.revision).where(DBRoom.id == room_id)
        return self.db.scalar(query)

    def _move_count(self, room_id: str) -> int:
        query = select(func.count()).select_from(DBMove).where(DBMove.room_id == room_id)
        return self.db.scalar(query) or 0

    def _to_data(self, room_db: DBRoom) -> RoomData:
        """Convert SQLAlchemy model to the plain record the peers wrote (+ sequence)."""
        data = deepcopy(room_db.data)
        data["sequence"] = room_db.sequence
        return data
