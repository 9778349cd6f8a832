"""
Synchronization of one game session with one opponent, through a shared room in a RoomStore.
----

Two records live in the store per room:

* the room record: a full snapshot of the game + seat occupancy, guarded by a `sequence` number
* the move log: one entry per move, keyed by the 0-based move number

The move log is the source of truth. The snapshot is used to bootstrap a joining peer, and as a
catch-up path: when it shows moves we do not have yet, those moves get replayed one by one.
Only when the histories contradict each other is the local game overwritten wholesale.
"""

import logging
import secrets
import string
import time
from typing import Optional

from src.chess.game import GameSession, LocalMode, OnlineMode, move_from_model, move_to_model
from src.chess.moves import MoveRecord
from src.chess.pieces import Color
from src.core.config import Settings, get_settings
from src.core.exceptions import (
    MalformedRecordError,
    RemoteMoveRejectedError,
    RepositoryError,
    RoomFullError,
    RoomNotFoundError,
    SequenceConflictError,
    TransportNotReadyError,
)
from src.core.shared_types import ConnectionState, GameStatus
from src.db.repository import MoveData, RoomData, RoomStore, Subscription
from src.services.schema import (
    MoveLogEntry,
    Players,
    RoomRecord,
    parse_move,
    parse_room,
    snapshot_changes,
)

logger = logging.getLogger(__name__)

ROOM_CODE_ALPHABET = string.digits + string.ascii_uppercase
# status-only writes tried before the room is left for the next flush
STATUS_WRITE_ATTEMPTS = 5


def generate_room_code(length: int = 6) -> str:
    """Short code to read out to the opponent. Not checked against existing rooms."""
    return "".join(secrets.choice(ROOM_CODE_ALPHABET) for _ in range(length))


def now_ms() -> int:
    return int(time.time() * 1000)


class RoomSync:
    """Orchestration between a GameSession and the shared RoomStore."""

    def __init__(
        self,
        session: GameSession,
        store: RoomStore,
        settings: Optional[Settings] = None,
    ) -> None:
        self.session = session
        self.store = store
        self.settings = settings or get_settings()
        self._subscriptions: list[Subscription] = []
        # move-log entries that arrived ahead of a missing earlier one
        self._pending_moves: dict[int, MoveLogEntry] = {}
        # last room sequence seen, expected by our next snapshot write
        self._sequence: Optional[int] = None
        # local moves not in the move log yet, by index
        self._outbox: dict[int, MoveLogEntry] = {}
        self._snapshot_due = False

    @property
    def room_id(self) -> Optional[str]:
        mode = self.session.mode
        return mode.room_id if isinstance(mode, OnlineMode) else None

    # -- CONTROL SURFACE ---
    def create_room(self) -> str:
        """Start a fresh online game as white. Returns the room code."""
        self._ensure_ready()
        if self.session.is_online:
            self.leave_room()

        room_id = generate_room_code(self.settings.room_code_length)
        self.session.reset()
        record = RoomRecord.from_model(
            self.session.to_model(),
            players=Players(white=True, black=False),
            created_at=now_ms(),
        )
        self.store.create_room(room_id, record.to_wire())
        self._sequence = 0
        self.store.on_disconnect_seat(room_id, Color.WHITE)

        self.session.mode = OnlineMode(
            room_id, Color.WHITE, ConnectionState.WAITING_FOR_OPPONENT
        )
        self._attach(room_id)
        logger.info("Created room %s, playing white", room_id)
        return room_id

    def join_room(self, room_id: str) -> None:
        """
        Take the black seat in an existing room.
        ----

        1. read the room once (missing or full room: raise, nothing changes locally)
        2. claim the black seat, and have it freed again if the connection drops
        3. load the snapshot as the local game
        4. subscribe to the room record and the move log (the move log feed replays
           moves the snapshot did not contain yet)
        """
        self._ensure_ready()
        room_id = room_id.strip().upper()

        data = self.store.get_room(room_id)
        if data is None:
            raise RoomNotFoundError(f"Room {room_id} not found.")
        record = parse_room(data)
        if record.players.black:
            raise RoomFullError(f"Room {room_id} is full.")

        if self.session.is_online:
            self.leave_room()

        self.store.set_seat(room_id, Color.BLACK, True)
        self.store.on_disconnect_seat(room_id, Color.BLACK)
        self.session.load_model(record.to_model())
        self._sequence = record.sequence

        self.session.mode = OnlineMode(room_id, Color.BLACK, ConnectionState.CONNECTED)
        if not self.session.flipped:
            self.session.flip_board()
        self._attach(room_id)
        logger.info("Joined room %s, playing black", room_id)

    def leave_room(self) -> None:
        """
        Delete the room (even if the opponent is still there) and go back to a local game.
        The opponent only notices by the room disappearing.
        """
        room_id = self.room_id
        if room_id is None:
            return

        self._detach()
        self.store.cancel_on_disconnect(room_id)
        if self.store.is_ready():
            self.store.delete_room(room_id)
        self.session.stop()
        self.session.mode = LocalMode()
        logger.info("Left room %s", room_id)

    # -- OUTBOUND ---
    @property
    def has_unsent_moves(self) -> bool:
        return bool(self._outbox)

    def publish(self, move: MoveRecord) -> None:
        """Move listener: queue the move just committed locally for the move log, and send it."""
        room_id = self.room_id
        if room_id is None or not self._is_live():
            return

        index = len(self.session.history) - 1
        self._outbox[index] = MoveLogEntry.from_model(move_to_model(move))
        self._snapshot_due = True
        self.flush()

    def _on_local_status(self, status: GameStatus) -> None:
        """Status listener: the game ended here (flag fell), let the opponent know."""
        room_id = self.room_id
        if room_id is None or not self._is_live():
            return
        logger.info("Publishing game end to room %s: %s", room_id, status)
        self._snapshot_due = True
        self.flush()

    def flush(self) -> None:
        """
        Send whatever has not reached the room store yet.
        ----

        1. move-log entries, strictly in order
        2. then the room snapshot

        A failing store leaves the rest queued: the next call (the host calls it on a timer) retries.
        The local game is never rolled back.
        """
        room_id = self.room_id
        if room_id is None or not self._is_live():
            return

        for index in sorted(self._outbox):
            try:
                self.store.put_move(room_id, index, self._outbox[index].to_wire())
            except RoomNotFoundError:
                self._room_closed()
                return
            except RepositoryError as exc:
                logger.error("Move %d not sent to room %s, will retry: %s", index, room_id, exc)
                return
            entry = self._outbox.pop(index)
            logger.debug("Published move %d: %s-%s", index, entry.from_square, entry.to_square)

        if self._snapshot_due and self._write_snapshot(room_id):
            self._snapshot_due = False

    def _write_snapshot(self, room_id: str) -> bool:
        """
        Overwrite the room snapshot, as long as nobody else wrote it since we last saw it.
        A conflict is not fatal: the move log already carries the move.

        Returns False when the write should be tried again later.
        """
        changes = snapshot_changes(self.session.to_model())
        try:
            updated = self.store.update_room(room_id, changes, self._sequence)
        except SequenceConflictError as exc:
            if self.session.is_game_over:
                return self._write_final_status(room_id)
            logger.warning("Room snapshot not written: %s", exc)
            latest = self.store.get_room(room_id)
            if latest is not None:
                self._sequence = latest.get("sequence")
            return True
        except RoomNotFoundError:
            self._room_closed()
            return True
        except RepositoryError as exc:
            logger.error("Room snapshot not written, will retry: %s", exc)
            return False
        self._sequence = updated.get("sequence")
        return True

    def _write_final_status(self, room_id: str) -> bool:
        """A game that ended stays ended: write just the status on top of the latest record."""
        for _ in range(STATUS_WRITE_ATTEMPTS):
            latest = self.store.get_room(room_id)
            if latest is None:
                self._room_closed()
                return True
            try:
                updated = self.store.update_room(
                    room_id, {"status": str(self.session.status)}, latest.get("sequence")
                )
            except SequenceConflictError:
                continue
            except RepositoryError as exc:
                logger.error("Game end not written, will retry: %s", exc)
                return False
            self._sequence = updated.get("sequence")
            return True
        logger.warning("Room %s kept changing while writing the game end, will retry", room_id)
        return False

    # -- INBOUND ---
    def _on_moves(self, entries: dict[int, MoveData]) -> None:
        """Move-log feed: apply every entry we do not have yet, strictly in order."""
        for raw_index, data in entries.items():
            index = int(raw_index)
            if index < len(self.session.history) or index in self._pending_moves:
                continue
            try:
                self._pending_moves[index] = parse_move(data)
            except MalformedRecordError as exc:
                logger.error("Skipping move-log entry %d: %s", index, exc)
        self._apply_pending_moves()

    def _apply_pending_moves(self) -> None:
        while True:
            next_index = len(self.session.history)
            for stale in [idx for idx in self._pending_moves if idx < next_index]:
                del self._pending_moves[stale]
            entry = self._pending_moves.pop(next_index, None)
            if entry is None:
                break
            if not self._apply_remote(move_from_model(entry.to_model())):
                break
        if self._pending_moves:
            logger.debug(
                "Waiting for move %d before applying %s",
                len(self.session.history),
                sorted(self._pending_moves),
            )

    def _apply_remote(self, move: MoveRecord) -> bool:
        try:
            self.session.apply_trusted(
                move, validate=self.settings.revalidate_remote_moves
            )
        except RemoteMoveRejectedError as exc:
            logger.error("Opponent sent an illegal move, no longer accepting moves: %s", exc)
            self._pending_moves.clear()
            self._set_connection_state(ConnectionState.PEER_REJECTED)
            return False
        logger.debug("Applied remote move %s", move.to_notation())
        return True

    def _on_room(self, data: Optional[RoomData]) -> None:
        """Room feed: presence, game end, and catching up with the snapshot."""
        if data is None:
            self._room_closed()
            return
        try:
            record = parse_room(data)
        except MalformedRecordError as exc:
            logger.error("Ignoring room update: %s", exc)
            return

        self._sequence = record.sequence
        self._update_presence(record.players)
        self._reconcile(record)
        if record.status != GameStatus.IN_PROGRESS:
            self.session.set_status(record.status)

    def _reconcile(self, record: RoomRecord) -> None:
        """
        Whole-state reconciliation, made idempotent
        ----

        * snapshot extends our history -> replay the missing moves
        * snapshot is behind our history -> nothing to do (our own write has not landed yet)
        * histories contradict each other -> overwrite the local game with the snapshot
        """
        if self._connection_state() == ConnectionState.PEER_REJECTED:
            return
        local = self.session.history
        remote = [move_from_model(entry.to_model()) for entry in record.move_history]

        if remote[: len(local)] == local:
            for move in remote[len(local) :]:
                if not self._apply_remote(move):
                    return
            self._apply_pending_moves()
            return

        if local[: len(remote)] == remote:
            return

        logger.warning(
            "Local game diverged from room snapshot (%d local vs %d remote moves), reloading",
            len(local),
            len(remote),
        )
        self._pending_moves.clear()
        self.session.load_model(record.to_model())

    def _update_presence(self, players: Players) -> None:
        mode = self.session.mode
        if not isinstance(mode, OnlineMode):
            return
        if mode.connection_state in (
            ConnectionState.PEER_REJECTED,
            ConnectionState.ROOM_CLOSED,
        ):
            return

        if players.occupied(mode.local_color.opponent):
            state = ConnectionState.CONNECTED
        elif mode.connection_state == ConnectionState.WAITING_FOR_OPPONENT:
            state = ConnectionState.WAITING_FOR_OPPONENT
        else:
            state = ConnectionState.OPPONENT_DISCONNECTED
        self._set_connection_state(state)

    def _room_closed(self) -> None:
        """The room vanished (the opponent left). Keep the board, stop the clock."""
        room_id = self.room_id
        logger.warning("Room %s was closed", room_id)
        self._cancel_subscriptions()
        if room_id is not None:
            self.store.cancel_on_disconnect(room_id)
        if self._outbox:
            logger.warning("Dropping %d unsent moves", len(self._outbox))
        self._outbox.clear()
        self._snapshot_due = False
        self.session.stop()
        self._set_connection_state(ConnectionState.ROOM_CLOSED)

    # -- INTERNAL HELPERS ---
    def _ensure_ready(self) -> None:
        if not self.store.is_ready():
            raise TransportNotReadyError("Room store is not ready yet. Please retry.")

    def _connection_state(self) -> Optional[ConnectionState]:
        mode = self.session.mode
        return mode.connection_state if isinstance(mode, OnlineMode) else None

    def _is_live(self) -> bool:
        return self._connection_state() not in (
            ConnectionState.ROOM_CLOSED,
            ConnectionState.PEER_REJECTED,
        )

    def _set_connection_state(self, state: ConnectionState) -> None:
        mode = self.session.mode
        if not isinstance(mode, OnlineMode) or mode.connection_state == state:
            return
        logger.info("Room %s: %s", mode.room_id, state)
        self.session.mode = OnlineMode(mode.room_id, mode.local_color, state)

    def _attach(self, room_id: str) -> None:
        self.session.add_move_listener(self.publish)
        self.session.add_status_listener(self._on_local_status)
        self.session.set_leave_hook(self.leave_room)
        self._subscriptions = [
            self.store.subscribe_room(room_id, self._on_room),
            self.store.subscribe_moves(room_id, self._on_moves),
        ]

    def _detach(self) -> None:
        self._cancel_subscriptions()
        self.session.remove_move_listener(self.publish)
        self.session.remove_status_listener(self._on_local_status)
        self.session.set_leave_hook(None)
        self._pending_moves.clear()
        self._outbox.clear()
        self._snapshot_due = False
        self._sequence = None

    def _cancel_subscriptions(self) -> None:
        for subscription in self._subscriptions:
            subscription.cancel()
        self._subscriptions = []
