"""Unit tests for src/services/room_sync.py (two peers sharing an in-memory room store)"""

import logging
from dataclasses import dataclass, field, replace
from typing import Callable
from unittest.mock import patch

import pytest

from src.chess.board import Board
from src.chess.game import GameSession, LocalMode, OnlineMode, move_to_model
from src.chess.moves import MoveRecord
from src.chess.pieces import Color, Piece
from src.chess.square import Square
from src.core.config import Settings
from src.core.exceptions import (
    GameStateError,
    RepositoryError,
    RoomFullError,
    RoomNotFoundError,
    TransportNotReadyError,
)
from src.core.shared_types import ConnectionState, GameStatus
from src.db.memory_repository import InMemoryRoomBackend, InMemoryRoomStore
from src.services.room_sync import ROOM_CODE_ALPHABET, RoomSync, generate_room_code
from src.services.schema import MoveLogEntry, parse_room, snapshot_changes


def sq(name: str) -> Square:
    return Square.from_algebraic(name)


class ManualTicker:
    def __init__(self, callback: Callable[[], None]) -> None:
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self, times: int = 1) -> None:
        for _ in range(times):
            if not self.cancelled:
                self.callback()


@dataclass
class Peer:
    session: GameSession
    sync: RoomSync
    store: InMemoryRoomStore
    tickers: list[ManualTicker] = field(default_factory=list)

    def move(self, from_name: str, to_name: str) -> MoveRecord:
        return self.session.make_move(sq(from_name), sq(to_name))

    @property
    def state(self) -> ConnectionState:
        assert isinstance(self.session.mode, OnlineMode)
        return self.session.mode.connection_state


@pytest.fixture
def make_peer(backend: InMemoryRoomBackend, settings: Settings) -> Callable[..., Peer]:
    """Call the inner function to connect another player to the shared backend"""

    def _create_peer(settings_override: Settings | None = None) -> Peer:
        tickers: list[ManualTicker] = []

        def _factory(callback: Callable[[], None]) -> ManualTicker:
            tickers.append(ManualTicker(callback))
            return tickers[-1]

        store = InMemoryRoomStore(backend)
        session = GameSession(clock_seconds=3, ticker_factory=_factory)
        sync = RoomSync(session, store, settings_override or settings)
        return Peer(session, sync, store, tickers)

    return _create_peer


@pytest.fixture
def peers(make_peer: Callable[..., Peer]) -> tuple[Peer, Peer, str]:
    """White created a room, black joined it"""
    white, black = make_peer(), make_peer()
    room_id = white.sync.create_room()
    black.sync.join_room(room_id)
    return white, black, room_id


def raw_entry(from_name: str, to_name: str, code: str, turn: Color) -> dict:
    move = MoveRecord(sq(from_name), sq(to_name), Piece.from_code(code), None, turn)
    return MoveLogEntry.from_model(move_to_model(move)).to_wire()


# --- ROOM CODES ---
def test_generate_room_code() -> None:
    code = generate_room_code()
    assert len(code) == 6
    assert all(char in ROOM_CODE_ALPHABET for char in code)
    assert len(generate_room_code(10)) == 10


# --- CREATE / JOIN ---
def test_create_room(make_peer: Callable[..., Peer], backend: InMemoryRoomBackend) -> None:
    white = make_peer()
    white.session.make_move(sq("e2"), sq("e4"))
    room_id = white.sync.create_room()

    assert white.sync.room_id == room_id
    assert white.session.mode == OnlineMode(
        room_id, Color.WHITE, ConnectionState.WAITING_FOR_OPPONENT
    )
    # a fresh game, not the local one
    assert white.session.history == []
    record = parse_room(backend.rooms[room_id])
    assert record.players.white and not record.players.black
    assert record.sequence == 0
    assert record.created_at > 0


def test_create_room_requires_ready_store(backend: InMemoryRoomBackend, settings: Settings) -> None:
    session = GameSession()
    sync = RoomSync(session, InMemoryRoomStore(backend, ready=False), settings)
    with pytest.raises(TransportNotReadyError):
        sync.create_room()
    assert session.mode == LocalMode()
    assert backend.rooms == {}


def test_join_unknown_room(make_peer: Callable[..., Peer]) -> None:
    black = make_peer()
    with pytest.raises(RoomNotFoundError):
        black.sync.join_room("NOPE42")
    assert black.session.mode == LocalMode()


def test_join_full_room(peers: tuple[Peer, Peer, str], make_peer: Callable[..., Peer]) -> None:
    _, _, room_id = peers
    third = make_peer()
    with pytest.raises(RoomFullError):
        third.sync.join_room(room_id)
    assert not third.session.is_online


def test_join_room(peers: tuple[Peer, Peer, str]) -> None:
    white, black, room_id = peers
    assert black.session.mode == OnlineMode(room_id, Color.BLACK, ConnectionState.CONNECTED)
    assert black.session.flipped
    assert not white.session.flipped
    assert white.state == ConnectionState.CONNECTED
    assert black.session.board == white.session.board


def test_join_room_code_is_case_insensitive(make_peer: Callable[..., Peer]) -> None:
    white, black = make_peer(), make_peer()
    room_id = white.sync.create_room()
    black.sync.join_room(room_id.lower())
    assert black.sync.room_id == room_id


def test_create_room_while_online_leaves_old_room(
    peers: tuple[Peer, Peer, str], backend: InMemoryRoomBackend
) -> None:
    white, black, room_id = peers
    new_room_id = white.sync.create_room()
    assert room_id not in backend.rooms
    assert new_room_id in backend.rooms
    assert black.state == ConnectionState.ROOM_CLOSED


# --- MOVES ---
def test_moves_are_mirrored(peers: tuple[Peer, Peer, str], backend: InMemoryRoomBackend) -> None:
    white, black, room_id = peers
    white.move("e2", "e4")
    black.move("e7", "e5")
    white.move("g1", "f3")

    assert black.session.history == white.session.history
    assert black.session.board == white.session.board
    assert black.session.turn == white.session.turn == Color.BLACK
    assert sorted(backend.moves[room_id]) == [0, 1, 2]
    record = parse_room(backend.rooms[room_id])
    assert len(record.move_history) == 3
    assert record.current_turn == "black"
    assert record.sequence == 3


def test_only_local_color_may_move(peers: tuple[Peer, Peer, str]) -> None:
    white, black, _ = peers
    assert not black.session.attempt_move(sq("e2"), sq("e4"))
    white.move("e2", "e4")
    assert not white.session.attempt_move(sq("d2"), sq("d4"))
    assert black.session.attempt_move(sq("e7"), sq("e5"))


def test_joiner_catches_up_with_moves_made_before_joining(make_peer: Callable[..., Peer]) -> None:
    white, black = make_peer(), make_peer()
    room_id = white.sync.create_room()
    white.move("e2", "e4")

    black.sync.join_room(room_id)
    assert len(black.session.history) == 1
    assert black.session.board == white.session.board
    assert black.session.turn == Color.BLACK
    # the clock runs from the first move on
    assert black.session.clock.running


def test_remote_moves_are_not_revalidated(
    peers: tuple[Peer, Peer, str], backend: InMemoryRoomBackend
) -> None:
    """A rook jumping over its own pawn is applied as it arrives"""
    _, black, room_id = peers
    InMemoryRoomStore(backend).put_move(room_id, 0, raw_entry("a1", "a5", "R", Color.WHITE))
    assert black.session.board.piece(sq("a5")) == Piece.from_code("R")
    assert black.session.turn == Color.BLACK


def test_remote_moves_revalidated_when_configured(
    make_peer: Callable[..., Peer], settings: Settings, backend: InMemoryRoomBackend
) -> None:
    white = make_peer()
    black = make_peer(replace(settings, revalidate_remote_moves=True))
    room_id = white.sync.create_room()
    black.sync.join_room(room_id)
    before = black.session.board.to_codes()

    InMemoryRoomStore(backend).put_move(room_id, 0, raw_entry("a1", "a5", "R", Color.WHITE))
    assert black.session.board.to_codes() == before
    assert black.state == ConnectionState.PEER_REJECTED
    with pytest.raises(GameStateError):
        black.move("e7", "e5")


def test_out_of_order_entries_wait_for_the_gap(
    peers: tuple[Peer, Peer, str], backend: InMemoryRoomBackend
) -> None:
    white, black, room_id = peers
    raw = InMemoryRoomStore(backend)
    raw.put_move(room_id, 1, raw_entry("e7", "e5", "p", Color.BLACK))
    assert black.session.history == []

    raw.put_move(room_id, 0, raw_entry("e2", "e4", "P", Color.WHITE))
    assert [move.to_notation() for move in black.session.history] == ["e2-e4", "e7-e5"]
    assert white.session.board == black.session.board


def test_malformed_entry_is_skipped(
    peers: tuple[Peer, Peer, str], backend: InMemoryRoomBackend, caplog: pytest.LogCaptureFixture
) -> None:
    _, black, room_id = peers
    raw = InMemoryRoomStore(backend)
    with caplog.at_level(logging.ERROR, logger="src.services.room_sync"):
        raw.put_move(room_id, 0, {"from": "e2", "to": "e4", "piece": "??"})
    assert black.session.history == []
    assert "Skipping move-log entry 0" in caplog.text

    raw.put_move(room_id, 0, raw_entry("e2", "e4", "P", Color.WHITE))
    assert len(black.session.history) == 1


def test_malformed_room_update_is_ignored(
    peers: tuple[Peer, Peer, str], backend: InMemoryRoomBackend, caplog: pytest.LogCaptureFixture
) -> None:
    white, black, room_id = peers
    with caplog.at_level(logging.ERROR, logger="src.services.room_sync"):
        InMemoryRoomStore(backend).update_room(room_id, {"board": "not a board"})
    assert "Ignoring room update" in caplog.text
    assert black.state == ConnectionState.CONNECTED
    assert white.move("e2", "e4")


# --- SNAPSHOT RECONCILIATION ---
def test_snapshot_ahead_is_replayed(
    peers: tuple[Peer, Peer, str], backend: InMemoryRoomBackend
) -> None:
    white, black, room_id = peers
    elsewhere = GameSession()
    elsewhere.make_move(sq("e2"), sq("e4"))
    InMemoryRoomStore(backend).update_room(room_id, snapshot_changes(elsewhere.to_model()))

    for peer in (white, black):
        assert peer.session.history == elsewhere.history
        assert peer.session.board == elsewhere.board

    # the move log delivering the same move later changes nothing
    InMemoryRoomStore(backend).put_move(room_id, 0, raw_entry("e2", "e4", "P", Color.WHITE))
    assert len(black.session.history) == 1


def test_diverged_history_is_overwritten(peers: tuple[Peer, Peer, str], caplog: pytest.LogCaptureFixture) -> None:
    white, black, _ = peers
    # a move black never got to publish
    black.session.apply_trusted(
        MoveRecord(sq("e2"), sq("e3"), Piece.from_code("P"), None, Color.WHITE)
    )
    with caplog.at_level(logging.WARNING, logger="src.services.room_sync"):
        white.move("e2", "e4")
    assert "diverged" in caplog.text
    assert black.session.history == white.session.history
    assert black.session.board == white.session.board


def test_snapshot_conflict_is_not_fatal(
    peers: tuple[Peer, Peer, str], backend: InMemoryRoomBackend, caplog: pytest.LogCaptureFixture
) -> None:
    white, black, room_id = peers
    white.sync._sequence = 42
    with caplog.at_level(logging.WARNING, logger="src.services.room_sync"):
        white.move("e2", "e4")
    assert "not written" in caplog.text
    # the move log still carried the move
    assert len(black.session.history) == 1
    assert parse_room(backend.rooms[room_id]).move_history == []

    black.move("e7", "e5")
    assert len(parse_room(backend.rooms[room_id]).move_history) == 2
    assert white.session.history == black.session.history


# --- CLOCK ---
def test_time_forfeit_reaches_opponent(peers: tuple[Peer, Peer, str], backend: InMemoryRoomBackend) -> None:
    white, black, room_id = peers
    white.move("e2", "e4")
    assert black.session.clock.running

    white.tickers[0].fire(3)
    assert white.session.status == GameStatus.WHITE_WON_ON_TIME
    assert black.session.status == GameStatus.WHITE_WON_ON_TIME
    assert not black.session.clock.running
    assert black.tickers[0].cancelled
    assert parse_room(backend.rooms[room_id]).status == GameStatus.WHITE_WON_ON_TIME


# --- LEAVING ---
def test_leave_room(peers: tuple[Peer, Peer, str], backend: InMemoryRoomBackend) -> None:
    white, black, room_id = peers
    white.move("e2", "e4")
    white.sync.leave_room()

    assert room_id not in backend.rooms
    assert room_id not in backend.moves
    assert white.session.mode == LocalMode()
    assert not white.session.clock.running
    assert black.state == ConnectionState.ROOM_CLOSED
    assert not black.session.clock.running
    # the position stays on the board, but the game cannot go on
    assert len(black.session.history) == 1
    with pytest.raises(GameStateError):
        black.move("e7", "e5")


def test_leave_room_when_local_does_nothing(make_peer: Callable[..., Peer]) -> None:
    peer = make_peer()
    peer.sync.leave_room()
    assert peer.session.mode == LocalMode()


def test_reset_leaves_room(peers: tuple[Peer, Peer, str], backend: InMemoryRoomBackend) -> None:
    white, black, room_id = peers
    white.move("e2", "e4")
    black.session.reset()

    assert room_id not in backend.rooms
    assert black.session.mode == LocalMode()
    assert black.session.history == []
    assert white.state == ConnectionState.ROOM_CLOSED
    assert len(white.session.history) == 1


def test_local_moves_after_leaving_are_not_published(
    peers: tuple[Peer, Peer, str], backend: InMemoryRoomBackend
) -> None:
    white, black, _ = peers
    black.sync.leave_room()
    white.session.reset()
    white.move("e2", "e4")
    assert backend.moves == {}


def test_opponent_disconnect(peers: tuple[Peer, Peer, str]) -> None:
    white, black, _ = peers
    black.store.disconnect()
    assert white.state == ConnectionState.OPPONENT_DISCONNECTED


def test_time_forfeit_reaches_opponent_with_stale_sequence(
    peers: tuple[Peer, Peer, str], backend: InMemoryRoomBackend
) -> None:
    """The game end is written on top of the latest record instead of being dropped"""
    white, black, room_id = peers
    white.move("e2", "e4")
    white.sync._sequence = 42

    white.tickers[0].fire(3)
    assert white.session.status == GameStatus.WHITE_WON_ON_TIME
    assert black.session.status == GameStatus.WHITE_WON_ON_TIME
    record = parse_room(backend.rooms[room_id])
    assert record.status == GameStatus.WHITE_WON_ON_TIME
    assert len(record.move_history) == 1


# --- STORE FAILURES ---
def test_failed_move_write_keeps_local_move(
    peers: tuple[Peer, Peer, str], backend: InMemoryRoomBackend
) -> None:
    white, black, room_id = peers
    with patch.object(white.store, "put_move", side_effect=RepositoryError("database is locked")):
        result = white.session.attempt_move(sq("e2"), sq("e4"))

    assert result
    assert len(white.session.history) == 1
    assert black.session.history == []
    assert white.sync.has_unsent_moves

    white.sync.flush()
    assert not white.sync.has_unsent_moves
    assert black.session.history == white.session.history
    assert len(parse_room(backend.rooms[room_id]).move_history) == 1


def test_failed_snapshot_write_is_retried(
    peers: tuple[Peer, Peer, str], backend: InMemoryRoomBackend
) -> None:
    white, black, room_id = peers
    with patch.object(white.store, "update_room", side_effect=RepositoryError("disk full")):
        white.move("e2", "e4")
    # the move log carried the move, the snapshot is behind
    assert len(black.session.history) == 1
    assert parse_room(backend.rooms[room_id]).move_history == []

    white.sync.flush()
    assert len(parse_room(backend.rooms[room_id]).move_history) == 1


# --- REPLAY ---
def test_replaying_received_history_reproduces_board(peers: tuple[Peer, Peer, str]) -> None:
    white, black, _ = peers
    for peer, from_name, to_name in [
        (white, "e2", "e4"),
        (black, "d7", "d5"),
        (white, "e4", "d5"),
        (black, "d8", "d5"),
        (white, "b1", "c3"),
        (black, "d5", "a2"),
        (white, "a1", "a2"),
    ]:
        peer.move(from_name, to_name)

    board = Board.starting_position()
    for move in black.session.history:
        board.move_piece(move.from_square, move.to_square)
    assert board == black.session.board == white.session.board
    assert sum(move.is_capture for move in black.session.history) == 4
