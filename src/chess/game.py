"""
The GameSession is the entrypoint into the domain layer for the UI and the synchronization layer.
It owns everything about one game: board, turn, move history, clocks, and whether it is played online.

Moves played on this machine go through `attempt_move` (validated by the rules engine).
Moves received from the opponent's machine go through `apply_trusted`.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from src.chess.board import Board
from src.chess.clock import DEFAULT_CLOCK_SECONDS, ChessClock, Ticker, TickerFactory
from src.chess.moves import MoveRecord, is_correct_turn, is_legal_move, legal_destinations
from src.chess.pieces import Color, Piece, piece_from_code
from src.chess.square import Square
from src.core.exceptions import (
    GameError,
    GameStateError,
    IllegalMoveError,
    NotYourTurnError,
    RemoteMoveRejectedError,
)
from src.core.models import GameModel, MoveModel
from src.core.shared_types import ConnectionState, GameStatus

logger = logging.getLogger(__name__)

LOST_ON_TIME: dict[Color, GameStatus] = {
    Color.WHITE: GameStatus.BLACK_WON_ON_TIME,
    Color.BLACK: GameStatus.WHITE_WON_ON_TIME,
}


# --- SESSION MODE ---
@dataclass(frozen=True)
class LocalMode:
    """Hotseat: both sides are played on this machine."""


@dataclass(frozen=True)
class OnlineMode:
    room_id: str
    local_color: Color
    connection_state: ConnectionState


SessionMode = LocalMode | OnlineMode


@dataclass(frozen=True)
class MoveResult:
    accepted: bool
    move: Optional[MoveRecord] = None
    reason: Optional[str] = None

    def __bool__(self) -> bool:
        return self.accepted


MoveListener = Callable[[MoveRecord], None]
StatusListener = Callable[[GameStatus], None]


# --- CONVERSION TO/FROM THE BOUNDARY MODELS ---
def move_to_model(move: MoveRecord) -> MoveModel:
    return MoveModel(
        from_square=move.from_square.to_algebraic(),
        to_square=move.to_square.to_algebraic(),
        piece=move.piece.to_code(),
        captured=move.captured.to_code() if move.captured else None,
        turn=str(move.turn),
        from_row=move.from_square.row,
        from_col=move.from_square.col,
        to_row=move.to_square.row,
        to_col=move.to_square.col,
    )


def move_from_model(model: MoveModel) -> MoveRecord:
    """The row/col indices are what gets applied. Algebraic squares are for display."""
    return MoveRecord(
        from_square=Square(model.from_row, model.from_col),
        to_square=Square(model.to_row, model.to_col),
        piece=Piece.from_code(model.piece),
        captured=piece_from_code(model.captured or ""),
        turn=Color(model.turn),
    )


class GameSession:
    def __init__(
        self,
        clock_seconds: int = DEFAULT_CLOCK_SECONDS,
        ticker_factory: Optional[TickerFactory] = None,
    ) -> None:
        self.clock_seconds = clock_seconds
        self.board = Board.starting_position()
        self.turn = Color.WHITE
        self.history: list[MoveRecord] = []
        self.clock = ChessClock(clock_seconds, clock_seconds)
        self.status = GameStatus.IN_PROGRESS
        self.mode: SessionMode = LocalMode()
        self.flipped = False

        self._ticker_factory = ticker_factory
        self._ticker: Optional[Ticker] = None
        self._move_listeners: list[MoveListener] = []
        self._status_listeners: list[StatusListener] = []
        self._leave_hook: Optional[Callable[[], None]] = None

    # --- STATE QUERIES ---
    @property
    def is_online(self) -> bool:
        return isinstance(self.mode, OnlineMode)

    @property
    def is_game_over(self) -> bool:
        return self.status != GameStatus.IN_PROGRESS

    @property
    def winner(self) -> Optional[Color]:
        if self.status == GameStatus.WHITE_WON_ON_TIME:
            return Color.WHITE
        if self.status == GameStatus.BLACK_WON_ON_TIME:
            return Color.BLACK
        return None

    def is_legal_move(self, from_square: Square, to_square: Square) -> bool:
        return is_legal_move(self.board, self.turn, from_square, to_square)

    def legal_destinations(self, from_square: Square) -> list[Square]:
        return legal_destinations(self.board, self.turn, from_square)

    # --- LISTENERS / HOOKS ---
    def add_move_listener(self, listener: MoveListener) -> None:
        """Called with every move committed on this machine (not with remote moves)."""
        self._move_listeners.append(listener)

    def remove_move_listener(self, listener: MoveListener) -> None:
        if listener in self._move_listeners:
            self._move_listeners.remove(listener)

    def add_status_listener(self, listener: StatusListener) -> None:
        """Called when the game ends on this machine (clock ran out)."""
        self._status_listeners.append(listener)

    def remove_status_listener(self, listener: StatusListener) -> None:
        if listener in self._status_listeners:
            self._status_listeners.remove(listener)

    def set_leave_hook(self, hook: Optional[Callable[[], None]]) -> None:
        """The synchronization layer installs this, so a reset tears down the room first."""
        self._leave_hook = hook

    # --- MOVES ---
    def attempt_move(self, from_square: Square, to_square: Square) -> MoveResult:
        """
        UI entrypoint. Rejections do not raise: the piece simply stays where it was.
        """
        try:
            move = self.make_move(from_square, to_square)
        except GameError as exc:
            logger.debug("Rejected %s -> %s: %s", from_square, to_square, exc)
            return MoveResult(accepted=False, reason=str(exc))
        return MoveResult(accepted=True, move=move)

    def make_move(self, from_square: Square, to_square: Square) -> MoveRecord:
        """
        Attempt to make a move
        -----

        1. the game must still be in progress
        2. online: only the local color may move, and only on its turn
        3. piece must belong to the side on move
        4. rules engine must accept the move
        5. update board, history, turn, clock
        6. notify listeners (the synchronization layer publishes the move)
        """
        if self.is_game_over:
            raise GameStateError(f"Game is over. status: {self.status}")

        if isinstance(self.mode, OnlineMode):
            if self.mode.connection_state in (
                ConnectionState.ROOM_CLOSED,
                ConnectionState.PEER_REJECTED,
            ):
                raise GameStateError(
                    f"Online game cannot continue: {self.mode.connection_state}"
                )
            if self.mode.local_color != self.turn:
                raise NotYourTurnError(f"Waiting for {self.turn} to move.")

        if not (from_square.is_within_bounds() and to_square.is_within_bounds()):
            raise IllegalMoveError(f"Square off the board: {from_square} -> {to_square}")

        piece = self.board.piece(from_square)
        if piece is None:
            raise IllegalMoveError(f"No piece on {from_square.to_algebraic()}")
        if not is_correct_turn(piece, self.turn):
            raise NotYourTurnError(f"It is {self.turn}'s turn.")

        if not self.is_legal_move(from_square, to_square):
            raise IllegalMoveError(
                f"Move not allowed: {from_square.to_algebraic()}{to_square.to_algebraic()}"
            )

        captured = self.board.move_piece(from_square, to_square)
        move = MoveRecord(from_square, to_square, piece, captured, self.turn)
        self._commit(move)

        for listener in list(self._move_listeners):
            listener(move)
        return move

    def apply_trusted(self, move: MoveRecord, validate: bool = False) -> None:
        """
        Apply a move that was committed on the opponent's machine.
        ----

        By default the move is trusted: the rules engine is not consulted.
        With `validate`, a move the rules engine rejects raises RemoteMoveRejectedError and nothing changes.
        """
        if validate and not is_legal_move(
            self.board, move.turn, move.from_square, move.to_square
        ):
            raise RemoteMoveRejectedError(
                f"Remote move {move.to_notation()} by {move.turn} is not legal"
            )
        if self.is_game_over:
            logger.warning("Applying remote move %s after game end", move.to_notation())

        self.board.move_piece(move.from_square, move.to_square)
        self._commit(move)

    def _commit(self, move: MoveRecord) -> None:
        self.history.append(move)
        self.turn = move.turn.opponent
        # The clock only gets started by the very first move of the game
        self._start_clock()

    # --- CLOCK ---
    def _start_clock(self) -> None:
        if self.is_game_over or self.clock.running:
            return
        self.clock.start()
        if self._ticker_factory is not None and self._ticker is None:
            self._ticker = self._ticker_factory(self.tick)

    def _cancel_ticker(self) -> None:
        if self._ticker is not None:
            self._ticker.cancel()
            self._ticker = None

    def tick(self) -> None:
        """One second passed for the side on move."""
        if self.is_game_over:
            self._cancel_ticker()
            return
        flagged = self.clock.tick(self.turn)
        if flagged is not None:
            logger.info("%s ran out of time", flagged)
            self.set_status(LOST_ON_TIME[flagged], notify=True)

    def set_status(self, status: GameStatus, notify: bool = False) -> None:
        """A finished game stops the clock for good. `notify` is False for statuses received from the opponent."""
        if status == self.status:
            return
        self.status = status
        if self.is_game_over:
            self.clock.stop()
            self._cancel_ticker()
        if notify:
            for listener in list(self._status_listeners):
                listener(status)

    def stop(self) -> None:
        """Stop time without ending the game (the room was torn down)."""
        self.clock.stop()
        self._cancel_ticker()

    # --- LIFECYCLE ---
    def reset(self) -> None:
        """
        New game in the starting position.

        An online game leaves its room first: the opponent is not dragged into the new game.
        """
        if self.is_online and self._leave_hook is not None:
            self._leave_hook()
        self._reset_state()

    def _reset_state(self) -> None:
        self._cancel_ticker()
        self.board = Board.starting_position()
        self.turn = Color.WHITE
        self.history = []
        self.clock.reset(self.clock_seconds)
        self.status = GameStatus.IN_PROGRESS

    def flip_board(self) -> None:
        """View only: which side is shown at the bottom"""
        self.flipped = not self.flipped

    # --- SNAPSHOTS ---
    def to_model(self) -> GameModel:
        return GameModel(
            board=self.board.to_codes(),
            current_turn=str(self.turn),
            move_history=[move_to_model(move) for move in self.history],
            white_time=self.clock.white_seconds,
            black_time=self.clock.black_seconds,
            status=str(self.status),
        )

    def load_model(self, model: GameModel) -> None:
        """Replace the whole game with a snapshot (bootstrap after joining a room)."""
        self._cancel_ticker()
        self.board = Board.from_codes(model.board)
        self.turn = Color(model.current_turn)
        self.history = [move_from_model(move) for move in model.move_history]
        self.clock.reset(self.clock_seconds)
        self.clock.white_seconds = model.white_time
        self.clock.black_seconds = model.black_time
        self.status = GameStatus(model.status)
        if self.history:
            self._start_clock()
