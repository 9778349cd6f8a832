"""
Geometry/Base movement and capturing rules

Key idea: Use strategy pattern to define the movement rule for each piece type.

Every rule answers "may the piece on `from_square` go to `to_square`?" on a given board.
Nothing here looks at checks: a king may walk into (or stay in) check.
"""

from dataclasses import dataclass
from typing import Callable, Optional, Protocol

from src.chess.pieces import Color, Piece, PieceType
from src.chess.square import BOARD_DIMENSIONS, Square


class Board(Protocol):
    """Just the parts the movement strategies need"""

    def piece(self, square: Square) -> Optional[Piece]: ...
    def is_empty(self, square: Square) -> bool: ...


Vector = tuple[int, int]

# Pawns start on the second rank of their own side
PAWN_START_ROW: dict[Color, int] = {Color.WHITE: 6, Color.BLACK: 1}
# White moves UP the board (towards row 0), black moves DOWN
PAWN_DIRECTION: dict[Color, int] = {Color.WHITE: -1, Color.BLACK: 1}


@dataclass(frozen=True)
class MoveRecord:
    """A committed move. Its index in the history is the move number."""

    from_square: Square
    to_square: Square
    piece: Piece
    captured: Optional[Piece]
    turn: Color

    @property
    def is_capture(self) -> bool:
        return self.captured is not None

    def to_notation(self) -> str:
        """Long notation as shown in the move list: e2-e4, or e4xd5 for captures"""
        separator = "x" if self.is_capture else "-"
        return f"{self.from_square.to_algebraic()}{separator}{self.to_square.to_algebraic()}"


def format_move_list(history: list[MoveRecord]) -> list[str]:
    """One line per full move: '1. e2-e4 e7-e5'"""
    lines: list[str] = []
    for idx in range(0, len(history), 2):
        pair = " ".join(move.to_notation() for move in history[idx : idx + 2])
        lines.append(f"{idx // 2 + 1}. {pair}")
    return lines


# --- PATH HELPERS ---
def _step(delta: int) -> int:
    return (delta > 0) - (delta < 0)


def squares_between(from_square: Square, to_square: Square) -> list[Square]:
    """
    Squares strictly between two squares on a shared rank, file or diagonal.

    Walk unit steps from `from_square` (exclusive) to `to_square` (exclusive).
    """
    d_row = to_square.row - from_square.row
    d_col = to_square.col - from_square.col
    if not (d_row == 0 or d_col == 0 or abs(d_row) == abs(d_col)):
        raise ValueError(
            f"squares_between requires a straight or diagonal line.\n from: {from_square}\n to: {to_square}"
        )

    step: Vector = (_step(d_row), _step(d_col))
    squares: list[Square] = []
    square = from_square.offset(*step)
    while square != to_square:
        squares.append(square)
        square = square.offset(*step)
    return squares


def is_path_blocked(board: Board, from_square: Square, to_square: Square) -> bool:
    """Any occupied square in between? Only meaningful for the sliding pieces."""
    return any(
        not board.is_empty(square) for square in squares_between(from_square, to_square)
    )


# --- MOVEMENT RULES ---
def is_legal_pawn_move(board: Board, from_square: Square, to_square: Square) -> bool:
    """
    A pawn:
    - moves a single square forward onto an empty square
    - can move by two from its starting row, if both squares are empty
    - takes diagonally (one square forward), only if an enemy piece stands there

    NOTE: no en passant, no promotion
    """
    pawn = board.piece(from_square)
    assert pawn is not None
    direction = PAWN_DIRECTION[pawn.color]
    d_row = to_square.row - from_square.row
    d_col = to_square.col - from_square.col
    target = board.piece(to_square)

    if d_col == 0 and target is None:
        if d_row == direction:
            return True
        if from_square.row == PAWN_START_ROW[pawn.color] and d_row == 2 * direction:
            return board.is_empty(from_square.offset(direction, 0))
        return False

    if abs(d_col) == 1 and d_row == direction:
        return target is not None and target.color != pawn.color
    return False


def is_legal_knight_move(board: Board, from_square: Square, to_square: Square) -> bool:
    """Knights jump: |delta_row| + |delta_col| = 3, neither zero. Never blocked."""
    d_row = abs(to_square.row - from_square.row)
    d_col = abs(to_square.col - from_square.col)
    return (d_row, d_col) in {(1, 2), (2, 1)}


def is_legal_bishop_move(board: Board, from_square: Square, to_square: Square) -> bool:
    """Bishops move diagonally: |delta_row| = |delta_col|"""
    d_row = abs(to_square.row - from_square.row)
    d_col = abs(to_square.col - from_square.col)
    if d_row != d_col or d_row == 0:
        return False
    return not is_path_blocked(board, from_square, to_square)


def is_legal_rook_move(board: Board, from_square: Square, to_square: Square) -> bool:
    """Rooks move either horizontally or vertically"""
    same_row = from_square.row == to_square.row
    same_col = from_square.col == to_square.col
    if same_row == same_col:
        return False
    return not is_path_blocked(board, from_square, to_square)


def is_legal_queen_move(board: Board, from_square: Square, to_square: Square) -> bool:
    """
    The Queen combines the rook moves (horizontal + vertical movements) and bishop moves (diagonal movement)
    """
    return is_legal_rook_move(board, from_square, to_square) or is_legal_bishop_move(
        board, from_square, to_square
    )


def is_legal_king_move(board: Board, from_square: Square, to_square: Square) -> bool:
    """
    The king can move by a single square at the time.

    No castling, no check safety.
    """
    d_row = abs(to_square.row - from_square.row)
    d_col = abs(to_square.col - from_square.col)
    return d_row <= 1 and d_col <= 1


# -- STRATEGY PATTERN: MOVEMENT RULES ---
MovementRuleFn = Callable[[Board, Square, Square], bool]
MOVEMENT_RULES: dict[PieceType, MovementRuleFn] = {
    PieceType.PAWN: is_legal_pawn_move,
    PieceType.KNIGHT: is_legal_knight_move,
    PieceType.BISHOP: is_legal_bishop_move,
    PieceType.ROOK: is_legal_rook_move,
    PieceType.QUEEN: is_legal_queen_move,
    PieceType.KING: is_legal_king_move,
}


# --- ENTRY POINTS ---
def is_correct_turn(piece: Optional[Piece], turn: Color) -> bool:
    return piece is not None and piece.color == turn


def is_legal_move(
    board: Board, turn: Color, from_square: Square, to_square: Square
) -> bool:
    """
    Decide if the side on move may play from_square -> to_square.
    ----

    1. both squares on the board, and not the same square
    2. the moving piece belongs to the side on move
    3. no capturing your own piece
    4. the movement rule of the piece type allows it
    """
    if from_square == to_square:
        return False
    if not (from_square.is_within_bounds() and to_square.is_within_bounds()):
        return False

    piece = board.piece(from_square)
    if not is_correct_turn(piece, turn):
        return False
    assert piece is not None

    target = board.piece(to_square)
    if target is not None and target.color == piece.color:
        return False

    movement_rule = MOVEMENT_RULES[piece.type]
    return movement_rule(board, from_square, to_square)


def legal_destinations(board: Board, turn: Color, from_square: Square) -> list[Square]:
    """All squares the piece may move to (used by the UI to highlight moves)"""
    rows, cols = BOARD_DIMENSIONS
    return [
        Square(row, col)
        for row in range(rows)
        for col in range(cols)
        if is_legal_move(board, turn, from_square, Square(row, col))
    ]
