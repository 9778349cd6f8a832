"""
Boundary layer data model(s).

These objects are used to communicate between the game session and the synchronization layer / stores.
Only plain strings/ints: the room store and the wire schemas never see domain objects.
"""

from dataclasses import dataclass, field
from typing import Optional

# Type aliases to make the models easier to read
PieceCode = str
ColorName = str
AlgebraicSquare = str


@dataclass(frozen=True)
class MoveModel:
    """Transport-safe move record. Carries both algebraic squares and 0-based indices."""

    from_square: AlgebraicSquare
    to_square: AlgebraicSquare
    piece: PieceCode
    captured: Optional[PieceCode]
    turn: ColorName
    from_row: int
    from_col: int
    to_row: int
    to_col: int


@dataclass
class GameModel:
    """Snapshot of a game session: everything another peer needs to continue the game."""

    board: list[list[PieceCode]]
    current_turn: ColorName
    move_history: list[MoveModel] = field(default_factory=list)
    white_time: int = 600
    black_time: int = 600
    status: str = "in progress"
