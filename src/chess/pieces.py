"""Defines the types of chess pieces"""

from dataclasses import dataclass
from enum import Enum, StrEnum, auto
from typing import Self


class PieceType(Enum):
    PAWN = auto()
    KNIGHT = auto()
    BISHOP = auto()
    ROOK = auto()
    QUEEN = auto()
    KING = auto()


class Color(StrEnum):
    WHITE = "white"
    BLACK = "black"

    @property
    def opponent(self) -> "Color":
        return Color.BLACK if self == Color.WHITE else Color.WHITE


CODE_TO_PIECE: dict[str, PieceType] = {
    "p": PieceType.PAWN,
    "n": PieceType.KNIGHT,
    "b": PieceType.BISHOP,
    "r": PieceType.ROOK,
    "q": PieceType.QUEEN,
    "k": PieceType.KING,
}

PIECE_TO_CODE: dict[PieceType, str] = {
    value: key for key, value in CODE_TO_PIECE.items()
}


@dataclass(frozen=True)
class Piece:
    type: PieceType
    color: Color

    @classmethod
    def from_code(cls, character: str) -> Self:
        # lower case: Black pieces, upper case: White pieces
        if character.lower() not in CODE_TO_PIECE:
            raise ValueError(f"Unknown piece code: {character!r}")
        color = Color.WHITE if character.isupper() else Color.BLACK
        return cls(CODE_TO_PIECE[character.lower()], color)

    def to_code(self) -> str:
        code = PIECE_TO_CODE[self.type]
        return code.upper() if self.color == Color.WHITE else code


def piece_from_code(character: str) -> Piece | None:
    """The wire format uses an empty string for an empty square."""
    return Piece.from_code(character) if character else None


def piece_to_code(piece: Piece | None) -> str:
    return piece.to_code() if piece else ""
