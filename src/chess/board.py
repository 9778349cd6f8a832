"""The Game board holds the `position` (in chess: the configuration of pieces on the board)"""

from copy import deepcopy
from dataclasses import dataclass
from typing import Optional, Self

from src.chess.pieces import Color, Piece, piece_from_code, piece_to_code
from src.chess.square import BOARD_DIMENSIONS, Square

STARTING_POSITION_FEN = "rnbqkbnr/pppppppp/8/8/8/8/PPPPPPPP/RNBQKBNR"

Grid = list[list[Optional[Piece]]]
CodeGrid = list[list[str]]


@dataclass
class Board:
    grid: Grid

    @classmethod
    def empty(cls) -> Self:
        rows, cols = BOARD_DIMENSIONS
        return cls([[None] * cols for _ in range(rows)])

    @classmethod
    def starting_position(cls) -> Self:
        return cls.from_fen(STARTING_POSITION_FEN)

    @classmethod
    def from_fen(cls, fen_str: str) -> Self:
        """Construct a board using the piece placement part of a FEN string.

        ex. standard starting position:
        rnbqkbnr/pppppppp/8/8/8/8/PPPPPPPP/RNBQKBNR
        means:
        * black pieces are on the 8th rank (row 0), starting with rook on a8
        * pawns cover 7th rank entirely
        * ranks 6 through 3 have 8 consecutive empty squares
        * rank 2 are the white pawns (capital letters)
        """
        board = cls.empty()
        for row, fen_one_rank in enumerate(fen_str.split("/")):
            col = 0
            for character in fen_one_rank:
                if character.isalpha():
                    board.grid[row][col] = Piece.from_code(character)
                    col += 1
                else:
                    # A number denotes the amount of empty squares after each other
                    col += int(character)
        return board

    def to_fen(self) -> str:
        """Ranks are separated by slashes in FEN string."""
        return "/".join(self._row_to_fen(row) for row in self.grid)

    @staticmethod
    def _row_to_fen(row: list[Optional[Piece]]) -> str:
        fen_characters: list[str] = []
        empty_count = 0
        for piece in row:
            if piece is not None:
                if empty_count > 0:
                    fen_characters.append(str(empty_count))
                    empty_count = 0
                fen_characters.append(piece.to_code())
            else:
                empty_count += 1

        # if the entire rank is empty, then we still place this number in the string
        if empty_count > 0:
            fen_characters.append(str(empty_count))
        return "".join(fen_characters)

    @classmethod
    def from_codes(cls, codes: CodeGrid) -> Self:
        """Wire format: 8x8 grid of single characters, '' for an empty square"""
        return cls([[piece_from_code(code) for code in row] for row in codes])

    def to_codes(self) -> CodeGrid:
        return [[piece_to_code(piece) for piece in row] for row in self.grid]

    def copy(self) -> Self:
        return deepcopy(self)

    def piece(self, square: Square) -> Optional[Piece]:
        return self.grid[square.row][square.col]

    def is_empty(self, square: Square) -> bool:
        return self.piece(square) is None

    def place_piece(self, piece: Piece, square: Square) -> None:
        self.grid[square.row][square.col] = piece

    def remove_piece(self, square: Square) -> Optional[Piece]:
        piece = self.piece(square)
        self.grid[square.row][square.col] = None
        return piece

    def move_piece(self, from_square: Square, to_square: Square) -> Optional[Piece]:
        """Update the position on the board. Returns whatever stood on the target square."""
        moving = self.remove_piece(from_square)
        captured = self.piece(to_square)
        self.grid[to_square.row][to_square.col] = moving
        return captured

    def locate_color(self, color: Color) -> list[Square]:
        return [
            Square(row, col)
            for row, pieces in enumerate(self.grid)
            for col, piece in enumerate(pieces)
            if piece is not None and piece.color == color
        ]
