"""
Wire schemas for the shared room store.

Whatever another peer wrote into the store is untrusted input: it is parsed into these
models before anything touches the local game. Non-conforming payloads raise MalformedRecordError.
"""

from string import ascii_lowercase
from typing import Any, Literal, Optional, Self

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from src.core.exceptions import MalformedRecordError
from src.core.models import GameModel, MoveModel
from src.core.shared_types import GameStatus

PIECE_CODES = frozenset("KQRBNPkqrbnp")
BOARD_SIZE = 8
DEFAULT_TIME = 600

ColorName = Literal["white", "black"]


def _is_algebraic_notation(value: str) -> bool:
    return (
        len(value) == 2
        and value[0] in ascii_lowercase[:BOARD_SIZE]
        and value[1].isdigit()
        and 1 <= int(value[1]) <= BOARD_SIZE
    )


class WireModel(BaseModel):
    """camelCase on the wire, snake_case in Python"""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class MoveLogEntry(WireModel):
    from_square: str = Field(alias="from")
    to_square: str = Field(alias="to")
    piece: str
    captured: Optional[str] = None
    turn: ColorName
    from_row: int = Field(alias="fromRow", ge=0, lt=BOARD_SIZE)
    from_col: int = Field(alias="fromCol", ge=0, lt=BOARD_SIZE)
    to_row: int = Field(alias="toRow", ge=0, lt=BOARD_SIZE)
    to_col: int = Field(alias="toCol", ge=0, lt=BOARD_SIZE)

    @field_validator("from_square", "to_square")
    @classmethod
    def validate_square(cls, value: str) -> str:
        if not _is_algebraic_notation(value):
            raise ValueError(f"Cannot interpret {value!r} as a square name.")
        return value

    @field_validator("piece")
    @classmethod
    def validate_piece(cls, value: str) -> str:
        if value not in PIECE_CODES:
            raise ValueError(f"Unknown piece code {value!r}")
        return value

    @field_validator("captured")
    @classmethod
    def validate_captured(cls, value: Optional[str]) -> Optional[str]:
        # older writers send '' for "nothing captured"
        if not value:
            return None
        if value not in PIECE_CODES:
            raise ValueError(f"Unknown piece code {value!r}")
        return value

    @model_validator(mode="after")
    def check_consistency(self) -> Self:
        """Squares and indices must describe the same move, and the mover must own the piece."""
        if self.from_square != _to_algebraic(self.from_row, self.from_col):
            raise ValueError(f"'from' {self.from_square} does not match its indices")
        if self.to_square != _to_algebraic(self.to_row, self.to_col):
            raise ValueError(f"'to' {self.to_square} does not match its indices")
        piece_color = "white" if self.piece.isupper() else "black"
        if piece_color != self.turn:
            raise ValueError(f"{self.turn} cannot move piece {self.piece!r}")
        return self

    def to_model(self) -> MoveModel:
        return MoveModel(
            from_square=self.from_square,
            to_square=self.to_square,
            piece=self.piece,
            captured=self.captured,
            turn=self.turn,
            from_row=self.from_row,
            from_col=self.from_col,
            to_row=self.to_row,
            to_col=self.to_col,
        )

    @classmethod
    def from_model(cls, model: MoveModel) -> Self:
        return cls(
            from_square=model.from_square,
            to_square=model.to_square,
            piece=model.piece,
            captured=model.captured,
            turn=model.turn,
            from_row=model.from_row,
            from_col=model.from_col,
            to_row=model.to_row,
            to_col=model.to_col,
        )


def _to_algebraic(row: int, col: int) -> str:
    return f"{ascii_lowercase[col]}{BOARD_SIZE - row}"


class Players(WireModel):
    """Seat occupancy"""

    white: bool = False
    black: bool = False

    def occupied(self, color: str) -> bool:
        return self.white if color == "white" else self.black


class RoomRecord(WireModel):
    board: list[list[str]]
    current_turn: ColorName = Field(alias="currentTurn")
    # the store drops empty lists, so a missing history is an empty one
    move_history: list[MoveLogEntry] = Field(default_factory=list, alias="moveHistory")
    white_time: int = Field(default=DEFAULT_TIME, alias="whiteTime", ge=0)
    black_time: int = Field(default=DEFAULT_TIME, alias="blackTime", ge=0)
    players: Players = Field(default_factory=Players)
    created_at: int = Field(default=0, alias="createdAt")
    sequence: int = Field(default=0, ge=0)
    status: GameStatus = GameStatus.IN_PROGRESS

    @field_validator("board")
    @classmethod
    def validate_board(cls, value: list[list[str]]) -> list[list[str]]:
        if len(value) != BOARD_SIZE or any(len(row) != BOARD_SIZE for row in value):
            raise ValueError("Board must be 8x8.")
        for row in value:
            for code in row:
                if code and code not in PIECE_CODES:
                    raise ValueError(f"Unknown piece code {code!r} on the board")
        return value

    def to_model(self) -> GameModel:
        return GameModel(
            board=[list(row) for row in self.board],
            current_turn=self.current_turn,
            move_history=[entry.to_model() for entry in self.move_history],
            white_time=self.white_time,
            black_time=self.black_time,
            status=str(self.status),
        )

    @classmethod
    def from_model(
        cls,
        model: GameModel,
        players: Optional[Players] = None,
        created_at: int = 0,
        sequence: int = 0,
    ) -> Self:
        return cls(
            board=model.board,
            current_turn=model.current_turn,
            move_history=[MoveLogEntry.from_model(move) for move in model.move_history],
            white_time=model.white_time,
            black_time=model.black_time,
            players=players or Players(),
            created_at=created_at,
            sequence=sequence,
            status=GameStatus(model.status),
        )


def snapshot_changes(model: GameModel) -> dict[str, Any]:
    """The part of the room record a peer overwrites after each move (not players/createdAt)."""
    record = RoomRecord.from_model(model).to_wire()
    return {
        key: record[key]
        for key in ("board", "currentTurn", "moveHistory", "whiteTime", "blackTime", "status")
    }


# --- PARSING UNTRUSTED INPUT ---
def parse_room(data: Any) -> RoomRecord:
    try:
        return RoomRecord.model_validate(data)
    except ValidationError as exc:
        raise MalformedRecordError(f"Invalid room record: {exc}") from exc


def parse_move(data: Any) -> MoveLogEntry:
    try:
        return MoveLogEntry.model_validate(data)
    except ValidationError as exc:
        raise MalformedRecordError(f"Invalid move-log entry: {exc}") from exc
