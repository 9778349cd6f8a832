"""Request models: what the user typed, validated before it reaches the game or the room store"""

from pydantic import BaseModel, field_validator

from src.chess.square import Square
from src.core.exceptions import InvalidRequestError


def _is_algebraic_notation(value: str) -> bool:
    if len(value) != 2:
        return False

    first_character = value[0]
    second_character = value[1]
    return first_character in "abcdefgh" and second_character in "12345678"


# --- REQUEST MODELS ---
class MoveRequest(BaseModel):
    from_square: str
    to_square: str

    @field_validator(*["from_square", "to_square"])
    @classmethod
    def validate_square(cls, value: str) -> str:
        value = value.strip().lower()
        if not _is_algebraic_notation(value):
            raise InvalidRequestError(
                f"Cannot interpret {value!r} as a valid square name."
            )
        return value

    def squares(self) -> tuple[Square, Square]:
        return Square.from_algebraic(self.from_square), Square.from_algebraic(
            self.to_square
        )


class JoinRoomRequest(BaseModel):
    room_id: str

    @field_validator("room_id")
    @classmethod
    def validate_room_id(cls, value: str) -> str:
        value = value.strip().upper()
        if not value or not value.isalnum():
            raise InvalidRequestError(f"Not a room code: {value!r}")
        return value
