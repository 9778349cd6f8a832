"""
Command-line interface: hotseat chess, or online chess through a shared SQL room store.

Two terminals pointing at the same database can play each other:

    python -m src.cli                      # then: create
    python -m src.cli                      # then: join <CODE>
"""

import argparse
import asyncio
import logging
from dataclasses import replace
from typing import Optional

from pydantic import ValidationError

from src.api.models import JoinRoomRequest, MoveRequest
from src.chess.clock import AsyncioTicker, asyncio_ticker_factory, format_seconds
from src.chess.game import GameSession, OnlineMode
from src.chess.moves import format_move_list
from src.chess.pieces import Color, piece_to_code
from src.chess.square import FILES, Square
from src.core.config import Settings, get_settings
from src.core.exceptions import GameError
from src.core.shared_types import GameStatus
from src.db.database import make_engine, make_session_factory
from src.db.sql_repository import SQLRoomStore
from src.services.room_sync import RoomSync

logger = logging.getLogger(__name__)

HELP = """Commands:
  e2 e4         move a piece (also: e2e4)
  moves         show the move list
  hint e2       show where the piece on e2 may go
  flip          turn the board around
  reset         new game (leaves the room when online)
  create        create an online room (you play white)
  join CODE     join an online room (you play black)
  leave         leave the online room
  quit"""


def render_board(session: GameSession, highlights: Optional[set[Square]] = None) -> str:
    highlights = highlights or set()
    rows = range(7, -1, -1) if session.flipped else range(8)
    cols = list(range(7, -1, -1) if session.flipped else range(8))
    lines: list[str] = []
    for row in rows:
        cells = []
        for col in cols:
            square = Square(row, col)
            code = piece_to_code(session.board.piece(square))
            cells.append("*" if square in highlights and not code else code or ".")
        lines.append(f"{8 - row} " + " ".join(cells))
    lines.append("  " + " ".join(FILES[col] for col in cols))
    return "\n".join(lines)


def render_status(session: GameSession) -> str:
    clock = session.clock
    parts = [
        f"white {format_seconds(clock.white_seconds)}",
        f"black {format_seconds(clock.black_seconds)}",
        f"{session.turn} to move",
    ]
    if isinstance(session.mode, OnlineMode):
        parts.append(
            f"room {session.mode.room_id} as {session.mode.local_color} ({session.mode.connection_state})"
        )
    if session.is_game_over:
        parts.append(str(session.status))
    return " | ".join(parts)


def _parse_move(tokens: list[str]) -> MoveRequest:
    if len(tokens) == 1 and len(tokens[0]) == 4:
        tokens = [tokens[0][:2], tokens[0][2:]]
    if len(tokens) != 2:
        raise ValueError("expected two squares")
    return MoveRequest(from_square=tokens[0], to_square=tokens[1])


def poll_store(store: SQLRoomStore, sync: RoomSync) -> None:
    """Timer callback: pick up the opponent's writes, resend what did not get through."""
    try:
        store.poll()
        sync.flush()
    except GameError as exc:
        logger.error("Room store poll failed: %s", exc)


def handle_command(line: str, session: GameSession, sync: RoomSync) -> Optional[str]:
    """Run one command. Returns the text to show, or None to quit."""
    tokens = line.strip().split()
    if not tokens:
        return render_board(session)
    command = tokens[0].lower()

    try:
        if command in {"q", "quit", "exit"}:
            return None
        if command == "help":
            return HELP
        if command == "moves":
            return "\n".join(format_move_list(session.history)) or "(no moves yet)"
        if command == "flip":
            session.flip_board()
            return render_board(session)
        if command == "reset":
            session.reset()
            return render_board(session)
        if command == "hint" and len(tokens) == 2:
            request = MoveRequest(from_square=tokens[1], to_square=tokens[1])
            origin, _ = request.squares()
            return render_board(session, set(session.legal_destinations(origin)))
        if command == "create":
            room_id = sync.create_room()
            return f"Room {room_id} created. Waiting for opponent..."
        if command == "join" and len(tokens) == 2:
            request = JoinRoomRequest(room_id=tokens[1])
            sync.join_room(request.room_id)
            return f"Joined room {request.room_id}.\n{render_board(session)}"
        if command == "leave":
            sync.leave_room()
            return "Left the room. Playing locally."

        from_square, to_square = _parse_move(tokens).squares()
    except (GameError, ValidationError, ValueError) as exc:
        return f"Cannot do that: {exc}"

    result = session.attempt_move(from_square, to_square)
    if not result:
        return "Move not possible."
    return render_board(session)


async def amain(settings: Settings) -> None:
    engine = make_engine(settings.database_url)
    store = SQLRoomStore(make_session_factory(engine)())
    session = GameSession(
        clock_seconds=settings.clock_seconds,
        ticker_factory=asyncio_ticker_factory(settings.tick_seconds),
    )
    sync = RoomSync(session, store, settings)

    def announce(status: GameStatus) -> None:
        loser = Color.WHITE if status == GameStatus.BLACK_WON_ON_TIME else Color.BLACK
        print(f"\n{loser.opponent.capitalize()} wins on time!")

    session.add_status_listener(announce)
    poller = AsyncioTicker(lambda: poll_store(store, sync), settings.poll_seconds)
    loop = asyncio.get_running_loop()

    print(render_board(session))
    print(HELP)
    try:
        while True:
            try:
                line = await loop.run_in_executor(None, input, f"[{render_status(session)}] > ")
            except EOFError:
                break
            output = handle_command(line, session, sync)
            if output is None:
                break
            print(output)
    finally:
        poller.cancel()
        session.stop()
        store.disconnect()
        engine.dispose()


def main() -> None:
    parser = argparse.ArgumentParser(description="Two-player chess")
    parser.add_argument("--database-url", default=None)
    parser.add_argument("--clock-seconds", type=int, default=None)
    parser.add_argument("--log-level", default="WARNING")
    args = parser.parse_args()

    logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.WARNING))

    defaults = get_settings()
    settings = replace(
        defaults,
        database_url=args.database_url or defaults.database_url,
        clock_seconds=args.clock_seconds or defaults.clock_seconds,
    )
    try:
        asyncio.run(amain(settings))
    except KeyboardInterrupt:
        logger.info("Shutting down")


if __name__ == "__main__":
    main()
