"""
Type definitions used across layers
"""

from enum import StrEnum


class GameStatus(StrEnum):
    IN_PROGRESS = "in progress"
    WHITE_WON_ON_TIME = "white won on time"
    BLACK_WON_ON_TIME = "black won on time"


class ConnectionState(StrEnum):
    WAITING_FOR_OPPONENT = "waiting for opponent"
    CONNECTED = "connected"
    OPPONENT_DISCONNECTED = "opponent disconnected"
    PEER_REJECTED = "peer sent an illegal move"
    ROOM_CLOSED = "room closed"
