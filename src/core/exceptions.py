"""
Exceptions raised across layers.

The domain layer raises, the outer layers (sync service, CLI) decide whether to surface or swallow them.
"""


class GameError(Exception):
    """Base class for everything this package raises on purpose."""


# --- GAME / DOMAIN ERRORS ---
class GameStateError(GameError):
    """The game is in a state that does not allow the requested action."""


class IllegalMoveError(GameError):
    """The move breaks the movement rules of the piece."""


class NotYourTurnError(GameError):
    """A piece of the side that is not on move was touched."""


class InvalidRequestError(GameError):
    """Input from the user could not be interpreted."""


# --- PERSISTENCE ERRORS ---
class RepositoryError(GameError):
    """Store failed to read or write a record."""


# --- SYNCHRONIZATION ERRORS ---
class SyncError(GameError):
    """Base class for anything going wrong while replicating a game between peers."""


class TransportNotReadyError(SyncError):
    """The remote store is not connected yet. Retry once it is."""


class RoomNotFoundError(SyncError):
    pass


class RoomFullError(SyncError):
    pass


class MalformedRecordError(SyncError):
    """A room record or move-log entry did not match the expected schema."""


class SequenceConflictError(SyncError):
    """The room record changed since it was last read (compare-and-set failed)."""


class RemoteMoveRejectedError(SyncError):
    """The opponent sent a move the rules engine does not allow."""
