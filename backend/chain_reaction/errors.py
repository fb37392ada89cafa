"""Errors reported back to the participant that caused them.

None of these corrupt room state: the operation that raised is a no-op.
Each carries a machine-readable ``reason`` used on the wire.
"""
from typing import Any, Dict, Optional


class ChainReactionError(Exception):
    reason: str = 'error'
    default_message: str = 'Something went wrong'

    def __init__(self, message: Optional[str] = None, reason: Optional[str] = None,
                 context: Optional[Dict[str, Any]] = None):
        self.message = message or self.default_message
        super().__init__(self.message)
        if reason:
            self.reason = reason
        self.context = context or {}

    def __str__(self) -> str:
        return f"[{self.reason}] {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        payload = {'reason': self.reason, 'message': self.message}
        if self.context:
            payload['context'] = self.context
        return payload


class IllegalMove(ChainReactionError):
    """Wrong turn, a cell owned by an opponent, or off the board."""
    reason = 'illegal_move'
    default_message = 'Illegal move'

    NOT_YOUR_TURN = 'not_your_turn'
    CELL_OWNED = 'cell_owned'
    OUT_OF_BOUNDS = 'out_of_bounds'


class RoomNotFound(ChainReactionError):
    reason = 'room_not_found'
    default_message = 'Room not found'


class RoomFull(ChainReactionError):
    reason = 'room_full'
    default_message = 'Room is not available'


class GameNotActive(ChainReactionError):
    reason = 'game_not_active'
    default_message = 'Game is not in progress'


class AlreadyInSession(ChainReactionError):
    reason = 'already_in_session'
    default_message = 'Already in a room'


class AuthenticationFailed(ChainReactionError):
    reason = 'authentication_failed'
    default_message = 'Authentication failed'


class StaleRoomExpired(ChainReactionError):
    reason = 'room_expired'
    default_message = 'Room expired due to inactivity'
