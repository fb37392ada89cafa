import random
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

from flask_login import UserMixin

from chain_reaction.services.game.grid import Grid, create_grid
from chain_reaction.services.game.turns import TurnStateMachine
from chain_reaction.services.game.engine import AUTHORITATIVE_MAX_ROUNDS

# No I, O, 0 or 1: codes get read out loud and typed on phones
ROOM_CODE_ALPHABET = 'ABCDEFGHJKLMNPQRSTUVWXYZ23456789'
ROOM_CODE_LENGTH = 4
ROOM_CAPACITY = 2


class User(UserMixin):
    """An anonymous, session-backed identity. Nothing is stored server side."""

    def __init__(self, user_id: str):
        self.id = user_id

    def to_dict(self):
        return {'id': self.id}


def generate_room_code(exists: Optional[Callable[[str], bool]] = None, length: int = ROOM_CODE_LENGTH,
                       alphabet: str = ROOM_CODE_ALPHABET) -> str:
    """Generate a short room code not already taken according to ``exists``."""
    while True:
        code = ''.join(random.choices(alphabet, k=length))
        if exists is None or not exists(code):
            return code


class RoomStatus(str, Enum):
    WAITING = 'waiting'
    PLAYING = 'playing'
    FINISHED = 'finished'
    PLAYER_LEFT = 'player_left'
    CANCELLED = 'cancelled'


@dataclass
class Seat:
    sid: str
    user_id: Optional[str] = None

    def to_dict(self):
        return {'sid': self.sid, 'userId': self.user_id}


@dataclass
class Room:
    code: str
    rows: int
    cols: int
    grid_size: str = 'MEDIUM'
    private: bool = True
    seats: List[Seat] = field(default_factory=list)
    status: RoomStatus = RoomStatus.WAITING
    created_at: float = field(default_factory=time.time)
    touched_at: float = 0.0
    winner: Optional[int] = None
    player_who_left: Optional[int] = None
    last_move: Optional[Dict] = None
    rematch: Dict[int, bool] = field(default_factory=dict)
    rematch_declined_by: Optional[int] = None
    max_rounds: int = AUTHORITATIVE_MAX_ROUNDS
    game: TurnStateMachine = None

    def __post_init__(self):
        if not self.touched_at:
            self.touched_at = self.created_at
        if self.game is None:
            self.game = TurnStateMachine(self.rows, self.cols, players=ROOM_CAPACITY, max_rounds=self.max_rounds)

    @property
    def grid(self) -> Grid:
        return self.game.grid

    @property
    def current_turn(self) -> int:
        return self.game.current_player

    @property
    def is_full(self) -> bool:
        return len(self.seats) >= ROOM_CAPACITY

    @property
    def channel(self) -> str:
        return f"room:{self.code}"

    def slot_of(self, sid: str) -> Optional[int]:
        for idx, seat in enumerate(self.seats):
            if seat.sid == sid:
                return idx
        return None

    def sids(self) -> List[str]:
        return [seat.sid for seat in self.seats]

    def touch(self, now: float) -> None:
        self.touched_at = now

    def new_game(self) -> None:
        self.game.reset(create_grid(self.rows, self.cols))
        self.winner = None
        self.player_who_left = None
        self.last_move = None
        self.rematch = {}
        self.rematch_declined_by = None

    def rematch_state(self):
        return {
            'player0': bool(self.rematch.get(0)),
            'player1': bool(self.rematch.get(1)),
            'declined': self.rematch_declined_by,
        }

    def to_dict(self):
        return {
            'roomCode': self.code,
            'status': self.status.value,
            'rows': self.rows,
            'cols': self.cols,
            'gridSize': self.grid_size,
            'private': self.private,
            'players': len(self.seats),
            'grid': self.grid.to_list(),
            'currentTurn': self.current_turn,
            'lastMove': self.last_move,
            'winner': self.winner,
            'playerWhoLeft': self.player_who_left,
            'rematch': self.rematch_state(),
            'createdAt': self.created_at,
            'touchedAt': self.touched_at,
        }
