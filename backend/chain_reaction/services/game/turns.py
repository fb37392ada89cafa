import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from chain_reaction.errors import GameNotActive, IllegalMove
from .engine import INTERACTIVE_MAX_ROUNDS, Resolution, resolve, single_owner_remaining
from .grid import Grid, create_grid, orb_counts

logger = logging.getLogger(__name__)

MIN_PLAYERS = 2
MAX_PLAYERS = 8


class Phase(str, Enum):
    AWAITING_MOVE = 'awaiting_move'
    RESOLVING = 'resolving'
    GAME_OVER = 'game_over'


@dataclass
class MoveOutcome:
    row: int
    col: int
    player: int
    resolution: Resolution
    eliminated: List[int] = field(default_factory=list)
    winner: Optional[int] = None
    next_player: Optional[int] = None

    @property
    def grid(self) -> Grid:
        return self.resolution.grid

    def to_dict(self):
        return {
            'lastMove': {'row': self.row, 'col': self.col, 'player': self.player},
            'eliminated': list(self.eliminated),
            'winner': self.winner,
            'currentTurn': self.next_player,
            'explosions': [e.to_dict() for e in self.resolution.explosions],
            'propagations': [e.to_dict() for e in self.resolution.propagations],
        }


class TurnStateMachine:
    """Whose turn it is, who is out, and who has won.

    A move is only accepted from the current player on a legal cell; it is
    resolved synchronously, eliminations and the winner are re-evaluated,
    and the turn passes to the next player still in the game.
    """

    def __init__(self, rows: int, cols: int, players: int = 2, grid: Optional[Grid] = None,
                 max_rounds: int = INTERACTIVE_MAX_ROUNDS, early_exit: bool = True):
        if not MIN_PLAYERS <= players <= MAX_PLAYERS:
            raise ValueError(f'players must be between {MIN_PLAYERS} and {MAX_PLAYERS}, got {players}')
        self.rows = rows
        self.cols = cols
        self.players = players
        self.max_rounds = max_rounds
        self.early_exit = early_exit
        self.reset(grid)

    def reset(self, grid: Optional[Grid] = None) -> None:
        self.grid = grid if grid is not None else create_grid(self.rows, self.cols)
        self.current_player = 0
        self.has_moved = [False] * self.players
        self.eliminated = [False] * self.players
        self.winner: Optional[int] = None
        self.phase = Phase.AWAITING_MOVE
        self.move_count = 0

    @property
    def is_over(self) -> bool:
        return self.phase == Phase.GAME_OVER

    @property
    def movers(self) -> int:
        return sum(1 for moved in self.has_moved if moved)

    def orb_counts(self) -> List[int]:
        return orb_counts(self.grid, self.players)

    def active_players(self) -> List[int]:
        return [p for p in range(self.players) if not self.eliminated[p]]

    def validate_move(self, r: int, c: int, player: int) -> None:
        if self.phase != Phase.AWAITING_MOVE:
            raise GameNotActive()
        if player != self.current_player:
            raise IllegalMove('Not your turn', reason=IllegalMove.NOT_YOUR_TURN,
                              context={'currentTurn': self.current_player})
        self._validate_cell(r, c, player)

    def _validate_cell(self, r: int, c: int, player: int) -> None:
        if not self.grid.in_bounds(r, c):
            raise IllegalMove('Cell is outside the board', reason=IllegalMove.OUT_OF_BOUNDS,
                              context={'row': r, 'col': c})
        owner = self.grid.cells[r][c].owner
        if owner is not None and owner != player:
            raise IllegalMove('Cell belongs to another player', reason=IllegalMove.CELL_OWNED,
                              context={'row': r, 'col': c, 'owner': owner})

    def apply_move(self, r: int, c: int, player: int) -> MoveOutcome:
        self.validate_move(r, c, player)
        return self._commit(r, c, player)

    def replay_move(self, r: int, c: int, player: int) -> MoveOutcome:
        """Apply a move that was already accepted by whoever owns the turn.

        Used to animate an opponent's move locally; the local idea of whose
        turn it is may lag behind, so only the cell itself is checked.
        """
        if self.phase != Phase.AWAITING_MOVE:
            raise GameNotActive()
        if not 0 <= player < self.players:
            raise IllegalMove(f'Unknown player {player}', reason=IllegalMove.NOT_YOUR_TURN)
        self._validate_cell(r, c, player)
        return self._commit(r, c, player)

    def _commit(self, r: int, c: int, player: int) -> MoveOutcome:
        self.phase = Phase.RESOLVING
        self.has_moved[player] = True
        stop_when = single_owner_remaining if self.early_exit and self.movers >= 2 else None
        resolution = resolve(self.grid, r, c, player, max_rounds=self.max_rounds, stop_when=stop_when)
        self.grid = resolution.grid
        self.move_count += 1

        eliminated = self.check_eliminations()
        winner = self.check_winner()
        if winner is not None:
            self.winner = winner
            self.phase = Phase.GAME_OVER
            next_player = None
        else:
            self.current_player = self.next_active_player(player)
            self.phase = Phase.AWAITING_MOVE
            next_player = self.current_player
        return MoveOutcome(r, c, player, resolution, eliminated, winner, next_player)

    def check_eliminations(self) -> List[int]:
        """Eliminate movers left without orbs. Returns the newly eliminated."""
        counts = self.orb_counts()
        newly = []
        for p in range(self.players):
            if self.has_moved[p] and counts[p] == 0 and not self.eliminated[p]:
                self.eliminated[p] = True
                newly.append(p)
                logger.info(f"[eliminated] player={p} move={self.move_count}")
        return newly

    def check_winner(self) -> Optional[int]:
        if self.movers < 2:
            return None

        standing = [p for p in range(self.players) if self.has_moved[p] and not self.eliminated[p]]
        winner = standing[0] if len(standing) == 1 else None

        # Cross-check against orb ownership; the two rules must agree
        holders = [p for p, n in enumerate(self.orb_counts()) if n > 0]
        by_orbs = holders[0] if len(holders) == 1 else None
        if by_orbs != winner:
            logger.error(
                f"[invariant] winner rules disagree: standing={standing} holders={holders} move={self.move_count}"
            )
        return winner

    def next_active_player(self, after: Optional[int] = None) -> int:
        start = self.current_player if after is None else after
        nxt = (start + 1) % self.players
        attempts = 0
        while self.eliminated[nxt] and attempts < self.players:
            nxt = (nxt + 1) % self.players
            attempts += 1
        return nxt

    def to_dict(self):
        return {
            'grid': self.grid.to_list(),
            'rows': self.rows,
            'cols': self.cols,
            'players': self.players,
            'currentTurn': self.current_player,
            'hasMoved': list(self.has_moved),
            'eliminated': list(self.eliminated),
            'winner': self.winner,
            'phase': self.phase.value,
            'moveCount': self.move_count,
        }
