"""Chain reaction resolution.

A placed orb may push its cell to critical mass. Every round the whole board
is scanned once, all critical cells explode together, and cells that tip
over as a side effect wait for the next round. The engine is a pure
function of its inputs so a client's provisional run and the server's
authoritative run always agree.
"""
import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

from .grid import Grid, clone_grid

logger = logging.getLogger(__name__)

INTERACTIVE_MAX_ROUNDS = 100
AUTHORITATIVE_MAX_ROUNDS = 1000


@dataclass(frozen=True)
class ExplosionEvent:
    round: int
    row: int
    col: int
    player: Optional[int]

    def to_dict(self):
        return {'round': self.round, 'row': self.row, 'col': self.col, 'player': self.player}


@dataclass(frozen=True)
class PropagationEvent:
    round: int
    source: Tuple[int, int]
    target: Tuple[int, int]
    player: Optional[int]

    def to_dict(self):
        return {
            'round': self.round,
            'from': {'row': self.source[0], 'col': self.source[1]},
            'to': {'row': self.target[0], 'col': self.target[1]},
            'player': self.player,
        }


@dataclass
class Resolution:
    grid: Grid
    events: List = field(default_factory=list)
    rounds: int = 0
    stable: bool = True

    @property
    def explosions(self) -> List[ExplosionEvent]:
        return [e for e in self.events if isinstance(e, ExplosionEvent)]

    @property
    def propagations(self) -> List[PropagationEvent]:
        return [e for e in self.events if isinstance(e, PropagationEvent)]


def single_owner_remaining(grid: Grid) -> bool:
    """True when exactly one player holds every orb on a non-empty board."""
    return len(grid.owners()) == 1


def critical_cells(grid: Grid) -> List[Tuple[int, int, Optional[int]]]:
    """Row-major snapshot of cells at or over capacity, with their owners."""
    out = []
    for r in range(grid.rows):
        for c in range(grid.cols):
            cell = grid.cells[r][c]
            if cell.count >= cell.critical_mass:
                out.append((r, c, cell.owner))
    return out


def explode_round(grid: Grid, round_no: int, events: list) -> int:
    """Apply one simultaneous round of explosions in place.

    Returns the number of cells that exploded.
    """
    criticals = critical_cells(grid)
    if not criticals:
        return 0

    for r, c, owner in criticals:
        cell = grid.cells[r][c]
        cell.count -= cell.critical_mass
        if cell.count == 0:
            cell.owner = None
        events.append(ExplosionEvent(round_no, r, c, owner))

    for r, c, owner in criticals:
        for nr, nc in grid.neighbours(r, c):
            target = grid.cells[nr][nc]
            target.owner = owner
            target.count += 1
            events.append(PropagationEvent(round_no, (r, c), (nr, nc), owner))

    return len(criticals)


def resolve(
    grid: Grid,
    r: int,
    c: int,
    player: int,
    max_rounds: int = INTERACTIVE_MAX_ROUNDS,
    stop_when: Optional[Callable[[Grid], bool]] = None,
) -> Resolution:
    """Place an orb for ``player`` at (r, c) and settle the board.

    The caller is responsible for checking legality first. ``grid`` is left
    untouched; the settled board is returned in the ``Resolution``.
    ``stop_when`` is only consulted between complete rounds.
    """
    board = clone_grid(grid)
    cell = board.cells[r][c]
    cell.count += 1
    cell.owner = player

    events: list = []
    rounds = 0
    while rounds < max_rounds:
        if explode_round(board, rounds + 1, events) == 0:
            return Resolution(board, events, rounds, stable=True)
        rounds += 1
        if stop_when is not None and stop_when(board):
            return Resolution(board, events, rounds, stable=board.is_stable())

    stable = board.is_stable()
    if not stable:
        logger.error(
            f"[engine-cap] move=({r},{c}) player={player} did not settle within {max_rounds} rounds "
            f"owners={sorted(board.owners())} orbs={board.total_orbs()}"
        )
    return Resolution(board, events, rounds, stable=stable)
