from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple


# Board presets shared with the mobile clients
GRID_SIZES = {
    'SMALL': (6, 4),
    'MEDIUM': (9, 6),
    'LARGE': (12, 8),
    'XLARGE': (15, 10),
}
DEFAULT_GRID_SIZE = 'MEDIUM'

# Orthogonal neighbour offsets, in the order spreads are applied
DIRECTIONS = ((-1, 0), (1, 0), (0, -1), (0, 1))

# Owner value used for empty cells in shared-state snapshots
SHARED_EMPTY_OWNER = -1


def critical_mass(r: int, c: int, rows: int, cols: int) -> int:
    """Number of in-bounds orthogonal neighbours of (r, c)."""
    n = 0
    if r > 0:
        n += 1
    if r < rows - 1:
        n += 1
    if c > 0:
        n += 1
    if c < cols - 1:
        n += 1
    return n


@dataclass
class Cell:
    count: int = 0
    owner: Optional[int] = None
    critical_mass: int = 4

    def to_dict(self):
        return {
            'count': self.count,
            'owner': self.owner,
            'criticalMass': self.critical_mass,
        }


class Grid:
    """A fixed-size rows x cols board of cells."""

    def __init__(self, rows: int, cols: int, cells: List[List[Cell]]):
        self.rows = rows
        self.cols = cols
        self.cells = cells

    def __getitem__(self, pos: Tuple[int, int]) -> Cell:
        r, c = pos
        return self.cells[r][c]

    def __eq__(self, other):
        if not isinstance(other, Grid):
            return NotImplemented
        return self.rows == other.rows and self.cols == other.cols and self.cells == other.cells

    def __repr__(self):
        return f"Grid({self.rows}x{self.cols}, orbs={self.total_orbs()})"

    def in_bounds(self, r: int, c: int) -> bool:
        return 0 <= r < self.rows and 0 <= c < self.cols

    def neighbours(self, r: int, c: int) -> List[Tuple[int, int]]:
        out = []
        for dr, dc in DIRECTIONS:
            nr, nc = r + dr, c + dc
            if self.in_bounds(nr, nc):
                out.append((nr, nc))
        return out

    def positions(self):
        for r in range(self.rows):
            for c in range(self.cols):
                yield r, c

    def total_orbs(self) -> int:
        return sum(cell.count for row in self.cells for cell in row)

    def owners(self) -> set:
        """Players that currently hold at least one orb."""
        return {cell.owner for row in self.cells for cell in row if cell.count > 0 and cell.owner is not None}

    def is_empty(self) -> bool:
        return all(cell.count == 0 for row in self.cells for cell in row)

    def is_stable(self) -> bool:
        return all(cell.count < cell.critical_mass for row in self.cells for cell in row)

    def to_list(self) -> List[List[Dict]]:
        return [[cell.to_dict() for cell in row] for row in self.cells]

    @classmethod
    def from_list(cls, data) -> 'Grid':
        rows = len(data)
        cols = len(data[0]) if rows else 0
        if rows < 1 or cols < 1:
            raise ValueError('grid must have at least one row and one column')
        cells = []
        for r, row in enumerate(data):
            if len(row) != cols:
                raise ValueError(f'row {r} has {len(row)} cells, expected {cols}')
            cells.append([
                Cell(
                    count=int(cell.get('count') or 0),
                    owner=cell.get('owner'),
                    critical_mass=int(cell.get('criticalMass') or critical_mass(r, c, rows, cols)),
                )
                for c, cell in enumerate(row)
            ])
        return cls(rows, cols, cells)

    def to_shared(self) -> List[List[Dict]]:
        """Snapshot for the shared realtime store, which cannot hold nulls."""
        return [
            [
                {
                    'count': cell.count,
                    'owner': SHARED_EMPTY_OWNER if cell.owner is None else cell.owner,
                    'criticalMass': cell.critical_mass,
                }
                for cell in row
            ]
            for row in self.cells
        ]

    @classmethod
    def from_shared(cls, data) -> Optional['Grid']:
        if not data:
            return None
        rows = len(data)
        cells = []
        for r, row in enumerate(data):
            cols = len(row)
            out_row = []
            for c, cell in enumerate(row):
                owner = cell.get('owner')
                out_row.append(Cell(
                    count=cell.get('count') or 0,
                    owner=None if owner is None or owner == SHARED_EMPTY_OWNER else owner,
                    critical_mass=cell.get('criticalMass') or critical_mass(r, c, rows, cols),
                ))
            cells.append(out_row)
        return cls(rows, len(cells[0]), cells)


def create_grid(rows: int, cols: int) -> Grid:
    if rows < 1 or cols < 1:
        raise ValueError(f'invalid grid size {rows}x{cols}')
    cells = [
        [Cell(count=0, owner=None, critical_mass=critical_mass(r, c, rows, cols)) for c in range(cols)]
        for r in range(rows)
    ]
    return Grid(rows, cols, cells)


def clone_grid(grid: Grid) -> Grid:
    cells = [
        [Cell(count=cell.count, owner=cell.owner, critical_mass=cell.critical_mass) for cell in row]
        for row in grid.cells
    ]
    return Grid(grid.rows, grid.cols, cells)


def grid_size(name: Optional[str]) -> Tuple[str, int, int]:
    """Resolve a preset name; unknown names fall back to the default."""
    key = (name or DEFAULT_GRID_SIZE).upper()
    if key not in GRID_SIZES:
        key = DEFAULT_GRID_SIZE
    rows, cols = GRID_SIZES[key]
    return key, rows, cols


def grid_for_size(name: Optional[str]) -> Grid:
    _, rows, cols = grid_size(name)
    return create_grid(rows, cols)


def is_legal_move(grid: Grid, r: int, c: int, player: int) -> bool:
    """A player may only add to empty cells or cells they already own."""
    if not grid.in_bounds(r, c):
        return False
    owner = grid.cells[r][c].owner
    return owner is None or owner == player


def legal_moves(grid: Grid, player: int) -> List[Tuple[int, int]]:
    return [(r, c) for r, c in grid.positions() if is_legal_move(grid, r, c, player)]


def orb_counts(grid: Grid, players: int) -> List[int]:
    counts = [0] * players
    for row in grid.cells:
        for cell in row:
            if cell.owner is not None and 0 <= cell.owner < players:
                counts[cell.owner] += cell.count
    return counts
