"""Per-player board: cell grid, piece list, placement checks and attack resolution."""

import random
from collections import namedtuple
from typing import List, Sequence, Tuple

from salvo.errors import AlreadyAttacked, InvalidPlacement, PlacementExhausted, ValidationError


EMPTY = 'empty'
OCCUPIED = 'occupied'
HIT = 'hit'
MISS = 'miss'

Coordinate = Tuple[int, int]

AttackResult = namedtuple('AttackResult', ['outcome', 'already_attacked'])

# Neighbourhood used by the "pieces may not touch" rule, diagonals included
_NEIGHBOURS = [(dr, dc) for dr in (-1, 0, 1) for dc in (-1, 0, 1) if (dr, dc) != (0, 0)]


class Board:
    def __init__(self, size, cells=None, pieces=None):
        self.size = size
        self.cells = cells if cells is not None else [[EMPTY] * size for _ in range(size)]
        self.pieces = pieces if pieces is not None else []

    def in_bounds(self, coord):
        row, col = coord
        return 0 <= row < self.size and 0 <= col < self.size

    def cell(self, coord):
        row, col = coord
        return self.cells[row][col]

    def occupied_count(self):
        return sum(1 for row in self.cells for state in row if state == OCCUPIED)

    def piece_cells(self):
        return {coord for piece in self.pieces for coord in piece}

    def remaining_cells(self):
        """Piece cells not yet hit."""
        return sum(1 for coord in self.piece_cells() if self.cell(coord) != HIT)

    def copy(self):
        return Board(self.size, [list(row) for row in self.cells], [list(p) for p in self.pieces])

    def to_dict(self, include_pieces=True):
        data = {'size': self.size, 'remaining': self.remaining_cells()}
        if include_pieces:
            data['cells'] = [list(row) for row in self.cells]
            data['pieces'] = [[list(coord) for coord in piece] for piece in self.pieces]
        else:
            # Opponent view: only attack outcomes are visible
            data['cells'] = [[state if state in (HIT, MISS) else EMPTY for state in row] for row in self.cells]
        return data

    @classmethod
    def from_dict(cls, data):
        pieces = [[(int(r), int(c)) for r, c in piece] for piece in data.get('pieces', [])]
        return cls(int(data['size']), [list(row) for row in data['cells']], pieces)


def parse_coordinate(raw) -> Coordinate:
    try:
        row, col = raw
    except (TypeError, ValueError):
        raise ValidationError(f'Malformed coordinate: {raw!r}', code='bad_coordinate') from None
    if isinstance(row, bool) or isinstance(col, bool) or not isinstance(row, int) or not isinstance(col, int):
        raise ValidationError(f'Coordinates must be integers: {raw!r}', code='bad_coordinate')
    return row, col


def _is_straight_run(piece: Sequence[Coordinate]) -> bool:
    rows = {r for r, _ in piece}
    cols = {c for _, c in piece}
    if len(set(piece)) != len(piece):
        return False
    if len(rows) == 1:
        line = sorted(c for _, c in piece)
    elif len(cols) == 1:
        line = sorted(r for r, _ in piece)
    else:
        return False
    return line == list(range(line[0], line[0] + len(line)))


def validate_placement(pieces, fleet, enforce_adjacency=True) -> Board:
    """Check a submitted piece set against ``fleet`` and build the board.

    Pieces are checked in submission order and the first violation raises
    InvalidPlacement with its reason. Once every piece is individually legal
    the multiset of piece lengths must match the fleet inventory.
    """
    if not isinstance(pieces, (list, tuple)):
        raise ValidationError('Pieces must be a list of coordinate lists', code='bad_pieces')

    board = Board(fleet.board_size)
    taken = set()
    for index, raw_piece in enumerate(pieces):
        if not isinstance(raw_piece, (list, tuple)) or not raw_piece:
            raise InvalidPlacement('not_contiguous', f'Piece {index} is empty', piece_index=index)
        piece = [parse_coordinate(raw) for raw in raw_piece]
        if not _is_straight_run(piece):
            raise InvalidPlacement('not_contiguous', f'Piece {index} is not a straight contiguous run', piece_index=index)
        if not all(board.in_bounds(coord) for coord in piece):
            raise InvalidPlacement('out_of_bounds', f'Piece {index} leaves the {fleet.board_size}x{fleet.board_size} board', piece_index=index)
        if any(coord in taken for coord in piece):
            raise InvalidPlacement('overlap', f'Piece {index} overlaps another piece', piece_index=index)
        if enforce_adjacency:
            for row, col in piece:
                if any((row + dr, col + dc) in taken for dr, dc in _NEIGHBOURS):
                    raise InvalidPlacement('adjacent', f'Piece {index} touches another piece', piece_index=index)
        taken.update(piece)
        board.pieces.append(piece)

    submitted = sorted(len(piece) for piece in board.pieces)
    if submitted != fleet.expected_lengths():
        raise InvalidPlacement(
            'count_mismatch',
            f'{fleet.name} needs pieces of lengths {fleet.expected_lengths()}, got {submitted}',
        )

    for row, col in taken:
        board.cells[row][col] = OCCUPIED
    return board


def resolve_attack(board: Board, coordinate) -> AttackResult:
    """Mark the target cell hit or miss. Raises AlreadyAttacked for a repeat."""
    coord = parse_coordinate(coordinate)
    if not board.in_bounds(coord):
        raise ValidationError(
            f'Coordinate {list(coord)} is outside the {board.size}x{board.size} board', code='out_of_bounds')
    if board.cell(coord) in (HIT, MISS):
        raise AlreadyAttacked(f'Cell {list(coord)} was already attacked')
    row, col = coord
    if coord in board.piece_cells():
        board.cells[row][col] = HIT
        return AttackResult(HIT, False)
    board.cells[row][col] = MISS
    return AttackResult(MISS, False)


def is_fully_destroyed(board: Board) -> bool:
    # Evaluated against the current piece list, never a stored cell count
    cells = board.piece_cells()
    return bool(cells) and all(board.cell(coord) == HIT for coord in cells)


def random_placement(fleet, rng=None, max_attempts=1000, enforce_adjacency=True) -> List[List[Coordinate]]:
    """Generate a legal random piece set for ``fleet``.

    Each piece gets ``max_attempts`` tries; a layout that cannot be finished is
    restarted, at most ``max_attempts`` times, then PlacementExhausted is raised.
    """
    rng = rng or random.Random()
    size = fleet.board_size
    lengths = sorted(fleet.expected_lengths(), reverse=True)

    for _ in range(max_attempts):
        pieces = []
        taken = set()
        blocked = set()
        for length in lengths:
            placed = None
            for _ in range(max_attempts):
                horizontal = rng.random() < 0.5
                row = rng.randrange(size if horizontal else size - length + 1)
                col = rng.randrange(size - length + 1 if horizontal else size)
                piece = [(row, col + i) if horizontal else (row + i, col) for i in range(length)]
                if any(coord in taken or coord in blocked for coord in piece):
                    continue
                placed = piece
                break
            if placed is None:
                break
            pieces.append(placed)
            taken.update(placed)
            if enforce_adjacency:
                blocked.update((r + dr, c + dc) for r, c in placed for dr, dc in _NEIGHBOURS)
        else:
            return pieces
    raise PlacementExhausted(f'Could not place the {fleet.mode} fleet after {max_attempts} layouts')
