"""Fleet presets: board size and piece inventory per game mode."""

from collections import namedtuple

from salvo.errors import UnknownFleetMode


PieceSpec = namedtuple('PieceSpec', ['length', 'count', 'name'])


class FleetConfig:
    def __init__(self, mode, board_size, inventory, name, description, estimated_time):
        if not 6 <= board_size <= 12:
            raise ValueError(f'board_size must be within 6..12, got {board_size}')
        self.mode = mode
        self.board_size = board_size
        self.piece_inventory = tuple(PieceSpec(*spec) for spec in inventory)
        self.name = name
        self.description = description
        self.estimated_time = estimated_time

    @property
    def total_occupied_cells(self):
        return sum(spec.length * spec.count for spec in self.piece_inventory)

    @property
    def piece_count(self):
        return sum(spec.count for spec in self.piece_inventory)

    def expected_lengths(self):
        """Sorted multiset of piece lengths this fleet requires."""
        lengths = []
        for spec in self.piece_inventory:
            lengths.extend([spec.length] * spec.count)
        return sorted(lengths)

    def to_dict(self):
        return {
            'mode': self.mode,
            'boardSize': self.board_size,
            'fleet': [{'length': s.length, 'count': s.count, 'name': s.name} for s in self.piece_inventory],
            'totalShipSquares': self.total_occupied_cells,
            'name': self.name,
            'description': self.description,
            'estimatedTime': self.estimated_time,
        }


FLEET_MODES = {
    'quick': FleetConfig(
        'quick', 6,
        [(3, 1, 'Garbage Truck'), (2, 2, 'Pickup Van')],
        'Quick Collection', '6x6 grid with 3 small waste haulers', '3-5 minutes',
    ),
    'standard': FleetConfig(
        'standard', 10,
        [(5, 1, 'Super Hauler'), (4, 1, 'Dumpster Truck'), (3, 2, 'Garbage Truck'), (2, 1, 'Pickup Van')],
        'Standard Collection', '10x10 grid with classic waste fleet', '10-15 minutes',
    ),
    'extended': FleetConfig(
        'extended', 12,
        [(6, 1, 'Mega Compactor'), (5, 1, 'Super Hauler'), (4, 2, 'Dumpster Truck'),
         (3, 2, 'Garbage Truck'), (2, 2, 'Pickup Van')],
        'Extended Collection', '12x12 grid with massive waste fleet', '20-30 minutes',
    ),
}

DEFAULT_MODE = 'standard'


def get_fleet(mode):
    try:
        return FLEET_MODES[mode]
    except KeyError:
        raise UnknownFleetMode(f'Unknown game mode: {mode!r}') from None
