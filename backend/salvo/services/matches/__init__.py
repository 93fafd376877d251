"""Match domain services: state machine, escrow settlement and retention.

HTTP routes import from here, keeping transport concerns separated from the
match rules and money movement.
"""

from .engine import MatchService
from .settlement import SettlementController

__all__ = ['MatchService', 'SettlementController']
