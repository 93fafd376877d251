"""Error taxonomy shared by the match engine, settlement and storage layers.

Every error is recoverable: it carries an HTTP status and a short machine
readable ``code`` so the API layer can translate it without inspecting types.
"""


class SalvoError(Exception):
    status_code = 400
    code = 'error'

    def __init__(self, message=None, code=None):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        if code is not None:
            self.code = code

    def to_dict(self):
        return {'success': False, 'error': self.message, 'code': self.code}


class ValidationError(SalvoError):
    code = 'validation_error'


class InvalidPlacement(ValidationError):
    """Raised with one of: out_of_bounds, overlap, adjacent, count_mismatch, not_contiguous."""

    def __init__(self, reason, message=None, piece_index=None):
        super().__init__(message or f'Invalid placement: {reason}', code=reason)
        self.reason = reason
        self.piece_index = piece_index


class UnknownFleetMode(ValidationError):
    code = 'unknown_fleet_mode'


class PlacementExhausted(SalvoError):
    status_code = 500
    code = 'placement_exhausted'


class DuplicateId(ValidationError):
    status_code = 409
    code = 'duplicate_id'


class NotFound(SalvoError):
    status_code = 404
    code = 'not_found'


class PhaseViolation(SalvoError):
    status_code = 409
    code = 'phase_violation'


class TurnViolation(SalvoError):
    status_code = 409
    code = 'turn_violation'


class AlreadyAttacked(SalvoError):
    status_code = 409
    code = 'already_attacked'


class AlreadySettled(SalvoError):
    status_code = 409
    code = 'already_settled'


class DepositMismatch(SalvoError):
    code = 'deposit_mismatch'


class SettlementUnauthorized(SalvoError):
    status_code = 403
    code = 'settlement_unauthorized'


class SettlementTimeout(SalvoError):
    # Funds are delayed, not lost: surfaced as accepted-but-pending
    status_code = 202
    code = 'settlement_pending'

    def __init__(self, message='Payout pending, will retry'):
        super().__init__(message)


class TransferRejected(SalvoError):
    status_code = 402
    code = 'transfer_rejected'


class StorageConflict(SalvoError):
    status_code = 409
    code = 'storage_conflict'
