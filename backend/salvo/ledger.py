"""Ledger collaborator: the thing that actually moves tokens.

The engine only needs submit/confirm/lookup. ``SimulatedLedger`` is an
in-process stand-in with balances, used for development and tests; a chain
client would implement the same three methods.
"""

import threading
import uuid
from abc import ABC, abstractmethod
from collections import namedtuple

from salvo.errors import TransferRejected, ValidationError


CONFIRMED = 'confirmed'
FAILED = 'failed'
PENDING = 'pending'

LedgerTransfer = namedtuple('LedgerTransfer', ['handle', 'source', 'destination', 'amount', 'status', 'reference'])


class Ledger(ABC):
    @abstractmethod
    def submit_transfer(self, source, destination, amount, reference=None):
        """Submit a transfer and return its handle.

        Raises TransferRejected when the ledger refuses it outright. Submitting
        twice with the same ``reference`` returns the first handle.
        """

    @abstractmethod
    def confirm_transfer(self, handle):
        """Return ``confirmed``, ``failed`` or ``pending``."""

    @abstractmethod
    def lookup_transfer(self, handle) -> LedgerTransfer:
        ...


class _Entry:
    def __init__(self, handle, source, destination, amount, reference):
        self.handle = handle
        self.source = source
        self.destination = destination
        self.amount = amount
        self.reference = reference
        self.status = PENDING
        self.polls = 0

    def snapshot(self):
        return LedgerTransfer(self.handle, self.source, self.destination, self.amount, self.status, self.reference)


class SimulatedLedger(Ledger):
    def __init__(self, confirm_after=1):
        self.confirm_after = max(1, int(confirm_after))
        # Test hooks: stall keeps transfers pending, fail_references fails them
        self.stalled = False
        self.fail_references = set()
        self._balances = {}
        self._entries = {}
        self._by_reference = {}
        self._lock = threading.Lock()

    def fund(self, account, amount):
        with self._lock:
            self._balances[account] = self._balances.get(account, 0) + int(amount)

    def balance(self, account):
        with self._lock:
            return self._balances.get(account, 0)

    def submitted(self):
        with self._lock:
            return [e.snapshot() for e in self._entries.values()]

    def deposit(self, source, destination, amount):
        """Submit and settle a transfer at once; returns the handle."""
        handle = self.submit_transfer(source, destination, amount)
        while self.confirm_transfer(handle) == PENDING:
            if self.stalled:
                break
        return handle

    def submit_transfer(self, source, destination, amount, reference=None):
        amount = int(amount)
        if amount < 0:
            raise TransferRejected(f'Negative amount: {amount}')
        with self._lock:
            if reference is not None and reference in self._by_reference:
                return self._by_reference[reference]
            if self._balances.get(source, 0) < amount:
                raise TransferRejected(f'Insufficient funds in {source}')
            self._balances[source] -= amount
            handle = f'tx_{uuid.uuid4().hex[:16]}'
            self._entries[handle] = _Entry(handle, source, destination, amount, reference)
            if reference is not None:
                self._by_reference[reference] = handle
            return handle

    def confirm_transfer(self, handle):
        with self._lock:
            entry = self._entries.get(handle)
            if entry is None:
                return FAILED
            if entry.status != PENDING or self.stalled:
                return entry.status
            entry.polls += 1
            if entry.reference is not None and entry.reference in self.fail_references:
                entry.status = FAILED
                self._balances[entry.source] += entry.amount
            elif entry.polls >= self.confirm_after:
                entry.status = CONFIRMED
                self._balances[entry.destination] = self._balances.get(entry.destination, 0) + entry.amount
            return entry.status

    def lookup_transfer(self, handle):
        with self._lock:
            entry = self._entries.get(handle)
            if entry is None:
                raise ValidationError(f'Unknown transfer {handle}', code='unknown_transfer')
            return entry.snapshot()
