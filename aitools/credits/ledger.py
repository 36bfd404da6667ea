"""Credit ledger interface and in-process implementation."""

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from aitools.jobs.models import utcnow

INSUFFICIENT_BALANCE_MESSAGE = "Saldo insuficiente"


@dataclass
class ConsumeResult:
    success: bool
    new_balance: int
    error_message: Optional[str] = None


@dataclass
class LedgerEntry:
    user_id: str
    delta: int
    description: str
    job_id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)

    @property
    def is_refund(self) -> bool:
        return self.delta > 0 and self.description.startswith("Refund")


class CreditLedger(ABC):
    """Balance store debited per job and refunded on failure.

    ``consume`` must be an atomic compare-and-decrement: it never takes a
    balance below zero, even under concurrent calls for the same user.
    """

    @abstractmethod
    def balance(self, user_id: str) -> int:
        ...

    @abstractmethod
    def consume(
        self, user_id: str, amount: int, description: str, job_id: Optional[str] = None
    ) -> ConsumeResult:
        ...

    @abstractmethod
    def refund(
        self, user_id: str, amount: int, description: str, job_id: Optional[str] = None
    ) -> int:
        """Credit ``amount`` back; returns the new balance."""
        ...

    @abstractmethod
    def transactions(self, user_id: str) -> List[LedgerEntry]:
        ...

    @abstractmethod
    def reset_monthly(self) -> int:
        """Reset monthly plan credits; returns how many users were reset."""
        ...


class InMemoryCreditLedger(CreditLedger):
    """Lock-guarded ledger for local development and tests.

    ``monthly_allowance`` maps user id -> plan credits restored by
    :meth:`reset_monthly`.
    """

    def __init__(
        self,
        balances: Optional[Dict[str, int]] = None,
        monthly_allowance: Optional[Dict[str, int]] = None,
    ):
        self._balances: Dict[str, int] = dict(balances or {})
        self._monthly = dict(monthly_allowance or {})
        self._entries: List[LedgerEntry] = []
        self._lock = threading.Lock()

    def balance(self, user_id: str) -> int:
        return self._balances.get(user_id, 0)

    def consume(
        self, user_id: str, amount: int, description: str, job_id: Optional[str] = None
    ) -> ConsumeResult:
        if amount <= 0:
            raise ValueError("amount must be positive")
        with self._lock:
            current = self._balances.get(user_id, 0)
            if current < amount:
                return ConsumeResult(False, current, INSUFFICIENT_BALANCE_MESSAGE)
            self._balances[user_id] = current - amount
            self._entries.append(LedgerEntry(user_id, -amount, description, job_id))
            return ConsumeResult(True, current - amount)

    def refund(
        self, user_id: str, amount: int, description: str, job_id: Optional[str] = None
    ) -> int:
        if amount <= 0:
            raise ValueError("amount must be positive")
        with self._lock:
            new_balance = self._balances.get(user_id, 0) + amount
            self._balances[user_id] = new_balance
            self._entries.append(LedgerEntry(user_id, amount, description, job_id))
            return new_balance

    def transactions(self, user_id: str) -> List[LedgerEntry]:
        return [e for e in self._entries if e.user_id == user_id]

    def reset_monthly(self) -> int:
        with self._lock:
            reset = 0
            for user_id, allowance in self._monthly.items():
                current = self._balances.get(user_id, 0)
                if current != allowance:
                    self._entries.append(
                        LedgerEntry(user_id, allowance - current, "Monthly credit reset")
                    )
                self._balances[user_id] = allowance
                reset += 1
            return reset
