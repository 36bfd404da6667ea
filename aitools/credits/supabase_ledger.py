"""Credit ledger backed by Supabase database functions.

The conditional decrement lives in the ``consume_upscaler_credits`` Postgres
function, so concurrent tabs or devices cannot double-spend.
"""

import logging
from typing import Any, List, Optional

from supabase import Client

from aitools.credits.ledger import (
    INSUFFICIENT_BALANCE_MESSAGE,
    ConsumeResult,
    CreditLedger,
    LedgerEntry,
)
from aitools.errors import LedgerError

logger = logging.getLogger(__name__)

TRANSACTIONS_TABLE = "upscaler_credit_transactions"


def _first(data: Any) -> dict:
    if isinstance(data, list):
        return data[0] if data else {}
    return data or {}


class SupabaseCreditLedger(CreditLedger):
    def __init__(self, client: Client):
        self._client = client

    def _rpc(self, fn: str, params: dict) -> Any:
        try:
            return self._client.rpc(fn, params).execute().data
        except Exception as exc:
            logger.error("Credit RPC failed fn=%s error=%s", fn, exc)
            raise LedgerError(str(exc)) from exc

    def balance(self, user_id: str) -> int:
        data = self._rpc("get_upscaler_credits", {"_user_id": user_id})
        return int(data or 0)

    def consume(
        self, user_id: str, amount: int, description: str, job_id: Optional[str] = None
    ) -> ConsumeResult:
        data = _first(
            self._rpc(
                "consume_upscaler_credits",
                {"_user_id": user_id, "_amount": amount, "_description": _describe(description, job_id)},
            )
        )
        if not data.get("success"):
            return ConsumeResult(
                success=False,
                new_balance=int(data.get("new_balance") or 0),
                error_message=data.get("error_message") or INSUFFICIENT_BALANCE_MESSAGE,
            )
        return ConsumeResult(success=True, new_balance=int(data.get("new_balance") or 0))

    def refund(
        self, user_id: str, amount: int, description: str, job_id: Optional[str] = None
    ) -> int:
        data = _first(
            self._rpc(
                "refund_upscaler_credits",
                {"_user_id": user_id, "_amount": amount, "_description": _describe(description, job_id)},
            )
        )
        return int(data.get("new_balance") or 0)

    def transactions(self, user_id: str) -> List[LedgerEntry]:
        response = (
            self._client.table(TRANSACTIONS_TABLE)
            .select("user_id, amount, description, created_at")
            .eq("user_id", user_id)
            .order("created_at")
            .execute()
        )
        return [
            LedgerEntry(
                user_id=row["user_id"],
                delta=int(row["amount"]),
                description=row.get("description") or "",
                created_at=row["created_at"],
            )
            for row in response.data or []
        ]

    def reset_monthly(self) -> int:
        data = _first(self._rpc("reset_individual_monthly_credits", {}))
        return int(data.get("users_reset") or 0)


def _describe(description: str, job_id: Optional[str]) -> str:
    return f"{description} [job {job_id}]" if job_id else description
