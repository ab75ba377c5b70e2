"""
Credit Ledger
Top-up balance is always the sum of an append-only transaction log;
no mutable balance field exists anywhere.
"""
import logging
from datetime import datetime
from typing import Iterable, List, Optional

from signaldesk.errors import LedgerUnavailable, ValidationError

logger = logging.getLogger(__name__)

# Entry types
PURCHASE = "purchase"
SCAN_DEBIT = "scan_debit"
ADMIN_GRANT = "admin_grant"
ADMIN_REVOKE = "admin_revoke"
PLAN_GRANT = "plan_grant"
SCAN_REFUND = "scan_refund"


def ledger_balance(entries: Iterable[dict]) -> int:
    """Sum of signed amounts, reported as never below zero"""
    total = sum(int(entry.get("amount", 0) or 0) for entry in entries)
    return max(0, total)


class CreditLedger:
    """Reads and appends credit transactions"""

    @staticmethod
    async def get_topup_balance(user_id: str, db) -> int:
        """
        Current top-up balance for a user

        Raises:
            LedgerUnavailable: store unreachable; callers must assume no credit
        """
        try:
            entries = await db.credit_transactions.find(
                {"user_id": user_id},
                {"amount": 1}
            ).to_list(length=None)
        except Exception as e:
            logger.error(f"[LEDGER] Balance read failed for {user_id}: {str(e)}")
            raise LedgerUnavailable() from e

        return ledger_balance(entries)

    @staticmethod
    async def append(
        user_id: str,
        amount: int,
        entry_type: str,
        description: str,
        db,
        created_by: Optional[str] = None
    ) -> dict:
        """Insert one ledger entry and return it"""
        entry = {
            "user_id": user_id,
            "amount": int(amount),
            "type": entry_type,
            "description": description,
            "created_by": created_by,
            "created_at": datetime.utcnow()
        }
        result = await db.credit_transactions.insert_one(entry)
        entry["_id"] = result.inserted_id

        logger.info(f"[LEDGER] {entry_type} {amount:+d} for user {user_id}: {description}")
        return entry

    @staticmethod
    async def debit_one(user_id: str, description: str, db) -> bool:
        """
        Spend one top-up credit

        Returns:
            False when there is nothing to spend (balance is never driven negative)
        """
        balance = await CreditLedger.get_topup_balance(user_id, db)
        if balance < 1:
            logger.warning(f"[LEDGER] Debit refused for {user_id}: balance {balance}")
            return False

        await CreditLedger.append(user_id, -1, SCAN_DEBIT, description, db)
        return True

    @staticmethod
    async def refund_one(user_id: str, description: str, db) -> None:
        """Give back a credit debited for a scan that produced nothing"""
        await CreditLedger.append(user_id, 1, SCAN_REFUND, description, db)

    @staticmethod
    async def allocate(admin_id: str, user_id: str, amount: int, description: str, db) -> int:
        """
        Admin grant (positive) or revoke (negative)

        Returns:
            New balance

        Raises:
            ValidationError: zero amount or a revoke larger than the balance
        """
        amount = int(amount)
        if amount == 0:
            raise ValidationError("Amount must be non-zero")

        balance = await CreditLedger.get_topup_balance(user_id, db)
        if balance + amount < 0:
            raise ValidationError("Cannot reduce below 0")

        entry_type = ADMIN_GRANT if amount > 0 else ADMIN_REVOKE
        await CreditLedger.append(user_id, amount, entry_type, description, db, created_by=admin_id)

        return balance + amount

    @staticmethod
    async def history(user_id: str, db, limit: int = 50) -> List[dict]:
        """Most recent entries first"""
        return await db.credit_transactions.find(
            {"user_id": user_id}
        ).sort("created_at", -1).limit(limit).to_list(length=limit)
