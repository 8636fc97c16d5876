# budget_ledger.py — Workspace budget ledger (total / available / reserved / paid)
"""
Every ledger operation is one conditional ``UPDATE ... WHERE <precondition>``
issued on the caller's session, so it commits or rolls back together with the
bounty mutation that triggered it. A zero row count means the precondition
did not hold at write time and is reported as a domain error; concurrent
writers therefore can never drive a column negative or break

    total_budget == available_budget + reserved_budget + paid_budget
"""
from typing import Dict

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from errors import ValidationError, InsufficientBudgetError, InvalidStateError, NotFoundError
from logging_system import log_budget
from models import WorkspaceBudget, MAX_SATS, utcnow


def _check_amount(amount) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValidationError("Amount must be a positive whole number of sats", details={"amount": amount})
    if amount > MAX_SATS:
        raise ValidationError("Amount exceeds the maximum ledger value", details={"amount": amount})
    return amount


async def get_budget(db: AsyncSession, workspace_id: str, refresh: bool = False) -> WorkspaceBudget:
    stmt = select(WorkspaceBudget).where(WorkspaceBudget.workspace_id == workspace_id)
    if refresh:
        stmt = stmt.execution_options(populate_existing=True)
    result = await db.execute(stmt)
    budget = result.scalar_one_or_none()
    if budget is None:
        raise NotFoundError("Workspace budget")
    return budget


def is_conserved(budget: WorkspaceBudget) -> bool:
    return budget.total_budget == budget.available_budget + budget.reserved_budget + budget.paid_budget


def assert_conserved(budget: WorkspaceBudget) -> None:
    if not is_conserved(budget) or min(
        budget.available_budget, budget.reserved_budget, budget.paid_budget
    ) < 0:
        raise InvalidStateError(
            "Workspace budget is not conserved",
            details=budget_to_dict(budget),
        )


def budget_to_dict(budget: WorkspaceBudget) -> Dict[str, int]:
    return {
        "totalBudget": budget.total_budget,
        "availableBudget": budget.available_budget,
        "reservedBudget": budget.reserved_budget,
        "paidBudget": budget.paid_budget,
    }


async def _apply(db: AsyncSession, workspace_id: str, guard, values) -> bool:
    stmt = (
        update(WorkspaceBudget)
        .where(WorkspaceBudget.workspace_id == workspace_id, *guard)
        .values(updated_at=utcnow(), **values)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    return result.rowcount == 1


async def deposit(db: AsyncSession, workspace_id: str, amount: int) -> None:
    """available += amount; total += amount"""
    amount = _check_amount(amount)
    applied = await _apply(
        db, workspace_id,
        [WorkspaceBudget.total_budget <= MAX_SATS - amount],
        {
            "total_budget": WorkspaceBudget.total_budget + amount,
            "available_budget": WorkspaceBudget.available_budget + amount,
        },
    )
    if not applied:
        await get_budget(db, workspace_id, refresh=True)
        raise ValidationError("Deposit would exceed the maximum ledger value")
    log_budget("deposit", workspace_id, amount)


async def reserve(db: AsyncSession, workspace_id: str, amount: int) -> None:
    """available -= amount; reserved += amount. Requires available >= amount."""
    amount = _check_amount(amount)
    applied = await _apply(
        db, workspace_id,
        [WorkspaceBudget.available_budget >= amount],
        {
            "available_budget": WorkspaceBudget.available_budget - amount,
            "reserved_budget": WorkspaceBudget.reserved_budget + amount,
        },
    )
    if not applied:
        budget = await get_budget(db, workspace_id, refresh=True)
        raise InsufficientBudgetError(required=amount, available=budget.available_budget)
    log_budget("reserve", workspace_id, amount)


async def release(db: AsyncSession, workspace_id: str, amount: int) -> None:
    """reserved -= amount; available += amount. Requires reserved >= amount."""
    amount = _check_amount(amount)
    applied = await _apply(
        db, workspace_id,
        [WorkspaceBudget.reserved_budget >= amount],
        {
            "reserved_budget": WorkspaceBudget.reserved_budget - amount,
            "available_budget": WorkspaceBudget.available_budget + amount,
        },
    )
    if not applied:
        budget = await get_budget(db, workspace_id, refresh=True)
        raise InvalidStateError(
            "Cannot release more than the reserved budget",
            details={"requested": amount, "reserved": budget.reserved_budget},
        )
    log_budget("release", workspace_id, amount)


async def settle(db: AsyncSession, workspace_id: str, amount: int) -> None:
    """reserved -= amount; paid += amount. Requires reserved >= amount."""
    amount = _check_amount(amount)
    applied = await _apply(
        db, workspace_id,
        [WorkspaceBudget.reserved_budget >= amount],
        {
            "reserved_budget": WorkspaceBudget.reserved_budget - amount,
            "paid_budget": WorkspaceBudget.paid_budget + amount,
        },
    )
    if not applied:
        budget = await get_budget(db, workspace_id, refresh=True)
        raise InvalidStateError(
            "Cannot settle more than the reserved budget",
            details={"requested": amount, "reserved": budget.reserved_budget},
        )
    log_budget("settle", workspace_id, amount)


pay = settle


async def adjust_reservation(db: AsyncSession, workspace_id: str, old_amount: int, new_amount: int) -> None:
    """Reserve or release only the difference between two reserved amounts"""
    delta = new_amount - old_amount
    if delta > 0:
        await reserve(db, workspace_id, delta)
    elif delta < 0:
        await release(db, workspace_id, -delta)
