# tests/test_budget_ledger.py — Workspace budget ledger
import pytest

import budget_ledger
from errors import InsufficientBudgetError, InvalidStateError, NotFoundError, ValidationError
from models import MAX_SATS

from tests.conftest import FUNDED_BUDGET


async def _budget(db_session, workspace_id):
    return await budget_ledger.get_budget(db_session, workspace_id, refresh=True)


@pytest.mark.asyncio
async def test_deposit_grows_total_and_available(db_session, workspace):
    """Deposits add to total and available only"""
    await budget_ledger.deposit(db_session, workspace.id, 2_500)
    await db_session.commit()

    budget = await _budget(db_session, workspace.id)
    assert budget.total_budget == FUNDED_BUDGET + 2_500
    assert budget.available_budget == FUNDED_BUDGET + 2_500
    assert budget.reserved_budget == 0
    assert budget_ledger.is_conserved(budget)


@pytest.mark.asyncio
async def test_reserve_release_settle(db_session, workspace):
    """Reserve, release and settle move sats between columns, conserving total"""
    await budget_ledger.reserve(db_session, workspace.id, 30_000)
    await budget_ledger.release(db_session, workspace.id, 10_000)
    await budget_ledger.settle(db_session, workspace.id, 20_000)
    await db_session.commit()

    budget = await _budget(db_session, workspace.id)
    assert budget.total_budget == FUNDED_BUDGET
    assert budget.available_budget == FUNDED_BUDGET - 20_000
    assert budget.reserved_budget == 0
    assert budget.paid_budget == 20_000
    budget_ledger.assert_conserved(budget)


@pytest.mark.asyncio
async def test_reserve_exact_available_succeeds(db_session, workspace):
    """Reserving exactly the available amount is allowed"""
    await budget_ledger.reserve(db_session, workspace.id, FUNDED_BUDGET)
    await db_session.commit()

    budget = await _budget(db_session, workspace.id)
    assert budget.available_budget == 0
    assert budget.reserved_budget == FUNDED_BUDGET


@pytest.mark.asyncio
async def test_reserve_one_over_available_fails(db_session, workspace):
    """Reserving one sat more than available is rejected without changes"""
    ws_id = workspace.id
    with pytest.raises(InsufficientBudgetError) as exc:
        await budget_ledger.reserve(db_session, ws_id, FUNDED_BUDGET + 1)
    assert exc.value.details == {"required": FUNDED_BUDGET + 1, "available": FUNDED_BUDGET}
    await db_session.rollback()

    budget = await _budget(db_session, ws_id)
    assert budget.available_budget == FUNDED_BUDGET
    assert budget.reserved_budget == 0


@pytest.mark.asyncio
async def test_release_more_than_reserved_fails(db_session, workspace):
    await budget_ledger.reserve(db_session, workspace.id, 100)
    with pytest.raises(InvalidStateError):
        await budget_ledger.release(db_session, workspace.id, 101)
    await db_session.rollback()


@pytest.mark.asyncio
async def test_settle_more_than_reserved_fails(db_session, workspace):
    with pytest.raises(InvalidStateError):
        await budget_ledger.settle(db_session, workspace.id, 1)
    await db_session.rollback()


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", [0, -5, 1.5, True, MAX_SATS + 1])
async def test_invalid_amounts_rejected(db_session, workspace, amount):
    """Amounts must be positive integers within the ledger range"""
    with pytest.raises(ValidationError):
        await budget_ledger.reserve(db_session, workspace.id, amount)


@pytest.mark.asyncio
async def test_deposit_cannot_overflow(db_session, workspace):
    with pytest.raises(ValidationError):
        await budget_ledger.deposit(db_session, workspace.id, MAX_SATS - FUNDED_BUDGET + 1)
    await db_session.rollback()


@pytest.mark.asyncio
async def test_adjust_reservation_applies_delta(db_session, workspace):
    """Only the difference between old and new amounts moves"""
    await budget_ledger.reserve(db_session, workspace.id, 1_000)
    await budget_ledger.adjust_reservation(db_session, workspace.id, 1_000, 1_500)
    await db_session.commit()
    budget = await _budget(db_session, workspace.id)
    assert budget.reserved_budget == 1_500

    await budget_ledger.adjust_reservation(db_session, workspace.id, 1_500, 400)
    await db_session.commit()
    budget = await _budget(db_session, workspace.id)
    assert budget.reserved_budget == 400
    assert budget.available_budget == FUNDED_BUDGET - 400


@pytest.mark.asyncio
async def test_adjust_reservation_beyond_available_fails(db_session, workspace):
    await budget_ledger.reserve(db_session, workspace.id, 1_000)
    with pytest.raises(InsufficientBudgetError):
        await budget_ledger.adjust_reservation(db_session, workspace.id, 1_000, FUNDED_BUDGET + 1)
    await db_session.rollback()


@pytest.mark.asyncio
async def test_missing_budget_is_not_found(db_session):
    with pytest.raises(NotFoundError):
        await budget_ledger.get_budget(db_session, "missing")
