from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from calls.billing import BillingEngine, billable_seconds
from calls.errors import BillingFailed, InsufficientCredits
from db.models import CreditTransaction
from db.repository import ApiKeyRepository


async def _transactions(ledger) -> list[CreditTransaction]:
    async with ledger() as session:
        return list((await session.execute(select(CreditTransaction))).scalars().all())


async def _transaction_count(ledger) -> int:
    async with ledger() as session:
        return (await session.execute(select(func.count()).select_from(CreditTransaction))).scalar_one()


def test_billable_seconds_rounds_up():
    assert billable_seconds(0) == 0
    assert billable_seconds(-3) == 0
    assert billable_seconds(1) == 1
    assert billable_seconds(1.000001) == 2
    assert billable_seconds(47.3) == 48
    assert billable_seconds(Decimal("59.0")) == 59


def test_bill_call_debits_rounded_seconds_and_writes_ledger(ledger):
    async def scenario():
        accounts = ApiKeyRepository(ledger)
        principal = await accounts.create("key-1", credits=Decimal("10.00"), rate_per_second=Decimal("0.01"))
        result = await BillingEngine(ledger).bill_call(principal.id, "call-1", 47.3)
        return result, await accounts.get(principal.id), await _transactions(ledger)

    result, account, transactions = asyncio.run(scenario())

    assert result.billable_seconds == 48
    assert result.cost == Decimal("0.48")
    assert result.balance_after == Decimal("9.52")
    assert account.credits == Decimal("9.52")

    assert len(transactions) == 1
    entry = transactions[0]
    assert entry.call_id == "call-1"
    assert entry.transaction_type == "debit"
    assert entry.amount == Decimal("0.48")
    assert entry.balance_before == Decimal("10.00")
    assert entry.balance_after == Decimal("9.52")
    assert entry.billable_seconds == 48
    assert entry.description.startswith("Per-second billing: 48s @ ")


def test_bill_call_insufficient_credits_leaves_balance_untouched(ledger):
    async def scenario():
        accounts = ApiKeyRepository(ledger)
        principal = await accounts.create("key-1", credits=Decimal("0.40"), rate_per_second=Decimal("0.01"))
        with pytest.raises(InsufficientCredits) as excinfo:
            await BillingEngine(ledger).bill_call(principal.id, "call-1", 50)
        return excinfo.value, await accounts.get(principal.id), await _transaction_count(ledger)

    error, account, count = asyncio.run(scenario())

    assert error.credits == Decimal("0.40")
    assert error.required == Decimal("0.50")
    assert error.to_dict()["code"] == "insufficient_credits"
    assert account.credits == Decimal("0.40")
    assert count == 0


def test_bill_call_is_idempotent_per_call_id(ledger):
    async def scenario():
        accounts = ApiKeyRepository(ledger)
        principal = await accounts.create("key-1", credits=Decimal("5"), rate_per_second=Decimal("0.02"))
        billing = BillingEngine(ledger)
        first = await billing.bill_call(principal.id, "call-1", 10)
        second = await billing.bill_call(principal.id, "call-1", 10)
        return first, second, await accounts.get(principal.id), await _transaction_count(ledger)

    first, second, account, count = asyncio.run(scenario())

    assert first.cost == second.cost == Decimal("0.20")
    assert account.credits == Decimal("4.80")
    assert count == 1


def test_concurrent_billings_on_one_account_never_interleave(ledger):
    async def scenario():
        accounts = ApiKeyRepository(ledger)
        principal = await accounts.create("key-1", credits=Decimal("1.00"), rate_per_second=Decimal("0.01"))
        billing = BillingEngine(ledger)
        results = await asyncio.gather(
            *(billing.bill_call(principal.id, f"call-{i}", 30) for i in range(4)),
            return_exceptions=True,
        )
        return results, await accounts.get(principal.id), await _transaction_count(ledger)

    results, account, count = asyncio.run(scenario())

    failures = [result for result in results if isinstance(result, InsufficientCredits)]
    assert len(failures) == 1
    assert count == 3
    assert account.credits == Decimal("0.10")


def test_rate_hint_overrides_stored_rate(ledger):
    async def scenario():
        accounts = ApiKeyRepository(ledger)
        principal = await accounts.create("key-1", credits=Decimal("5"), rate_per_second=Decimal("0.01"))
        return await BillingEngine(ledger).bill_call(principal.id, "call-1", 10, Decimal("0.03"))

    result = asyncio.run(scenario())
    assert result.rate_per_second == Decimal("0.03")
    assert result.cost == Decimal("0.30")


def test_zero_rate_skips_debit_and_ledger(ledger):
    async def scenario():
        accounts = ApiKeyRepository(ledger)
        principal = await accounts.create("key-1", credits=Decimal("2"))
        result = await BillingEngine(ledger).bill_call(principal.id, "call-1", 30)
        return result, await accounts.get(principal.id), await _transaction_count(ledger)

    result, account, count = asyncio.run(scenario())
    assert result.cost == Decimal("0")
    assert result.billable_seconds == 30
    assert account.credits == Decimal("2")
    assert count == 0


def test_zero_seconds_never_touches_the_account(ledger):
    async def scenario():
        result = await BillingEngine(ledger).bill_call(999, "call-1", 0, Decimal("0.01"))
        return result, await _transaction_count(ledger)

    result, count = asyncio.run(scenario())
    assert result.billable_seconds == 0
    assert result.cost == Decimal("0")
    assert result.rate_per_second == Decimal("0.01")
    assert result.balance_after is None
    assert count == 0


def test_unknown_account_raises_billing_failed(ledger):
    async def scenario():
        await BillingEngine(ledger).bill_call(999, "call-1", 5, Decimal("0.01"))

    with pytest.raises(BillingFailed) as excinfo:
        asyncio.run(scenario())
    assert excinfo.value.call_id == "call-1"
