"""Per-second billing against a prepaid credit balance.

Seconds always round up and every amount is a ``Decimal``. The balance read,
the debit and the ledger append happen inside one database transaction with
the account row locked, and calls against the same account are additionally
serialized in-process so two billings can never interleave.
"""

from __future__ import annotations

import asyncio
import logging
from decimal import ROUND_CEILING, Decimal

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from calls.errors import BillingFailed, InsufficientCredits
from calls.models import BillingResult, BillingTransaction
from db.base import AsyncSessionFactory
from db.models import ApiKey, CreditTransaction

LOGGER = logging.getLogger(__name__)

ZERO = Decimal("0")


def billable_seconds(raw_seconds: float | int | Decimal) -> int:
    """``ceil(max(0, raw_seconds))`` computed without binary rounding surprises."""

    value = Decimal(str(raw_seconds)) if not isinstance(raw_seconds, Decimal) else raw_seconds
    if value <= 0:
        return 0
    return int(value.to_integral_value(rounding=ROUND_CEILING))


def compute_cost(seconds: int, rate_per_second: Decimal) -> Decimal:
    return Decimal(seconds) * rate_per_second


def _as_decimal(value: Decimal | float | int | str | None) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


class BillingEngine:
    """Turns answered call duration into a debit and a ledger entry."""

    def __init__(self, session_factory: async_sessionmaker | None = None) -> None:
        self._session_factory = session_factory or AsyncSessionFactory
        self._account_locks: dict[int, asyncio.Lock] = {}

    def _lock_for(self, api_key_id: int) -> asyncio.Lock:
        lock = self._account_locks.get(api_key_id)
        if lock is None:
            lock = asyncio.Lock()
            self._account_locks[api_key_id] = lock
        return lock

    async def bill_call(
        self,
        api_key_id: int,
        call_id: str,
        raw_seconds: float | int | Decimal,
        rate_per_second_hint: Decimal | float | None = None,
    ) -> BillingResult:
        """Charge ``api_key_id`` for ``raw_seconds`` of talk time on ``call_id``.

        Raises ``InsufficientCredits`` when the balance cannot cover the charge
        and ``BillingFailed`` when the account is unknown or the ledger rejects
        the write. Billing the same ``call_id`` again returns the recorded
        result without a second debit.
        """

        seconds = billable_seconds(raw_seconds)
        hint = _as_decimal(rate_per_second_hint)
        if seconds == 0:
            # Nothing to charge, so the account is never read.
            return BillingResult(
                billable_seconds=0,
                rate_per_second=hint if hint > 0 else ZERO,
                cost=ZERO,
            )

        async with self._lock_for(api_key_id):
            try:
                return await self._bill_locked(api_key_id, call_id, seconds, hint)
            except IntegrityError as exc:
                LOGGER.error("Ledger rejected billing for call %s: %s", call_id, exc)
                raise BillingFailed(
                    f"Ledger rejected billing for call {call_id}", call_id=call_id
                ) from exc

    async def _bill_locked(
        self,
        api_key_id: int,
        call_id: str,
        seconds: int,
        hint: Decimal,
    ) -> BillingResult:
        async with self._session_factory() as session:
            async with session.begin():
                existing = (
                    await session.execute(
                        select(CreditTransaction).where(CreditTransaction.call_id == call_id)
                    )
                ).scalar_one_or_none()
                if existing is not None:
                    LOGGER.info("Call %s already billed; returning recorded charge", call_id)
                    return BillingResult(
                        billable_seconds=existing.billable_seconds,
                        rate_per_second=_as_decimal(existing.rate_per_second),
                        cost=_as_decimal(existing.amount),
                        balance_after=_as_decimal(existing.balance_after),
                    )

                account = (
                    await session.execute(
                        select(ApiKey).where(ApiKey.id == api_key_id).with_for_update()
                    )
                ).scalar_one_or_none()
                if account is None:
                    raise BillingFailed(f"API key {api_key_id} not found", call_id=call_id)

                balance = _as_decimal(account.credits)
                stored_rate = _as_decimal(account.rate_per_second)
                effective_rate = hint if hint > 0 else (stored_rate if stored_rate > 0 else ZERO)
                cost = compute_cost(seconds, effective_rate)

                if cost <= 0:
                    return BillingResult(
                        billable_seconds=seconds,
                        rate_per_second=effective_rate,
                        cost=ZERO,
                        balance_after=balance,
                    )

                if balance < cost:
                    LOGGER.warning(
                        "Insufficient credits for call %s: balance=%s cost=%s",
                        call_id,
                        balance,
                        cost,
                    )
                    raise InsufficientCredits(
                        "Insufficient credits for billing", credits=balance, required=cost
                    )

                new_balance = balance - cost
                entry = BillingTransaction(
                    api_key_id=api_key_id,
                    call_id=call_id,
                    amount=cost,
                    balance_before=balance,
                    balance_after=new_balance,
                    description=f"Per-second billing: {seconds}s @ {effective_rate}/s",
                )
                account.credits = new_balance
                session.add(
                    CreditTransaction(
                        api_key_id=entry.api_key_id,
                        call_id=entry.call_id,
                        transaction_type="debit",
                        amount=entry.amount,
                        balance_before=entry.balance_before,
                        balance_after=entry.balance_after,
                        billable_seconds=seconds,
                        rate_per_second=effective_rate,
                        description=entry.description,
                    )
                )

        LOGGER.info(
            "Billed call %s: %ss @ %s/s = %s (balance %s -> %s)",
            call_id,
            seconds,
            effective_rate,
            cost,
            balance,
            new_balance,
        )
        return BillingResult(
            billable_seconds=seconds,
            rate_per_second=effective_rate,
            cost=cost,
            balance_after=new_balance,
        )
