"""SQLAlchemy models for accounts, call logs, the credit ledger and trunks."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import ForeignKey, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base

MONEY = Numeric(14, 6)
RATE = Numeric(12, 6)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ApiKey(Base):
    """Prepaid account authenticated by a bearer key."""

    __tablename__ = "api_keys"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    api_key: Mapped[str] = mapped_column(String(128), unique=True, index=True)
    name: Mapped[str | None] = mapped_column(String(128))
    credits: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"))
    rate_per_second: Mapped[Decimal] = mapped_column(RATE, default=Decimal("0"))
    is_active: Mapped[bool] = mapped_column(default=True)
    created_at: Mapped[datetime] = mapped_column(default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(default=_utcnow, onupdate=_utcnow)
    last_used: Mapped[datetime | None] = mapped_column()


class CallLog(Base):
    """One row per call, upserted as the call progresses."""

    __tablename__ = "call_logs"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    call_id: Mapped[str | None] = mapped_column(String(128), unique=True, index=True)
    api_key_id: Mapped[int | None] = mapped_column(
        ForeignKey("api_keys.id", ondelete="SET NULL"), index=True
    )
    number: Mapped[str | None] = mapped_column(String(64))
    caller_id: Mapped[str | None] = mapped_column(String(64))
    status: Mapped[str] = mapped_column(String(32))
    amd_status: Mapped[str | None] = mapped_column(String(32))
    end_reason: Mapped[str | None] = mapped_column(String(64))
    hangup_cause: Mapped[str | None] = mapped_column(String(16))
    trunk: Mapped[str | None] = mapped_column(String(128))
    recording_filename: Mapped[str | None] = mapped_column(String(255))
    webhook_url: Mapped[str | None] = mapped_column(Text())
    created_at: Mapped[datetime] = mapped_column(default=_utcnow)
    answered_at: Mapped[datetime | None] = mapped_column()
    ended_at: Mapped[datetime | None] = mapped_column()
    duration: Mapped[int | None] = mapped_column()
    bill_seconds: Mapped[int | None] = mapped_column()
    bill_cost: Mapped[Decimal | None] = mapped_column(MONEY)


class CreditTransaction(Base):
    """Immutable ledger entry; at most one per call."""

    __tablename__ = "credit_transactions"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    api_key_id: Mapped[int] = mapped_column(
        ForeignKey("api_keys.id", ondelete="CASCADE"), index=True
    )
    call_id: Mapped[str | None] = mapped_column(String(128), unique=True, index=True)
    transaction_type: Mapped[str] = mapped_column(String(16), default="debit")
    amount: Mapped[Decimal] = mapped_column(MONEY)
    balance_before: Mapped[Decimal] = mapped_column(MONEY)
    balance_after: Mapped[Decimal] = mapped_column(MONEY)
    billable_seconds: Mapped[int] = mapped_column(default=0)
    rate_per_second: Mapped[Decimal] = mapped_column(RATE, default=Decimal("0"))
    description: Mapped[str | None] = mapped_column(Text())
    created_at: Mapped[datetime] = mapped_column(default=_utcnow)


class SipTrunk(Base):
    """Outbound trunk registered with the switch."""

    __tablename__ = "sip_trunks"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    trunk_name: Mapped[str] = mapped_column(String(128), unique=True, index=True)
    provider: Mapped[str | None] = mapped_column(String(128))
    server: Mapped[str | None] = mapped_column(String(255))
    port: Mapped[int] = mapped_column(default=5060)
    context: Mapped[str] = mapped_column(String(64), default="from-trunk")
    codecs: Mapped[str] = mapped_column(String(128), default="ulaw,alaw")
    is_active: Mapped[bool] = mapped_column(default=True)
    created_at: Mapped[datetime] = mapped_column(default=_utcnow)
