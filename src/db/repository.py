"""Repositories for accounts, call logs and trunks."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from calls.models import Principal
from db.base import AsyncSessionFactory
from db.models import ApiKey, CallLog, SipTrunk

LOGGER = logging.getLogger(__name__)

TERMINAL_STATUSES = frozenset({"completed", "failed", "no-answer"})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_principal(row: ApiKey) -> Principal:
    return Principal(
        id=row.id,
        credits=Decimal(row.credits or 0),
        rate_per_second=Decimal(row.rate_per_second or 0),
        name=row.name,
    )


class ApiKeyRepository:
    """Lookups and provisioning for prepaid API keys."""

    def __init__(self, session_factory: async_sessionmaker | None = None) -> None:
        self._session_factory = session_factory or AsyncSessionFactory

    async def get_by_key(self, api_key: str) -> Principal | None:
        async with self._session_factory() as session:
            query = select(ApiKey).where(ApiKey.api_key == api_key, ApiKey.is_active.is_(True))
            row = (await session.execute(query)).scalar_one_or_none()
            return _to_principal(row) if row is not None else None

    async def get(self, api_key_id: int) -> Principal | None:
        async with self._session_factory() as session:
            row = await session.get(ApiKey, api_key_id)
            return _to_principal(row) if row is not None else None

    async def create(
        self,
        api_key: str,
        *,
        name: str | None = None,
        credits: Decimal = Decimal("0"),
        rate_per_second: Decimal = Decimal("0"),
    ) -> Principal:
        async with self._session_factory() as session:
            row = ApiKey(
                api_key=api_key,
                name=name,
                credits=credits,
                rate_per_second=rate_per_second,
            )
            session.add(row)
            await session.commit()
            await session.refresh(row)
            return _to_principal(row)

    async def touch(self, api_key_id: int) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(ApiKey).where(ApiKey.id == api_key_id).values(last_used=_utcnow())
            )
            await session.commit()


class CallLogRepository:
    """Upserts call-log rows keyed by call id.

    Persistence here is best effort: a failed write is logged and reported as
    ``False`` so event processing can carry on.
    """

    def __init__(self, session_factory: async_sessionmaker | None = None) -> None:
        self._session_factory = session_factory or AsyncSessionFactory

    async def record(
        self,
        call_id: str | None,
        *,
        status: str,
        api_key_id: int | None = None,
        number: str | None = None,
        caller_id: str | None = None,
        amd_status: str | None = None,
        end_reason: str | None = None,
        hangup_cause: str | None = None,
        trunk: str | None = None,
        recording_filename: str | None = None,
        webhook_url: str | None = None,
        answered_at: datetime | None = None,
        ended_at: datetime | None = None,
        duration: int | None = None,
        bill_seconds: int | None = None,
        bill_cost: Decimal | None = None,
    ) -> bool:
        now = _utcnow()
        if answered_at is None and status == "answered":
            answered_at = now
        if ended_at is None and status in TERMINAL_STATUSES:
            ended_at = now

        values = {
            "api_key_id": api_key_id,
            "number": number,
            "caller_id": caller_id,
            "amd_status": amd_status,
            "end_reason": end_reason,
            "hangup_cause": hangup_cause,
            "trunk": trunk,
            "recording_filename": recording_filename,
            "webhook_url": webhook_url,
            "answered_at": answered_at,
            "ended_at": ended_at,
            "duration": duration,
            "bill_seconds": bill_seconds,
            "bill_cost": bill_cost,
        }

        try:
            async with self._session_factory() as session:
                row = None
                if call_id is not None:
                    query = select(CallLog).where(CallLog.call_id == call_id)
                    row = (await session.execute(query)).scalar_one_or_none()
                if row is None:
                    row = CallLog(call_id=call_id, status=status, **values)
                    session.add(row)
                else:
                    row.status = status
                    # None leaves the stored value untouched.
                    for field, value in values.items():
                        if value is not None:
                            setattr(row, field, value)
                await session.commit()
        except SQLAlchemyError:
            LOGGER.exception("Failed to log call %s (status=%s)", call_id, status)
            return False
        return True

    async def get(self, call_id: str) -> CallLog | None:
        async with self._session_factory() as session:
            query = select(CallLog).where(CallLog.call_id == call_id)
            return (await session.execute(query)).scalar_one_or_none()


class TrunkRepository:
    def __init__(self, session_factory: async_sessionmaker | None = None) -> None:
        self._session_factory = session_factory or AsyncSessionFactory

    async def list_active_names(self) -> list[str]:
        async with self._session_factory() as session:
            query = (
                select(SipTrunk.trunk_name)
                .where(SipTrunk.is_active.is_(True))
                .order_by(SipTrunk.id)
            )
            return list((await session.execute(query)).scalars().all())

    async def add(
        self,
        trunk_name: str,
        *,
        provider: str | None = None,
        server: str | None = None,
        port: int = 5060,
        context: str = "from-trunk",
        codecs: str = "ulaw,alaw",
        is_active: bool = True,
    ) -> SipTrunk:
        async with self._session_factory() as session:
            trunk = SipTrunk(
                trunk_name=trunk_name,
                provider=provider,
                server=server,
                port=port,
                context=context,
                codecs=codecs,
                is_active=is_active,
            )
            session.add(trunk)
            await session.commit()
            await session.refresh(trunk)
            return trunk
