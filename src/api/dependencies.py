"""Shared FastAPI dependencies.

Separated to avoid circular imports between route modules.
"""

from __future__ import annotations

import logging
from functools import lru_cache

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from calls.engine import CallEngine, build_engine
from calls.models import Principal
from db.repository import ApiKeyRepository

LOGGER = logging.getLogger(__name__)

_bearer = HTTPBearer(auto_error=False)


@lru_cache(maxsize=1)
def _engine_factory() -> CallEngine:
    # Built on first use so the ARI client only exists once a route needs it.
    return build_engine()


def get_engine() -> CallEngine:
    return _engine_factory()


def get_api_keys() -> ApiKeyRepository:
    return ApiKeyRepository()


async def get_principal(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer),
    api_keys: ApiKeyRepository = Depends(get_api_keys),
) -> Principal:
    if credentials is None or credentials.scheme.lower() != "bearer" or not credentials.credentials:
        raise HTTPException(status_code=401, detail="Missing or invalid Authorization header")

    principal = await api_keys.get_by_key(credentials.credentials)
    if principal is None:
        LOGGER.info("Rejected request with unknown API key")
        raise HTTPException(status_code=401, detail="Invalid API key")

    await api_keys.touch(principal.id)
    return principal
