"""Entry point for the call orchestration API."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from api.dependencies import get_engine
from api.routes import router as api_router
from calls.errors import CallControlError
from config.settings import get_settings
from db.base import init_db

LOGGER = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    engine = app.dependency_overrides.get(get_engine, get_engine)()
    await engine.load_trunks()

    events_task: asyncio.Task | None = None
    if engine.settings.ari_events_enabled:
        from telephony.ari_events import AriEventStream

        events_task = asyncio.create_task(
            engine.run_events(AriEventStream(engine.settings)),
            name="ari-events",
        )
    yield

    if events_task is not None:
        events_task.cancel()
        try:
            await events_task
        except asyncio.CancelledError:
            pass
    await engine.shutdown()


settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

app = FastAPI(
    title="Asterisk Call Orchestrator",
    description="Originates, tracks and bills calls on an Asterisk switch via ARI.",
    lifespan=lifespan,
)
app.include_router(api_router, prefix="/api")


@app.exception_handler(CallControlError)
async def call_control_error_handler(request: Request, exc: CallControlError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc), "code": "invalid_request"})
