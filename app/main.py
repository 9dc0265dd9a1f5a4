from __future__ import annotations

import functools
import logging
from contextlib import asynccontextmanager
from datetime import UTC, datetime

import httpx
from fastapi import APIRouter, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictInt

from app.controller import InvalidSettingsInput, SettingsController
from app.log_config import configure_logging
from app.settings import Settings
from health.health import FetchHealth
from ingest.errors import RefreshError, UpdateRejected
from ingest.pipeline import refresh_addresses
from ingest.relays import default_relays_path, load_relays
from ingest.scheduler import RefreshScheduler
from realtime.bus import EventBus
from realtime.sse import router as sse_router
from store.state import PersistenceFailure, StateStore, open_state


logger = logging.getLogger(__name__)

router = APIRouter()


def _utc_now_iso() -> str:
    return datetime.now(tz=UTC).isoformat().replace("+00:00", "Z")


class IntervalUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    interval: StrictInt | None = None
    auto_update_enabled: StrictBool | None = Field(
        default=None, alias="autoUpdateEnabled"
    )


def create_app(
    settings: Settings | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    app_settings = settings or Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(app_settings.log_level)
        store = open_state(
            app_settings.state_path,
            default_interval=app_settings.default_update_interval_minutes,
        )
        relays = load_relays(app_settings.relays_path or default_relays_path())
        bus = EventBus()
        health = FetchHealth()

        async with httpx.AsyncClient(
            follow_redirects=True, transport=transport
        ) as client:
            scheduler = RefreshScheduler(
                store=store,
                bus=bus,
                refresh=functools.partial(
                    refresh_addresses,
                    client,
                    store=store,
                    settings=app_settings,
                    relays=relays,
                    health=health,
                ),
                min_update_gap_seconds=app_settings.min_update_gap_seconds,
            )
            app.state.settings = app_settings
            app.state.store = store
            app.state.bus = bus
            app.state.health = health
            app.state.scheduler = scheduler
            app.state.controller = SettingsController(
                store=store, scheduler=scheduler, bus=bus
            )

            fire_at = await scheduler.start()
            logger.info(
                "serving %d addresses, %d relays configured, next refresh at %s",
                len(store.state.ip_addresses),
                len(relays),
                datetime.fromtimestamp(fire_at / 1000, tz=UTC).isoformat(),
            )
            try:
                yield
            finally:
                await scheduler.stop()

    app = FastAPI(lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_split_origins(app_settings.cors_origins),
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )
    app.include_router(sse_router)
    app.include_router(router)
    return app


def _split_origins(value: str) -> list[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


@router.get("/ipv4.txt", response_class=PlainTextResponse)
def ipv4_feed(request: Request) -> PlainTextResponse:
    store: StateStore = request.app.state.store
    addresses = store.state.ip_addresses
    if not addresses:
        return PlainTextResponse(
            "IP address list not available yet", status_code=404
        )
    return PlainTextResponse(
        "\n".join(addresses), headers={"Cache-Control": "no-cache"}
    )


@router.get("/api/settings")
def api_settings(request: Request) -> JSONResponse:
    controller: SettingsController = request.app.state.controller
    return JSONResponse(controller.snapshot())


@router.post("/api/update-interval")
async def api_update_interval(
    request: Request, body: IntervalUpdate
) -> JSONResponse:
    controller: SettingsController = request.app.state.controller
    try:
        await controller.update(
            interval=body.interval, auto_update_enabled=body.auto_update_enabled
        )
    except InvalidSettingsInput as e:
        return JSONResponse({"success": False, "error": str(e)}, status_code=422)
    except PersistenceFailure as e:
        return JSONResponse({"success": False, "error": str(e)}, status_code=500)
    return JSONResponse({"success": True})


@router.get("/api/changelog")
def api_changelog(request: Request) -> JSONResponse:
    store: StateStore = request.app.state.store
    return JSONResponse(
        {"changelog": [entry.to_dict() for entry in store.state.changelog]}
    )


@router.get("/api/last-updated")
def api_last_updated(request: Request) -> JSONResponse:
    store: StateStore = request.app.state.store
    return JSONResponse({"lastUpdated": store.state.last_updated})


@router.post("/api/trigger-update")
async def api_trigger_update(request: Request) -> JSONResponse:
    scheduler: RefreshScheduler = request.app.state.scheduler
    try:
        result = await scheduler.run_now(reason="manual")
    except UpdateRejected as e:
        return JSONResponse({"success": False, "error": str(e)}, status_code=409)
    except (RefreshError, PersistenceFailure) as e:
        logger.error("manual refresh failed: %s", e)
        return JSONResponse({"success": False, "error": str(e)}, status_code=500)
    return JSONResponse(
        {
            "success": True,
            "count": result.count,
            "added": len(result.added),
            "removed": len(result.removed),
            "lastUpdated": result.last_updated,
            "source": result.source_id,
        }
    )


@router.get("/api/data")
def api_data(request: Request) -> JSONResponse:
    store: StateStore = request.app.state.store
    return JSONResponse(store.state.to_document())


@router.get("/api/health")
def api_health(request: Request) -> JSONResponse:
    health: FetchHealth = request.app.state.health
    scheduler: RefreshScheduler = request.app.state.scheduler
    return JSONResponse(
        {
            "status": "ok",
            "timestamp": _utc_now_iso(),
            "scheduler": scheduler.phase.value,
            "fetch": health.to_dict(),
        }
    )


app = create_app()
