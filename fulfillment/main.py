from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from fulfillment.api.routes_commissions import router as commissions_router
from fulfillment.api.routes_demo import router as demo_router
from fulfillment.api.routes_dispatch import router as dispatch_router
from fulfillment.api.routes_inventory import router as inventory_router
from fulfillment.api.routes_orders import router as orders_router
from fulfillment.core.config import get_settings
from fulfillment.core.errors import FulfillmentError
from fulfillment.core.logging import configure_logging
from fulfillment.demo import seed_default_scenario
from fulfillment.persistence.pg import init_db, session_scope

configure_logging()
logger = logging.getLogger(__name__)
settings = get_settings()

app = FastAPI(title=settings.app_name)


@app.on_event("startup")
def on_startup() -> None:
    init_db()
    if settings.bootstrap_demo_on_startup:
        with session_scope() as session:
            result = seed_default_scenario(session)
        logger.info(
            "default demo scenario ready: scenario_id=%s seeded_now=%s",
            result.get("scenario_id"),
            result.get("seeded_now"),
        )


@app.exception_handler(FulfillmentError)
async def fulfillment_error_handler(request: Request, exc: FulfillmentError):
    if exc.status_code >= 500:
        logger.error("request failed: %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("unhandled error: %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"detail": "internal error", "error": "internal_error", "retryable": False},
    )


@app.get("/healthz")
def healthz() -> dict:
    return {"status": "ok"}


app.include_router(orders_router)
app.include_router(dispatch_router)
app.include_router(inventory_router)
app.include_router(commissions_router)
app.include_router(demo_router)
