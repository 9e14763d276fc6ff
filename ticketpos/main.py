import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ticketpos.core.config import settings
from ticketpos.core.errors import PosError
from ticketpos.db import create_schema
from ticketpos.middleware.idempotency import install_idempotency
from ticketpos.routers import health, reports, settlement, split, tables, tickets

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("ticketpos")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # development convenience; no migrations
    create_schema()
    logger.info("%s %s started (%s)", settings.app_name, settings.app_version, settings.app_env)
    yield


app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)


@app.exception_handler(PosError)
async def pos_error_handler(request: Request, exc: PosError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.code, "message": str(exc)})


install_idempotency(app)
app.include_router(health.router)
app.include_router(tables.router)
app.include_router(tickets.router)
app.include_router(settlement.router)
app.include_router(split.router)
app.include_router(reports.router)


def run():
    import uvicorn

    uvicorn.run("ticketpos.main:app", host="127.0.0.1", port=8010, log_level=settings.log_level.lower())
