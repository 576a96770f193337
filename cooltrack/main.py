from contextlib import asynccontextmanager
import asyncio
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from cooltrack.core.errors import CoolTrackError, InsufficientStockError
from cooltrack.core.logging import configure_logging
from cooltrack.services.outbox_worker import start_event_dispatch_task
from cooltrack import models  # noqa: F401
from cooltrack.routers.auth import router as auth_router
from cooltrack.routers.customers import router as customers_router
from cooltrack.routers.inventory import router as inventory_router
from cooltrack.routers.jobs import router as jobs_router
from cooltrack.routers.ledger import router as ledger_router
from cooltrack.routers.outbox import router as outbox_router
from cooltrack.routers.settings import router as settings_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()

    task = start_event_dispatch_task()
    try:
        yield
    finally:
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception:
                # dispatcher crash during shutdown; already logged.
                pass


app = FastAPI(
    title="CoolTrack",
    lifespan=lifespan,
)


@app.exception_handler(CoolTrackError)
async def handle_domain_error(request: Request, exc: CoolTrackError):
    content = {"detail": exc.message, "error": exc.kind}
    if isinstance(exc, InsufficientStockError) and exc.available is not None:
        content["available"] = str(exc.available)
        content["requested"] = str(exc.requested)
    return JSONResponse(status_code=exc.status_code, content=content)


@app.middleware("http")
async def catch_unhandled_exceptions(request: Request, call_next):
    try:
        return await call_next(request)
    except Exception:
        logger.exception("Unhandled exception")
        return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})


app.include_router(auth_router)
app.include_router(customers_router)
app.include_router(inventory_router)
app.include_router(jobs_router)
app.include_router(settings_router)
app.include_router(ledger_router)
app.include_router(outbox_router)


@app.get("/")
def root():
    return {"status": "CoolTrack running"}


@app.get("/health")
def health():
    return {
        "status": "ok",
        "version": "1.0.0",
    }
