from contextlib import asynccontextmanager

import structlog
import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from core.config import settings
from core.errors import ServiceError
from core.logging import configure_logging
from db.database import async_session_maker, create_db_and_tables
from routers.inventory import router as inventory_router
from routers.notifications import router as notifications_router
from routers.orders import router as orders_router
from services.mailer import build_mailer
from services.worker import NotificationWorker

configure_logging()
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await create_db_and_tables()
    worker = None
    if settings.run_worker_in_process:
        worker = NotificationWorker(async_session_maker, build_mailer())
        worker.start()
    yield
    if worker is not None:
        worker.stop()


app = FastAPI(
    title="OrderSync API",
    description="Inventory ledger, order pricing and order notifications",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    if exc.status_code >= 500:
        logger.error("Service error", path=request.url.path, error=exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled exception", path=request.url.path, method=request.method)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


@app.get("/healthy")
async def healthy():
    return {"status": "ok"}


app.include_router(inventory_router, prefix="/inventory", tags=["inventory"])
app.include_router(orders_router, prefix="/orders", tags=["orders"])
app.include_router(notifications_router, prefix="/notifications", tags=["notifications"])

if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
