import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from .core.database import create_db_and_tables
from .core.settings import settings
from .models.Device import Device # Import models to register them with SQLModel
from .models.RideSession import RideSession
from .core.init_db import init_keys

from .devices.router import router as devices_router
from .sessions.router import router as sessions_router
from .fares.router import router as fares_router, debug_router

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    create_db_and_tables()
    init_keys()
    yield



app = FastAPI(title=settings.PROJECT_NAME, lifespan=lifespan)

app.include_router(devices_router)
app.include_router(sessions_router)
app.include_router(fares_router)
if settings.DEBUG_ENDPOINTS:
    app.include_router(debug_router)

@app.exception_handler(SQLAlchemyError)
async def store_unavailable_handler(request: Request, exc: SQLAlchemyError):
    logger.error("Session store error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "store unavailable"},
    )

@app.get("/")
def read_root():
    return {"message": f"Welcome to {settings.PROJECT_NAME}"}


def run():
    """
    Entry point for `farepass-server`.
    """
    uvicorn.run(app, host=settings.HOST, port=settings.PORT, log_level=settings.LOG_LEVEL.lower())
