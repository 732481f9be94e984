from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from telequeue.core.config import settings
from telequeue.core.exceptions import NoWaitingPatients, QueueError
from telequeue.core.logger import logger
from telequeue.core.redis import redis_client
from telequeue.db.session import async_session, engine, init_db
from telequeue.middleware.log_middleware import LogMiddleware
from telequeue.services.connection_registry import ConnectionRegistry
from telequeue.services.notifier import Notifier
from telequeue.services.queue_coordinator import QueueCoordinator

@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    registry = ConnectionRegistry()
    app.state.registry = registry
    app.state.coordinator = QueueCoordinator(async_session, registry, Notifier(registry))
    logger.info(f"{settings.PROJECT_NAME} started")
    yield
    await app.state.coordinator.close()
    registry.clear()
    await redis_client.close()
    await engine.dispose()

app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(LogMiddleware)

@app.exception_handler(QueueError)
async def queue_error_handler(request: Request, exc: QueueError):
    if isinstance(exc, NoWaitingPatients):
        return JSONResponse(status_code=200, content={"success": True, "message": exc.detail})
    return JSONResponse(status_code=exc.status_code, content={"success": False, "message": exc.detail})

@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"success": False, "message": "Invalid request", "errors": jsonable_encoder(exc.errors())}
    )

@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"success": False, "message": "Internal server error"})

@app.get("/")
async def root():
    return {"message": "Welcome to TeleQueue API"}

from telequeue.api.api import api_router
app.include_router(api_router, prefix=settings.API_V1_STR)
