from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging
import os

from database import Database
from errors import DomainError, Internal, ValidationFailed
from realtime.broadcaster import Broadcaster
from auth.routes import router as auth_router
from realtime.routes import router as realtime_router
from routers.projects import router as projects_router
from routers.tasks import router as tasks_router
from routers.users import router as users_router

# Configure logging
logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO").upper())
logger = logging.getLogger(__name__)

DEFAULT_CORS_ORIGINS = "http://localhost:3000,http://127.0.0.1:3000"
CORS_ORIGINS = [
    origin.strip()
    for origin in os.environ.get("CORS_ORIGINS", DEFAULT_CORS_ORIGINS).split(",")
    if origin.strip()
]

app = FastAPI(
    title="Taskboard API",
    description="Collaborative project and task tracking with realtime updates",
    version="1.0.0"
)

# CORS middleware for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth_router)
app.include_router(projects_router)
app.include_router(tasks_router)
app.include_router(users_router)
app.include_router(realtime_router)


# ============== Lifecycle ==============

@app.on_event("startup")
async def open_resources():
    """
    Open the store and create the broadcaster.

    Either may already be attached (tests inject an in-memory database);
    existing instances are kept as they are.
    """
    if getattr(app.state, "database", None) is None:
        app.state.database = Database()
    app.state.database.open()

    if getattr(app.state, "broadcaster", None) is None:
        app.state.broadcaster = Broadcaster()
    logger.info("Taskboard API started")


@app.on_event("shutdown")
async def close_resources():
    database = getattr(app.state, "database", None)
    if database is not None:
        database.close()
    logger.info("Taskboard API stopped")


# ============== Error translation ==============

@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError):
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == status.HTTP_401_UNAUTHORIZED else None
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = [
        {
            "field": ".".join(str(part) for part in error["loc"] if part != "body"),
            "message": error["msg"],
        }
        for error in exc.errors()
    ]
    logger.info(f"Validation failed for {request.method} {request.url.path}: {errors}")
    error = ValidationFailed("Validation failed", errors=errors)
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Global exception handler for unhandled errors."""
    logger.exception(f"Unhandled exception on {request.method} {request.url.path}: {exc}")
    error = Internal()
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


@app.get("/health")
def health_check():
    broadcaster = getattr(app.state, "broadcaster", None)
    return {
        "status": "ok",
        "websocket_connections": broadcaster.get_connection_count() if broadcaster else 0,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host=os.environ.get("HOST", "0.0.0.0"), port=int(os.environ.get("PORT", "8000")))
