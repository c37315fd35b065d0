"""
FastAPI application factory.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tracey.api.routes import router
from tracey.core.exceptions import StructuralError
from tracey.data.database import get_database_manager
from tracey.services.scheduler import build_scheduler
from tracey.utils.config import get_settings
from tracey.utils.logger import get_logger

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("API starting")
    scheduler = None
    if get_settings().queue.scheduler_enabled:
        scheduler = build_scheduler()
        scheduler.start()
        app.state.scheduler = scheduler

    yield

    if scheduler is not None:
        scheduler.shutdown(wait=False)
    get_database_manager().close_all()
    logger.info("API stopped")


async def structural_error_handler(request: Request, exc: StructuralError) -> JSONResponse:
    logger.info(f"{request.method} {request.url.path} rejected ({exc.status_code}): {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request", "details": jsonable_encoder(exc.errors())},
    )


def create_app() -> FastAPI:
    """Build the API application with CORS and error mapping."""
    settings = get_settings()

    app = FastAPI(
        title=settings.name,
        version=settings.version,
        description=settings.description,
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.api.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(StructuralError, structural_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.include_router(router)

    @app.get("/health")
    async def health():
        return {"status": "ok", "version": settings.version}

    return app
