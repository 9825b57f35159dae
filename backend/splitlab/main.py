"""Main FastAPI application."""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager

from splitlab.config import get_settings
from splitlab.middleware.logging import LoggingMiddleware, get_logger
from splitlab.api import experiments, health
from splitlab.database import engine, Base
from splitlab.schemas.experiment import ExperimentRead
from splitlab.services import hooks as lifecycle
from splitlab.services.hooks import HookRegistry
from splitlab.services.experiments import ExperimentNotFound, ExperimentValidationError
import splitlab.models  # noqa: F401  (registers tables on Base.metadata)

settings = get_settings()
logger = get_logger()


def build_hook_registry() -> HookRegistry:
    """Lifecycle hooks installed at startup."""
    hooks = HookRegistry()

    @hooks.register_for(lifecycle.EXPERIMENT_COMPLETED)
    def log_outcome(experiment: ExperimentRead) -> None:
        logger.info(
            "experiment_outcome",
            experiment_id=experiment.id,
            name=experiment.name,
            winner_variant_id=experiment.winner_variant_id
        )

    return hooks


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan - startup and shutdown."""
    Base.metadata.create_all(bind=engine)
    logger.info("database_tables_ready")

    app.state.hooks = build_hook_registry()

    yield  # App runs here

    logger.info("shutting_down", service=settings.app_name)


# Create FastAPI app
app = FastAPI(
    title="SplitLab",
    description="Experimentation engine: targeting, deterministic bucketing and results analysis",
    version="0.1.0",
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    lifespan=lifespan
)

allowed_origins = [
    "http://localhost:5173",  # Local development
    "http://localhost:3000",  # Alternative local port
    settings.frontend_url,     # Production dashboard
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Trace-ID"]
)

# Logging middleware
app.add_middleware(LoggingMiddleware)


@app.exception_handler(ExperimentNotFound)
async def experiment_not_found_handler(request: Request, exc: ExperimentNotFound):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(ExperimentValidationError)
async def experiment_validation_handler(request: Request, exc: ExperimentValidationError):
    logger.warning("experiment_validation_failed", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=422, content={"detail": str(exc)})


# Include routers
app.include_router(health.router, tags=["health"])
app.include_router(experiments.router, tags=["experiments"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": "SplitLab",
        "version": "0.1.0",
        "docs": "/docs" if settings.debug else "disabled",
        "endpoints": {
            "health": "/health",
            "experiments": "/experiments",
            "assignments": "POST /experiments/{id}/assignments",
            "conversions": "POST /experiments/{id}/conversions",
            "results": "GET /experiments/{id}/results"
        }
    }


# uvicorn splitlab.main:app --reload
