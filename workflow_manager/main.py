"""FastAPI application entry point."""

import logging
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from workflow_manager import config
from workflow_manager.db.database import close_database, init_database
from workflow_manager.errors import WorkflowError

# Configure logging
logging.basicConfig(
    level=getattr(logging, config.log_level(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    stream=sys.stdout,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup and shutdown."""
    db_path = config.database_path()
    await init_database(db_path)
    logger.info(f"Workflow manager database ready at {db_path}")

    yield

    await close_database()


app = FastAPI(
    title="Workflow Manager",
    description="Workflow definitions, versions, graph edits and the active workflow registry",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware - allow any localhost port for local editors
app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=r"^http://localhost(:\d+)?$",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(WorkflowError)
async def workflow_error_handler(request: Request, exc: WorkflowError) -> JSONResponse:
    """Map workflow errors to HTTP responses."""
    if exc.status_code >= 500:
        logger.error(f"{exc.error_type} on {request.url.path}: {exc.message}")
    else:
        logger.debug(f"{exc.error_type} on {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": exc.error_type, "context": exc.context},
    )


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy"}


# Import and include routers after app is created to avoid circular imports
from workflow_manager.api import definitions, graph, registry, subworkflows, versions  # noqa: E402

app.include_router(definitions.router, prefix="/api/v1", tags=["definitions"])
app.include_router(versions.router, prefix="/api/v1", tags=["versions"])
app.include_router(graph.router, prefix="/api/v1", tags=["graph"])
app.include_router(subworkflows.router, prefix="/api/v1", tags=["sub-workflows"])
app.include_router(registry.router, prefix="/api/v1", tags=["registry"])
