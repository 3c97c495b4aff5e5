"""
FlowExec - FastAPI Application Entry Point.

An async workflow execution engine: versioned graph definitions, parallel
branches, loops, human checkpoints and live progress streaming.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging

from flowexec.config import settings
from flowexec.api.routes import executions, tools, websocket, workflows
from flowexec.engine.orchestrator import execution_engine
from flowexec.errors import (
    CheckpointResponseError,
    DefinitionError,
    ExecutionNotFound,
    InvalidState,
    WorkflowEngineError,
    WorkflowNotFound,
)
from flowexec.workflows import register_sample_workflows

# Import builtin tools to register them
import flowexec.tools.builtin  # noqa: F401


# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    if settings.REGISTER_SAMPLE_WORKFLOWS:
        await register_sample_workflows(execution_engine.workflows)

    await execution_engine.executions.load()
    recovered = await execution_engine.recover()
    if recovered:
        logger.info(f"Recovered {recovered} running executions")

    yield

    # Shutdown
    logger.info("Shutting down...")
    await execution_engine.shutdown()


# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    description="""
## Workflow Execution Engine API

Runs multi-step workflows described as directed graphs of typed nodes.

### Features
- **Nodes**: start, agent (LLM), tool, decision, human, transform, end
- **Branching**: labelled edges chosen by decisions and human responses
- **Parallelism**: fan-out runs branches concurrently, joins wait for all
- **Loops**: back edges with per-iteration results and an iteration ceiling
- **Checkpoints**: executions pause for a human and resume on response
- **Live progress**: server-sent events and WebSocket streams

### Quick Start
1. Register a workflow: `POST /workflows`
2. Start it: `POST /workflows/{workflowId}/executions`
3. Follow it: `GET /executions/{executionId}/stream`
4. Answer a checkpoint: `POST /executions/{executionId}/resume`

### Sample Workflows
`article-review` and `text-insights` are registered at startup.
    """,
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)


# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Include routers
app.include_router(workflows.router)
app.include_router(executions.router)
app.include_router(tools.router)
app.include_router(websocket.router)


# ============================================================
# Root Endpoints
# ============================================================

@app.get("/", tags=["Root"])
async def root():
    """API root - returns basic info and links."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "description": "An async workflow execution engine",
        "docs": "/docs",
        "redoc": "/redoc",
        "endpoints": {
            "workflows": "/workflows",
            "executions": "/executions",
            "stream": "/executions/{executionId}/stream",
            "tools": "/tools",
            "websocket": "/ws/executions/{executionId}",
        },
        "sample_workflows": ["article-review", "text-insights"],
    }


@app.get("/health", tags=["Root"])
async def health():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "workflows_count": len(execution_engine.workflows),
        "executions_count": len(execution_engine.executions),
    }


# ============================================================
# Error Handlers
# ============================================================

def _error_response(status_code: int, exc: WorkflowEngineError, detail=None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": exc.code, "detail": detail if detail is not None else str(exc)},
    )


@app.exception_handler(DefinitionError)
async def definition_error_handler(request: Request, exc: DefinitionError):
    return _error_response(400, exc, {"message": str(exc), "problems": exc.problems})


@app.exception_handler(InvalidState)
async def invalid_state_handler(request: Request, exc: InvalidState):
    return _error_response(409, exc)


@app.exception_handler(CheckpointResponseError)
async def checkpoint_response_handler(request: Request, exc: CheckpointResponseError):
    return _error_response(422, exc)


@app.exception_handler(WorkflowNotFound)
@app.exception_handler(ExecutionNotFound)
async def not_found_handler(request: Request, exc: WorkflowEngineError):
    return _error_response(404, exc)


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Global exception handler for unhandled errors."""
    logger.exception(f"Unhandled error: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal Server Error",
            "detail": str(exc) if settings.DEBUG else "An unexpected error occurred",
        },
    )
