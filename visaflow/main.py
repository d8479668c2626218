"""
VisaFlow - FastAPI Application Entry Point.

Document validation workflows for a construction collaboration host:
documents dropped in watched folders go through review (visa) circuits
defined as graphs.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging

from visaflow.config import settings
from visaflow.api.dependencies import Services
from visaflow.api.routes import instances, watchers, websocket, workflows
from visaflow.engine.errors import WorkflowError
from visaflow.workflows.document_validation import register_document_validation_workflow


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

    services = Services.create()
    app.state.services = services

    # Register the built-in workflow
    await register_document_validation_workflow(services.store, settings.PROJECT_ID)

    if settings.START_WATCHERS_ON_STARTUP:
        await services.watcher.start_for_active_workflows()

    yield

    # Shutdown
    logger.info("Shutting down...")
    await services.close()


# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    description="""
## Document Validation Workflow API

Runs review (visa) workflows on documents stored in a collaboration host.

### Features
- **Workflows**: graphs of start, status, review, decision, action and end nodes
- **Reviews**: reviewers submit visas (VSO, VAO, refused, ...); the workflow
  resumes once enough reviews are in
- **Decisions**: explicit edge conditions, or matching on edge labels
- **Actions**: move/copy files, notify, comment, webhooks
- **Folder watchers**: new files in a folder start a workflow automatically
- **Real-time Updates**: WebSocket stream of engine and watcher events

### Quick Start
1. List workflows: `GET /workflows`
2. Start a workflow on a document: `POST /instances`
3. Submit a review: `POST /instances/{id}/reviews`
4. Check progress: `GET /instances/{id}`

### Built-in Workflow
A single-review validation workflow is available with ID: `document-validation-default`
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
app.include_router(instances.router)
app.include_router(watchers.router)
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
        "description": "Document validation workflows",
        "docs": "/docs",
        "redoc": "/redoc",
        "endpoints": {
            "workflows": "/workflows",
            "instances": "/instances",
            "watchers": "/watchers",
            "websocket_events": "/ws/events",
        },
        "default_workflow": "document-validation-default",
    }


@app.get("/health", tags=["Root"])
async def health(request: Request):
    """Health check endpoint."""
    services: Services = request.app.state.services

    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "workflows_count": len(await services.store.list_definitions()),
        "instances_count": len(await services.store.list_instances()),
        "watchers_count": len(services.watcher),
        "event_subscribers": len(services.events),
    }


# ============================================================
# Error Handlers
# ============================================================

@app.exception_handler(WorkflowError)
async def workflow_exception_handler(request: Request, exc: WorkflowError):
    """Map engine errors to their HTTP status."""
    if exc.status_code >= 500:
        logger.error(f"{type(exc).__name__}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": type(exc).__name__, "detail": exc.message},
    )


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
