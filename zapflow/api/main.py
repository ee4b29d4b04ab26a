"""
FastAPI application
"""
import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ..core.config import settings
from ..flow.engine import FlowEngine
from ..flow.executor import FlowExecutor
from ..services.store import FlowStore, InMemoryFlowStore
from ..services.database import SupabaseFlowStore
from ..services.external_api import ExternalApiClient, HttpxApiClient
from ..services.ai import AIQueryClient, OpenAIQueryClient
from ..services.registry import TenantRegistry
from ..services.delay_scheduler import DelaySchedulerService
from .routes import webhook_router, flows_router

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

logger = logging.getLogger(__name__)


def create_store() -> FlowStore:
    """Store selected by STORE_BACKEND"""
    backend = settings.STORE_BACKEND.lower()
    if backend == "supabase":
        return SupabaseFlowStore()
    if backend != "memory":
        logger.warning(f"Unknown STORE_BACKEND '{settings.STORE_BACKEND}', using memory")
    return InMemoryFlowStore()


def create_app(
    store: Optional[FlowStore] = None,
    registry: Optional[TenantRegistry] = None,
    api_client: Optional[ExternalApiClient] = None,
    ai_client: Optional[AIQueryClient] = None,
    start_scheduler: bool = True
) -> FastAPI:
    """
    Create and configure FastAPI application.

    Collaborators default to the configured production implementations;
    tests pass their own.
    """

    app = FastAPI(
        title=settings.APP_NAME,
        description="ZapFlow - WhatsApp conversational flow engine",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc"
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(webhook_router)
    app.include_router(flows_router, prefix="/api")

    @app.get("/")
    async def root():
        """Root endpoint"""
        return {
            "name": settings.APP_NAME,
            "version": "1.0.0",
            "status": "running"
        }

    @app.get("/health")
    async def health():
        """Health check endpoint"""
        return {"status": "ok"}

    @app.on_event("startup")
    async def startup():
        """Build collaborators and start background work"""
        logger.info(f"Starting {settings.APP_NAME}...")

        app.state.store = store or create_store()
        app.state.api_client = api_client or HttpxApiClient()
        app.state.ai_client = ai_client or OpenAIQueryClient()

        app.state.registry = registry or TenantRegistry()
        if registry is None:
            await app.state.registry.load(app.state.store)

        executor = FlowExecutor(app.state.store, app.state.api_client, app.state.ai_client)
        app.state.engine = FlowEngine(app.state.store, app.state.registry, executor)

        app.state.scheduler = DelaySchedulerService(app.state.store, app.state.engine)
        if start_scheduler:
            await app.state.scheduler.start_scheduler()

        logger.info(f"{settings.APP_NAME} ready with {len(app.state.registry.tenants)} tenant(s)")

    @app.on_event("shutdown")
    async def shutdown():
        """Shutdown event"""
        logger.info(f"Shutting down {settings.APP_NAME}...")

        await app.state.scheduler.stop_scheduler()
        await app.state.registry.close()
        await app.state.api_client.close()
        await app.state.ai_client.close()

        logger.info("Collaborators closed")

    return app


# Create app instance
app = create_app()
