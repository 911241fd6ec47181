"""
ServiceDesk SLA - Main Application
===================================

Helpdesk SLA deadline engine with rule-based ticket automation.

Modules:
- SLA: deadlines, business calendar, status machine, ticket workflow
- Automation: rule evaluation, actions, scheduled rules

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services and DTOs
- Domain: Entities and value objects
- Infrastructure: Database, config watcher, notifier, scheduler
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from config import settings
from core import ConfigurationException
from infrastructure.database import (
    close_database, create_tables, get_session_context, init_database, ping,
)
from automation.interfaces import automation_router
from sla.application.dto import HealthResponse
from sla.infrastructure import SLAConfigManager, SQLAlchemyStorage, SweepScheduler, WebhookNotifier
from sla.interfaces import profiles_router, reports_router, tickets_router
from sla.services import AutomationSweepJob, Runtime
from shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    register_exception_handlers,
)
from shared.infrastructure.logging import get_logger, setup_logging

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize database and create tables
    3. Load SLA configuration, start watching it, seed profiles
    4. Start the automation sweep scheduler

    SHUTDOWN:
    1. Stop the scheduler
    2. Stop the config watcher, close the notifier
    3. Close database connections
    """
    runtime: Runtime = app.state.runtime
    config_manager = runtime.config_provider

    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting ServiceDesk SLA", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })

    init_database()
    try:
        await create_tables()
    except (OSError, SQLAlchemyError) as e:
        logger.warning("Database not available - running in degraded mode",
                       extra={"error": str(e)})

    if isinstance(config_manager, SLAConfigManager):
        try:
            config_manager.load(settings.sla_config_path)
        except ConfigurationException as e:
            logger.error("SLA configuration invalid, refusing to start", extra=e.details)
            raise
        config_manager.start_watching()

    try:
        async with get_session_context() as session:
            await SQLAlchemyStorage(session).seed_profiles(config_manager.get_config().profiles)
    except (OSError, SQLAlchemyError) as e:
        logger.warning("SLA profiles not seeded", extra={"error": str(e)})

    scheduler = SweepScheduler(interval_seconds=settings.sweep_interval_seconds)
    if settings.sweep_interval_seconds > 0:
        await scheduler.start(AutomationSweepJob(runtime))
    app.state.scheduler = scheduler

    logger.info("ServiceDesk SLA started successfully")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down ServiceDesk SLA")
    await scheduler.stop()
    if isinstance(config_manager, SLAConfigManager):
        config_manager.stop_watching()
    if isinstance(runtime.notifier, WebhookNotifier):
        await runtime.notifier.close()
    await close_database()
    logger.info("ServiceDesk SLA shutdown complete")


def create_app(runtime: Optional[Runtime] = None) -> FastAPI:
    """
    Build the application.

    Tests pass their own Runtime (fixed clock, in-memory config and
    notifier) and use the app without running the lifespan.
    """
    app = FastAPI(
        title="ServiceDesk SLA API",
        description="""
    ## Helpdesk SLA & Automation Engine

    - Response/resolution deadlines from SLA profiles and priority multipliers
    - Business-hours calendar with holidays
    - Ticket status machine with first-response / resolution stamping
    - Trigger-condition-action automation rules, incl. SLA breach and scheduled rules

    **Endpoints:**
    - `POST /tickets` - Create a ticket
    - `PATCH /tickets/{id}` - Update a ticket
    - `POST /tickets/{id}/first-response` - Record the first response
    - `PUT /tickets/{id}/sla-profile` - Reassign the SLA profile
    - `GET /tickets/{id}/sla` - SLA status of both clocks
    - `POST /automation/sweep` - Run the automation sweep now
    """,
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )

    app.state.settings = settings
    app.state.runtime = runtime or Runtime(
        config_provider=SLAConfigManager(),
        notifier=WebhookNotifier(),
    )
    app.state.scheduler = None

    # === Middleware ===
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(LoggingMiddleware)
    # Added last so it runs first and the id is bound for the logging middleware
    app.add_middleware(CorrelationIDMiddleware)
    register_exception_handlers(app)

    # === Routers ===
    app.include_router(tickets_router)
    app.include_router(automation_router)
    app.include_router(profiles_router)
    app.include_router(reports_router)

    @app.get("/health", tags=["Health"], response_model=HealthResponse)
    async def health_check(request: Request) -> HealthResponse:
        """Health check for load balancers and orchestrators."""
        try:
            await ping()
            database = "connected"
        except (RuntimeError, OSError, SQLAlchemyError) as e:
            database = f"unavailable: {type(e).__name__}"

        config_provider = request.app.state.runtime.config_provider
        config_loaded = getattr(config_provider, "is_loaded", True)
        scheduler = request.app.state.scheduler

        return HealthResponse(
            status="healthy" if database == "connected" and config_loaded else "degraded",
            version=settings.app_version,
            database=database,
            sla_config_loaded=config_loaded,
            scheduler_running=bool(scheduler and scheduler.is_running),
            timestamp=datetime.now(timezone.utc),
        )

    return app


app = create_app()


# === Development Entry Point ===

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level=settings.log_level.lower()
    )
