"""
Unibox SLA Service - Main Application
======================================

First-response SLA monitoring for the multi-tenant inbox.

Modules:
- SLA Monitoring: Evaluate open threads, escalate transitions, manage policies

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services and DTOs
- Domain: Entities, value objects and the SLA calculator
- Infrastructure: Database, Slack, config watcher, scheduler
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from src.config import settings

from src.infrastructure.database import (
    init_database, close_database, create_tables, get_session_maker
)

from src.sla.application import SLAMonitor, IEscalationStateStore
from src.sla.infrastructure import (
    SLAMonitorConfigManager,
    SlackEscalationSink,
    SQLAlchemyNotificationSink,
    CompositeEscalationSink,
    ViewInvalidator,
    SLAScheduler,
    SQLAlchemyUnitOfWork,
    SQLAlchemyEscalationStateStore,
    InMemoryEscalationStateStore,
)
from src.sla.interfaces import sla_router

from src.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    global_exception_handler
)
from src.shared.infrastructure.logging import setup_logging, get_logger

logger = get_logger(__name__)


def build_state_store(session_maker) -> IEscalationStateStore:
    if settings.escalation_state_backend == "memory":
        return InMemoryEscalationStateStore()
    return SQLAlchemyEscalationStateStore(session_maker)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize database and create tables
    3. Load SLA monitor configuration and watch it
    4. Wire escalation sinks, state store and the monitor
    5. Start SLA scheduler

    SHUTDOWN:
    1. Stop SLA scheduler
    2. Stop config watcher
    3. Close Slack client
    4. Close database connections
    """
    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting SLA Service", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })
    app.state.settings = settings

    init_database()

    # Create tables (for development - use Alembic in production)
    try:
        await create_tables()
    except Exception as e:
        logger.warning("Database not available - running in degraded mode", extra={"error": str(e)})

    config_manager = SLAMonitorConfigManager()
    config_manager.load(settings.sla_monitor_config_path)
    config_manager.start_watching()

    session_maker = get_session_maker()
    slack_sink = SlackEscalationSink(config_provider=config_manager)
    escalation_sink = CompositeEscalationSink([
        slack_sink,
        SQLAlchemyNotificationSink(session_maker, settings.app_base_url),
    ])

    monitor = SLAMonitor(
        unit_of_work_factory=lambda: SQLAlchemyUnitOfWork(session_maker),
        escalation_sink=escalation_sink,
        state_store=build_state_store(session_maker),
        config_provider=config_manager
    )

    app.state.sla_config_manager = config_manager
    app.state.sla_monitor = monitor
    app.state.view_invalidator = ViewInvalidator(settings.view_revalidate_url)

    sla_scheduler = None
    if settings.sla_evaluation_interval > 0:
        sla_scheduler = SLAScheduler(interval_seconds=settings.sla_evaluation_interval)
        await sla_scheduler.start(monitor.monitor_all)
    else:
        logger.info("SLA scheduler disabled")
    app.state.sla_scheduler = sla_scheduler

    logger.info("SLA Service started successfully")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down SLA Service")

    if sla_scheduler:
        await sla_scheduler.stop()

    config_manager.stop_watching()
    await slack_sink.close()
    await close_database()

    logger.info("SLA Service shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="Unibox SLA API",
    description="""
    ## First-response SLA monitoring for the multi-tenant inbox

    **Endpoints:**
    - `POST /sla/monitor` - Evaluate open threads and escalate transitions
    - `POST /sla/policies` - Create a tenant SLA policy
    - `DELETE /sla/policies/{id}` - Delete a policy
    - `GET /sla/tenants/{id}/policies` - List a tenant's policies
    - `POST /sla/assignments` - Assign a policy to a local or channel type
    - `GET /sla/tenants/{id}/assignments` - List local and channel assignments
    - `GET /sla/threads/{id}` - SLA status of a thread
    - `POST /sla/threads/{id}/reset` - Forget recorded SLA state of a thread
    - `GET /sla/tenants/{id}/overview` - Tenant SLA overview

    **States:**
    - `ok`: answered, or more than 20% of the deadline remains
    - `warning`: unanswered with less than 20% of the deadline remaining
    - `breached`: unanswered past the deadline

    Escalations (Slack, in-app notification) fire once per transition into a
    more severe state. A background job runs the monitor every
    `SLA_EVALUATION_INTERVAL` seconds.
    """,
    version=settings.app_version,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# === CORS Middleware ===
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# === Custom Middleware (from shared) ===
app.add_middleware(LoggingMiddleware)
app.add_middleware(CorrelationIDMiddleware)
app.add_exception_handler(Exception, global_exception_handler)

# === Include Module Routers ===
app.include_router(sla_router)


# === Health Check Endpoint ===

@app.get("/health", tags=["Health"], responses={
    200: {
        "description": "Service is healthy",
        "content": {
            "application/json": {
                "example": {
                    "status": "healthy",
                    "version": "1.0.0",
                    "environment": "development",
                    "checks": {
                        "sla_config": "loaded",
                        "sla_monitor": "ready",
                        "sla_scheduler": "running"
                    }
                }
            }
        }
    }
})
async def health_check(request: Request):
    """
    Health check endpoint for load balancers and orchestrators.

    Returns service health status including SLA configuration, monitor
    wiring and scheduler state.
    """
    state = request.app.state
    scheduler = getattr(state, "sla_scheduler", None)

    checks = {
        "sla_config": "loaded" if getattr(state, "sla_config_manager", None) else "not_loaded",
        "sla_monitor": "ready" if getattr(state, "sla_monitor", None) else "not_ready",
        "sla_scheduler": "running" if scheduler and scheduler.is_running else "stopped",
    }

    return {
        "status": "healthy",
        "version": settings.app_version,
        "environment": settings.environment,
        "checks": checks
    }


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with API information."""
    return {
        "service": "Unibox SLA Service",
        "version": settings.app_version,
        "architecture": "Clean Architecture / Modular Monolith",
        "docs": "/docs",
        "health": "/health",
        "modules": {
            "sla": {
                "prefix": "/sla",
                "endpoints": [
                    "POST /sla/monitor - Run SLA monitoring",
                    "POST /sla/policies - Create SLA policy",
                    "DELETE /sla/policies/{id} - Delete SLA policy",
                    "GET /sla/tenants/{id}/policies - List SLA policies",
                    "POST /sla/assignments - Assign SLA policy",
                    "GET /sla/tenants/{id}/assignments - List SLA assignments",
                    "GET /sla/threads/{id} - Get thread SLA status",
                    "POST /sla/threads/{id}/reset - Reset thread SLA tracking",
                    "GET /sla/tenants/{id}/overview - Get tenant SLA overview"
                ]
            }
        }
    }


# === Development Entry Point ===

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "src.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level="info"
    )
