"""
Support Desk - Main Application
===============================

Multi-tenant customer support with SLA tracking and an alert rule engine.

Modules:
- Support: tickets, messages, routing, escalation, SLA clocks
- Alerting: periodic rule evaluation over live support metrics

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services and DTOs
- Domain: Entities and value objects
- Infrastructure: Database, policy file, notifications, scheduler
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from supportdesk.config import settings
from supportdesk.core import ApplicationException

# Infrastructure
from supportdesk.infrastructure.database import (
    close_database,
    create_tables,
    get_session_factory,
    init_database,
)
from supportdesk.infrastructure.policy import SupportPolicyManager
from supportdesk.shared.infrastructure.notifications import (
    BroadcastHub,
    EmailClient,
    NotificationDispatcher,
    WebhookClient,
)

# Support module
from supportdesk.support.application import AgentDirectoryService, TicketService
from supportdesk.support.infrastructure import SQLAlchemySupportUnitOfWork
from supportdesk.support.interfaces import router as support_router

# Alerting module
from supportdesk.alerting.application import AlertRuleEngine
from supportdesk.alerting.infrastructure import (
    AlertScheduler,
    SQLAlchemyAlertHistoryRepository,
    SQLAlchemyAlertRuleRepository,
    SQLAlchemyMetricsProvider,
    SQLAlchemyScopeProvider,
)
from supportdesk.alerting.interfaces import router as alerting_router

# Shared API
from supportdesk.shared.api import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    MetricsMiddleware,
    application_exception_handler,
    global_exception_handler,
)
from supportdesk.shared.infrastructure.logging import get_logger, log_latency, setup_logging

logger = get_logger(__name__)

# Global service instances
policy_manager: Optional[SupportPolicyManager] = None
alert_scheduler: Optional[AlertScheduler] = None


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize database and create tables
    3. Load the support policy and watch it for changes
    4. Build the notification dispatcher and services
    5. Load alert rules and start the alert scheduler

    SHUTDOWN:
    1. Stop the scheduler
    2. Stop the policy watcher
    3. Close HTTP clients and database connections
    """
    global policy_manager, alert_scheduler

    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting Support Desk", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })

    init_database()
    await create_tables()
    session_factory = get_session_factory()

    logger.info("Loading support policy", extra={"path": str(settings.support_policy_path)})
    policy_manager = SupportPolicyManager()
    policy_manager.load(settings.support_policy_path)
    policy_manager.start_watching()

    hub = BroadcastHub()
    dispatcher = NotificationDispatcher(
        hub,
        webhook_client=WebhookClient(timeout_seconds=settings.webhook_timeout_seconds),
        email_client=EmailClient(
            api_url=settings.email_api_url,
            api_key=settings.email_api_key,
            sender=settings.email_from,
            timeout_seconds=settings.email_timeout_seconds,
        ),
    )

    ticket_service = TicketService(
        lambda: SQLAlchemySupportUnitOfWork(session_factory),
        dispatcher,
        policy_manager,
    )
    agent_service = AgentDirectoryService(lambda: SQLAlchemySupportUnitOfWork(session_factory))

    alert_engine = AlertRuleEngine(
        metrics_provider=SQLAlchemyMetricsProvider(session_factory),
        scope_provider=SQLAlchemyScopeProvider(session_factory),
        dispatcher=dispatcher,
        rule_repository=SQLAlchemyAlertRuleRepository(session_factory),
        history_repository=SQLAlchemyAlertHistoryRepository(session_factory),
        policy_provider=policy_manager,
        admin_channel=settings.admin_channel,
        scope_timeout=settings.alert_scope_timeout_seconds,
        retention_minutes=settings.resolved_alert_retention_minutes,
    )
    await alert_engine.load_rules()

    async def alert_evaluation_job() -> None:
        """Background alert cycle, followed by the SLA breach sweep."""
        await alert_engine.run_cycle()
        if settings.sla_sweep_enabled:
            try:
                with log_latency(logger, "sla_sweep"):
                    await ticket_service.sweep_sla_breaches()
            except Exception as e:
                logger.error("SLA sweep failed", extra={"error": str(e)})

    if settings.alert_evaluation_interval > 0:
        alert_scheduler = AlertScheduler(interval_seconds=settings.alert_evaluation_interval)
        await alert_scheduler.start(alert_evaluation_job)
    else:
        logger.info("Alert scheduler disabled")
        alert_scheduler = None

    # Store services in app state for dependency injection
    app.state.settings = settings
    app.state.hub = hub
    app.state.dispatcher = dispatcher
    app.state.policy_manager = policy_manager
    app.state.ticket_service = ticket_service
    app.state.agent_service = agent_service
    app.state.alert_engine = alert_engine
    app.state.alert_scheduler = alert_scheduler

    logger.info("Support Desk started successfully")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down Support Desk")

    if alert_scheduler:
        await alert_scheduler.stop()

    if policy_manager:
        policy_manager.stop_watching()

    await dispatcher.close()
    await close_database()

    logger.info("Support Desk shutdown complete")


def create_app(use_lifespan: bool = True) -> FastAPI:
    """
    Build the FastAPI application.

    Without the lifespan the caller is responsible for filling app.state.
    """
    application = FastAPI(
        title="Support Desk API",
        description="""
    ## Multi-tenant Customer Support

    ### Support Module
    - `POST /support/tickets` - Open a ticket (rate limited per requester)
    - `GET /support/tickets` - List, filter, sort and paginate visible tickets
    - `PATCH /support/tickets/{id}` - Update status, priority, category
    - `POST /support/tickets/{id}/messages` - Reply (first staff reply stops the SLA clock)
    - `POST /support/tickets/{id}/escalate` - Escalate along the hierarchy
    - `POST /support/tickets/{id}/assign` - Assign to an agent
    - `POST /support/tickets/{id}/satisfaction` - Rate a finished ticket
    - `GET|PUT /support/config` - Tenant support configuration
    - `WS /support/ws` - Live ticket events

    ### Alerting Module
    - `GET /alerts/active` - Unresolved alerts
    - `POST /alerts/{id}/resolve` - Resolve an alert
    - `GET|POST|PATCH|DELETE /alerts/rules` - Alert rule management
    - `WS /alerts/ws` - Metrics updates and alert broadcasts

    Callers are identified by the `X-User-Id`, `X-User-Role`,
    `X-Business-Model` and `X-Tenant-Id` headers set by the gateway.
    """,
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan if use_lifespan else None
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    application.add_middleware(CorrelationIDMiddleware)
    application.add_middleware(MetricsMiddleware)
    application.add_middleware(LoggingMiddleware)
    application.add_exception_handler(ApplicationException, application_exception_handler)
    application.add_exception_handler(Exception, global_exception_handler)

    application.include_router(support_router)
    application.include_router(alerting_router)

    @application.get("/health", tags=["Health"], responses={
        200: {
            "description": "Service is healthy",
            "content": {
                "application/json": {
                    "example": {
                        "status": "healthy",
                        "version": "1.0.0",
                        "environment": "development",
                        "checks": {
                            "database": "configured",
                            "support_policy": "loaded",
                            "alert_scheduler": "running",
                            "alert_rules": 4,
                            "active_alerts": 0
                        }
                    }
                }
            }
        }
    })
    async def health_check(request: Request):
        """Health check endpoint for load balancers and orchestrators."""
        state = request.app.state
        scheduler = getattr(state, "alert_scheduler", None)
        engine = getattr(state, "alert_engine", None)
        manager = getattr(state, "policy_manager", None)

        checks = {
            "database": "configured",
            "support_policy": "loaded" if manager is not None else "not_loaded",
            "alert_scheduler": "running" if scheduler and scheduler.is_running else "stopped",
            "alert_rules": len(engine.get_alert_rules()) if engine else 0,
            "active_alerts": len(engine.get_active_alerts()) if engine else 0,
        }

        return {
            "status": "healthy",
            "version": settings.app_version,
            "environment": settings.environment,
            "checks": checks
        }

    @application.get("/", tags=["Root"])
    async def root():
        """Root endpoint with API information."""
        return {
            "service": "Support Desk",
            "version": settings.app_version,
            "architecture": "Clean Architecture / Modular Monolith",
            "docs": "/docs",
            "health": "/health",
            "modules": {
                "support": {"prefix": "/support"},
                "alerting": {"prefix": "/alerts"}
            }
        }

    return application


app = create_app()


# === Development Entry Point ===

def run() -> None:
    """Serve the application with uvicorn."""
    import uvicorn

    uvicorn.run(
        "supportdesk.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level="info"
    )


if __name__ == "__main__":
    run()
