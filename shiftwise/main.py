"""
Entry point for the Shiftwise backend.

This script creates the FastAPI application, wires the workflow engine to
its SQL-backed collaborators and includes all API routers. Run with:

    uvicorn shiftwise.main:app --reload

"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from fastapi import FastAPI
from sqlalchemy.orm import Session

from .api import api_router
from .core.config import Settings, env_flag, get_app_env, settings
from .core.db import SessionLocal, engine
from .core.errors import log_exception
from .core.logging_config import setup_logging
from .models import Base
from .services.action_executor import ActionExecutor
from .services.mqtt_consumer import MQTTConsumer
from .services.notifications import SqlNotificationSender, get_email_sender
from .services.payments import SqlPaymentProcessor
from .services.rule_engine import WorkflowEngine
from .services.rule_seed import seed_default_rules
from .services.stores import SqlJobStore, SqlShiftStore, SqlTaskStore, SqlWorkerStore
from .services.suggestions import RuleBasedSuggestionProvider


def build_workflow_engine(
    session_factory: Callable[[], Session] = SessionLocal,
    current: Settings | None = None,
) -> WorkflowEngine:
    """Build a workflow engine backed by the SQL stores."""
    current = current or settings
    executor = ActionExecutor(
        jobs=SqlJobStore(session_factory),
        shifts=SqlShiftStore(session_factory),
        workers=SqlWorkerStore(session_factory),
        tasks=SqlTaskStore(session_factory),
        notifier=SqlNotificationSender(session_factory),
        payments=SqlPaymentProcessor(session_factory),
        email=get_email_sender(current),
        webhook_timeout_sec=current.webhook_timeout_sec,
    )
    return WorkflowEngine(
        executor,
        timezone=current.scheduler_timezone,
        max_executions=current.execution_log_size,
        suggestion_provider=RuleBasedSuggestionProvider(),
    )


def create_app(workflow_engine: Optional[WorkflowEngine] = None) -> FastAPI:
    setup_logging()
    app = FastAPI(title="Shiftwise Backend", version="0.1.0")
    # Include API routers
    app.include_router(api_router)
    if workflow_engine is None and env_flag("ENABLE_WORKFLOW_ENGINE"):
        workflow_engine = build_workflow_engine()
    app.state.workflow_engine = workflow_engine
    app.state.mqtt_consumer = None

    @app.on_event("startup")
    def _startup() -> None:
        logger = logging.getLogger("startup")
        env = get_app_env()
        if env_flag("AUTO_CREATE_DB"):
            try:
                Base.metadata.create_all(bind=engine)
            except Exception as exc:
                log_exception(logger, "DB create_all failed", exc=exc)
                if env == "prod":
                    raise
        workflow = app.state.workflow_engine
        if workflow is None:
            logger.info("Workflow engine disabled")
            return
        if env_flag("AUTO_SEED_RULES"):
            try:
                seeded = seed_default_rules(workflow)
                logger.info("Seeded default workflow rules count=%s", seeded)
            except Exception as exc:
                log_exception(logger, "Seed rules failed", exc=exc)
                if env == "prod":
                    raise
        workflow.start_engine()
        if env_flag("ENABLE_MQTT_CONSUMER"):
            consumer = MQTTConsumer(workflow)
            consumer.start()
            app.state.mqtt_consumer = consumer

    @app.on_event("shutdown")
    def _shutdown() -> None:
        consumer = getattr(app.state, "mqtt_consumer", None)
        if consumer:
            consumer.stop()
        workflow = getattr(app.state, "workflow_engine", None)
        if workflow:
            workflow.stop_engine()

    return app


app = create_app()
