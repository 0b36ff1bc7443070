"""Application factory for creating FastAPI instances."""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from .actions.base import ActionExecutor
from .actions.http import HttpActionExecutor
from .api.endpoints import router
from .config import AppConfig, get_config, validate_config
from .core.exceptions import WorkflowEngineError
from .core.execution_engine import ExecutionEngine
from .core.logging import get_logger, setup_logging
from .core.middleware import (
    ErrorHandlingMiddleware,
    PerformanceMonitoringMiddleware,
    workflow_error_handler,
)
from .storage.database import Database
from .storage.migrations import run_migrations


def create_lifespan_handler(config: AppConfig):
    """Create the application lifespan handler."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger = get_logger(__name__)
        logger.info(f"Starting {config.app_name} v{config.app_version}")

        run_migrations(app.state.database)
        logger.info("Application startup completed successfully")

        yield

        logger.info(f"Shutting down {config.app_name}")
        close = getattr(app.state.action_executor, "close", None)
        if callable(close):
            close()
        if app.state.owns_database:
            app.state.database.dispose()

    return lifespan


def create_app(config: Optional[AppConfig] = None,
               database: Optional[Database] = None,
               action_executor: Optional[ActionExecutor] = None) -> FastAPI:
    """
    Create and configure a FastAPI application instance.

    Args:
        config: Application configuration, loaded from the environment when omitted
        database: Store handle; built from ``config.database_url`` when omitted
        action_executor: Executor for task actions; HTTP by default
    """
    if config is None:
        config = get_config()

    validate_config(config)

    setup_logging(
        level=config.log_level.value,
        log_file=config.log_file,
        log_format=config.log_format,
        structured=config.log_structured,
        max_size=config.log_max_size,
        backup_count=config.log_backup_count
    )

    app = FastAPI(
        title=config.app_name,
        description="A closure-table DAG workflow engine",
        version=config.app_version,
        debug=config.debug,
        lifespan=create_lifespan_handler(config)
    )

    app.state.config = config
    app.state.owns_database = database is None
    app.state.database = database or Database.from_config(config)
    app.state.action_executor = action_executor or HttpActionExecutor.from_config(config)
    app.state.execution_engine = ExecutionEngine.from_config(
        app.state.database, app.state.action_executor, config
    )

    if config.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=config.cors_origins,
            allow_credentials=True,
            allow_methods=config.cors_methods,
            allow_headers=["*"],
        )

    if config.enable_performance_monitoring:
        app.add_middleware(PerformanceMonitoringMiddleware, slow_request_threshold=config.slow_request_threshold)
    app.add_middleware(ErrorHandlingMiddleware)
    app.add_exception_handler(WorkflowEngineError, workflow_error_handler)

    app.include_router(router)
    add_health_endpoints(app, config)

    return app


def add_health_endpoints(app: FastAPI, config: AppConfig) -> None:
    """Add health check endpoints to the application."""

    @app.get("/")
    async def root():
        """Root endpoint for basic health check."""
        return {"message": f"{config.app_name} is running", "version": config.app_version}

    @app.get("/health")
    def health_check():
        """Health check including database connectivity."""
        service = config.app_name.lower().replace(" ", "-")
        try:
            with app.state.database.session() as db:
                db.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            get_logger(__name__).error(f"Health check failed: {str(e)}")
            return JSONResponse(
                status_code=503,
                content={
                    "status": "unhealthy",
                    "service": service,
                    "database": "unreachable",
                    "timestamp": datetime.utcnow().isoformat()
                }
            )
        return {
            "status": "healthy",
            "service": service,
            "version": config.app_version,
            "database": "ok"
        }
