"""Application factory for creating FastAPI instances."""

from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .actions.registry import build_default_dispatcher
from .api.endpoints import init_dependencies, router
from .config import AppConfig, get_config
from .core.action_dispatcher import ActionDispatcher
from .core.engine import WorkflowEngine
from .core.execution_store import ExecutionStore, SqlExecutionStore
from .core.logging import setup_logging
from .storage.database import create_database_engine, create_session_factory, create_tables


class ApplicationState:
    """Container for application state and components."""

    def __init__(self):
        self.config: Optional[AppConfig] = None
        self.store: Optional[ExecutionStore] = None
        self.dispatcher: Optional[ActionDispatcher] = None
        self.engine: Optional[WorkflowEngine] = None
        self.logger = None


# Global application state
app_state = ApplicationState()


def initialize_store(config: AppConfig, logger) -> ExecutionStore:
    """Create the database schema and a SQL-backed execution store."""
    try:
        db_engine = create_database_engine(
            config.database_url,
            echo=config.database_echo,
            connect_args=config.get_database_connect_args()
        )
        create_tables(db_engine)
        logger.info(f"Database tables created ({config.database_type.value})")
        return SqlExecutionStore(create_session_factory(db_engine))
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise


def create_lifespan_handler(
    config: AppConfig,
    store: Optional[ExecutionStore] = None,
    dispatcher: Optional[ActionDispatcher] = None,
    gateway: Optional[Any] = None,
):
    """Create application lifespan handler."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        logger = setup_logging(
            level=config.log_level.value,
            log_file=config.log_file,
            log_format=config.log_format,
            structured=config.structured_logging,
            max_size=config.log_max_size,
            backup_count=config.log_backup_count
        )
        logger.info(f"Starting {config.app_name} v{config.app_version}")

        try:
            run_store = store if store is not None else initialize_store(config, logger)
            run_dispatcher = dispatcher or build_default_dispatcher(config, gateway=gateway)
            engine = WorkflowEngine(run_store, run_dispatcher, config=config)
        except Exception as e:
            logger.error(f"Application startup failed: {e}")
            raise

        app_state.config = config
        app_state.store = run_store
        app_state.dispatcher = run_dispatcher
        app_state.engine = engine
        app_state.logger = logger

        init_dependencies(engine)
        logger.info(f"Registered action types: {', '.join(run_dispatcher.list_action_types())}")
        logger.info("Application startup completed successfully")

        yield

        # Shutdown
        logger.info(f"Shutting down {config.app_name}")
        try:
            engine.shutdown()
        except Exception as e:
            logger.error(f"Error during engine shutdown: {str(e)}")

    return lifespan


def create_app(
    config: Optional[AppConfig] = None,
    store: Optional[ExecutionStore] = None,
    dispatcher: Optional[ActionDispatcher] = None,
    gateway: Optional[Any] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        config: Application configuration; loaded from the environment when omitted
        store: Execution store to use instead of the configured database
        dispatcher: Action dispatcher to use instead of the built-in handlers
        gateway: CRM gateway handed to the built-in handlers

    Returns:
        FastAPI: Application whose lifespan wires up the engine
    """
    if config is None:
        config = get_config()

    app = FastAPI(
        title=config.app_name,
        description="Event-driven workflow automation for CRM records",
        version=config.app_version,
        debug=config.debug,
        lifespan=create_lifespan_handler(config, store=store, dispatcher=dispatcher, gateway=gateway)
    )

    if config.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=config.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

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
    async def health_check():
        """Basic health check endpoint."""
        engine = app_state.engine
        return {
            "status": "healthy" if engine is not None else "starting",
            "service": config.app_name.lower().replace(" ", "-"),
            "version": config.app_version,
            "actionTypes": engine.dispatcher.list_action_types() if engine is not None else []
        }