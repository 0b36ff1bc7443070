"""Application startup script and CLI interface."""

import argparse
import sys

from .config import (
    AppConfig,
    load_config,
    get_development_config,
    get_production_config,
    get_testing_config,
    validate_config
)
from .core.logging import get_logger, setup_logging


def create_argument_parser() -> argparse.ArgumentParser:
    """Create command line argument parser."""
    parser = argparse.ArgumentParser(
        prog="closureflow",
        description="ClosureFlow - a closure-table DAG workflow engine"
    )

    parser.add_argument("--host", help="Host to bind the server to")
    parser.add_argument("--port", type=int, help="Port to bind the server to")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload for development")
    parser.add_argument(
        "--env",
        choices=["development", "production", "testing"],
        help="Environment configuration preset"
    )
    parser.add_argument("--config", help="Path to a .env configuration file")
    parser.add_argument("--database-url", help="Database connection URL")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level"
    )
    parser.add_argument("--log-file", help="Path to log file")
    parser.add_argument("--debug", action="store_true", help="Enable debug mode")
    parser.add_argument("--action-base-url", help="Base URL for relative task actions")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    run_parser = subparsers.add_parser("run", help="Run the workflow engine server")
    run_parser.add_argument("--workers", type=int, default=1, help="Number of worker processes (default: 1)")

    db_parser = subparsers.add_parser("db", help="Database management commands")
    db_subparsers = db_parser.add_subparsers(dest="db_command", help="Database commands")
    db_subparsers.add_parser("init", help="Create database tables")
    db_subparsers.add_parser("migrate", help="Create missing tables and apply backend tuning")
    db_subparsers.add_parser("reset", help="Drop and recreate all tables")

    config_parser = subparsers.add_parser("config", help="Configuration management")
    config_subparsers = config_parser.add_subparsers(dest="config_command", help="Config commands")
    config_subparsers.add_parser("show", help="Show current configuration")
    config_subparsers.add_parser("validate", help="Validate configuration")

    return parser


def load_configuration(args: argparse.Namespace) -> AppConfig:
    """Load configuration based on command line arguments."""
    if args.env == "development":
        config = get_development_config()
    elif args.env == "production":
        config = get_production_config()
    elif args.env == "testing":
        config = get_testing_config()
    else:
        config = load_config(args.config)

    overrides = {
        "host": args.host,
        "port": args.port,
        "database_url": args.database_url,
        "log_level": args.log_level,
        "log_file": args.log_file,
        "action_base_url": args.action_base_url,
    }
    updates = {key: value for key, value in overrides.items() if value is not None}
    if args.reload:
        updates["reload"] = True
    if args.debug:
        updates["debug"] = True

    # Re-validate so CLI overrides go through the same field validators
    return AppConfig.model_validate({**config.model_dump(), **updates})


def run_server(config: AppConfig, workers: int = 1):
    """Run the workflow engine server."""
    import uvicorn
    from .factory import create_app

    logger = get_logger(__name__)
    logger.info(f"Starting server with {workers} worker(s)")

    uvicorn_config = config.get_uvicorn_config()

    if workers > 1:
        uvicorn.run("closureflow.factory:create_app", factory=True, workers=workers, **uvicorn_config)
    else:
        uvicorn.run(create_app(config), **uvicorn_config)


def run_database_command(command: str, config: AppConfig):
    """Run database management commands."""
    from .storage.database import Database
    from .storage.migrations import run_migrations

    logger = get_logger(__name__)
    database = Database.from_config(config)
    try:
        if command == "init":
            logger.info("Initializing database tables...")
            database.create_tables()
            logger.info("Database tables created successfully")
        elif command == "migrate":
            run_migrations(database)
        elif command == "reset":
            logger.info("Resetting database...")
            database.drop_tables()
            run_migrations(database)
            logger.info("Database reset completed successfully")
    finally:
        database.dispose()


def show_configuration(config: AppConfig):
    """Show current configuration."""
    print("Current Configuration:")
    print(f"  App Name: {config.app_name}")
    print(f"  Version: {config.app_version}")
    print(f"  Debug: {config.debug}")
    print(f"  Host: {config.host}")
    print(f"  Port: {config.port}")
    print(f"  Database URL: {config.database_url}")
    print(f"  Log Level: {config.log_level.value}")
    print(f"  Execution Timeout: {config.execution_timeout}s")
    print(f"  Task Retry Attempts: {config.task_retry_max_attempts}")
    print(f"  Action Base URL: {config.action_base_url or '-'}")
    print(f"  Action Timeout: {config.action_timeout}s")


def validate_configuration_command(config: AppConfig):
    """Validate configuration and show results."""
    try:
        validate_config(config)
    except ValueError as e:
        print("Configuration validation: FAILED")
        print(f"Error: {e}")
        sys.exit(1)
    print("Configuration validation: PASSED")


def main(argv=None):
    """Main entry point for the application."""
    parser = create_argument_parser()
    args = parser.parse_args(argv)

    try:
        config = load_configuration(args)
        validate_config(config)
    except ValueError as e:
        print(f"Error: {e}")
        sys.exit(1)

    setup_logging(
        level=config.log_level.value,
        log_file=config.log_file,
        log_format=config.log_format,
        structured=config.log_structured
    )

    if args.command == "run" or args.command is None:
        run_server(config, getattr(args, "workers", 1))
    elif args.command == "db":
        if not args.db_command:
            print("Database command required. Use --help for options.")
            sys.exit(1)
        run_database_command(args.db_command, config)
    elif args.command == "config":
        if args.config_command == "show":
            show_configuration(config)
        elif args.config_command == "validate":
            validate_configuration_command(config)
        else:
            print("Configuration command required. Use --help for options.")
            sys.exit(1)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
