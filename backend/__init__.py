"""Sales Sync Orchestrator Backend Package.

This package provides the FastAPI backend that schedules sales and
registration syncs and hands new records to the auto-posting pipeline.

Usage:
    # Development (from project root):
    PYTHONPATH=backend uvicorn app:app --reload --port 8080

Modules:
    app: FastAPI application entry point
    config: Environment-driven settings
    scheduler: APScheduler-driven sync orchestration
    routes: Orchestrator control API
"""

__version__ = "0.1.0"
