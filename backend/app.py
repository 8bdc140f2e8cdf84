"""FastAPI backend hosting the sales sync orchestrator."""

from __future__ import annotations

import importlib
import logging
from contextlib import asynccontextmanager
from typing import Any, Callable

from fastapi import FastAPI

import config
from routes import orchestrator_router
from scheduler import (
    ConfigurationMissingError,
    PostingGate,
    PostingPipeline,
    SourceProcessor,
    SQLiteStateStore,
    StateStore,
    SyncOrchestrator,
)

# Configure logging
logger = logging.getLogger(__name__)


def load_factory(path: str, setting: str) -> Callable[[], Any]:
    """Resolve a "package.module:callable" import path.

    Args:
        path: Import path of a zero-argument factory
        setting: Name of the environment variable the path came from

    Returns:
        The factory callable
    """
    if not path:
        raise ConfigurationMissingError(f"{setting} is not configured")

    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise ConfigurationMissingError(
            f"{setting} must look like 'package.module:factory', got {path!r}"
        )

    module = importlib.import_module(module_name)
    try:
        return getattr(module, attr)
    except AttributeError as e:
        raise ConfigurationMissingError(
            f"{setting}: {module_name} has no attribute {attr!r}"
        ) from e


def create_app(
    source_processor: SourceProcessor | None = None,
    posting_pipeline: PostingPipeline | None = None,
    state_store: StateStore | None = None,
    posting_gate: PostingGate | None = None,
    **orchestrator_options: Any,
) -> FastAPI:
    """Build the application.

    Collaborators not passed in are built on startup: the state store from
    ``DB_PATH``, the gate from ``AUTO_POSTING_ENABLED`` and the source and
    posting clients from their configured factories.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Create the orchestrator and restore its persisted state."""
        source = source_processor or load_factory(
            config.SOURCE_PROCESSOR_FACTORY, "SOURCE_PROCESSOR_FACTORY"
        )()
        pipeline = posting_pipeline or load_factory(
            config.POSTING_PIPELINE_FACTORY, "POSTING_PIPELINE_FACTORY"
        )()

        orchestrator = SyncOrchestrator(
            source_processor=source,
            posting_pipeline=pipeline,
            state_store=state_store or SQLiteStateStore(config.DB_PATH),
            posting_gate=posting_gate or PostingGate(config.AUTO_POSTING_ENABLED),
            **orchestrator_options,
        )
        app.state.orchestrator = orchestrator
        orchestrator.initialize_from_store()

        yield

        try:
            orchestrator.shutdown()
            logger.info("Orchestrator shutdown complete")
        except Exception as e:
            logger.warning(f"Orchestrator shutdown error: {e}")
        app.state.orchestrator = None

    app = FastAPI(
        title="Sales Sync Orchestrator",
        description="Scheduled sales and registration sync with rate-gated auto-posting",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.include_router(orchestrator_router)
    return app


app = create_app()
