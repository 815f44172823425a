"""
FastAPI Application Factory

Creates and configures the HTTP API for the decision engine.
"""

import logging
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from ..core.config import ConfigManager, get_config
from ..core.logging_config import setup_logging
from ..engine.decision_engine import DecisionEngine
from ..taxonomy.store import TaxonomyStore, get_taxonomy_store


logger = logging.getLogger(__name__)

# Rate limiter instance (shared across routes)
limiter = Limiter(key_func=get_remote_address)


def create_app(
    config: Optional[ConfigManager] = None,
    engine: Optional[DecisionEngine] = None,
    taxonomy_store: Optional[TaxonomyStore] = None,
) -> FastAPI:
    """
    Create and configure FastAPI application.

    Args:
        config: Configuration manager (default: global config)
        engine: Decision engine (default: built from config)
        taxonomy_store: Taxonomy store (default: the engine's store)

    Returns:
        Configured FastAPI app
    """
    config = config or get_config()
    if engine is None:
        store = taxonomy_store or get_taxonomy_store(config.engine.taxonomy_path)
        engine = DecisionEngine.from_config(config, taxonomy_store=store)

    app = FastAPI(
        title="Call Decision Engine",
        description="Classify insurance customer-service calls into ticket incidents",
        version="1.0.0",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
    )

    app.add_middleware(GZipMiddleware, minimum_size=1000)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    app.state.config = config
    app.state.engine = engine
    app.state.taxonomy_store = taxonomy_store or engine.store

    # Imported here to avoid circular imports (routers import the limiter)
    from .routers import calls, health, taxonomy

    app.include_router(health.router, prefix="/api", tags=["Health"])
    app.include_router(calls.router, prefix="/api/calls", tags=["Calls"])
    app.include_router(taxonomy.router, prefix="/api/taxonomy", tags=["Taxonomy"])

    logger.info("FastAPI application created successfully")
    return app


def run_server(host: str = "0.0.0.0", port: int = 8000, reload: bool = False, log_file: Optional[str] = None):
    """
    Run the FastAPI server using uvicorn.

    Args:
        host: Host to bind to
        port: Port to bind to
        reload: Enable auto-reload on code changes
        log_file: Log file path
    """
    config = get_config()
    setup_logging(log_level=config.engine.log_level, log_file=log_file or config.engine.log_file)

    logger.info(f"Starting web server on {host}:{port} (reload: {reload})")

    if reload:
        # Reload needs an import string so the worker can rebuild the app
        uvicorn.run("call_decision.web.app:create_app", factory=True, host=host, port=port, reload=True)
    else:
        uvicorn.run(create_app(config), host=host, port=port, log_level="info")


if __name__ == "__main__":
    run_server(reload=True)
