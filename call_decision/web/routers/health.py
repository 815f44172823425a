"""
Health Check Router

Service health monitoring endpoints.
"""

import logging
from datetime import datetime

from fastapi import APIRouter, Request


logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
async def health_check():
    """
    Basic health check.

    Returns:
        Health status
    """
    return {
        "status": "healthy",
        "timestamp": datetime.now().isoformat(),
        "service": "call-decision-engine",
    }


@router.get("/health/detailed")
async def detailed_health_check(request: Request):
    """
    Detailed health check with component status.

    Returns:
        Taxonomy snapshot and oracle status
    """
    config = request.app.state.config
    engine = request.app.state.engine
    taxonomy = request.app.state.taxonomy_store.snapshot()

    oracle_status = "disabled"
    if config.engine.use_oracle:
        oracle_status = "configured" if engine.oracle is not None else "degraded"

    return {
        "status": "healthy",
        "timestamp": datetime.now().isoformat(),
        "components": {
            "taxonomy": {"status": "healthy", "entries": len(taxonomy), "source": taxonomy.source},
            "oracle": {
                "status": oracle_status,
                "gemini": config.gemini.is_configured(),
                "claude": config.claude.is_configured(),
            },
        },
    }
