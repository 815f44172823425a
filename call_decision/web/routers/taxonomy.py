"""
Taxonomy Router

Read the current taxonomy snapshot and reload it.
"""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request

from ...core.exceptions import TaxonomyLoadError
from ..app import limiter


logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("")
async def list_taxonomy(request: Request, tipo: Optional[str] = Query(None)):
    """
    List taxonomy entries.

    Args:
        tipo: Only entries of this incident type
    """
    taxonomy = request.app.state.taxonomy_store.snapshot()
    entries = taxonomy.describe()
    if tipo:
        entries = [e for e in entries if e["tipo"] == tipo]
    return {"source": taxonomy.source, "count": len(entries), "entries": entries}


@router.post("/reload")
@limiter.limit("5/minute")
async def reload_taxonomy(request: Request):
    """
    Reload the taxonomy from its configured source.

    The current snapshot is kept if loading fails. Load errors are logged,
    not returned to the caller.

    Raises:
        HTTPException 400: If the new taxonomy cannot be loaded
    """
    store = request.app.state.taxonomy_store
    try:
        taxonomy = store.reload()
    except TaxonomyLoadError as e:
        logger.error(f"Taxonomy reload via API failed: {e}")
        raise HTTPException(status_code=400, detail="Taxonomy reload failed; current taxonomy kept")

    logger.info(f"Taxonomy reloaded via API ({len(taxonomy)} entries)")
    return {"status": "reloaded", "entries": len(taxonomy), "source": taxonomy.source}
