"""
Calls Router

Classification endpoint.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from ...core.exceptions import MalformedTranscriptError
from ..app import limiter


logger = logging.getLogger(__name__)

router = APIRouter()


class ClassifyRequest(BaseModel):
    """Classification request body."""
    call_id: str = ""
    transcript: List[Dict[str, Any]]
    use_oracle: Optional[bool] = None
    include_signals: bool = False


@router.post("/classify")
@limiter.limit("30/minute")  # Each call may hit the paid oracle
async def classify_call(request: Request, body: ClassifyRequest):
    """
    Classify one call transcript.

    Returns:
        Decision dictionary

    Raises:
        HTTPException 422: If the transcript is malformed
    """
    engine = request.app.state.engine
    try:
        decision = await engine.classify(body.transcript, body.call_id, use_oracle=body.use_oracle)
    except MalformedTranscriptError as e:
        logger.warning(f"[{body.call_id}] rejected malformed transcript: {e}")
        raise HTTPException(status_code=422, detail=str(e))

    return decision.to_dict(include_signals=body.include_signals)
