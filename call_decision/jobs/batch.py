"""
Batch classification.

Classifies many calls concurrently. Each call is independent: one malformed
transcript produces a failed result for that call and never stops the batch.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

from ..core.exceptions import CallDecisionException, MalformedTranscriptError
from ..engine.decision_engine import DecisionEngine


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CallInput:
    """One call to classify (error is set when its file could not be loaded)."""

    call_id: str
    raw_turns: List[Dict[str, Any]]
    source: Optional[str] = None
    error: Optional[str] = None


def parse_call_payload(payload: Any, default_call_id: str = "") -> CallInput:
    """
    Accept either a bare turn list or an object with a transcript.

    Object form: {"call_id" | "conversation_id": str, "transcript": [...]}

    Raises:
        MalformedTranscriptError: If no turn list can be found
    """
    if isinstance(payload, list):
        return CallInput(call_id=default_call_id, raw_turns=payload)

    if isinstance(payload, dict):
        turns = payload.get("transcript")
        if not isinstance(turns, list):
            raise MalformedTranscriptError("Call object has no 'transcript' list")
        call_id = payload.get("call_id") or payload.get("conversation_id") or default_call_id
        return CallInput(call_id=str(call_id), raw_turns=turns)

    raise MalformedTranscriptError(f"Expected a turn list or a call object, got {type(payload).__name__}")


def load_call_file(path: Union[str, Path], call_id: Optional[str] = None) -> CallInput:
    """
    Load a call from a JSON file.

    Args:
        path: JSON file path
        call_id: Call id override (default: from the file, else the file stem)

    Raises:
        MalformedTranscriptError: If the file is not valid JSON or has no transcript
    """
    path = Path(path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            payload = json.load(f)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise MalformedTranscriptError(f"{path.name} is not valid JSON: {e}") from e

    call = parse_call_payload(payload, default_call_id=path.stem)
    return CallInput(call_id=call_id or call.call_id or path.stem, raw_turns=call.raw_turns, source=str(path))


class BatchClassifier:
    """
    Concurrent classifier for many calls.

    Usage:
        batch = BatchClassifier(engine, max_concurrent=5)
        results = await batch.classify_all(calls)
    """

    def __init__(self, engine: DecisionEngine, max_concurrent: int = 5):
        """
        Initialize batch classifier.

        Args:
            engine: Decision engine shared by all calls
            max_concurrent: Maximum calls classified at the same time
        """
        self.engine = engine
        self.max_concurrent = max(1, max_concurrent)
        self.logger = logging.getLogger(self.__class__.__name__)

    @staticmethod
    def load_directory(directory: Union[str, Path]) -> List[CallInput]:
        """
        Load every *.json file of a directory, sorted by name.

        A file that cannot be loaded is kept as a CallInput carrying the error,
        so it is reported as a failed call instead of stopping the batch.
        """
        calls = []
        for path in sorted(Path(directory).glob("*.json")):
            try:
                calls.append(load_call_file(path))
            except MalformedTranscriptError as e:
                logger.warning(f"Could not load call file {path.name}: {e}")
                calls.append(CallInput(call_id=path.stem, raw_turns=[], source=str(path), error=str(e)))
        return calls

    async def classify_all(self, calls: Sequence[CallInput], use_oracle: Optional[bool] = None) -> List[Dict[str, Any]]:
        """
        Classify all calls concurrently.

        Args:
            calls: Calls to classify
            use_oracle: Override the configured oracle setting

        Returns:
            One result dictionary per call (see _create_output_data)
        """
        semaphore = asyncio.Semaphore(self.max_concurrent)

        async def run(call: CallInput) -> Dict[str, Any]:
            async with semaphore:
                return await self.classify_one(call, use_oracle)

        self.logger.info(f"Classifying {len(calls)} calls (max concurrent: {self.max_concurrent})")
        results = await asyncio.gather(*(run(call) for call in calls))

        succeeded = sum(1 for r in results if r["success"])
        self.logger.info(f"✓ Batch complete: {succeeded}/{len(results)} classified")
        return list(results)

    async def classify_one(self, call: CallInput, use_oracle: Optional[bool] = None) -> Dict[str, Any]:
        if call.error:
            return self._create_output_data(False, call.error, call_id=call.call_id, source=call.source)

        try:
            decision = await self.engine.classify(call.raw_turns, call.call_id, use_oracle=use_oracle)
        except CallDecisionException as e:
            self.logger.error(f"[{call.call_id}] classification failed: {e}")
            return self._create_output_data(False, str(e), call_id=call.call_id, source=call.source)

        return self._create_output_data(
            True,
            f"{decision.primary_incident.tipo} / {decision.primary_incident.motivo}",
            data=decision.to_dict(),
            call_id=call.call_id,
            source=call.source,
        )

    def _create_output_data(
        self, success: bool, message: str, data: Optional[Dict[str, Any]] = None, **kwargs
    ) -> Dict[str, Any]:
        """
        Create standardized result dictionary.

        Args:
            success: Whether classification succeeded
            message: Result message
            data: Decision dictionary
            **kwargs: Additional key-value pairs
        """
        output = {
            "success": success,
            "message": message,
            "timestamp": datetime.now(timezone.utc).replace(tzinfo=None).isoformat(),
        }
        if data:
            output["data"] = data
        output.update(kwargs)
        return output
