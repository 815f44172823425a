"""
Classification oracle.

Asks an LLM for a taxonomy-constrained classification of a call. Gemini is
tried first, Claude Haiku is the fallback. The reply is parsed defensively and
every pair is resolved against the taxonomy before it leaves this module.

The oracle is synchronous; the decision engine runs it in a worker thread
under a timeout.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from ..core.config import ConfigManager
from ..core.exceptions import ClaudeAPIError, GeminiAPIError, OracleResponseError, OracleUnavailableError
from ..taxonomy.store import Taxonomy, TaxonomyKey
from ..transcript.models import Speaker, Transcript
from ..utils.text_utils import truncate_text
from .prompts import CLASSIFICATION_SYSTEM_PROMPT, build_classification_prompt


logger = logging.getLogger(__name__)

SPEAKER_LABELS = {
    Speaker.AGENT: "Agente",
    Speaker.USER: "Cliente",
    Speaker.TOOL_EVENT: "Sistema",
}
MAX_TOOL_RESULT_CHARS = 2000


@dataclass(frozen=True)
class OracleCandidate:
    """
    Oracle proposal for one call, already resolved against the taxonomy.

    Attributes:
        primary: Proposed primary pair (None if the reply had none)
        secondaries: Proposed secondary pairs
        confidence: Oracle's self-reported confidence (0..1)
        is_recall: Oracle thinks the caller is following up a previous case
        related_incident: Incident code of the previous case, if quoted
        extracted_data: Oracle's datosExtraidos (string values only)
        raw: Raw reply text
        backend: Model that produced the reply
    """

    primary: Optional[TaxonomyKey] = None
    secondaries: Tuple[TaxonomyKey, ...] = ()
    confidence: float = 0.0
    is_recall: bool = False
    related_incident: Optional[str] = None
    extracted_data: Dict[str, str] = field(default_factory=dict)
    raw: str = ""
    backend: str = ""


def parse_json_response(content: str) -> Dict[str, Any]:
    """
    Parse a JSON object from an LLM reply, handling edge cases.

    - Markdown code fences are removed
    - Text before the first "{" and after the last "}" is dropped

    Raises:
        OracleResponseError: If no JSON object can be parsed
    """
    if not content:
        raise OracleResponseError("Empty oracle response")

    if "```json" in content:
        content = content.split("```json")[1].split("```")[0].strip()
    elif "```" in content:
        content = content.split("```")[1].split("```")[0].strip()

    start = content.find("{")
    end = content.rfind("}")
    if start == -1 or end < start:
        raise OracleResponseError(f"No JSON object in oracle response: {truncate_text(content, 200)!r}")

    try:
        data = json.loads(content[start:end + 1])
    except json.JSONDecodeError as e:
        raise OracleResponseError(f"Invalid JSON in oracle response: {e}") from e

    if not isinstance(data, dict):
        raise OracleResponseError("Oracle response is not a JSON object")
    return data


def format_transcript(transcript: Transcript) -> str:
    """Format transcript turns into readable text for the prompt."""
    formatted = []
    for turn in transcript.turns:
        label = SPEAKER_LABELS.get(turn.speaker, turn.speaker.value)
        prefix = f"[{turn.timestamp:.0f}s] " if turn.timestamp is not None else ""
        if turn.text:
            formatted.append(f"{prefix}{label}: {turn.text}")
        for call in turn.tool_calls:
            formatted.append(f"{prefix}[Tool Call: {call.tool_name}] {json.dumps(call.parameters, ensure_ascii=False)}")
        for result in turn.tool_results:
            raw = result.raw or json.dumps(result.payload, ensure_ascii=False)
            formatted.append(f"{prefix}[Tool Result: {result.tool_name}] {truncate_text(raw, MAX_TOOL_RESULT_CHARS)}")
    return "\n\n".join(formatted)


def format_taxonomy(taxonomy: Taxonomy) -> str:
    return "\n".join(f"- {entry.tipo} | {entry.motivo}" for entry in taxonomy.entries())


class CallOracle:
    """
    LLM classification oracle with Gemini -> Claude fallback.

    Usage:
        oracle = CallOracle.from_config(get_config())
        candidate = oracle.propose(transcript, taxonomy)
    """

    def __init__(self, gemini_client=None, claude_client=None):
        """
        Initialize the oracle.

        Args:
            gemini_client: Primary backend (anything with generate_text)
            claude_client: Fallback backend (anything with generate_text)
        """
        self.gemini_client = gemini_client
        self.claude_client = claude_client

    @classmethod
    def from_config(cls, config: ConfigManager) -> "CallOracle":
        """Build the oracle with the backends that have credentials."""
        gemini_client = None
        claude_client = None
        max_retries = config.engine.oracle_max_retries

        if config.gemini.is_configured():
            from .gemini_client import GeminiClient
            gemini_client = GeminiClient(config.gemini, max_retries=max_retries)
        if config.claude.is_configured():
            from .claude_client import ClaudeClient
            claude_client = ClaudeClient(config.claude, max_retries=max_retries)

        return cls(gemini_client=gemini_client, claude_client=claude_client)

    @property
    def is_configured(self) -> bool:
        return self.gemini_client is not None or self.claude_client is not None

    def propose(self, transcript: Transcript, taxonomy: Taxonomy) -> OracleCandidate:
        """
        Ask the oracle for a classification.

        Args:
            transcript: Canonical transcript
            taxonomy: Taxonomy snapshot (prompt listing and pair resolution)

        Returns:
            OracleCandidate

        Raises:
            OracleUnavailableError: If no backend produced a usable reply
        """
        if not self.is_configured:
            raise OracleUnavailableError("No oracle backend configured")

        user_prompt = build_classification_prompt(format_taxonomy(taxonomy), format_transcript(transcript))

        backends = [("gemini", self.gemini_client), ("claude", self.claude_client)]
        last_error: Optional[Exception] = None
        for name, client in backends:
            if client is None:
                continue
            try:
                response = client.generate_text(system_prompt=CLASSIFICATION_SYSTEM_PROMPT, user_prompt=user_prompt)
                content = response.get("content", "")
                data = parse_json_response(content)
                candidate = self._build_candidate(data, taxonomy, content, response.get("model", name))
                logger.info(
                    f"[{transcript.call_id}] ✓ oracle ({name}) proposed {candidate.primary} "
                    f"(confidence: {candidate.confidence:.2f})"
                )
                return candidate
            except (GeminiAPIError, ClaudeAPIError, OracleResponseError) as e:
                last_error = e
                logger.warning(f"[{transcript.call_id}] oracle backend {name} failed: {e}")

        raise OracleUnavailableError(f"All oracle backends failed: {last_error}")

    def _build_candidate(self, data: Dict[str, Any], taxonomy: Taxonomy, raw: str, backend: str) -> OracleCandidate:
        primary = self._resolve_pair(data.get("incidenciaPrincipal"), taxonomy)

        secondaries: List[TaxonomyKey] = []
        for item in data.get("incidenciasSecundarias") or []:
            key = self._resolve_pair(item, taxonomy)
            if key and key != primary and key not in secondaries:
                secondaries.append(key)

        try:
            confidence = float(data.get("confidence", 0.0) or 0.0)
        except (TypeError, ValueError):
            confidence = 0.0

        related = data.get("incidenciaRelacionada")
        extracted = data.get("datosExtraidos") or {}
        if not isinstance(extracted, dict):
            extracted = {}

        return OracleCandidate(
            primary=primary,
            secondaries=tuple(secondaries),
            confidence=max(0.0, min(1.0, confidence)),
            is_recall=bool(data.get("esRellamada", False)),
            related_incident=str(related).strip() if related else None,
            extracted_data={k: str(v).strip() for k, v in extracted.items() if v not in (None, "") and str(v).strip()},
            raw=raw,
            backend=backend,
        )

    @staticmethod
    def _resolve_pair(item: Any, taxonomy: Taxonomy) -> Optional[TaxonomyKey]:
        if not isinstance(item, dict):
            return None
        tipo = str(item.get("tipo") or "").strip()
        motivo = str(item.get("motivo") or "").strip()
        if not tipo or not motivo:
            return None
        return taxonomy.resolve(tipo, motivo).key
