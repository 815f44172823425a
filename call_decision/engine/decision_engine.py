"""
Decision Engine

Classifies one call end to end:

    raw turns -> Transcript -> signals (+ oracle proposal) -> phases
              -> primary + secondaries -> data, narrative, policy -> validated Decision

The oracle is the only suspension point. It runs in a worker thread under a
timeout; when it is unreachable the decision is made from rules alone with
reduced confidence.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..core.config import ConfigManager, EngineConfig
from ..core.exceptions import InvariantViolationError, OracleUnavailableError
from ..taxonomy.store import FALLBACK_UNRESOLVED, Taxonomy, TaxonomyStore, get_taxonomy_store
from ..transcript.models import Speaker, Transcript
from ..transcript.normalizer import TranscriptNormalizer
from ..utils.text_utils import fold
from .assembly import assemble_secondaries
from .extractor import DataExtractor
from .models import ORIGIN_ORACLE, Decision, IncidentCandidate, PhaseOutcome, RuleFamily, SignalMatch
from .narrative import NarrativeComposer
from .patterns import detect_ramo
from .phases import DEFAULT_PHASES, FALLBACK_CONFIDENCE, Phase, PhaseContext, run_phases
from .policy import requires_ticket, ticket_priority
from .signals import SignalExtractor
from .validator import DecisionValidator


logger = logging.getLogger(__name__)

AGREEMENT_BONUS = 0.05
DISAGREEMENT_PENALTY = 0.05
MAX_AGREED_CONFIDENCE = 0.99
DEGRADED_FACTOR = 0.8
MANUAL_REVIEW_PHASE = "manual_review"


class DecisionEngine:
    """
    Call classification engine.

    Usage:
        engine = DecisionEngine.from_config(get_config())
        decision = await engine.classify(raw_turns, call_id="conv_123")
        print(decision.to_dict())
    """

    def __init__(
        self,
        taxonomy_store: Optional[TaxonomyStore] = None,
        oracle=None,
        config: Optional[EngineConfig] = None,
        phases: Sequence[Phase] = DEFAULT_PHASES,
    ):
        """
        Initialize the engine.

        Args:
            taxonomy_store: Taxonomy snapshot holder (default: process-wide store)
            oracle: Classification oracle (anything with propose(transcript, taxonomy))
            config: Engine configuration
            phases: Ordered decision phases
        """
        self.config = config or EngineConfig()
        self.store = taxonomy_store or get_taxonomy_store(self.config.taxonomy_path)
        self.oracle = oracle
        self.phases = tuple(phases)

        self.normalizer = TranscriptNormalizer(timestamp_tolerance=self.config.timestamp_tolerance_seconds)
        self.extractor = DataExtractor()
        self.composer = NarrativeComposer()

    @classmethod
    def from_config(cls, config: ConfigManager, taxonomy_store: Optional[TaxonomyStore] = None) -> "DecisionEngine":
        """Build an engine (and its oracle, if enabled) from the configuration."""
        oracle = None
        if config.engine.use_oracle and config.oracle_configured:
            from ..ai.oracle import CallOracle
            oracle = CallOracle.from_config(config)
        elif config.engine.use_oracle:
            logger.warning("use_oracle is enabled but no oracle API key is configured; decisions will be degraded")

        store = taxonomy_store or get_taxonomy_store(config.engine.taxonomy_path)
        return cls(taxonomy_store=store, oracle=oracle, config=config.engine)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def classify(
        self,
        raw_turns: Sequence[Dict[str, Any]],
        call_id: str = "",
        use_oracle: Optional[bool] = None,
    ) -> Decision:
        """
        Classify one call.

        Args:
            raw_turns: Raw ordered turn list
            call_id: Opaque call identifier
            use_oracle: Override the configured oracle setting for this call

        Returns:
            Validated Decision (a manual-review Decision if validation failed)

        Raises:
            MalformedTranscriptError: If the transcript is structurally invalid
        """
        taxonomy = self.store.snapshot()
        transcript = self.normalizer.normalize(raw_turns, call_id)
        return await self.classify_transcript(transcript, taxonomy, use_oracle=use_oracle)

    def classify_sync(
        self,
        raw_turns: Sequence[Dict[str, Any]],
        call_id: str = "",
        use_oracle: Optional[bool] = None,
    ) -> Decision:
        """Synchronous wrapper around classify()."""
        return asyncio.run(self.classify(raw_turns, call_id, use_oracle=use_oracle))

    async def classify_transcript(
        self,
        transcript: Transcript,
        taxonomy: Optional[Taxonomy] = None,
        use_oracle: Optional[bool] = None,
    ) -> Decision:
        """Classify an already normalized transcript."""
        taxonomy = taxonomy or self.store.snapshot()

        signals = SignalExtractor(taxonomy).extract(transcript)
        candidate, degraded = await self._consult_oracle(transcript, taxonomy, use_oracle)

        decision = self._decide(transcript, taxonomy, signals, candidate, degraded)
        try:
            return DecisionValidator(taxonomy).validate(decision)
        except InvariantViolationError as e:
            logger.error(
                f"[{transcript.call_id}] {e} | phase={decision.phase} "
                f"signals={[s.to_dict() for s in decision.signals]}"
            )
            return self._manual_review(transcript, taxonomy, decision)

    # ------------------------------------------------------------------
    # Oracle
    # ------------------------------------------------------------------

    async def _consult_oracle(self, transcript: Transcript, taxonomy: Taxonomy, use_oracle: Optional[bool]):
        """
        Ask the oracle for a proposal.

        Returns:
            (candidate or None, degraded flag)
        """
        enabled = self.config.use_oracle if use_oracle is None else use_oracle
        if not enabled:
            return None, False

        if self.oracle is None:
            logger.warning(f"[{transcript.call_id}] oracle not configured, classifying with rules only (degraded)")
            return None, True

        try:
            candidate = await asyncio.wait_for(
                asyncio.to_thread(self.oracle.propose, transcript, taxonomy),
                timeout=self.config.oracle_timeout_seconds,
            )
            return candidate, False
        except asyncio.TimeoutError:
            logger.warning(
                f"[{transcript.call_id}] oracle timed out after {self.config.oracle_timeout_seconds}s (degraded)"
            )
        except OracleUnavailableError as e:
            logger.warning(f"[{transcript.call_id}] oracle unavailable: {e} (degraded)")
        except Exception as e:
            logger.error(f"[{transcript.call_id}] unexpected oracle error: {e} (degraded)", exc_info=True)
        return None, True

    @staticmethod
    def _oracle_signals(candidate) -> Tuple[SignalMatch, ...]:
        if candidate is None:
            return ()
        keys = ([candidate.primary] if candidate.primary else []) + list(candidate.secondaries)
        return tuple(
            SignalMatch(
                rule_family=RuleFamily.SPECIFIC_MANAGEMENT,
                matched_span="",
                strength=candidate.confidence,
                turn_index=-1,
                topic="oracle_primary" if i == 0 and candidate.primary else "oracle_secondary",
                entry_key=key,
                origin=ORIGIN_ORACLE,
            )
            for i, key in enumerate(keys)
        )

    # ------------------------------------------------------------------
    # Decision
    # ------------------------------------------------------------------

    def _decide(
        self,
        transcript: Transcript,
        taxonomy: Taxonomy,
        signals: List[SignalMatch],
        candidate,
        degraded: bool,
    ) -> Decision:
        all_signals = tuple(signals) + self._oracle_signals(candidate)

        oracle_entry = None
        if candidate is not None and candidate.primary:
            entry = taxonomy.resolve(*candidate.primary)
            if entry.key != FALLBACK_UNRESOLVED:
                oracle_entry = entry

        ctx = PhaseContext(
            transcript=transcript,
            taxonomy=taxonomy,
            signals=all_signals,
            oracle_entry=oracle_entry,
            oracle_confidence=candidate.confidence if candidate is not None else 0.0,
        )
        outcome = run_phases(ctx, self.phases)

        lead = self.extractor.lead_info(transcript)
        ramo = lead.get("ramo") or detect_ramo(fold(transcript.full_text(Speaker.USER)))
        is_recall, related = self._recall(signals, candidate)

        primary = IncidentCandidate(
            entry=outcome.entry,
            ramo=ramo if outcome.entry.requires_branch else None,
            is_recall=is_recall,
            supporting_signals=outcome.signals,
            confidence=outcome.confidence,
            related_incident=related,
        )
        primary = primary.rescored(self._reconcile(outcome, candidate, degraded))

        secondaries = assemble_secondaries(
            outcome, signals, transcript, taxonomy, limit=self.config.max_secondary_incidents, ramo=ramo
        )
        if degraded:
            secondaries = [s.rescored(s.confidence * DEGRADED_FACTOR) for s in secondaries]

        oracle_data = candidate.extracted_data if candidate is not None else None
        extracted = self.extractor.extract(transcript, [primary] + secondaries, oracle_data)

        narrative = self.composer.compose(
            transcript, primary, secondaries, extracted, phase=outcome.phase, fallback=outcome.fallback
        )
        notes = self.composer.ticket_notes(primary, secondaries, extracted, primary.confidence)

        decision = Decision(
            call_id=transcript.call_id,
            primary_incident=primary,
            secondary_incidents=tuple(secondaries),
            extracted_data=extracted,
            narrative=narrative,
            ticket_notes=notes,
            overall_confidence=primary.confidence,
            priority=ticket_priority(primary.entry, primary.confidence, fallback=outcome.fallback),
            requires_ticket=requires_ticket(primary.entry, primary.confidence),
            phase=outcome.phase,
            oracle_degraded=degraded,
            client_type=self.extractor.client_type(transcript, primary.entry),
            lead_info=lead,
            signals=all_signals,
        )

        logger.info(
            f"[{transcript.call_id}] ✓ classified as {primary.entry} "
            f"(phase: {outcome.phase}, confidence: {primary.confidence:.2f}, "
            f"managements: {decision.total_managements}, degraded: {degraded})"
        )
        return decision

    @staticmethod
    def _recall(signals: Sequence[SignalMatch], candidate) -> Tuple[bool, Optional[str]]:
        """Recall flag and related incident: rules first, then the oracle."""
        recalls = [s for s in signals if s.rule_family is RuleFamily.RECALL]
        if recalls:
            codes = [s.value for s in recalls if s.value]
            return True, codes[-1] if codes else None
        if candidate is not None and candidate.is_recall:
            return True, candidate.related_incident
        return False, None

    @staticmethod
    def _reconcile(outcome: PhaseOutcome, candidate, degraded: bool) -> float:
        """Adjust the phase confidence with the oracle's opinion."""
        confidence = outcome.confidence
        if degraded:
            return confidence * DEGRADED_FACTOR

        # Oracle-only primaries and the fallback have nothing to reconcile against
        if candidate is None or candidate.primary is None or not outcome.signals:
            return confidence

        if candidate.primary == outcome.entry.key:
            return min(confidence + AGREEMENT_BONUS, MAX_AGREED_CONFIDENCE)
        return max(confidence - DISAGREEMENT_PENALTY, 0.0)

    def _manual_review(self, transcript: Transcript, taxonomy: Taxonomy, failed: Decision) -> Decision:
        """Replacement decision for a call whose decision failed validation."""
        primary = IncidentCandidate(entry=taxonomy.fallback, confidence=FALLBACK_CONFIDENCE)
        extracted = {
            key: value for key, value in failed.extracted_data.items()
            if isinstance(value, str) and value.strip()
        }
        return Decision(
            call_id=transcript.call_id,
            primary_incident=primary,
            extracted_data=extracted,
            narrative=self.composer.compose(transcript, primary, (), extracted, phase=MANUAL_REVIEW_PHASE),
            ticket_notes=self.composer.ticket_notes(primary, (), extracted, FALLBACK_CONFIDENCE),
            overall_confidence=FALLBACK_CONFIDENCE,
            priority="low",
            requires_ticket=requires_ticket(primary.entry, FALLBACK_CONFIDENCE, manual_review=True),
            phase=MANUAL_REVIEW_PHASE,
            oracle_degraded=failed.oracle_degraded,
            requires_manual_review=True,
            client_type=failed.client_type,
            lead_info=failed.lead_info,
            signals=failed.signals,
        )
