"""
Priority phases of the decision engine.

The hierarchy is an explicit ordered list of phase objects. Each phase is a
pure predicate over (transcript, signals) that either commits the primary
incident or returns None so the next phase can run.

    1. AIRejectionPhase          caller refuses automated handling
    2. IncompleteDataPhase       agent defers for missing data
    3. NonPolicyholderPhase      caller is not the policyholder
    4. HumanTransferPhase        live transfer vs. topic-specific override
    5. NormalClassificationPhase strongest specific request (or fallback)
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from ..taxonomy.store import (
    CLAIMS_HANDOFF,
    GENERIC_HANDOFF,
    NOT_POLICYHOLDER,
    REJECTS_AUTOMATION,
    Taxonomy,
    TaxonomyEntry,
)
from ..transcript.models import Speaker, Transcript
from .models import ORIGIN_RULES, PhaseOutcome, RuleFamily, SignalMatch


logger = logging.getLogger(__name__)


# Base confidence per committed outcome
AI_REJECTION_CONFIDENCE = 0.95
INCOMPLETE_DATA_CONFIDENCE = 0.85
NON_POLICYHOLDER_CONFIDENCE = 0.9
GENERIC_TRANSFER_CONFIDENCE = 0.8
FALLBACK_CONFIDENCE = 0.3

# Detectors that describe how the call went rather than what was requested;
# they never override a live transfer
OUTCOME_TOPICS = frozenset({"informational_query"})

# Requests a third party may make without the holder's identity
HOLDER_FREE_TOPICS = frozenset({"new_policy", "informational_query"})


def specific_confidence(strength: float) -> float:
    """Confidence of a primary backed by a specific-management match."""
    return 0.55 + 0.4 * min(strength, 1.0)


def oracle_confidence(value: float) -> float:
    """Confidence of a primary proposed only by the oracle."""
    return 0.4 + 0.3 * max(0.0, min(value, 1.0))


def rank_key(match: SignalMatch) -> Tuple[float, Tuple[int, int]]:
    """Highest strength wins; equal strength -> later mention wins."""
    return (round(match.strength, 6), match.mention_order)


@dataclass
class PhaseContext:
    """
    Inputs shared by all phases for one call.

    Attributes:
        transcript: Canonical transcript
        taxonomy: Taxonomy snapshot for this call
        signals: All signal matches (rules and oracle)
        oracle_entry: Oracle's proposed primary (already resolved), if any
        oracle_confidence: Oracle's self-reported confidence
    """

    transcript: Transcript
    taxonomy: Taxonomy
    signals: Sequence[SignalMatch] = field(default_factory=list)
    oracle_entry: Optional[TaxonomyEntry] = None
    oracle_confidence: float = 0.0

    def family(self, family: RuleFamily) -> List[SignalMatch]:
        return [s for s in self.signals if s.rule_family is family]

    @property
    def specific(self) -> List[SignalMatch]:
        """Rule-based specific-management matches."""
        return [
            s for s in self.signals
            if s.rule_family is RuleFamily.SPECIFIC_MANAGEMENT and s.origin == ORIGIN_RULES and s.entry_key
        ]

    def entry_of(self, match: SignalMatch) -> TaxonomyEntry:
        return self.taxonomy.get(*match.entry_key)

    def top_specific(self, matches: Optional[Sequence[SignalMatch]] = None) -> Optional[SignalMatch]:
        matches = self.specific if matches is None else list(matches)
        if not matches:
            return None
        return max(matches, key=rank_key)


class Phase(ABC):
    """A priority phase: commits the primary incident or passes."""

    name: str = "phase"

    @abstractmethod
    def evaluate(self, ctx: PhaseContext) -> Optional[PhaseOutcome]:
        """
        Evaluate the phase.

        Args:
            ctx: Phase context for the call

        Returns:
            PhaseOutcome if this phase commits the primary, None otherwise
        """
        pass

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.name}>"


class AIRejectionPhase(Phase):
    """Caller refuses automated handling: hard override, no secondaries."""

    name = "ai_rejection"

    def evaluate(self, ctx: PhaseContext) -> Optional[PhaseOutcome]:
        matches = ctx.family(RuleFamily.AI_REJECTION)
        if not matches:
            return None
        return PhaseOutcome(
            phase=self.name,
            entry=ctx.taxonomy.get(*REJECTS_AUTOMATION),
            confidence=AI_REJECTION_CONFIDENCE,
            signals=tuple(matches),
            allow_secondaries=False,
        )


class IncompleteDataPhase(Phase):
    """Agent defers for missing data: the topic's incomplete-data reason, no secondaries."""

    name = "incomplete_data"

    def evaluate(self, ctx: PhaseContext) -> Optional[PhaseOutcome]:
        matches = ctx.family(RuleFamily.INCOMPLETE_DATA)
        if not matches:
            return None

        topic_match = ctx.top_specific()
        topic_entry = ctx.entry_of(topic_match) if topic_match else None
        entry = ctx.taxonomy.incomplete_variant(topic_entry)

        signals = tuple(matches) + ((topic_match,) if topic_match else ())
        return PhaseOutcome(
            phase=self.name,
            entry=entry,
            confidence=INCOMPLETE_DATA_CONFIDENCE,
            signals=signals,
            consumed_topics=(topic_match.topic,) if topic_match else (),
            allow_secondaries=False,
        )


class NonPolicyholderPhase(Phase):
    """
    Caller is not the policyholder: forced transfer, no secondaries.

    Only requests that need the holder's identity are blocked. A caller who
    says "llamo de parte de mi madre" and only asks for a quote or for
    information passes on to the next phases; the agent stating that the
    caller is not the holder always commits.
    """

    name = "non_policyholder"

    def evaluate(self, ctx: PhaseContext) -> Optional[PhaseOutcome]:
        matches = ctx.family(RuleFamily.NON_POLICYHOLDER)
        if not matches:
            return None

        requests = ctx.specific
        caller_only = all(m.speaker is Speaker.USER for m in matches)
        if caller_only and requests and all(m.topic in HOLDER_FREE_TOPICS for m in requests):
            logger.info(
                f"[{ctx.transcript.call_id}] third-party caller with requests that need no holder identity "
                f"({sorted({m.topic for m in requests})}), not forcing transfer"
            )
            return None

        return PhaseOutcome(
            phase=self.name,
            entry=ctx.taxonomy.get(*NOT_POLICYHOLDER),
            confidence=NON_POLICYHOLDER_CONFIDENCE,
            signals=tuple(matches),
            allow_secondaries=False,
        )


class HumanTransferPhase(Phase):
    """
    Live transfer to a colleague.

    A specific request whose taxonomy reason is not human-only is more
    informative than the generic "le paso con un compañero" and wins. Otherwise
    the call is the transfer itself (claims transfers keep their own reason).
    """

    name = "human_transfer"

    def evaluate(self, ctx: PhaseContext) -> Optional[PhaseOutcome]:
        transfers = ctx.family(RuleFamily.HUMAN_TRANSFER)
        if not transfers:
            return None

        overrides = [
            m for m in ctx.specific
            if m.topic not in OUTCOME_TOPICS and not ctx.entry_of(m).human_only
        ]
        top = ctx.top_specific(overrides)
        if top is not None:
            return PhaseOutcome(
                phase=self.name,
                entry=ctx.entry_of(top),
                confidence=specific_confidence(top.strength),
                signals=(top,) + tuple(transfers),
                primary_match=top,
                consumed_topics=(top.topic,),
            )

        claims = [t for t in transfers if t.entry_key == CLAIMS_HANDOFF]
        key = CLAIMS_HANDOFF if claims else GENERIC_HANDOFF
        return PhaseOutcome(
            phase=self.name,
            entry=ctx.taxonomy.get(*key),
            confidence=GENERIC_TRANSFER_CONFIDENCE,
            signals=tuple(transfers),
            consumed_topics=tuple(t.topic for t in transfers),
            allow_secondaries=False,
        )


class NormalClassificationPhase(Phase):
    """
    No override: the strongest specific request is the primary.

    Without rule evidence the oracle's proposal is used; without that, the
    unresolved commercial call fallback. This phase always commits.
    """

    name = "normal_classification"

    def evaluate(self, ctx: PhaseContext) -> Optional[PhaseOutcome]:
        top = ctx.top_specific()
        if top is not None:
            return PhaseOutcome(
                phase=self.name,
                entry=ctx.entry_of(top),
                confidence=specific_confidence(top.strength),
                signals=(top,),
                primary_match=top,
                consumed_topics=(top.topic,),
            )

        if ctx.oracle_entry is not None:
            return PhaseOutcome(
                phase=self.name,
                entry=ctx.oracle_entry,
                confidence=oracle_confidence(ctx.oracle_confidence),
                allow_secondaries=not ctx.oracle_entry.human_only,
            )

        return PhaseOutcome(
            phase=self.name,
            entry=ctx.taxonomy.fallback,
            confidence=FALLBACK_CONFIDENCE,
            allow_secondaries=False,
            fallback=True,
        )


DEFAULT_PHASES: Tuple[Phase, ...] = (
    AIRejectionPhase(),
    IncompleteDataPhase(),
    NonPolicyholderPhase(),
    HumanTransferPhase(),
    NormalClassificationPhase(),
)


def run_phases(ctx: PhaseContext, phases: Sequence[Phase] = DEFAULT_PHASES) -> PhaseOutcome:
    """
    Evaluate phases in order; the first outcome commits the primary.

    Raises:
        RuntimeError: If no phase commits (the last phase must always commit)
    """
    for phase in phases:
        outcome = phase.evaluate(ctx)
        if outcome is not None:
            logger.info(f"[{ctx.transcript.call_id}] phase {phase.name} committed primary ({outcome.entry})")
            return outcome
    raise RuntimeError("No decision phase committed a primary incident")
