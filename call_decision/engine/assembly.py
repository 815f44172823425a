"""
Multi-incident assembly.

A call can carry up to two additional managements besides the primary one
("quiero cambiar la cuenta... y también que me manden la póliza por email").
Only independent, caller-raised requests that could be a ticket on their own
are kept.
"""

import logging
import re
from typing import List, Optional, Sequence

from ..taxonomy.store import Taxonomy
from ..transcript.models import Speaker, Transcript
from ..utils.text_utils import fold
from .models import ORIGIN_RULES, IncidentCandidate, PhaseOutcome, RuleFamily, SignalMatch
from .phases import specific_confidence


logger = logging.getLogger(__name__)

DEFAULT_SECONDARY_LIMIT = 2

# Spoken connectors that introduce a new, unrelated request (folded)
CONNECTOR_PATTERN = re.compile(
    r"\b(y tambien|ademas|tambien queria|tambien quisiera|por otro lado|otra cosa|aparte)\b"
)


def has_connector(transcript: Transcript) -> bool:
    """True if the caller uses a new-request connector anywhere in the call."""
    return any(CONNECTOR_PATTERN.search(fold(turn.text)) for turn in transcript.user_turns())


def _primary_evidence(outcome: PhaseOutcome) -> Optional[SignalMatch]:
    if outcome.primary_match is not None:
        return outcome.primary_match
    for signal in outcome.signals:
        if signal.rule_family is RuleFamily.SPECIFIC_MANAGEMENT and signal.topic in outcome.consumed_topics:
            return signal
    return None


def assemble_secondaries(
    outcome: PhaseOutcome,
    matches: Sequence[SignalMatch],
    transcript: Transcript,
    taxonomy: Taxonomy,
    limit: int = DEFAULT_SECONDARY_LIMIT,
    ramo: Optional[str] = None,
) -> List[IncidentCandidate]:
    """
    Build the secondary incidents for a committed primary.

    Args:
        outcome: Committed phase outcome (primary)
        matches: All signal matches for the call
        transcript: Canonical transcript
        taxonomy: Taxonomy snapshot
        limit: Maximum number of secondaries
        ramo: Detected insurance line (attached to entries that require one)

    Returns:
        Secondary incidents ordered by mention (possibly empty)
    """
    primary = outcome.entry
    if not outcome.allow_secondaries or primary.human_only or primary.is_incomplete_data or limit <= 0:
        return []

    evidence = _primary_evidence(outcome)
    primary_turn = evidence.turn_index if evidence else None
    connector = has_connector(transcript)

    candidates = []
    for match in matches:
        if match.rule_family is not RuleFamily.SPECIFIC_MANAGEMENT or match.origin != ORIGIN_RULES:
            continue
        if match.speaker is not Speaker.USER or not match.entry_key:
            continue
        if match.topic in outcome.consumed_topics or match.entry_key == outcome.entry.key:
            continue

        entry = taxonomy.get(*match.entry_key)
        if entry.human_only:
            continue
        if not connector and match.turn_index == primary_turn:
            logger.debug(f"[{transcript.call_id}] {entry} shares the primary's turn, not independent")
            continue
        candidates.append((match, entry))

    candidates.sort(key=lambda pair: pair[0].mention_order)

    secondaries: List[IncidentCandidate] = []
    seen = set()
    for match, entry in candidates:
        if entry.key in seen:
            continue
        seen.add(entry.key)
        secondaries.append(
            IncidentCandidate(
                entry=entry,
                ramo=ramo if entry.requires_branch else None,
                supporting_signals=(match,),
                confidence=specific_confidence(match.strength),
            )
        )

    if len(secondaries) > limit:
        logger.info(
            f"[{transcript.call_id}] {len(secondaries)} secondary managements detected, keeping first {limit}"
        )
    return secondaries[:limit]
