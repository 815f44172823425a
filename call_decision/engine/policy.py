"""
Ticket policy: priority and automatic ticket creation.
"""

from ..taxonomy.store import CLAIMS_HANDOFF, NOT_POLICYHOLDER, REJECTS_AUTOMATION, ROADSIDE_ASSISTANCE, TaxonomyEntry


# AI-exclusive transfers that are safe to ticket at moderate confidence
AI_EXCLUSIVE_TRANSFERS = frozenset({REJECTS_AUTOMATION, NOT_POLICYHOLDER, CLAIMS_HANDOFF})

AI_TRANSFER_MIN_CONFIDENCE = 0.6
AI_EXCLUSIVE_MIN_CONFIDENCE = 0.8
STANDARD_MIN_CONFIDENCE = 0.3
LOW_CONFIDENCE = 0.5


def ticket_priority(entry: TaxonomyEntry, confidence: float, fallback: bool = False) -> str:
    """
    Priority of the ticket for the primary incident.

    Args:
        entry: Primary taxonomy entry
        confidence: Overall decision confidence
        fallback: Decision fell back to the unresolved commercial call

    Returns:
        "high", "medium" or "low"
    """
    if fallback or confidence < LOW_CONFIDENCE:
        return "low"
    if entry.priority_tier <= 1 or entry.tipo == ROADSIDE_ASSISTANCE:
        return "high"
    if entry.priority_tier == 2:
        return "medium"
    return "low"


def requires_ticket(entry: TaxonomyEntry, confidence: float, manual_review: bool = False) -> bool:
    """Whether a ticket should be opened automatically for the primary incident."""
    if manual_review:
        return False
    if entry.ai_exclusive:
        threshold = AI_TRANSFER_MIN_CONFIDENCE if entry.key in AI_EXCLUSIVE_TRANSFERS else AI_EXCLUSIVE_MIN_CONFIDENCE
        return confidence >= threshold
    return confidence >= STANDARD_MIN_CONFIDENCE
