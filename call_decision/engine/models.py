"""
Decision engine data model.

SignalMatch -> IncidentCandidate -> Decision. The Decision derives
multiple_managements and total_managements from its secondary incidents; they
are never stored independently.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from ..taxonomy.store import TaxonomyEntry, TaxonomyKey
from ..transcript.models import Speaker


class RuleFamily(Enum):
    """Detector families of the signal extractor."""

    AI_REJECTION = "ai_rejection"
    INCOMPLETE_DATA = "incomplete_data"
    NON_POLICYHOLDER = "non_policyholder"
    HUMAN_TRANSFER = "human_transfer"
    SPECIFIC_MANAGEMENT = "specific_management"
    RECALL = "recall"


ORIGIN_RULES = "rules"
ORIGIN_ORACLE = "oracle"

# Who the caller is, from the backend lookups made during the call
CLIENT_EXISTING = "existing"
CLIENT_LEAD = "lead"
CLIENT_NEW = "new"
CLIENT_UNKNOWN = "unknown"
CLIENT_TYPES = (CLIENT_EXISTING, CLIENT_LEAD, CLIENT_NEW, CLIENT_UNKNOWN)


@dataclass(frozen=True)
class SignalMatch:
    """
    A detected trigger with its evidence.

    Attributes:
        rule_family: Detector family
        matched_span: Text evidence
        strength: Numeric weight (higher = more explicit / more important)
        turn_index: Turn the evidence came from (-1 for oracle proposals)
        topic: Detector name (e.g. card_duplicate)
        entry_key: Taxonomy pair the detector proposes, if any
        speaker: Speaker of the evidence turn
        span_start: Offset of the evidence inside the turn text
        origin: "rules" or "oracle"
        value: Extra detail captured by the detector (e.g. incident code)
    """

    rule_family: RuleFamily
    matched_span: str
    strength: float
    turn_index: int
    topic: str = ""
    entry_key: Optional[TaxonomyKey] = None
    speaker: Optional[Speaker] = None
    span_start: int = 0
    origin: str = ORIGIN_RULES
    value: Optional[str] = None

    @property
    def mention_order(self) -> Tuple[int, int]:
        return (self.turn_index, self.span_start)

    @property
    def from_user(self) -> bool:
        return self.speaker is Speaker.USER

    def to_dict(self) -> Dict[str, Any]:
        return {
            "family": self.rule_family.value,
            "topic": self.topic,
            "span": self.matched_span,
            "strength": round(self.strength, 3),
            "turn": self.turn_index,
            "entry": list(self.entry_key) if self.entry_key else None,
            "origin": self.origin,
        }


@dataclass(frozen=True)
class IncidentCandidate:
    """
    A (tipo, motivo) incident proposed during rule evaluation.

    Only confidence may change after creation, via rescored().
    """

    entry: TaxonomyEntry
    ramo: Optional[str] = None
    is_recall: bool = False
    supporting_signals: Tuple[SignalMatch, ...] = ()
    confidence: float = 0.5
    related_incident: Optional[str] = None

    @property
    def tipo(self) -> str:
        return self.entry.tipo

    @property
    def motivo(self) -> str:
        return self.entry.motivo

    @property
    def key(self) -> TaxonomyKey:
        return self.entry.key

    def rescored(self, confidence: float) -> "IncidentCandidate":
        return replace(self, confidence=max(0.0, min(1.0, confidence)))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tipo": self.tipo,
            "motivo": self.motivo,
            "ramo": self.ramo,
            "esRellamada": self.is_recall,
            "tipoCreacion": self.entry.creation_mode,
            "incidenciaRelacionada": self.related_incident,
            "confidence": round(self.confidence, 3),
        }


@dataclass(frozen=True)
class PhaseOutcome:
    """
    Result of the first phase that commits a primary incident.

    Attributes:
        phase: Name of the phase that fired
        entry: Primary taxonomy entry
        confidence: Base confidence before oracle reconciliation
        signals: Evidence behind the primary
        primary_match: Specific-management match used as primary, if any
        consumed_topics: Topics the primary already accounts for
        allow_secondaries: False for terminal overrides
        fallback: True when no evidence supported any topic
    """

    phase: str
    entry: TaxonomyEntry
    confidence: float
    signals: Tuple[SignalMatch, ...] = ()
    primary_match: Optional[SignalMatch] = None
    consumed_topics: Tuple[str, ...] = ()
    allow_secondaries: bool = True
    fallback: bool = False


@dataclass(frozen=True)
class Decision:
    """
    Final classification of one call.

    Attributes:
        call_id: Opaque call identifier
        primary_incident: Main incident
        secondary_incidents: Additional independent incidents (0-2)
        extracted_data: Client/policy fields; missing fields are absent
        narrative: Four-part summary of the call
        ticket_notes: Notes for the downstream ticket
        overall_confidence: 0..1
        priority: low | medium | high
        requires_ticket: Whether a ticket should be opened automatically
        phase: Decision phase that committed the primary
        oracle_degraded: Oracle was unavailable; rules only
        requires_manual_review: Decision failed validation and was replaced
        client_type: existing | lead | new | unknown
        lead_info: Campaign lead fields (leadId, campaignName, ramo) when the caller is a lead
        signals: All signals considered (provenance)
    """

    call_id: str
    primary_incident: IncidentCandidate
    secondary_incidents: Tuple[IncidentCandidate, ...] = ()
    extracted_data: Dict[str, str] = field(default_factory=dict)
    narrative: str = ""
    ticket_notes: str = ""
    overall_confidence: float = 0.0
    priority: str = "low"
    requires_ticket: bool = False
    phase: str = ""
    oracle_degraded: bool = False
    requires_manual_review: bool = False
    client_type: str = CLIENT_UNKNOWN
    lead_info: Dict[str, str] = field(default_factory=dict)
    signals: Tuple[SignalMatch, ...] = ()

    @property
    def multiple_managements(self) -> bool:
        return len(self.secondary_incidents) > 0

    @property
    def total_managements(self) -> int:
        return 1 + len(self.secondary_incidents)

    @property
    def incidents(self) -> Tuple[IncidentCandidate, ...]:
        return (self.primary_incident,) + tuple(self.secondary_incidents)

    def to_dict(self, include_signals: bool = False) -> Dict[str, Any]:
        """Serialize to the external JSON shape."""
        data = {
            "callId": self.call_id,
            "incidenciaPrincipal": self.primary_incident.to_dict(),
            "incidenciasSecundarias": [incident.to_dict() for incident in self.secondary_incidents],
            "confidence": round(self.overall_confidence, 3),
            "resumenLlamada": self.narrative,
            "datosExtraidos": dict(self.extracted_data),
            "tipoCliente": self.client_type,
            "requiereTicket": self.requires_ticket,
            "prioridad": self.priority,
            "multipleGestiones": self.multiple_managements,
            "totalGestiones": self.total_managements,
            "notasTicket": self.ticket_notes,
            "faseAplicada": self.phase,
            "oraculoDegradado": self.oracle_degraded,
            "requiereRevisionManual": self.requires_manual_review,
        }
        if self.lead_info:
            data["infoLead"] = dict(self.lead_info)
        if include_signals:
            data["senales"] = [signal.to_dict() for signal in self.signals]
        return data
