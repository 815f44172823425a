"""
Engine Module

Signal extraction, priority phases, multi-incident assembly and the
decision engine that ties them together.
"""

from .decision_engine import DecisionEngine
from .models import Decision, IncidentCandidate, PhaseOutcome, RuleFamily, SignalMatch
from .phases import DEFAULT_PHASES, Phase, PhaseContext
from .signals import SignalExtractor
from .validator import DecisionValidator

__all__ = [
    "DEFAULT_PHASES",
    "Decision",
    "DecisionEngine",
    "DecisionValidator",
    "IncidentCandidate",
    "Phase",
    "PhaseContext",
    "PhaseOutcome",
    "RuleFamily",
    "SignalExtractor",
    "SignalMatch",
]
