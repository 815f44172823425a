"""
Custom exceptions for the Call Decision Engine.
"""

from typing import List, Optional


class CallDecisionException(Exception):
    """Base exception for all custom exceptions."""

    pass


# ============================================================================
# Configuration Exceptions
# ============================================================================


class ConfigurationError(CallDecisionException):
    """Configuration is invalid or missing."""

    pass


# ============================================================================
# Taxonomy Exceptions
# ============================================================================


class TaxonomyError(CallDecisionException):
    """Taxonomy store error."""

    pass


class TaxonomyLoadError(TaxonomyError):
    """Taxonomy definition could not be loaded or is inconsistent."""

    pass


class UnknownTaxonomyPairError(TaxonomyError):
    """A (tipo, motivo) pair is not part of the taxonomy."""

    def __init__(self, tipo: str, motivo: str):
        self.tipo = tipo
        self.motivo = motivo
        super().__init__(f"Unknown taxonomy pair: ({tipo!r}, {motivo!r})")


# ============================================================================
# Transcript Exceptions
# ============================================================================


class TranscriptError(CallDecisionException):
    """Transcript processing error."""

    pass


class MalformedTranscriptError(TranscriptError):
    """Transcript is structurally invalid and cannot be classified."""

    def __init__(self, message: str, turn_index: Optional[int] = None):
        self.turn_index = turn_index
        if turn_index is not None:
            message = f"turn {turn_index}: {message}"
        super().__init__(message)


# ============================================================================
# Oracle (LLM) Exceptions
# ============================================================================


class OracleUnavailableError(CallDecisionException):
    """NLU oracle failed, timed out or returned nothing usable."""

    pass


class GeminiAPIError(OracleUnavailableError):
    """Error communicating with Gemini API."""

    pass


class ClaudeAPIError(OracleUnavailableError):
    """Error communicating with Claude API."""

    pass


class OracleResponseError(OracleUnavailableError):
    """Oracle reply could not be parsed into a candidate."""

    pass


# ============================================================================
# Decision Exceptions
# ============================================================================


class InvariantViolationError(CallDecisionException):
    """Decision failed structural validation (programming defect)."""

    def __init__(self, violations: List[str]):
        self.violations = list(violations)
        super().__init__("Decision invariant violated: " + "; ".join(self.violations))
