"""
Decision Validator

Final gate before a Decision leaves the engine. Any violation raises
InvariantViolationError with every problem found, not just the first.
"""

import logging
from typing import List

from ..core.exceptions import InvariantViolationError
from ..taxonomy.store import NOT_POLICYHOLDER, REJECTS_AUTOMATION, Taxonomy
from .models import CLIENT_TYPES, Decision


logger = logging.getLogger(__name__)

MAX_INCIDENTS = 3
SUPPRESSING_PRIMARIES = (REJECTS_AUTOMATION, NOT_POLICYHOLDER)
VALID_PRIORITIES = ("low", "medium", "high")


class DecisionValidator:
    """Check a Decision against the output invariants."""

    def __init__(self, taxonomy: Taxonomy):
        self.taxonomy = taxonomy

    def violations(self, decision: Decision) -> List[str]:
        """
        Collect all invariant violations.

        Args:
            decision: Decision to check

        Returns:
            Human-readable violations (empty if valid)
        """
        problems: List[str] = []

        for incident in decision.incidents:
            if incident.key not in self.taxonomy:
                problems.append(f"incident {incident.tipo!r}/{incident.motivo!r} is not in the taxonomy")
            if incident.ramo and not incident.entry.requires_branch:
                problems.append(f"ramo {incident.ramo!r} set on {incident.entry}, which takes no branch")
            if not 0.0 <= incident.confidence <= 1.0:
                problems.append(f"incident confidence {incident.confidence} outside [0, 1]")

        if len(decision.incidents) > MAX_INCIDENTS:
            problems.append(f"{len(decision.incidents)} incidents exceed the cap of {MAX_INCIDENTS}")

        for incident in decision.secondary_incidents:
            if incident.entry.human_only:
                problems.append(f"human-only reason {incident.entry} used as secondary")

        primary = decision.primary_incident
        suppressing = primary.key in SUPPRESSING_PRIMARIES or primary.entry.is_incomplete_data
        if suppressing and decision.secondary_incidents:
            problems.append(f"primary {decision.primary_incident.entry} must not carry secondary incidents")

        output = decision.to_dict()
        secondaries = output["incidenciasSecundarias"]
        if output["multipleGestiones"] != (len(secondaries) > 0):
            problems.append("multipleGestiones does not match incidenciasSecundarias")
        if output["totalGestiones"] != 1 + len(secondaries):
            problems.append("totalGestiones does not match incidenciasSecundarias")

        if not 0.0 <= decision.overall_confidence <= 1.0:
            problems.append(f"confidence {decision.overall_confidence} outside [0, 1]")
        if decision.priority not in VALID_PRIORITIES:
            problems.append(f"unknown priority {decision.priority!r}")
        if decision.client_type not in CLIENT_TYPES:
            problems.append(f"unknown client type {decision.client_type!r}")

        for key, value in decision.extracted_data.items():
            if not isinstance(value, str) or not value.strip():
                problems.append(f"extracted field {key!r} is empty")

        return problems

    def validate(self, decision: Decision) -> Decision:
        """
        Validate a decision.

        Returns:
            The same decision if valid

        Raises:
            InvariantViolationError: If any invariant is violated
        """
        problems = self.violations(decision)
        if problems:
            raise InvariantViolationError(problems)
        return decision
