"""
Unit tests for the decision validator.
"""

import pytest

from call_decision.core.exceptions import InvariantViolationError
from call_decision.engine.models import Decision, IncidentCandidate
from call_decision.engine.topics import (
    ADDRESS_CHANGE,
    BANK_ACCOUNT,
    EMAIL_DUPLICATE,
    NEW_CONTRACT,
    RETENTION,
    RIGHTS_ASSIGNMENT_INCOMPLETE,
)
from call_decision.engine.validator import DecisionValidator
from call_decision.taxonomy.store import (
    GENERIC_HANDOFF,
    INCOMPLETE_DATA_DEFAULT,
    NOT_POLICYHOLDER,
    REJECTS_AUTOMATION,
    TaxonomyEntry,
)


@pytest.fixture
def validator(taxonomy):
    return DecisionValidator(taxonomy)


@pytest.fixture
def incident(taxonomy):
    def _incident(key, **kwargs):
        kwargs.setdefault("confidence", 0.8)
        return IncidentCandidate(entry=taxonomy.get(*key), **kwargs)

    return _incident


@pytest.fixture
def decision(incident):
    def _decision(primary=BANK_ACCOUNT, secondaries=(), **kwargs):
        kwargs.setdefault("overall_confidence", 0.8)
        kwargs.setdefault("priority", "medium")
        return Decision(
            call_id="validator-test",
            primary_incident=primary if isinstance(primary, IncidentCandidate) else incident(primary),
            secondary_incidents=tuple(s if isinstance(s, IncidentCandidate) else incident(s) for s in secondaries),
            **kwargs,
        )

    return _decision


class TestValidDecisions:
    """Decisions that must pass."""

    def test_single_incident(self, validator, decision):
        d = decision(extracted_data={"email": "ana@example.com"})
        assert validator.validate(d) is d

    def test_two_secondaries(self, validator, decision):
        assert validator.violations(decision(secondaries=(ADDRESS_CHANGE, EMAIL_DUPLICATE))) == []

    def test_ramo_where_required(self, validator, decision, incident):
        assert validator.violations(decision(primary=incident(NEW_CONTRACT, ramo="HOGAR"))) == []


class TestViolations:
    """Each invariant reports its own violation."""

    def test_unknown_pair(self, validator, decision):
        rogue = IncidentCandidate(entry=TaxonomyEntry("Inventado", "Motivo"), confidence=0.8)
        problems = validator.violations(decision(primary=rogue))
        assert any("not in the taxonomy" in p for p in problems)

    def test_ramo_on_branchless_entry(self, validator, decision, incident):
        problems = validator.violations(decision(primary=incident(BANK_ACCOUNT, ramo="AUTO")))
        assert any("takes no branch" in p for p in problems)

    def test_too_many_incidents(self, validator, decision):
        problems = validator.violations(decision(secondaries=(ADDRESS_CHANGE, EMAIL_DUPLICATE, RETENTION)))
        assert any("exceed the cap" in p for p in problems)

    def test_human_only_secondary(self, validator, decision):
        problems = validator.violations(decision(secondaries=(GENERIC_HANDOFF,)))
        assert any("human-only" in p for p in problems)

    @pytest.mark.parametrize(
        "primary", [REJECTS_AUTOMATION, NOT_POLICYHOLDER, INCOMPLETE_DATA_DEFAULT, RIGHTS_ASSIGNMENT_INCOMPLETE]
    )
    def test_suppressing_primary_with_secondaries(self, validator, decision, primary):
        problems = validator.violations(decision(primary=primary, secondaries=(ADDRESS_CHANGE,), priority="high"))
        assert any("must not carry secondary incidents" in p for p in problems)

    @pytest.mark.parametrize("value", [-0.1, 1.2])
    def test_confidence_range(self, validator, decision, value):
        problems = validator.violations(decision(overall_confidence=value))
        assert any("outside [0, 1]" in p for p in problems)

    def test_incident_confidence_range(self, validator, decision, incident):
        primary = IncidentCandidate(entry=incident(BANK_ACCOUNT).entry, confidence=1.5)
        problems = validator.violations(decision(primary=primary))
        assert any("incident confidence" in p for p in problems)

    def test_unknown_priority(self, validator, decision):
        problems = validator.violations(decision(priority="urgent"))
        assert problems == ["unknown priority 'urgent'"]

    def test_unknown_client_type(self, validator, decision):
        problems = validator.violations(decision(client_type="vip"))
        assert problems == ["unknown client type 'vip'"]

    def test_empty_extracted_field(self, validator, decision):
        problems = validator.violations(decision(extracted_data={"email": "", "dni": "12345678Z"}))
        assert problems == ["extracted field 'email' is empty"]

    def test_validate_collects_everything(self, validator, decision, incident):
        bad = decision(
            primary=incident(BANK_ACCOUNT, ramo="AUTO"),
            secondaries=(GENERIC_HANDOFF,),
            priority="urgent",
        )
        with pytest.raises(InvariantViolationError) as exc_info:
            validator.validate(bad)

        assert len(exc_info.value.violations) == 3
