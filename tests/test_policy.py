"""
Unit tests for ticket priority and automatic ticket creation.
"""

import pytest

from call_decision.engine.policy import requires_ticket, ticket_priority
from call_decision.engine.topics import BANK_ACCOUNT, EMAIL_DUPLICATE, PAYMENT_SPLIT, RETENTION, ROADSIDE
from call_decision.taxonomy.store import (
    CLAIMS_HANDOFF,
    FALLBACK_UNRESOLVED,
    INCOMPLETE_DATA_DEFAULT,
    NOT_POLICYHOLDER,
    REJECTS_AUTOMATION,
)


@pytest.fixture
def entry(taxonomy):
    return lambda key: taxonomy.get(*key)


class TestTicketPriority:
    """Test priority levels."""

    @pytest.mark.parametrize(
        "key, expected",
        [
            (REJECTS_AUTOMATION, "high"),  # tier 0
            (PAYMENT_SPLIT, "high"),  # tier 1
            (ROADSIDE, "high"),
            (BANK_ACCOUNT, "medium"),  # tier 2
            (RETENTION, "medium"),
            (EMAIL_DUPLICATE, "low"),  # tier 3
            (FALLBACK_UNRESOLVED, "low"),  # tier 4
        ],
    )
    def test_by_tier(self, entry, key, expected):
        assert ticket_priority(entry(key), 0.9) == expected

    def test_low_confidence_is_low(self, entry):
        assert ticket_priority(entry(REJECTS_AUTOMATION), 0.49) == "low"
        assert ticket_priority(entry(REJECTS_AUTOMATION), 0.5) == "high"

    def test_fallback_is_low(self, entry):
        assert ticket_priority(entry(BANK_ACCOUNT), 0.9, fallback=True) == "low"


class TestRequiresTicket:
    """Test the automatic ticket thresholds."""

    @pytest.mark.parametrize("key", [REJECTS_AUTOMATION, NOT_POLICYHOLDER, CLAIMS_HANDOFF])
    def test_ai_transfers(self, entry, key):
        assert requires_ticket(entry(key), 0.6)
        assert not requires_ticket(entry(key), 0.59)

    def test_other_ai_exclusive(self, entry):
        assert requires_ticket(entry(INCOMPLETE_DATA_DEFAULT), 0.8)
        assert not requires_ticket(entry(INCOMPLETE_DATA_DEFAULT), 0.79)

    def test_standard(self, entry):
        assert requires_ticket(entry(BANK_ACCOUNT), 0.3)
        assert not requires_ticket(entry(BANK_ACCOUNT), 0.29)
        assert requires_ticket(entry(FALLBACK_UNRESOLVED), 0.3)

    def test_manual_review_never(self, entry):
        assert not requires_ticket(entry(BANK_ACCOUNT), 0.99, manual_review=True)
