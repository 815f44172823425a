"""
Unit tests for the call summary and ticket notes.
"""

import pytest

from call_decision.engine.models import IncidentCandidate
from call_decision.engine.narrative import MAX_QUOTE_LENGTH, NarrativeComposer
from call_decision.engine.topics import BANK_ACCOUNT, EMAIL_DUPLICATE, NEW_CONTRACT
from call_decision.taxonomy.store import FALLBACK_UNRESOLVED, GENERIC_HANDOFF, REJECTS_AUTOMATION
from tests.factories import TranscriptFactory


@pytest.fixture
def composer():
    return NarrativeComposer()


@pytest.fixture
def incident(taxonomy):
    def _incident(key, **kwargs):
        return IncidentCandidate(entry=taxonomy.get(*key), **kwargs)

    return _incident


class TestCompose:
    """Test the four-part summary."""

    def test_parts_in_order(self, composer, incident, make_transcript):
        transcript = make_transcript(TranscriptFactory.transfer_with_specific_call())
        data = {"nombreCliente": "Ana Ruiz", "numeroPoliza": "POL-1", "nuevoValor": "ES9121000418450200051332"}

        narrative = composer.compose(transcript, incident(BANK_ACCOUNT), (), data, "normal_classification")

        opening = narrative.index('El cliente llama y expone: "Quiero cambiar el número de cuenta de mi póliza."')
        development = narrative.index("Durante la llamada se identifica al cliente Ana Ruiz")
        resolution = narrative.index("La gestión queda registrada para su tramitación.")
        justification = narrative.index(
            "Clasificación: Modificación póliza emitida / Cambio nº de cuenta (fase: clasificación por gestión específica)."
        )
        assert opening < development < resolution < justification
        assert "el cliente facilita el nuevo valor ES9121000418450200051332" in narrative

    def test_secondaries_listed(self, composer, incident, make_transcript):
        transcript = make_transcript(TranscriptFactory.multi_incident_call())
        narrative = composer.compose(
            transcript, incident(BANK_ACCOUNT), (incident(EMAIL_DUPLICATE),), {}, "normal_classification"
        )
        assert "Además solicita: Solicitud duplicado póliza - Email." in narrative

    def test_no_user_turns(self, composer, incident, make_transcript):
        transcript = make_transcript(TranscriptFactory.conversation(("agent", "Hola, ¿hay alguien?")))
        narrative = composer.compose(transcript, incident(FALLBACK_UNRESOLVED), phase="normal_classification",
                                     fallback=True)

        assert narrative.startswith("El cliente llama sin exponer un motivo concreto.")
        assert "se registra como gestión comercial" in narrative

    def test_long_opening_truncated(self, composer, incident, make_transcript):
        transcript = make_transcript(TranscriptFactory.dialogue("palabra " * 100))
        narrative = composer.compose(transcript, incident(FALLBACK_UNRESOLVED), fallback=True)

        quote = narrative.split('"')[1]
        assert len(quote) <= MAX_QUOTE_LENGTH
        assert quote.endswith("...")

    def test_phase_resolutions(self, composer, incident, make_transcript):
        transcript = make_transcript(TranscriptFactory.ai_rejection_call())

        rejection = composer.compose(transcript, incident(REJECTS_AUTOMATION), phase="ai_rejection")
        transfer = composer.compose(transcript, incident(GENERIC_HANDOFF), phase="human_transfer")

        assert "rechaza la atención automatizada" in rejection
        assert "se transfiere a un agente humano para su gestión" in transfer

    def test_recall_and_ramo(self, composer, incident, make_transcript):
        transcript = make_transcript(TranscriptFactory.dialogue("Quiero contratar un seguro de coche."))
        primary = incident(NEW_CONTRACT, ramo="AUTO", is_recall=True, related_incident="NG1234567")

        narrative = composer.compose(transcript, primary, phase="normal_classification")
        assert "del ramo auto" in narrative
        assert "ya llamó por la incidencia NG1234567" in narrative

    def test_deterministic(self, composer, incident, make_transcript):
        transcript = make_transcript(TranscriptFactory.multi_incident_call())
        args = (transcript, incident(BANK_ACCOUNT), (incident(EMAIL_DUPLICATE),), {"dni": "12345678Z"}, "human_transfer")
        assert composer.compose(*args) == composer.compose(*args)


class TestTicketNotes:
    """Test the ticket notes block."""

    def test_full_notes(self, composer, incident):
        data = {
            "nombreCliente": "Ana Ruiz",
            "dni": "12345678Z",
            "codigoCliente": "CLI1",
            "numeroPoliza": "POL-1",
            "nuevoValor": "mensual",
        }
        notes = composer.ticket_notes(incident(BANK_ACCOUNT), (incident(EMAIL_DUPLICATE),), data, 0.873)

        assert notes.splitlines() == [
            "Cliente: Ana Ruiz (DNI 12345678Z)",
            "Código cliente: CLI1",
            "Póliza: POL-1",
            "Solicitud: Modificación póliza emitida - Cambio nº de cuenta",
            "Nuevo valor: mensual",
            "Gestiones adicionales:",
            "- Solicitud duplicado póliza - Email",
            "Confianza: 0.87",
        ]

    def test_minimal_notes(self, composer, incident):
        notes = composer.ticket_notes(incident(FALLBACK_UNRESOLVED))
        assert notes.splitlines() == [
            "Cliente: no identificado",
            "Solicitud: Llamada gestión comercial - LLam gestión comerc",
            "Confianza: 0.00",
        ]

    def test_recall_without_code(self, composer, incident):
        notes = composer.ticket_notes(incident(BANK_ACCOUNT, is_recall=True))
        assert "Rellamada: sí (incidencia relacionada sin código)" in notes
