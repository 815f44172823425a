"""
Narrative Composer

Builds the Spanish call summary (resumenLlamada) and the ticket notes
(notasTicket). Output is a pure function of its inputs: the same decision
always yields the same text.
"""

from typing import Dict, List, Optional, Sequence

from ..transcript.models import Transcript
from ..utils.text_utils import clean_text, truncate_text
from .models import IncidentCandidate


PHASE_LABELS = {
    "ai_rejection": "rechazo de atención automatizada",
    "incomplete_data": "datos incompletos",
    "non_policyholder": "interlocutor no tomador",
    "human_transfer": "transferencia a agente humano",
    "normal_classification": "clasificación por gestión específica",
    "manual_review": "revisión manual",
}

RESOLUTIONS = {
    "ai_rejection": "El cliente rechaza la atención automatizada y se transfiere la llamada a un agente humano.",
    "non_policyholder": "El interlocutor no es el tomador de la póliza, por lo que se deriva a un agente humano.",
    "incomplete_data": "La gestión queda pendiente de que el cliente aporte los datos necesarios.",
    "manual_review": "La clasificación automática no es fiable y la llamada queda pendiente de revisión manual.",
}

MAX_QUOTE_LENGTH = 160


class NarrativeComposer:
    """
    Compose the four-part summary and the ticket notes.

    Usage:
        composer = NarrativeComposer()
        narrative = composer.compose(transcript, primary, secondaries, data, phase)
        notes = composer.ticket_notes(primary, secondaries, data, confidence)
    """

    def compose(
        self,
        transcript: Transcript,
        primary: IncidentCandidate,
        secondaries: Sequence[IncidentCandidate] = (),
        extracted_data: Optional[Dict[str, str]] = None,
        phase: str = "",
        fallback: bool = False,
    ) -> str:
        """
        Compose the call summary.

        Parts, in order: opening motive, development, resolution,
        justification.

        Args:
            transcript: Canonical transcript
            primary: Primary incident
            secondaries: Secondary incidents
            extracted_data: Extracted fields
            phase: Name of the phase that committed the primary
            fallback: No specific request was identified

        Returns:
            Narrative text (Spanish)
        """
        data = extracted_data or {}
        parts = [
            self._opening(transcript),
            self._development(primary, secondaries, data),
            self._resolution(primary, phase, fallback),
            self._justification(primary, phase),
        ]
        return " ".join(part for part in parts if part)

    def ticket_notes(
        self,
        primary: IncidentCandidate,
        secondaries: Sequence[IncidentCandidate] = (),
        extracted_data: Optional[Dict[str, str]] = None,
        confidence: float = 0.0,
    ) -> str:
        """Multi-line notes for the downstream ticket."""
        data = extracted_data or {}
        lines = []

        client = data.get("nombreCliente", "no identificado")
        if data.get("dni"):
            client = f"{client} (DNI {data['dni']})"
        lines.append(f"Cliente: {client}")

        if data.get("codigoCliente"):
            lines.append(f"Código cliente: {data['codigoCliente']}")
        if data.get("numeroPoliza"):
            lines.append(f"Póliza: {data['numeroPoliza']}")

        lines.append(f"Solicitud: {self._label(primary)}")
        if data.get("nuevoValor"):
            lines.append(f"Nuevo valor: {data['nuevoValor']}")
        if primary.is_recall:
            related = primary.related_incident or "sin código"
            lines.append(f"Rellamada: sí (incidencia relacionada {related})")

        if secondaries:
            lines.append("Gestiones adicionales:")
            lines.extend(f"- {self._label(incident)}" for incident in secondaries)

        lines.append(f"Confianza: {confidence:.2f}")
        return "\n".join(lines)

    # ------------------------------------------------------------------

    @staticmethod
    def _label(incident: IncidentCandidate) -> str:
        label = f"{incident.tipo} - {incident.motivo}"
        if incident.ramo:
            label += f" ({incident.ramo})"
        return label

    @staticmethod
    def _opening(transcript: Transcript) -> str:
        for turn in transcript.user_turns():
            text = clean_text(turn.text)
            if text:
                return f'El cliente llama y expone: "{truncate_text(text, MAX_QUOTE_LENGTH)}".'
        return "El cliente llama sin exponer un motivo concreto."

    def _development(
        self,
        primary: IncidentCandidate,
        secondaries: Sequence[IncidentCandidate],
        data: Dict[str, str],
    ) -> str:
        facts: List[str] = []
        if data.get("nombreCliente"):
            facts.append(f"se identifica al cliente {data['nombreCliente']}")
        if data.get("numeroPoliza"):
            facts.append(f"se localiza la póliza {data['numeroPoliza']}")
        if primary.ramo:
            facts.append(f"del ramo {primary.ramo.lower()}")
        if data.get("nuevoValor"):
            facts.append(f"el cliente facilita el nuevo valor {data['nuevoValor']}")
        if primary.is_recall:
            if primary.related_incident:
                facts.append(f"indica que ya llamó por la incidencia {primary.related_incident}")
            else:
                facts.append("indica que ya había llamado anteriormente")

        sentence = ""
        if facts:
            sentence = f"Durante la llamada {', '.join(facts)}."
        if secondaries:
            extra = "; ".join(self._label(incident) for incident in secondaries)
            sentence = f"{sentence} Además solicita: {extra}.".strip()
        return sentence

    @staticmethod
    def _resolution(primary: IncidentCandidate, phase: str, fallback: bool) -> str:
        if phase in RESOLUTIONS:
            return RESOLUTIONS[phase]
        if fallback:
            return "No se identifica una gestión concreta y la llamada se registra como gestión comercial."
        if primary.entry.human_only:
            return "La llamada se transfiere a un agente humano para su gestión."
        return "La gestión queda registrada para su tramitación."

    @staticmethod
    def _justification(primary: IncidentCandidate, phase: str) -> str:
        label = PHASE_LABELS.get(phase, phase or "sin fase")
        return f"Clasificación: {primary.tipo} / {primary.motivo} (fase: {label})."
