"""
Test data factories for generating realistic call transcripts and oracle replies.
"""

import json
import time
from typing import Any, Dict, List, Optional, Sequence, Tuple

from call_decision.ai.oracle import OracleCandidate
from call_decision.core.exceptions import OracleUnavailableError


class TranscriptFactory:
    """Factory for creating raw turn lists as sent by the voice gateway."""

    @staticmethod
    def turn(speaker: str, message: str, timestamp: Optional[float] = None, **extra) -> Dict[str, Any]:
        raw = {"speaker": speaker, "message": message}
        if timestamp is not None:
            raw["timestamp"] = timestamp
        raw.update(extra)
        return raw

    @staticmethod
    def conversation(*exchanges: Tuple[str, str], start: float = 0.0, step: float = 5.0) -> List[Dict[str, Any]]:
        """
        Build a turn list from (speaker, message) pairs.

        Args:
            exchanges: ("user" | "agent" | "system-tool-event", message) pairs
            start: Timestamp of the first turn
            step: Seconds between turns

        Returns:
            Raw turn list with increasing timestamps
        """
        return [
            TranscriptFactory.turn(speaker, message, timestamp=start + i * step)
            for i, (speaker, message) in enumerate(exchanges)
        ]

    @staticmethod
    def dialogue(*user_lines: str, agent_reply: str = "De acuerdo.") -> List[Dict[str, Any]]:
        """Alternate caller lines with a neutral agent reply after each one."""
        exchanges = []
        for line in user_lines:
            exchanges.append(("user", line))
            exchanges.append(("agent", agent_reply))
        return TranscriptFactory.conversation(*exchanges)

    @staticmethod
    def client_lookup(
        nombre: str = "María García López",
        nif: str = "12345678Z",
        email: str = "maria.garcia@example.com",
        telefono: str = "612345678",
        codigo: str = "CLI00123",
        polizas: Sequence[str] = ("POL-2023-000456",),
        timestamp: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Create a tool-event turn carrying an identificar_cliente result."""
        payload = {
            "success": True,
            "data": {
                "clientes": [
                    {
                        "nombre_cliente": nombre,
                        "nif_cliente": nif,
                        "email_cliente": email,
                        "telefono_1": telefono,
                        "codigo_cliente": codigo,
                    }
                ],
                "detalle_polizas": [{"poliza": p, "ramo": "HOGAR"} for p in polizas],
            },
        }
        return TranscriptFactory.turn(
            "system-tool-event",
            f"[Tool Result: identificar_cliente] {json.dumps(payload, ensure_ascii=False)}",
            timestamp=timestamp,
        )

    @staticmethod
    def lead_lookup(
        idlead: str = "LD-88412",
        campana: str = "Hogar Primavera",
        ramo: str = "Hogar",
        timestamp: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Create a tool-event turn whose identificar_cliente result is a campaign lead."""
        payload = {
            "status": "success",
            "data": {"clientes": [], "leads": [{"idlead": idlead, "campaña": campana, "ramo": ramo}]},
        }
        return TranscriptFactory.turn(
            "system-tool-event",
            f"[Tool Result: identificar_cliente] {json.dumps(payload, ensure_ascii=False)}",
            timestamp=timestamp,
        )

    # ------------------------------------------------------------------
    # Canonical scenarios
    # ------------------------------------------------------------------

    @staticmethod
    def ai_rejection_call() -> List[Dict[str, Any]]:
        return TranscriptFactory.conversation(
            ("agent", "Hola, soy el asistente virtual de la correduría. ¿En qué puedo ayudarle?"),
            ("user", "Quiero cambiar el número de cuenta."),
            ("agent", "Claro, ¿me facilita el nuevo IBAN?"),
            ("user", "No quiero hablar con una máquina, quiero hablar con una persona."),
            ("agent", "Entendido, le transfiero con un compañero."),
        )

    @staticmethod
    def email_duplicate_call() -> List[Dict[str, Any]]:
        return TranscriptFactory.conversation(
            ("agent", "Hola, ¿en qué puedo ayudarle?"),
            ("user", "Buenos días, quería un duplicado de la póliza por email, por favor."),
            ("agent", "Perfecto, se lo enviamos al correo que tenemos registrado."),
            ("user", "Mejor a mi correo nuevo, que es juan.perez@example.com"),
            ("agent", "Anotado, lo recibirá en unos minutos."),
        )

    @staticmethod
    def generic_transfer_call() -> List[Dict[str, Any]]:
        return TranscriptFactory.conversation(
            ("agent", "Hola, ¿en qué puedo ayudarle?"),
            ("user", "Quiero pagar un recibo pendiente."),
            ("agent", "Le paso con un compañero de administración."),
        )

    @staticmethod
    def transfer_with_specific_call() -> List[Dict[str, Any]]:
        return TranscriptFactory.conversation(
            ("agent", "Hola, ¿en qué puedo ayudarle?"),
            ("user", "Quiero cambiar el número de cuenta de mi póliza."),
            ("agent", "Le paso con un compañero que le ayudará con el cambio."),
        )

    @staticmethod
    def claims_call() -> List[Dict[str, Any]]:
        return TranscriptFactory.conversation(
            ("agent", "Hola, ¿en qué puedo ayudarle?"),
            ("user", "He tenido un accidente con el coche y quiero dar parte."),
            ("agent", "Le paso con el departamento correspondiente."),
        )

    @staticmethod
    def multi_incident_call() -> List[Dict[str, Any]]:
        return TranscriptFactory.conversation(
            ("agent", "Hola, ¿en qué puedo ayudarle?"),
            ("user", "Quiero cambiar el número de cuenta de mi póliza."),
            ("agent", "De acuerdo, ¿me indica el nuevo IBAN?"),
            ("user", "Sí, es ES91 2100 0418 4502 0005 1332."),
            ("agent", "Perfecto, queda anotado."),
            ("user", "Y también quería que me manden un duplicado por email."),
            ("agent", "Muy bien, se lo enviamos hoy mismo."),
        )

    @staticmethod
    def incomplete_data_call() -> List[Dict[str, Any]]:
        return TranscriptFactory.conversation(
            ("agent", "Hola, ¿en qué puedo ayudarle?"),
            ("user", "Quiero hacer una cesión de derechos al banco."),
            ("agent", "Sin esos datos no puedo tramitarlo, vuelva a llamarnos cuando tenga los datos."),
        )

    @staticmethod
    def completed_with_farewell_call() -> List[Dict[str, Any]]:
        return TranscriptFactory.conversation(
            ("agent", "Hola, ¿en qué puedo ayudarle?"),
            ("user", "Quiero cambiar el número de cuenta, el nuevo IBAN es ES91 2100 0418 4502 0005 1332."),
            ("agent", "Ya he registrado el cambio de cuenta. Si necesita algo más, vuelva a llamarnos."),
        )

    @staticmethod
    def incomplete_with_second_request_call() -> List[Dict[str, Any]]:
        return TranscriptFactory.conversation(
            ("agent", "Hola, ¿en qué puedo ayudarle?"),
            ("user", "Quiero cambiar el número de cuenta de mi póliza."),
            ("agent", "De acuerdo, ¿me indica el nuevo IBAN?"),
            ("user", "Y también quería que me manden un duplicado por email."),
            ("agent", "Muy bien. ¿Y el número de cuenta?"),
            ("user", "Ahora mismo no lo tengo."),
            ("agent", "Sin ese dato no puedo hacer el cambio, llámenos cuando lo tenga."),
        )

    @staticmethod
    def non_policyholder_call() -> List[Dict[str, Any]]:
        return TranscriptFactory.conversation(
            ("agent", "Hola, ¿en qué puedo ayudarle?"),
            ("user", "Llamo de parte de mi madre, que es la titular."),
            ("agent", "¿Qué gestión necesita?"),
            ("user", "Quiere cambiar el número de cuenta."),
        )

    @staticmethod
    def empty_call() -> List[Dict[str, Any]]:
        return TranscriptFactory.conversation(
            ("agent", "Hola, ¿en qué puedo ayudarle?"),
            ("user", "Hola, buenos días."),
            ("agent", "Dígame."),
            ("user", "Nada, era una duda, gracias."),
        )


class FakeOracle:
    """
    In-memory oracle double.

    Returns a fixed candidate, raises a fixed error, or sleeps first to
    simulate a slow backend. Records every call.
    """

    def __init__(
        self,
        candidate: Optional[OracleCandidate] = None,
        error: Optional[Exception] = None,
        delay: float = 0.0,
    ):
        self.candidate = candidate
        self.error = error
        self.delay = delay
        self.calls: List[str] = []

    def propose(self, transcript, taxonomy) -> OracleCandidate:
        self.calls.append(transcript.call_id)
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.candidate or OracleCandidate()


class OracleFactory:
    """Factory for oracle candidates and raw LLM replies."""

    @staticmethod
    def candidate(
        primary: Optional[Tuple[str, str]] = None,
        secondaries: Sequence[Tuple[str, str]] = (),
        confidence: float = 0.9,
        **kwargs,
    ) -> OracleCandidate:
        return OracleCandidate(primary=primary, secondaries=tuple(secondaries), confidence=confidence, **kwargs)

    @staticmethod
    def agreeing(primary: Tuple[str, str], confidence: float = 0.9) -> FakeOracle:
        return FakeOracle(candidate=OracleFactory.candidate(primary, confidence=confidence))

    @staticmethod
    def unavailable(message: str = "All oracle backends failed") -> FakeOracle:
        return FakeOracle(error=OracleUnavailableError(message))

    @staticmethod
    def reply(
        tipo: str,
        motivo: str,
        confidence: float = 0.9,
        secondaries: Sequence[Tuple[str, str]] = (),
        fenced: bool = False,
        **extra,
    ) -> str:
        """Create the raw JSON text an LLM backend would return."""
        body = {
            "incidenciaPrincipal": {"tipo": tipo, "motivo": motivo},
            "incidenciasSecundarias": [{"tipo": t, "motivo": m} for t, m in secondaries],
            "confidence": confidence,
        }
        body.update(extra)
        text = json.dumps(body, ensure_ascii=False, indent=2)
        return f"```json\n{text}\n```" if fenced else text
