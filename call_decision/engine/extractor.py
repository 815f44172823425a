"""
Data Extractor

Collects the client and policy fields a ticket needs. Each field has one
value; sources are ranked:

    1. Backend lookups performed during the call (tool results)
    2. What was said in the call (last-stated value wins)
    3. The oracle's extraction

Missing fields are left out of the result, never set to "".
"""

import logging
import re
from typing import Any, Dict, Iterable, List, Optional, Sequence

from ..taxonomy.store import NEW_POLICY, TaxonomyEntry
from ..transcript.models import Speaker, Transcript, Turn
from ..utils.text_utils import extract_emails, fold, strip_separators
from .models import CLIENT_EXISTING, CLIENT_LEAD, CLIENT_NEW, CLIENT_UNKNOWN, IncidentCandidate, RuleFamily
from .patterns import detect_ramo
from .topics import ADDRESS_CHANGE, BANK_ACCOUNT, EFFECTIVE_DATE, EMAIL_DUPLICATE, PAYMENT_CHANGE, PAYMENT_SPLIT


logger = logging.getLogger(__name__)


FIELDS = (
    "nombreCliente",
    "dni",
    "telefono",
    "email",
    "numeroPoliza",
    "codigoCliente",
    "cuentaBancaria",
    "direccion",
    "fechaEfecto",
    "nuevoValor",
    "incidenciaRelacionada",
)

# Client lookup payload field -> output field
CLIENT_FIELDS = {
    "nombre_cliente": "nombreCliente",
    "nif_cliente": "dni",
    "email_cliente": "email",
    "telefono_1": "telefono",
    "codigo_cliente": "codigoCliente",
}

# Lead payload field -> lead info field
LEAD_FIELDS = {
    "idlead": "leadId",
    "id_lead": "leadId",
    "campaña": "campaignName",
    "campana": "campaignName",
    "ramo": "ramo",
}

# Primary incident -> field holding the value the ticket changes
NEW_VALUE_FIELD = {
    BANK_ACCOUNT: "cuentaBancaria",
    ADDRESS_CHANGE: "direccion",
    EFFECTIVE_DATE: "fechaEfecto",
    EMAIL_DUPLICATE: "email",
}


# ============================================================================
# Free-text patterns (raw text, case-insensitive unless noted)
# ============================================================================

DNI_PATTERN = re.compile(r"(?<![\w])(\d{2}[\s.]?\d{3}[\s.]?\d{3}[\s-]?[A-Za-z])(?![\w])")
NIE_PATTERN = re.compile(r"(?<![\w])([XYZxyz][\s-]?\d{7}[\s-]?[A-Za-z])(?![\w])")
IBAN_PATTERN = re.compile(r"(?<![\w])(ES\d{2}(?:[\s-]?\d{4}){5})(?![\w])", re.IGNORECASE)
PHONE_PATTERN = re.compile(r"(?<![\d+])((?:\+34[\s-]?)?[6789]\d{2}[\s-]?\d{3}[\s-]?\d{3})(?!\d)")
POLICY_PATTERN = re.compile(
    r"p[oó]liza(?:\s+(?:n[uú]mero|n[º°o]\.?))?\s*:?\s*([A-Z0-9][A-Z0-9/\-]{5,})",
    re.IGNORECASE,
)
CLIENT_CODE_PATTERN = re.compile(
    r"c[oó]digo de cliente\s*:?\s*(?:es\s+)?([A-Z0-9]{5,})",
    re.IGNORECASE,
)
ADDRESS_PATTERN = re.compile(
    r"\b((?:calle|c/|avenida|avda\.?|plaza|paseo|camino|carretera|ronda|traves[ií]a|urbanizaci[oó]n)"
    r"\s+[^.;?!\n]{3,80})",
    re.IGNORECASE,
)
MONTHS = r"(?:enero|febrero|marzo|abril|mayo|junio|julio|agosto|septiembre|setiembre|octubre|noviembre|diciembre)"
DATE_PATTERN = re.compile(
    r"\b(\d{1,2}[/-]\d{1,2}[/-]\d{2,4}|\d{1,2} de " + MONTHS + r"(?: de(?:l)? \d{4})?)\b",
    re.IGNORECASE,
)
# Trigger is case-insensitive; the name itself must be capitalized
NAME_PATTERN = re.compile(
    r"(?i:\bme llamo|\bmi nombre es|\bsoy)\s+"
    r"([A-ZÁÉÍÓÚÑ][a-záéíóúñ]+(?:\s+(?:de\s+|del\s+|de la\s+)?[A-ZÁÉÍÓÚÑ][a-záéíóúñ]+){0,3})"
)
EFFECT_CONTEXT = re.compile(r"\b(efecto|vigor|empiece|comience|inicio|a partir del?)\b")


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class DataExtractor:
    """
    Extract ticket fields from a transcript.

    Usage:
        extractor = DataExtractor()
        data = extractor.extract(transcript, decision_incidents, oracle_data)
    """

    def extract(
        self,
        transcript: Transcript,
        incidents: Sequence[IncidentCandidate] = (),
        oracle_data: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, str]:
        """
        Extract all fields.

        Args:
            transcript: Canonical transcript
            incidents: Decision incidents, primary first
            oracle_data: Oracle datosExtraidos, if any

        Returns:
            Present fields only
        """
        stated = self.from_text(transcript)

        data: Dict[str, str] = {}
        data.update(self.from_oracle(oracle_data))
        data.update(stated)
        data.update(self.from_tools(transcript))

        if incidents:
            primary = incidents[0]
            new_value = self._new_value(primary, stated, data)
            if new_value:
                data["nuevoValor"] = new_value
            if primary.related_incident:
                data["incidenciaRelacionada"] = primary.related_incident

        logger.debug(f"[{transcript.call_id}] extracted fields: {sorted(data)}")
        return {key: data[key] for key in FIELDS if data.get(key)}

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    def from_tools(self, transcript: Transcript) -> Dict[str, str]:
        """Fields from client lookup payloads; the last lookup wins."""
        data: Dict[str, str] = {}
        for body in self._lookups(transcript):
            found: Dict[str, str] = {}
            for client in body.get("clientes") or []:
                if not isinstance(client, dict):
                    continue
                for source_key, field_name in CLIENT_FIELDS.items():
                    value = _clean(client.get(source_key))
                    if value and field_name not in found:
                        found[field_name] = value

            for policy in body.get("detalle_polizas") or []:
                if isinstance(policy, dict) and _clean(policy.get("poliza")):
                    found.setdefault("numeroPoliza", _clean(policy.get("poliza")))

            if found:
                logger.debug(f"[{transcript.call_id}] client lookup provided {sorted(found)}")
                data.update(found)
        return data

    def _lookups(self, transcript: Transcript) -> List[Dict[str, Any]]:
        """Bodies of the successful client lookups, in call order."""
        bodies = []
        for _, result in transcript.tool_results():
            if result.is_error or not isinstance(result.payload, dict):
                continue
            body = result.payload.get("data", result.payload)
            if isinstance(body, dict):
                bodies.append(body)
        return bodies

    def lead_info(self, transcript: Transcript) -> Dict[str, str]:
        """
        Campaign lead returned by a client lookup; the last lookup with leads wins.

        Returns:
            leadId, campaignName and ramo (normalized insurance line), present fields only
        """
        info: Dict[str, str] = {}
        for body in self._lookups(transcript):
            leads = [lead for lead in body.get("leads") or [] if isinstance(lead, dict)]
            if not leads:
                continue
            lead = leads[0]
            found: Dict[str, str] = {}
            for source_key, field_name in LEAD_FIELDS.items():
                value = _clean(lead.get(source_key))
                if value and field_name not in found:
                    found[field_name] = value
            if "ramo" in found:
                found["ramo"] = detect_ramo(fold(found["ramo"])) or "OTROS"
            info = found
        return info

    def client_type(self, transcript: Transcript, primary: Optional[TaxonomyEntry] = None) -> str:
        """
        Who the caller is: an existing client, a campaign lead, a new client or unknown.

        A caller no lookup found is a new client only when asking for a new policy.
        """
        bodies = self._lookups(transcript)
        if any(body.get("clientes") for body in bodies):
            return CLIENT_EXISTING
        if any(body.get("leads") for body in bodies):
            return CLIENT_LEAD
        if primary is not None and primary.tipo == NEW_POLICY:
            return CLIENT_NEW
        return CLIENT_UNKNOWN

    def from_text(self, transcript: Transcript) -> Dict[str, str]:
        """Fields stated in the conversation; later statements override earlier ones."""
        data: Dict[str, str] = {}
        previous: Optional[Turn] = None
        for turn in transcript.turns:
            if turn.speaker is Speaker.TOOL_EVENT or not turn.text:
                continue
            data.update(self._scan_turn(turn, previous))
            previous = turn
        return data

    @staticmethod
    def from_oracle(oracle_data: Optional[Dict[str, Any]]) -> Dict[str, str]:
        if not isinstance(oracle_data, dict):
            return {}
        data = {}
        for key in FIELDS:
            value = _clean(oracle_data.get(key))
            if value:
                data[key] = value
        return data

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _scan_turn(self, turn: Turn, previous: Optional[Turn] = None) -> Dict[str, str]:
        text = turn.text
        found: Dict[str, str] = {}

        ibans = IBAN_PATTERN.findall(text)
        if ibans:
            found["cuentaBancaria"] = strip_separators(ibans[-1]).upper()
        masked = IBAN_PATTERN.sub(" ", text)

        ids = self._last(DNI_PATTERN.finditer(masked), NIE_PATTERN.finditer(masked))
        if ids:
            found["dni"] = strip_separators(ids).upper()
        masked = NIE_PATTERN.sub(" ", DNI_PATTERN.sub(" ", masked))

        policies = [p for p in POLICY_PATTERN.findall(masked) if re.search(r"\d", p)]
        if policies:
            found["numeroPoliza"] = policies[-1].upper()
        masked = POLICY_PATTERN.sub(" ", masked)

        phones = PHONE_PATTERN.findall(masked)
        if phones:
            digits = re.sub(r"\D", "", phones[-1])
            found["telefono"] = digits[-9:]

        emails = extract_emails(text)
        if emails:
            found["email"] = emails[-1]

        codes = CLIENT_CODE_PATTERN.findall(text)
        if codes:
            found["codigoCliente"] = codes[-1].upper()

        addresses = ADDRESS_PATTERN.findall(text)
        if addresses:
            found["direccion"] = addresses[-1].strip(" ,")

        dates = DATE_PATTERN.findall(text)
        if dates and self._about_effect_date(turn, previous):
            found["fechaEfecto"] = dates[-1]

        if turn.is_user:
            names = NAME_PATTERN.findall(text)
            if names:
                found["nombreCliente"] = names[-1]

        return found

    @staticmethod
    def _about_effect_date(turn: Turn, previous: Optional[Turn]) -> bool:
        """A date is the effective date if the turn, or the question a caller answers, says so."""
        if EFFECT_CONTEXT.search(fold(turn.text)):
            return True
        return turn.is_user and previous is not None and not previous.is_user and bool(
            EFFECT_CONTEXT.search(fold(previous.text))
        )

    @staticmethod
    def _last(*match_groups: Iterable[re.Match]) -> Optional[str]:
        matches: List[re.Match] = [m for group in match_groups for m in group]
        if not matches:
            return None
        return max(matches, key=lambda m: m.start()).group(1)

    @staticmethod
    def _new_value(primary: IncidentCandidate, stated: Dict[str, str], data: Dict[str, str]) -> Optional[str]:
        if primary.key in (PAYMENT_CHANGE, PAYMENT_SPLIT):
            for signal in primary.supporting_signals:
                if signal.rule_family is RuleFamily.SPECIFIC_MANAGEMENT and signal.value:
                    return signal.value
            return None

        field_name = NEW_VALUE_FIELD.get(primary.key)
        if not field_name:
            return None
        return stated.get(field_name) or data.get(field_name)
