"""
Specific-management topic detectors.

One detector per administrative topic. Each detector yields at most one
SignalMatch per call; its strength is the taxonomy tier weight of the proposed
pair times the explicitness of the evidence (exact phrase > paraphrase).
"""

import logging
import re
from typing import Callable, List, Optional, Tuple

from ..core.exceptions import UnknownTaxonomyPairError
from ..taxonomy.store import (
    COMMERCIAL_CALL,
    DUPLICATE_REQUEST,
    GENERIC_HANDOFF,
    NEW_POLICY,
    POLICY_MODIFICATION,
    ROADSIDE_ASSISTANCE,
    Taxonomy,
    TaxonomyKey,
)
from ..transcript.models import Speaker
from .models import RuleFamily, SignalMatch
from .patterns import (
    EXPLICIT,
    PARAPHRASE,
    FoldedTranscript,
    PatternHit,
    any_match,
    best_hit,
    compile_patterns,
    tier_weight,
)


logger = logging.getLogger(__name__)

USER = (Speaker.USER,)
AGENT = (Speaker.AGENT,)

# Strength of behavioral human-transfer markers raised by topic detectors
TRANSFER_STRENGTH = 0.5

# Pairs proposed by the detectors
CARD_DUPLICATE: TaxonomyKey = (DUPLICATE_REQUEST, "Duplicado Tarjeta")
EMAIL_DUPLICATE: TaxonomyKey = (DUPLICATE_REQUEST, "Email")
TAX_RECEIPTS: TaxonomyKey = (DUPLICATE_REQUEST, "Información recibos declaración renta")
PAYMENT_SPLIT: TaxonomyKey = (COMMERCIAL_CALL, "Cambio forma de pago")
PAYMENT_CHANGE: TaxonomyKey = (POLICY_MODIFICATION, "Cambio forma de pago")
BANK_ACCOUNT: TaxonomyKey = (POLICY_MODIFICATION, "Cambio nº de cuenta")
ADDRESS_CHANGE: TaxonomyKey = (POLICY_MODIFICATION, "Cambio dirección postal")
EFFECTIVE_DATE: TaxonomyKey = (POLICY_MODIFICATION, "Cambio fecha de efecto")
INSURED_CHANGE: TaxonomyKey = (POLICY_MODIFICATION, "Modificación nº asegurados")
COVERAGE_CHANGE: TaxonomyKey = (POLICY_MODIFICATION, "Modificación coberturas")
RIGHTS_ASSIGNMENT: TaxonomyKey = (POLICY_MODIFICATION, "Cesión de derechos")
RIGHTS_ASSIGNMENT_INCOMPLETE: TaxonomyKey = (POLICY_MODIFICATION, "Cesión de derechos datos incompletos")
DATA_CORRECTION: TaxonomyKey = (POLICY_MODIFICATION, "Corrección datos erróneos en póliza")
POLICY_DATA_CHANGE: TaxonomyKey = (POLICY_MODIFICATION, "Atención al cliente - Modif datos póliza")
NEW_CONTRACT: TaxonomyKey = (NEW_POLICY, "Contratación Póliza")
NEW_CONTRACT_SUSPENDED: TaxonomyKey = (NEW_POLICY, "Póliza anterior suspensión de garantías")
ROADSIDE: TaxonomyKey = (ROADSIDE_ASSISTANCE, "Siniestros")
RETENTION: TaxonomyKey = ("Retención cliente", "Retención cliente")
DATABASE_REMOVAL: TaxonomyKey = ("Baja cliente en BBDD", "Baja Cliente BBDD")
GIFT_COMPLAINT: TaxonomyKey = ("Reclamación cliente regalo", "Reclamación atención al cliente")
QUERY_RESOLVED: TaxonomyKey = (COMMERCIAL_CALL, "Consulta cliente")
QUERY_UNRESOLVED: TaxonomyKey = (COMMERCIAL_CALL, "LLam gestión comerc")


# ============================================================================
# Patterns (folded text)
# ============================================================================

CARD_PATTERNS = compile_patterns([
    r"\b(duplicado|copia|otra|nueva)( de)?( la| mi)? tarjeta",
    r"\btarjeta( del seguro| sanitaria| de asistencia| medica)? (nueva|duplicad[ao])",
    r"\b(he perdido|se me ha perdido|me han robado|no encuentro|se me ha roto)( la| mi) tarjeta",
])

TAX_RECEIPT_PATTERNS = compile_patterns([
    r"\brecibos?\b[^.?!]{0,40}\b(declaracion de la renta|la renta|hacienda)\b",
    r"\bcertificado\b[^.?!]{0,40}\b(renta|hacienda|fiscal)\b",
])

DUPLICATE_PATTERNS = compile_patterns([
    r"\b(duplicado|copia)\b",
    r"\b(enviar|mandar|reenviar|enviarme|mandarme|reenviarme|envien|manden)( de nuevo| otra vez)?( la| una| mi) poliza\b",
])

EMAIL_CHANNEL_PATTERNS = compile_patterns([
    r"\be-?mail\b",
    r"\bcorreo electronico\b",
    r"\bmail\b",
])

POSTAL_CHANNEL_PATTERNS = compile_patterns([
    r"\bcorreo (ordinario|postal|normal|certificado)\b",
    r"\bpor correo\b(?! electronico)",
    r"\b(direccion|domicilio) postal\b",
    r"\bpor carta\b",
    r"\ba (mi|su) (casa|domicilio)\b",
])

PAYMENT_TRIGGER_PATTERNS = compile_patterns([
    r"\bfraccion(ar|ado|ados|amiento|arlo|arla)\b",
    r"\b(cambiar|cambio|modificar|modificacion)( de| la| mi| su| el)* forma de pago\b",
    r"\bforma de pago\b[^.?!]{0,30}\b(cambiar(la)?|modificar(la)?|otra|distinta)\b",
    r"\b(cambiar|pasar|poner|cambio|paso|cambie|pasarlo|ponerlo|cambiarlo)\b[^.?!]{0,30}\b(mensual|trimestral|semestral|anual)(mente)?\b",
])

PERIODICITY = re.compile(r"\b(mensual|trimestral|semestral|anual)(mente)?\b")
# Periodicity the caller moves to: "pasar a anual", "cambiar a pago mensual", "fraccionar en trimestral"
TARGET_PERIODICITY = re.compile(
    r"\b(?:a|al|en|por)\s+(?:(?:un |el )?pago\s+)?(mensual|trimestral|semestral|anual)(?:mente)?\b"
)
SPLIT_MENTION = re.compile(r"\bfraccion(ar|ado|ados|amiento|arlo|arla)\b")

BANK_PATTERNS = compile_patterns([
    r"\b(cambiar|cambio|modificar|actualizar)( de| el| la| mi| su| numero| n(o|um)\.?)* (cuenta|iban|domiciliacion|banco|entidad bancaria)\b",
    r"\b(nueva|nuevo|otra|otro) (cuenta|iban|numero de cuenta|banco)\b",
    r"\bdomiciliar\b[^.?!]{0,30}\b(otra|nueva|otro|nuevo)\b",
])

ADDRESS_PATTERNS = compile_patterns([
    r"\b(cambiar|cambio|modificar|actualizar)( de| el| la| mi| su)* (direccion|domicilio)\b",
    r"\bnuev[oa] (direccion|domicilio)\b",
])
ADDRESS_PARAPHRASE = compile_patterns([r"\bme he (mudado|cambiado de casa)\b", r"\bmudanza\b"])

EFFECTIVE_DATE_PATTERNS = compile_patterns([
    r"\b(cambiar|cambio|modificar|mover|retrasar|adelantar|aplazar)( de| el| la| mi| su)* fecha (de efecto|de inicio|de entrada en vigor|de alta|de vigencia)\b",
])
EFFECTIVE_DATE_PARAPHRASE = compile_patterns([
    r"\bfecha de efecto\b",
    r"\b(empiece|entre en vigor|comience|arranque)\b[^.?!]{0,20}\b(el dia|el|a partir del|desde el)\b",
])

RELATIVE = (
    r"(hijo|hija|hijos|esposa|esposo|marido|mujer|pareja|conyuge|familiar|asegurado|asegurada|beneficiario|"
    r"bebe|nieto|nieta|madre|padre|ex ?esposa|ex ?marido|ex ?mujer)"
)
INSURED_PATTERNS = compile_patterns([
    r"\b(anadir|incluir|agregar|meter|dar de alta|quitar|excluir|sacar|eliminar|dar de baja)( a| al| como)?"
    r"( mi| un| una| otro| otra| nuevo| nueva| el| la| mis)? " + RELATIVE + r"\b",
    r"\b(nuevo|otro) asegurado\b",
])

COVERAGE_PATTERNS = compile_patterns([
    r"\b(cambiar|cambio|modificar|ampliar|reducir|quitar|anadir|incluir|bajar|subir|mejorar)"
    r"( de| el| la| las| los| mis| una| alguna)* coberturas?\b",
    r"\b(pasar|cambiar|cambio)( de| a)? (a|de) (todo riesgo|terceros)( ampliado)?\b",
])
COVERAGE_PARAPHRASE = compile_patterns([r"\bcoberturas?\b[^.?!]{0,30}\b(mas|menos|otra|distinta|ampliad)"])

RIGHTS_PATTERNS = compile_patterns([r"\bcesion de (los )?derechos\b", r"\bceder (los )?derechos\b"])
RIGHTS_DATA_PATTERNS = compile_patterns([
    r"\b\d[\d.,]*\s?(euros|€)",
    r"\bexpediente\b[^.?!]{0,20}\d",
    r"\b(numero de prestamo|prestamo numero)\b[^.?!]{0,20}\d",
    r"\b(banco|caixa|caixabank|santander|bbva|sabadell|bankinter|ing|unicaja|kutxabank|abanca|ibercaja|cajamar)\b"
    r"[^.?!]{0,40}\b(prestamo|hipoteca)\b",
])

CORRECTION_PATTERNS = compile_patterns([
    r"\b(datos|nombre|apellidos?|dni|matricula|fecha de nacimiento|poliza)\b[^.?!]{0,40}"
    r"\b(erroneos?|erroneas?|incorrect[oa]s?|equivocad[oa]s?|mal escrit[oa]s?|esta mal|estan mal)\b",
    r"\b(error|errata|errores) (en|de) (la|mi|los|el|mis) (poliza|datos|nombre|dni|apellidos?|matricula)\b",
])
CORRECTION_PARAPHRASE = compile_patterns([r"\bcorregir\b"])

POLICY_DATA_PATTERNS = compile_patterns([
    r"\b(cambiar|modificar|actualizar|cambio de)( de| el| la| mi| mis| su| sus)* "
    r"(nombre|apellidos?|telefono|movil|correo electronico|email|matricula|vehiculo|coche|datos personales|"
    r"profesion|dni|fecha de nacimiento|conductor)\b",
])

NEW_POLICY_PATTERNS = compile_patterns([
    r"\b(contratar|sacar|hacerme|hacer)( un| una| otro| otra)? (nuevo |nueva )?(seguro|poliza)\b",
    r"\b(presupuesto|tarificacion|cotizacion)( para| de)?( un| una)? seguro\b",
    r"\b(quiero|necesito|busco|me interesa|queria) (un|otro) (nuevo )?seguro\b",
    r"\bnueva (contratacion|poliza)\b",
])
NEW_POLICY_PARAPHRASE = compile_patterns([r"\b(presupuesto|cotizacion|tarificacion)\b"])
SUSPENSION_PATTERNS = compile_patterns([
    r"\bsuspension de (las )?garantias\b",
    r"\breserva de prima\b",
    r"\bpoliza anterior\b[^.?!]{0,30}\b(suspendida|suspension)\b",
])

ROADSIDE_PATTERNS = compile_patterns([
    r"\bgrua\b",
    r"\basistencia en carretera\b",
    r"\b(me he quedado|estoy|me quede) (tirad[oa]|parad[oa]|sin bateria)\b",
    r"\b(averia|pinchazo)\b",
])

CANCELLATION_PATTERNS = compile_patterns([
    r"\b(anular|cancelar|dar de baja|darme de baja de|rescindir)( la| mi| el| mis)? (poliza|seguro|contrato)\b",
    r"\b(baja|anulacion|cancelacion) de (la|mi|el) (poliza|seguro)\b",
])
CANCELLATION_PARAPHRASE = compile_patterns([r"\bno (quiero )?renovar\b"])

DATABASE_REMOVAL_PATTERNS = compile_patterns([
    r"\bno (quiero que me llamen|me llamen mas|me vuelvan a llamar)\b",
    r"\b(dejen|deje|dejad) de llamar(me)?\b",
    r"\b(borrar|eliminar|borren|eliminen|quitar|quiten) (mis|todos mis) datos\b",
    r"\bbaja de (la )?(base de datos|bbdd|publicidad|comunicaciones)\b",
    r"\bno quiero recibir (mas )?(llamadas|publicidad|ofertas)\b",
])

NOT_RECEIVED = r"(no (me )?(ha llegado|han (enviado|dado|mandado)|he recibido)|prometid[oa]|todavia no|aun no)"
GIFT_PATTERNS = compile_patterns([
    r"\bregalo\b[^.?!]{0,60}\b" + NOT_RECEIVED,
    r"\b" + NOT_RECEIVED + r"\b[^.?!]{0,60}\bregalo\b",
])

QUERY_PATTERNS = compile_patterns([
    r"\b(cual es|cuales son|cuando (vence|se cobra|entra|es|pasan|me cobran)|cuanto (pago|cuesta|es|me cobran|vale)|"
    r"quisiera saber|queria saber|quiero saber|me (podria|puede|podrias|puedes) (decir|confirmar|indicar)|"
    r"me dice|me confirma|que (numero|fecha|importe|coberturas?|dia|precio))\b[^.?!]{0,60}"
    r"\b(numero de poliza|poliza|fecha|vencimiento|recibo|importe|precio|prima|coberturas?|compania|aseguradora|"
    r"cuota|franquicia|cuenta|forma de pago|periodicidad)\b",
])
UNRESOLVED_PATTERNS = compile_patterns([
    r"\bno (tengo|dispongo de|puedo ver|puedo acceder a|tenemos) (acceso|esa informacion|la informacion|esos datos)\b",
    r"\btomo nota\b",
    r"\b(un|una|mis|nuestros) (companer[oa]s?|gestor(a|es)?|agentes?) (se pondra|se pondran|le llamara|le llamaran|"
    r"le contactara|le contactaran|revisara|revisaran|se encargara)\b",
    r"\bno (se lo puedo|le puedo|puedo) (confirmar|decir|indicar)\b",
])


class TopicDetectors:
    """
    Fan-out of specific-management detectors.

    Usage:
        detectors = TopicDetectors(taxonomy)
        matches = detectors.detect(FoldedTranscript(transcript))
    """

    def __init__(self, taxonomy: Taxonomy):
        self.taxonomy = taxonomy
        self._detectors: List[Callable[[FoldedTranscript], List[SignalMatch]]] = [
            self.detect_duplicates,
            self.detect_payment_method,
            self._simple("bank_account", BANK_ACCOUNT, BANK_PATTERNS),
            self._simple("address_change", ADDRESS_CHANGE, ADDRESS_PATTERNS, ADDRESS_PARAPHRASE),
            self._simple("effective_date", EFFECTIVE_DATE, EFFECTIVE_DATE_PATTERNS, EFFECTIVE_DATE_PARAPHRASE),
            self._simple("insured_change", INSURED_CHANGE, INSURED_PATTERNS),
            self._simple("coverage_change", COVERAGE_CHANGE, COVERAGE_PATTERNS, COVERAGE_PARAPHRASE),
            self.detect_rights_assignment,
            self._simple("data_correction", DATA_CORRECTION, CORRECTION_PATTERNS, CORRECTION_PARAPHRASE),
            self._simple("policy_data_change", POLICY_DATA_CHANGE, POLICY_DATA_PATTERNS),
            self.detect_new_policy,
            self._simple("roadside_assistance", ROADSIDE, ROADSIDE_PATTERNS),
            self._simple("cancellation", RETENTION, CANCELLATION_PATTERNS, CANCELLATION_PARAPHRASE),
            self._simple("database_removal", DATABASE_REMOVAL, DATABASE_REMOVAL_PATTERNS),
            self._simple("gift_complaint", GIFT_COMPLAINT, GIFT_PATTERNS),
            self.detect_informational_query,
        ]

    def detect(self, ft: FoldedTranscript) -> List[SignalMatch]:
        matches = []
        for detector in self._detectors:
            matches.extend(detector(ft))
        return matches

    # ------------------------------------------------------------------
    # Match construction
    # ------------------------------------------------------------------

    def checked_key(self, key: TaxonomyKey) -> TaxonomyKey:
        """Validate a proposed pair; substitute the nearest one if unknown."""
        try:
            return self.taxonomy.get(*key).key
        except UnknownTaxonomyPairError as e:
            return self.taxonomy.resolve(e.tipo, e.motivo).key

    def specific(self, topic: str, key: TaxonomyKey, hit: PatternHit, value: Optional[str] = None) -> SignalMatch:
        key = self.checked_key(key)
        entry = self.taxonomy.get(*key)
        explicitness = EXPLICIT if hit.explicit else PARAPHRASE
        return SignalMatch(
            rule_family=RuleFamily.SPECIFIC_MANAGEMENT,
            matched_span=hit.span,
            strength=tier_weight(entry.priority_tier) * explicitness,
            turn_index=hit.turn_index,
            topic=topic,
            entry_key=key,
            speaker=hit.speaker,
            span_start=hit.start,
            value=value,
        )

    def transfer(self, topic: str, hit: PatternHit) -> SignalMatch:
        return SignalMatch(
            rule_family=RuleFamily.HUMAN_TRANSFER,
            matched_span=hit.span,
            strength=TRANSFER_STRENGTH,
            turn_index=hit.turn_index,
            topic=topic,
            entry_key=self.checked_key(GENERIC_HANDOFF),
            speaker=hit.speaker,
            span_start=hit.start,
        )

    def _simple(self, topic, key, exact_patterns, paraphrase_patterns=(), speakers=USER):
        """Build a detector that maps exact/paraphrase hits to one pair."""

        def detector(ft: FoldedTranscript) -> List[SignalMatch]:
            hits = ft.scan(exact_patterns, speakers) + ft.scan(paraphrase_patterns, speakers, explicit=False)
            hit = best_hit(hits)
            return [self.specific(topic, key, hit)] if hit else []

        detector.__name__ = f"detect_{topic}"
        return detector

    # ------------------------------------------------------------------
    # Detectors with extra logic
    # ------------------------------------------------------------------

    def detect_duplicates(self, ft: FoldedTranscript) -> List[SignalMatch]:
        """
        Duplicate requests: card > tax receipts > delivery channel.

        A duplicate without an explicit channel resolves to email (least
        restrictive). Ordinary/postal delivery is a human-transfer outcome.
        """
        card = best_hit(ft.scan(CARD_PATTERNS, USER) + ft.scan(CARD_PATTERNS, AGENT, explicit=False))
        if card:
            return [self.specific("card_duplicate", CARD_DUPLICATE, card)]

        tax = best_hit(ft.scan(TAX_RECEIPT_PATTERNS, USER))
        if tax:
            return [self.specific("tax_receipts", TAX_RECEIPTS, tax)]

        requests = ft.scan(DUPLICATE_PATTERNS, USER)
        if not requests:
            return []
        request = max(requests, key=lambda h: (h.turn_index, h.start))

        # Channel evidence: the request turns and the reply right after each
        channel_turns = []
        for hit in requests:
            for turn in ft.turns[hit.turn_index:hit.turn_index + 2]:
                if turn not in channel_turns:
                    channel_turns.append(turn)

        email = any_match(EMAIL_CHANNEL_PATTERNS, "\n".join(ft.folded(t) for t in channel_turns))
        postal = best_hit(ft.scan(POSTAL_CHANNEL_PATTERNS, turns=channel_turns))

        if email and postal:
            logger.warning(
                f"[{ft.transcript.call_id}] duplicate requested with both email and postal delivery; "
                f"resolving to email. Flag for taxonomy review"
            )
        if email:
            return [self.specific("email_duplicate", EMAIL_DUPLICATE, request)]
        if postal:
            return [self.transfer("ordinary_mail_duplicate", postal)]

        unspecified = PatternHit(request.turn, request.start, request.span, explicit=False)
        return [self.specific("email_duplicate", EMAIL_DUPLICATE, unspecified)]

    def detect_payment_method(self, ft: FoldedTranscript) -> List[SignalMatch]:
        """
        Payment periodicity change.

        Annual -> split (fraccionamiento) is a commercial management; moving to
        annual or between split periodicities modifies the issued policy.
        """
        hits = ft.scan(PAYMENT_TRIGGER_PATTERNS, USER)
        if not hits:
            return []
        hit = best_hit(hits)

        user_text = ft.text_of(USER)
        split_mentioned = bool(SPLIT_MENTION.search(ft.text_of()))
        current, target = self._periodicities(user_text)

        if target == "anual" and (current is None or current != "anual"):
            key = PAYMENT_CHANGE
        elif current is not None and current != "anual" and target != "anual" and not split_mentioned:
            key = PAYMENT_CHANGE
        else:
            key = PAYMENT_SPLIT

        explicit = split_mentioned or current is not None or "forma de pago" in user_text
        evidence = PatternHit(hit.turn, hit.start, hit.span, explicit=explicit)
        return [self.specific("payment_method", key, evidence, value=target)]

    @staticmethod
    def _periodicities(text: str) -> Tuple[Optional[str], Optional[str]]:
        """
        (current, target) periodicities stated by the caller.

        The target follows "a", "en" or "al" ("pasar a anual"); without one the
        last mention is the target. The current one is the last other mention.
        """
        targets = list(TARGET_PERIODICITY.finditer(text))
        if targets:
            target = targets[-1].group(1)
            spans = [(m.start(1), m.end(1)) for m in targets]
            others = [
                m.group(1) for m in PERIODICITY.finditer(text)
                if not any(start <= m.start() < end for start, end in spans)
            ]
            return (others[-1] if others else None), target

        periods = [m.group(1) for m in PERIODICITY.finditer(text)]
        if not periods:
            return None, None
        return (periods[-2] if len(periods) > 1 else None), periods[-1]

    def detect_rights_assignment(self, ft: FoldedTranscript) -> List[SignalMatch]:
        hit = best_hit(ft.scan(RIGHTS_PATTERNS, USER) + ft.scan(RIGHTS_PATTERNS, AGENT, explicit=False))
        if not hit:
            return []
        has_data = any_match(RIGHTS_DATA_PATTERNS, ft.text_of(USER))
        key = RIGHTS_ASSIGNMENT if has_data else RIGHTS_ASSIGNMENT_INCOMPLETE
        return [self.specific("rights_assignment", key, hit)]

    def detect_new_policy(self, ft: FoldedTranscript) -> List[SignalMatch]:
        hit = best_hit(ft.scan(NEW_POLICY_PATTERNS, USER) + ft.scan(NEW_POLICY_PARAPHRASE, USER, explicit=False))
        if not hit:
            return []
        suspended = any_match(SUSPENSION_PATTERNS, ft.text_of())
        return [self.specific("new_policy", NEW_CONTRACT_SUSPENDED if suspended else NEW_CONTRACT, hit)]

    def detect_informational_query(self, ft: FoldedTranscript) -> List[SignalMatch]:
        """
        Informational query.

        The agent admitting it cannot answer (or deferring to a colleague)
        makes it an unresolved commercial call; a question followed by an agent
        reply is a resolved client query.
        """
        unresolved = best_hit(ft.scan(UNRESOLVED_PATTERNS, AGENT))
        if unresolved:
            return [self.specific("informational_query", QUERY_UNRESOLVED, unresolved)]

        questions = ft.scan(QUERY_PATTERNS, USER, explicit=False)
        answered = [
            q for q in questions
            if any(t.speaker is Speaker.AGENT and t.text for t in ft.turns[q.turn_index + 1:])
        ]
        hit = best_hit(answered)
        return [self.specific("informational_query", QUERY_RESOLVED, hit)] if hit else []
