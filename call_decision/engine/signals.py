"""
Signal Extractor

Runs every detector family over the whole transcript and keeps all matches
with their turn provenance. Families are independent: no detector looks at
another detector's result, and nothing exits early. Conflict resolution is the
decision engine's job.
"""

import logging
import re
from typing import List, Optional

from ..taxonomy.store import CLAIMS_HANDOFF, GENERIC_HANDOFF, NOT_POLICYHOLDER, REJECTS_AUTOMATION, Taxonomy
from ..transcript.models import Speaker, Transcript
from .models import RuleFamily, SignalMatch
from .patterns import FoldedTranscript, PatternHit, any_match, best_hit, compile_patterns
from .topics import INSURED_PATTERNS, TopicDetectors


logger = logging.getLogger(__name__)

USER = (Speaker.USER,)
AGENT = (Speaker.AGENT,)

# Family strengths; AI rejection outweighs everything else
FAMILY_STRENGTH = {
    RuleFamily.AI_REJECTION: 1.5,
    RuleFamily.NON_POLICYHOLDER: 1.2,
    RuleFamily.INCOMPLETE_DATA: 1.1,
    RuleFamily.HUMAN_TRANSFER: 0.5,
    RuleFamily.RECALL: 0.5,
}


AI_REJECTION_PATTERNS = compile_patterns([
    r"\bno quiero (hablar|tratar|seguir hablando) con (una |un |la |el )?"
    r"(maquina|robot|ia|inteligencia artificial|contestador|grabacion|bot|asistente virtual)\b",
    r"\b(quiero|prefiero|necesito|exijo) hablar con (una |un )?(persona|humano|agente|operador|operadora)\b",
    r"\b(pasame|paseme|pongame|ponme) con (una |un )?(persona|humano|agente|operador|operadora)\b",
    r"\bno (me gusta|quiero) (hablar con )?(la |una |un )?(ia|inteligencia artificial|maquina|robot)\b",
])

THIRD_PARTY = (
    r"(hermano|hermana|madre|padre|mujer|marido|esposa|esposo|hijo|hija|pareja|suegro|suegra|tio|tia|"
    r"abuelo|abuela|jefe|jefa|vecino|vecina|amigo|amiga|cunado|cunada)"
)
NON_POLICYHOLDER_USER_PATTERNS = compile_patterns([
    r"\b(llamo|llamando|le llamo) (de parte|en nombre) de\b",
    r"\bno soy (el |la )?(titular|tomador|tomadora)\b",
    r"\b(poliza|seguro|recibos?|contrato)( que tiene)? (de|a nombre de) mi " + THIRD_PARTY + r"\b",
    r"\bmi " + THIRD_PARTY + r" (es el|es la|que es el|que es la) (titular|tomador|tomadora)\b",
    r"\b(la poliza|el seguro) (es|esta) a nombre de (mi|otra persona)\b",
])
NON_POLICYHOLDER_AGENT_PATTERNS = compile_patterns([
    r"\b(usted )?no (es|figura como|consta como) (el |la )?(titular|tomador|tomadora)\b",
    r"\bsolo (puedo|podemos) (gestionar|tratar|hablar|realizar)[^.?!]{0,30}\b(con el|con la) (titular|tomador|tomadora)\b",
])

# Agent asks the caller to call back...
CALLBACK_PATTERNS = compile_patterns([
    r"\b(vuelva|volver|vuelve) a (llamar|contactar)(nos|me)?\b",
    r"\bnos (vuelva|vuelve) a llamar\b",
    r"\bllam(e|enos|eme) (de nuevo|otra vez|mas tarde|cuando)\b",
    r"\b(contacte|contactenos) (de nuevo|otra vez|cuando)\b",
])
# ...because required information is missing
MISSING_DATA_PATTERNS = compile_patterns([
    r"\bcuando (lo |la |los |las )?(tenga|disponga)\b",
    r"\bsin (esos|estos|ese|este|esa|esta|los|el|la|las) (datos|dato|informacion|numero|documentacion|documentos)\b"
    r"[^.?!]{0,30}\bno (puedo|podemos|es posible)\b",
    r"\bno (lo|la|los|las) (tiene|tengo|tenemos)\b",
    r"\bno (tengo|tiene|tenemos|dispongo|dispone)( aqui| a mano| ahora)? (el|la|los|las|esos|ese|esa|esas) "
    r"(dato|datos|numero|iban|informacion|documentacion|documentos|cuenta)\b",
    r"\bfalta(n)? (el |la |los |las |algun |algunos )?(dato|datos|numero|informacion|documentacion|documentos)\b",
])

AGENT_TRANSFER_PATTERNS = compile_patterns([
    r"\b(le|te) (paso|pasare|voy a pasar|transfiero|transferire|voy a transferir|derivo|pongo|voy a poner) con\b",
    r"\b(le|te) (transfiero|derivo)\b",
    r"\b(transferir|pasar|derivar|poner)(le|te) con (un|una|mis|nuestros|nuestras|el|la|otro|otra)\b",
])
RECEIPT_PAYMENT_PATTERNS = compile_patterns([
    r"\bpagar (el |un |mi |los |este |ese |el ultimo )?recibos?\b",
    r"\brecibos? (pendientes?|impagad[oa]s?|devuelt[oa]s?|atrasad[oa]s?|sin pagar)\b",
])
CLAIMS_PATTERNS = compile_patterns([
    r"\bsiniestros?\b",
    r"\bdar (un |el )?parte\b",
    r"\bparte (de|del) (accidente|siniestro)\b",
    r"\bhe tenido un (accidente|golpe|choque)\b",
    r"\b(se me ha|me han|se ha) (inundado|robado|quemado)\b",
])
COMPLAINT_PATTERNS = compile_patterns([
    r"\b(poner|presentar|hacer) una (queja|reclamacion)\b",
    r"\bestoy (muy )?(descontent[oa]|hart[oa]|enfadad[oa]|indignad[oa])\b",
    r"\bquiero (quejarme|reclamar)\b",
])
GIFT_MENTION = re.compile(r"\bregalo\b")

RECALL_PATTERNS = compile_patterns([
    r"\b(ya|antes) (he |habia |hemos )?llamad[oa]\b",
    r"\b(ya )?(llame|llamamos) (ayer|antes|la semana pasada|hace unos dias|el otro dia|esta manana)\b",
    r"\b(tengo|tenia|hay|tenemos) (una|un) (incidencia|caso|gestion|reclamacion|ticket) "
    r"(abiert[oa]|pendiente|en curso)\b",
    r"\b(sobre|por|respecto a|referente a) (la|mi|el) (incidencia|caso|gestion|reclamacion) "
    r"(que|anterior|abiert[oa]|pendiente)\b",
])
INCIDENT_CODE = re.compile(r"\bng\s?-?\d{5,}\b")


class SignalExtractor:
    """
    Produce every SignalMatch for a transcript.

    Usage:
        extractor = SignalExtractor(taxonomy)
        signals = extractor.extract(transcript)
    """

    def __init__(self, taxonomy: Taxonomy):
        self.taxonomy = taxonomy
        self.topics = TopicDetectors(taxonomy)

    def extract(self, transcript: Transcript) -> List[SignalMatch]:
        """
        Run all detector families.

        Args:
            transcript: Canonical transcript

        Returns:
            All matches, in detector order
        """
        ft = FoldedTranscript(transcript)

        matches: List[SignalMatch] = []
        for family_detector in (
            self.detect_ai_rejection,
            self.detect_non_policyholder,
            self.detect_incomplete_data,
            self.detect_human_transfer,
            self.detect_recall,
        ):
            matches.extend(family_detector(ft))
        matches.extend(self.topics.detect(ft))

        for match in matches:
            logger.debug(
                f"[{transcript.call_id}] signal {match.rule_family.value}/{match.topic} "
                f"turn={match.turn_index} strength={match.strength:.2f} span={match.matched_span!r}"
            )
        return matches

    def _family_match(self, family: RuleFamily, topic: str, hit: PatternHit, entry_key=None, value=None) -> SignalMatch:
        return SignalMatch(
            rule_family=family,
            matched_span=hit.span,
            strength=FAMILY_STRENGTH[family],
            turn_index=hit.turn_index,
            topic=topic,
            entry_key=self.topics.checked_key(entry_key) if entry_key else None,
            speaker=hit.speaker,
            span_start=hit.start,
            value=value,
        )

    def detect_ai_rejection(self, ft: FoldedTranscript) -> List[SignalMatch]:
        hit = best_hit(ft.scan(AI_REJECTION_PATTERNS, USER))
        if not hit:
            return []
        return [self._family_match(RuleFamily.AI_REJECTION, "rejects_automation", hit, REJECTS_AUTOMATION)]

    def detect_non_policyholder(self, ft: FoldedTranscript) -> List[SignalMatch]:
        """
        Caller is not the policyholder.

        Mentions of relatives inside an insured-person change ("añadir a mi
        hijo") are the holder managing their own policy and do not count.
        """
        hits = [
            hit for hit in ft.scan(NON_POLICYHOLDER_USER_PATTERNS, USER)
            if not any_match(INSURED_PATTERNS, ft.folded(hit.turn))
        ]
        hits += ft.scan(NON_POLICYHOLDER_AGENT_PATTERNS, AGENT)
        hit = best_hit(hits)
        if not hit:
            return []
        return [self._family_match(RuleFamily.NON_POLICYHOLDER, "not_policyholder", hit, NOT_POLICYHOLDER)]

    def detect_incomplete_data(self, ft: FoldedTranscript) -> List[SignalMatch]:
        """
        Agent defers the management until the caller has the missing data.

        A callback request counts only with a missing-data statement in the
        same turn or the turns right before and after it; "si necesita algo
        más, vuelva a llamarnos" is a farewell.
        """
        hits = []
        for hit in ft.scan(CALLBACK_PATTERNS, AGENT):
            window = ft.turns[max(hit.turn_index - 1, 0):hit.turn_index + 2]
            if any(any_match(MISSING_DATA_PATTERNS, ft.folded(turn)) for turn in window):
                hits.append(hit)
        hit = best_hit(hits)
        if not hit:
            return []
        return [self._family_match(RuleFamily.INCOMPLETE_DATA, "incomplete_data", hit)]

    def detect_human_transfer(self, ft: FoldedTranscript) -> List[SignalMatch]:
        """
        Behavioral human-transfer markers (one per topic).

        Ordinary-mail duplicates are raised by the duplicate topic detector.
        """
        matches = []

        hit = best_hit(ft.scan(AGENT_TRANSFER_PATTERNS, AGENT))
        if hit:
            matches.append(self._family_match(RuleFamily.HUMAN_TRANSFER, "agent_transfer", hit, GENERIC_HANDOFF))

        hit = best_hit(ft.scan(RECEIPT_PAYMENT_PATTERNS, USER))
        if hit:
            matches.append(self._family_match(RuleFamily.HUMAN_TRANSFER, "receipt_payment", hit, GENERIC_HANDOFF))

        hit = best_hit(ft.scan(CLAIMS_PATTERNS, USER))
        if hit:
            matches.append(self._family_match(RuleFamily.HUMAN_TRANSFER, "claims_transfer", hit, CLAIMS_HANDOFF))

        complaints = [h for h in ft.scan(COMPLAINT_PATTERNS, USER) if not GIFT_MENTION.search(ft.folded(h.turn))]
        hit = best_hit(complaints)
        if hit:
            matches.append(self._family_match(RuleFamily.HUMAN_TRANSFER, "general_complaint", hit, GENERIC_HANDOFF))

        return matches

    def detect_recall(self, ft: FoldedTranscript) -> List[SignalMatch]:
        """Follow-up on a previously opened case; keeps the incident code if quoted."""
        hits = ft.scan(RECALL_PATTERNS, USER)
        code_hits = ft.scan([INCIDENT_CODE], USER)
        hit = best_hit(code_hits) or best_hit(hits)
        if not hit:
            return []
        code = self._incident_code(hit.span) if code_hits else None
        return [self._family_match(RuleFamily.RECALL, "recall", hit, value=code)]

    @staticmethod
    def _incident_code(span: str) -> Optional[str]:
        digits = re.sub(r"\D", "", span)
        return f"NG{digits}" if digits else None
