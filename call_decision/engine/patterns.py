"""
Pattern scanning helpers shared by the signal detectors.

All patterns are written against folded text (lower-case, no diacritics), so
"Póliza", "poliza" and "PÓLIZA" match the same expression.
"""

import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Pattern, Sequence

from ..transcript.models import Speaker, Transcript, Turn
from ..utils.text_utils import fold


# Explicitness multipliers for specific-management detectors
EXPLICIT = 1.0
PARAPHRASE = 0.85


def compile_patterns(patterns: Iterable[str]) -> List[Pattern]:
    return [re.compile(p) for p in patterns]


def tier_weight(priority_tier: int) -> float:
    """Weight of a taxonomy priority tier (tier 0 -> 1.0, tier 4 -> 0.6)."""
    return max(0.5, 1.0 - 0.1 * priority_tier)


@dataclass(frozen=True)
class PatternHit:
    """One regex hit inside a turn."""

    turn: Turn
    start: int
    span: str
    explicit: bool = True

    @property
    def speaker(self) -> Speaker:
        return self.turn.speaker

    @property
    def turn_index(self) -> int:
        return self.turn.index


class FoldedTranscript:
    """Transcript with per-turn folded text cached for pattern matching."""

    def __init__(self, transcript: Transcript):
        self.transcript = transcript
        self.turns = transcript.turns
        self._folded = [fold(turn.text) for turn in transcript.turns]

    def folded(self, turn: Turn) -> str:
        return self._folded[turn.index]

    def text_of(self, speakers: Optional[Sequence[Speaker]] = None) -> str:
        return "\n".join(
            self._folded[t.index] for t in self.turns if self._folded[t.index] and (not speakers or t.speaker in speakers)
        )

    def turns_of(self, speakers: Optional[Sequence[Speaker]] = None) -> List[Turn]:
        return [t for t in self.turns if not speakers or t.speaker in speakers]

    def scan(
        self,
        patterns: Sequence[Pattern],
        speakers: Optional[Sequence[Speaker]] = None,
        explicit: bool = True,
        turns: Optional[Sequence[Turn]] = None,
    ) -> List[PatternHit]:
        """
        Find every hit of any pattern, in conversation order.

        Args:
            patterns: Compiled patterns (folded text)
            speakers: Restrict to these speakers (None = all)
            explicit: Explicitness flag recorded on each hit
            turns: Restrict to these turns (default: all turns)
        """
        hits = []
        for turn in turns if turns is not None else self.turns:
            if speakers and turn.speaker not in speakers:
                continue
            folded = self._folded[turn.index]
            if not folded:
                continue
            for pattern in patterns:
                for match in pattern.finditer(folded):
                    hits.append(PatternHit(turn, match.start(), self._span(turn, folded, match), explicit))
        hits.sort(key=lambda h: (h.turn_index, h.start))
        return hits

    @staticmethod
    def _span(turn: Turn, folded: str, match) -> str:
        # Folding keeps offsets for Spanish text; fall back to folded evidence otherwise
        if len(folded) == len(turn.text):
            return turn.text[match.start():match.end()]
        return match.group(0)


def best_hit(hits: Sequence[PatternHit]) -> Optional[PatternHit]:
    """
    Pick the evidence for a detector: most explicit, then from the caller,
    then latest in the call.
    """
    if not hits:
        return None
    return max(hits, key=lambda h: (h.explicit, h.speaker is Speaker.USER, h.turn_index, h.start))


def any_match(patterns: Sequence[Pattern], text: str) -> bool:
    return any(p.search(text) for p in patterns)


# ============================================================================
# Ramo (insurance line)
# ============================================================================

RAMO_PATTERNS = {
    "HOGAR": compile_patterns([r"\b(hogar|casa|vivienda|piso|chalet)\b"]),
    "AUTO": compile_patterns([r"\b(coche|auto|automovil|vehiculo|turismo|furgoneta|moto|motocicleta)\b"]),
    "VIDA": compile_patterns([r"\bvida\b"]),
    "DECESOS": compile_patterns([r"\bdecesos?\b"]),
    "SALUD": compile_patterns([r"\b(salud|medico|sanitario|dental)\b"]),
    "OTROS": compile_patterns([r"\b(viaje|mascota|comercio|negocio|responsabilidad civil|accidentes personales)\b"]),
}


def detect_ramo(text: str) -> Optional[str]:
    """
    Detect the insurance line mentioned in folded text.

    The last mention wins (callers often correct themselves).

    Returns:
        HOGAR | AUTO | VIDA | DECESOS | SALUD | OTROS, or None if not mentioned
    """
    best = None
    best_pos = -1
    for ramo, patterns in RAMO_PATTERNS.items():
        for pattern in patterns:
            for match in pattern.finditer(text or ""):
                if match.start() > best_pos:
                    best, best_pos = ramo, match.start()
    return best
