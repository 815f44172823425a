"""
Taxonomy Store

Holds the closed set of valid (tipo, motivo) ticket pairs. A loaded Taxonomy is
an immutable snapshot; TaxonomyStore swaps the whole snapshot on reload so
in-flight classifications keep the snapshot they started with.
"""

import difflib
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterable, List, Optional, Tuple, Union

import yaml

from ..core.exceptions import TaxonomyLoadError, UnknownTaxonomyPairError
from ..utils.text_utils import fold


logger = logging.getLogger(__name__)

TaxonomyKey = Tuple[str, str]

DEFAULT_TAXONOMY_PATH = Path(__file__).parent / "default_taxonomy.yaml"

# Well-known pairs the decision phases rely on
COMMERCIAL_CALL = "Llamada gestión comercial"
POLICY_MODIFICATION = "Modificación póliza emitida"
DUPLICATE_REQUEST = "Solicitud duplicado póliza"
NEW_POLICY = "Nueva contratación de seguros"
ROADSIDE_ASSISTANCE = "Llamada asistencia en carretera"

REJECTS_AUTOMATION: TaxonomyKey = (COMMERCIAL_CALL, "Reenvío agentes humanos no quiere IA")
NOT_POLICYHOLDER: TaxonomyKey = (COMMERCIAL_CALL, "Reenvío agentes humanos no tomador")
GENERIC_HANDOFF: TaxonomyKey = (COMMERCIAL_CALL, "Reenvío agentes humanos")
CLAIMS_HANDOFF: TaxonomyKey = (COMMERCIAL_CALL, "Reenvío siniestros")
FALLBACK_UNRESOLVED: TaxonomyKey = (COMMERCIAL_CALL, "LLam gestión comerc")
INCOMPLETE_DATA_DEFAULT: TaxonomyKey = (POLICY_MODIFICATION, "Datos incompletos")

REQUIRED_PAIRS = (
    REJECTS_AUTOMATION,
    NOT_POLICYHOLDER,
    GENERIC_HANDOFF,
    CLAIMS_HANDOFF,
    FALLBACK_UNRESOLVED,
    INCOMPLETE_DATA_DEFAULT,
)

CREATION_MODE_AI = "Exclusiva IA"
CREATION_MODE_STANDARD = "Manual / Automática"

_INCOMPLETE_MARKER = "datos incompletos"


@dataclass(frozen=True)
class TaxonomyEntry:
    """
    One valid ticket classification.

    Attributes:
        tipo: Incident type
        motivo: Reason under the incident type
        human_only: Only reachable through a live-agent handoff
        requires_branch: Ticket needs a ramo (insurance line)
        priority_tier: 0 = most important
        ai_exclusive: Created exclusively by the AI flow
        description: Operator-facing description
    """

    tipo: str
    motivo: str
    human_only: bool = False
    requires_branch: bool = False
    priority_tier: int = 3
    ai_exclusive: bool = False
    description: str = ""

    @property
    def key(self) -> TaxonomyKey:
        return (self.tipo, self.motivo)

    @property
    def creation_mode(self) -> str:
        return CREATION_MODE_AI if self.ai_exclusive else CREATION_MODE_STANDARD

    @property
    def is_incomplete_data(self) -> bool:
        return _INCOMPLETE_MARKER in fold(self.motivo)

    def __str__(self) -> str:
        return f"{self.tipo} / {self.motivo}"


class Taxonomy:
    """
    Immutable snapshot of the taxonomy with read-only lookups.

    Usage:
        taxonomy = load_taxonomy()
        entry = taxonomy.get("Solicitud duplicado póliza", "Email")
        entry = taxonomy.resolve("Solicitud duplicado poliza", "email")  # nearest match
    """

    # Minimum difflib ratio to accept a nearest match
    NEAREST_CUTOFF = 0.75

    def __init__(self, entries: Iterable[TaxonomyEntry], source: str = "<memory>"):
        entries = tuple(entries)
        by_key: Dict[TaxonomyKey, TaxonomyEntry] = {}
        for entry in entries:
            if entry.key in by_key:
                raise TaxonomyLoadError(f"Duplicate taxonomy pair in {source}: {entry}")
            by_key[entry.key] = entry

        missing = [pair for pair in REQUIRED_PAIRS if pair not in by_key]
        if missing:
            raise TaxonomyLoadError(f"Taxonomy {source} is missing required pairs: {missing}")

        self._entries = entries
        self._by_key = MappingProxyType(by_key)
        self._folded = MappingProxyType({self._fold_key(key): entry for key, entry in by_key.items()})
        self.source = source

    @staticmethod
    def _fold_key(key: TaxonomyKey) -> str:
        return f"{fold(key[0]).strip()} || {fold(key[1]).strip()}"

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: TaxonomyKey) -> bool:
        return key in self._by_key

    def entries(self) -> Tuple[TaxonomyEntry, ...]:
        return self._entries

    def contains(self, tipo: str, motivo: str) -> bool:
        return (tipo, motivo) in self._by_key

    def get(self, tipo: str, motivo: str) -> TaxonomyEntry:
        """
        Exact lookup.

        Raises:
            UnknownTaxonomyPairError: If the pair is not in the taxonomy
        """
        try:
            return self._by_key[(tipo, motivo)]
        except KeyError:
            raise UnknownTaxonomyPairError(tipo, motivo) from None

    def by_tipo(self, tipo: str) -> List[TaxonomyEntry]:
        return [entry for entry in self._entries if entry.tipo == tipo]

    def nearest(self, tipo: str, motivo: str) -> Optional[TaxonomyEntry]:
        """
        Find the closest valid pair by fuzzy string similarity.

        Accent and case differences are ignored first; otherwise difflib picks the
        most similar "tipo || motivo" string above NEAREST_CUTOFF.

        Returns:
            Closest entry, or None when nothing is similar enough
        """
        folded = self._fold_key((tipo or "", motivo or ""))
        if folded in self._folded:
            return self._folded[folded]

        matches = difflib.get_close_matches(folded, list(self._folded), n=1, cutoff=self.NEAREST_CUTOFF)
        if matches:
            return self._folded[matches[0]]
        return None

    def resolve(self, tipo: str, motivo: str) -> TaxonomyEntry:
        """
        Return the exact entry, else the nearest one, else the unresolved fallback.

        Mismatches are logged for taxonomy maintenance; never raises.
        """
        try:
            return self.get(tipo, motivo)
        except UnknownTaxonomyPairError as e:
            entry = self.nearest(tipo, motivo)
            if entry is not None:
                logger.warning(f"{e}; substituting nearest pair ({entry})")
                return entry
            fallback = self.fallback
            logger.warning(f"{e}; no close match, using fallback ({fallback}). Review taxonomy")
            return fallback

    def incomplete_variant(self, entry: Optional[TaxonomyEntry]) -> TaxonomyEntry:
        """
        Get the "datos incompletos" reason for a topic's incident type.

        Prefers a reason that starts with the topic's own reason
        (Cesión de derechos -> Cesión de derechos datos incompletos), then the
        type's generic incomplete-data reason, then the default pair.
        """
        if entry is not None:
            if entry.is_incomplete_data:
                return entry
            candidates = [e for e in self.by_tipo(entry.tipo) if e.is_incomplete_data]
            for candidate in candidates:
                if fold(candidate.motivo).startswith(fold(entry.motivo)):
                    return candidate
            for candidate in candidates:
                if fold(candidate.motivo) == _INCOMPLETE_MARKER:
                    return candidate
        return self._by_key[INCOMPLETE_DATA_DEFAULT]

    @property
    def fallback(self) -> TaxonomyEntry:
        return self._by_key[FALLBACK_UNRESOLVED]

    def describe(self) -> List[Dict[str, object]]:
        """Plain-dict listing (for prompts, CLI and HTTP)."""
        return [
            {
                "tipo": e.tipo,
                "motivo": e.motivo,
                "humanOnly": e.human_only,
                "requiresBranch": e.requires_branch,
                "priorityTier": e.priority_tier,
                "tipoCreacion": e.creation_mode,
                "descripcion": e.description,
            }
            for e in self._entries
        ]


def _parse_entry(raw: object, position: int, source: str) -> TaxonomyEntry:
    if not isinstance(raw, dict):
        raise TaxonomyLoadError(f"{source}: entry {position} is not a mapping")

    tipo = str(raw.get("tipo") or "").strip()
    motivo = str(raw.get("motivo") or "").strip()
    if not tipo or not motivo:
        raise TaxonomyLoadError(f"{source}: entry {position} needs both 'tipo' and 'motivo'")

    try:
        tier = int(raw.get("priority_tier", 3))
    except (TypeError, ValueError):
        raise TaxonomyLoadError(f"{source}: entry {position} has invalid priority_tier") from None

    return TaxonomyEntry(
        tipo=tipo,
        motivo=motivo,
        human_only=bool(raw.get("human_only", False)),
        requires_branch=bool(raw.get("requires_branch", False)),
        priority_tier=tier,
        ai_exclusive=bool(raw.get("ai_exclusive", False)),
        description=str(raw.get("description") or ""),
    )


def load_taxonomy(path: Optional[Union[str, Path]] = None) -> Taxonomy:
    """
    Load a taxonomy snapshot from YAML.

    Args:
        path: YAML file (default: packaged default_taxonomy.yaml)

    Returns:
        Immutable Taxonomy

    Raises:
        TaxonomyLoadError: If the file is missing, unreadable or inconsistent
    """
    path = Path(path) if path else DEFAULT_TAXONOMY_PATH

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except OSError as e:
        raise TaxonomyLoadError(f"Cannot read taxonomy file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise TaxonomyLoadError(f"Invalid YAML in taxonomy file {path}: {e}") from e

    raw_entries = data.get("entries") if isinstance(data, dict) else data
    if not isinstance(raw_entries, list) or not raw_entries:
        raise TaxonomyLoadError(f"Taxonomy file {path} has no 'entries' list")

    entries = [_parse_entry(raw, i, str(path)) for i, raw in enumerate(raw_entries)]
    taxonomy = Taxonomy(entries, source=str(path))
    logger.info(f"Loaded taxonomy with {len(taxonomy)} entries from {path}")
    return taxonomy


class TaxonomyStore:
    """
    Holder for the current taxonomy snapshot.

    Readers call snapshot() once per classification. reload() builds the new
    snapshot completely before swapping the reference, so readers never see a
    partially loaded taxonomy. A failed reload keeps the previous snapshot.
    """

    def __init__(self, path: Optional[Union[str, Path]] = None, taxonomy: Optional[Taxonomy] = None):
        self._path = path
        self._lock = threading.Lock()
        self._snapshot = taxonomy if taxonomy is not None else load_taxonomy(path)

    def snapshot(self) -> Taxonomy:
        return self._snapshot

    def reload(self, path: Optional[Union[str, Path]] = None) -> Taxonomy:
        """
        Load a new snapshot and swap it in atomically.

        Args:
            path: New source file (default: the path used last time)

        Returns:
            The new snapshot

        Raises:
            TaxonomyLoadError: If loading fails (current snapshot is kept)
        """
        with self._lock:
            source = path if path is not None else self._path
            try:
                new_snapshot = load_taxonomy(source)
            except TaxonomyLoadError:
                logger.warning(f"Taxonomy reload from {source or 'default'} failed; keeping current snapshot")
                raise
            self._path = source
            self._snapshot = new_snapshot

        logger.info(f"✓ Taxonomy reloaded ({len(new_snapshot)} entries)")
        return new_snapshot


# Global store instance
_store: Optional[TaxonomyStore] = None


def get_taxonomy_store(path: Optional[Union[str, Path]] = None) -> TaxonomyStore:
    """
    Get the process-wide taxonomy store (singleton).

    Args:
        path: Taxonomy file (only used on first call)
    """
    global _store
    if _store is None:
        _store = TaxonomyStore(path)
    return _store


def reset_taxonomy_store():
    """Drop the process-wide store (next get_taxonomy_store() loads again)."""
    global _store
    _store = None
