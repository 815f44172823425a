"""
Taxonomy Module

Closed vocabulary of ticket (tipo, motivo) pairs and the snapshot store.
"""

from .store import (
    CLAIMS_HANDOFF,
    FALLBACK_UNRESOLVED,
    GENERIC_HANDOFF,
    INCOMPLETE_DATA_DEFAULT,
    NOT_POLICYHOLDER,
    REJECTS_AUTOMATION,
    Taxonomy,
    TaxonomyEntry,
    TaxonomyStore,
    get_taxonomy_store,
    load_taxonomy,
    reset_taxonomy_store,
)

__all__ = [
    "CLAIMS_HANDOFF",
    "FALLBACK_UNRESOLVED",
    "GENERIC_HANDOFF",
    "INCOMPLETE_DATA_DEFAULT",
    "NOT_POLICYHOLDER",
    "REJECTS_AUTOMATION",
    "Taxonomy",
    "TaxonomyEntry",
    "TaxonomyStore",
    "get_taxonomy_store",
    "load_taxonomy",
    "reset_taxonomy_store",
]
