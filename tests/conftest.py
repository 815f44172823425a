"""
Shared fixtures.
"""

import logging

import pytest

import call_decision.core.config as config_module
from call_decision.core.config import EngineConfig
from call_decision.engine.decision_engine import DecisionEngine
from call_decision.taxonomy.store import TaxonomyStore, load_taxonomy, reset_taxonomy_store
from call_decision.transcript.normalizer import TranscriptNormalizer


@pytest.fixture(scope="session")
def taxonomy():
    """Packaged default taxonomy (loaded once)."""
    return load_taxonomy()


@pytest.fixture
def taxonomy_store(taxonomy):
    return TaxonomyStore(taxonomy=taxonomy)


@pytest.fixture
def normalizer():
    return TranscriptNormalizer()


@pytest.fixture
def rules_config():
    """Engine configuration with the oracle switched off."""
    return EngineConfig(use_oracle=False)


@pytest.fixture
def engine(taxonomy_store, rules_config):
    """Rules-only decision engine."""
    return DecisionEngine(taxonomy_store=taxonomy_store, config=rules_config)


@pytest.fixture
def make_transcript(normalizer):
    """Normalize a raw turn list into a Transcript."""

    def _make(raw_turns, call_id="test-call"):
        return normalizer.normalize(raw_turns, call_id)

    return _make


@pytest.fixture(autouse=True)
def reset_singletons(monkeypatch):
    """Drop the process-wide config and taxonomy store around each test."""
    monkeypatch.setattr(config_module, "_config", None)
    reset_taxonomy_store()
    yield
    reset_taxonomy_store()


@pytest.fixture(autouse=True)
def restore_root_logging():
    """CLI commands reconfigure the root logger; put it back afterwards."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def isolated_env(tmp_path, monkeypatch):
    """Run in an empty directory with no oracle credentials in the environment."""
    for var in ("GOOGLE_API_KEY", "GEMINI_API_KEY", "CLAUDE_API_KEY", "ANTHROPIC_API_KEY", "CALL_DECISION_CONFIG"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path
