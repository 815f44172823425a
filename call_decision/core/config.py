"""
Configuration management for the Call Decision Engine.

Loads configuration from:
1. .env file (secrets - never committed)
2. config.yaml (runtime settings for the engine)
"""

from dataclasses import dataclass, fields
from typing import List, Optional
import logging
import os

import yaml
from dotenv import load_dotenv


logger = logging.getLogger(__name__)


@dataclass
class GeminiConfig:
    """
    Google Gemini configuration.

    Gemini is the primary oracle backend. Claude is used when Gemini is not
    configured or fails.
    """

    api_key: str
    model: str = "gemini-2.0-flash"
    max_tokens: int = 4000
    temperature: float = 0.1

    def is_configured(self) -> bool:
        return bool(self.api_key)


@dataclass
class ClaudeConfig:
    """Anthropic Claude configuration (fallback oracle backend)."""

    api_key: str
    model: str = "claude-haiku-4-5"
    max_tokens: int = 4000
    temperature: float = 0.1

    def is_configured(self) -> bool:
        return bool(self.api_key)


@dataclass
class EngineConfig:
    """Runtime engine configuration (from config.yaml)."""

    # Oracle
    use_oracle: bool = True
    oracle_timeout_seconds: float = 30.0
    oracle_max_retries: int = 3

    # Transcript normalization
    timestamp_tolerance_seconds: float = 2.0

    # Taxonomy (None = packaged default)
    taxonomy_path: Optional[str] = None

    # Batch processing
    max_concurrent_calls: int = 5

    # Multi-incident assembly
    max_secondary_incidents: int = 2

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None


class ConfigManager:
    """Central configuration manager.

    Loads configuration from:
    - .env file for secrets (Gemini and Claude API keys)
    - config.yaml for engine settings
    """

    def __init__(self, env_file: Optional[str] = None, config_file: Optional[str] = None):
        """
        Initialize configuration manager.

        Args:
            env_file: Path to .env file (default: .env in working directory)
            config_file: Path to config.yaml file (default: config.yaml in working directory)
        """
        if env_file is None:
            env_file = ".env"
        load_dotenv(env_file)

        if config_file is None:
            config_file = os.getenv("CALL_DECISION_CONFIG", "config.yaml")
        self.config_file = config_file

        self._load_env_config()
        self._load_yaml_config()

    def _load_env_config(self):
        """Load secrets from .env file."""
        self.gemini = GeminiConfig(
            api_key=os.getenv("GOOGLE_API_KEY", os.getenv("GEMINI_API_KEY", "")),
            model=os.getenv("GEMINI_MODEL", "gemini-2.0-flash"),
            max_tokens=int(os.getenv("GEMINI_MAX_TOKENS", "4000")),
            temperature=float(os.getenv("GEMINI_TEMPERATURE", "0.1")),
        )

        self.claude = ClaudeConfig(
            api_key=os.getenv("CLAUDE_API_KEY", os.getenv("ANTHROPIC_API_KEY", "")),
            model=os.getenv("CLAUDE_MODEL", "claude-haiku-4-5"),
            max_tokens=int(os.getenv("CLAUDE_MAX_TOKENS", "4000")),
            temperature=float(os.getenv("CLAUDE_TEMPERATURE", "0.1")),
        )

    def _load_yaml_config(self):
        """Load engine configuration from config.yaml."""
        if not os.path.exists(self.config_file):
            self.engine = EngineConfig()
            return

        try:
            with open(self.config_file, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}

            engine_data = data.get("engine", {}) or {}
            known = {f.name for f in fields(EngineConfig)}
            unknown = set(engine_data) - known
            if unknown:
                logger.warning(f"Ignoring unknown engine settings in {self.config_file}: {sorted(unknown)}")
            self.engine = EngineConfig(**{k: v for k, v in engine_data.items() if k in known})

            # Model overrides live next to the engine section
            if data.get("gemini_model"):
                self.gemini.model = data["gemini_model"]
            if data.get("claude_model"):
                self.claude.model = data["claude_model"]

        except (yaml.YAMLError, TypeError, ValueError) as e:
            logger.warning(f"Failed to load {self.config_file}: {e}. Using default configuration")
            self.engine = EngineConfig()

    @property
    def oracle_configured(self) -> bool:
        """True when at least one oracle backend has credentials."""
        return self.gemini.is_configured() or self.claude.is_configured()

    def validate(self) -> List[str]:
        """
        Validate configuration.

        Returns:
            List of validation error messages (empty if valid)
        """
        errors = []

        if self.engine.use_oracle and not self.oracle_configured:
            errors.append("use_oracle is enabled but neither GOOGLE_API_KEY nor CLAUDE_API_KEY is set in .env")

        if self.engine.oracle_timeout_seconds <= 0:
            errors.append("oracle_timeout_seconds must be > 0")
        if self.engine.oracle_max_retries < 0:
            errors.append("oracle_max_retries must be >= 0")
        if self.engine.timestamp_tolerance_seconds < 0:
            errors.append("timestamp_tolerance_seconds must be >= 0")
        if self.engine.max_concurrent_calls < 1:
            errors.append("max_concurrent_calls must be >= 1")
        if not 0 <= self.engine.max_secondary_incidents <= 2:
            errors.append("max_secondary_incidents must be between 0 and 2")

        if self.engine.taxonomy_path and not os.path.exists(self.engine.taxonomy_path):
            errors.append(f"taxonomy_path not found: {self.engine.taxonomy_path}")

        return errors


# Global singleton instance
_config: Optional[ConfigManager] = None


def get_config(env_file: Optional[str] = None, config_file: Optional[str] = None) -> ConfigManager:
    """
    Get global configuration manager instance (singleton).

    Args:
        env_file: Path to .env file (only used on first call)
        config_file: Path to config.yaml file (only used on first call)

    Returns:
        ConfigManager instance
    """
    global _config
    if _config is None:
        _config = ConfigManager(env_file=env_file, config_file=config_file)
    return _config


def reload_config(env_file: Optional[str] = None, config_file: Optional[str] = None) -> ConfigManager:
    """
    Discard the cached configuration and load it again.

    Returns:
        Fresh ConfigManager instance
    """
    global _config
    _config = ConfigManager(env_file=env_file, config_file=config_file)
    return _config
