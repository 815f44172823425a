"""
Prompts Module

Prompt templates for the classification oracle.
"""

from .classification_prompt import (
    CLASSIFICATION_PROMPT,
    CLASSIFICATION_SYSTEM_PROMPT,
    build_classification_prompt,
)

__all__ = [
    "CLASSIFICATION_PROMPT",
    "CLASSIFICATION_SYSTEM_PROMPT",
    "build_classification_prompt",
]
