"""
Transcript Module

Canonical transcript model and the normalizer that builds it from raw turns.
"""

from .models import Speaker, ToolCall, ToolResult, Transcript, Turn
from .normalizer import TranscriptNormalizer

__all__ = ["Speaker", "ToolCall", "ToolResult", "Transcript", "Turn", "TranscriptNormalizer"]
