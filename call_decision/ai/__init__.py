"""
AI Module

Classification oracle backed by Gemini (primary) and Claude (fallback).
"""

from .oracle import CallOracle, OracleCandidate

__all__ = ["CallOracle", "OracleCandidate"]
