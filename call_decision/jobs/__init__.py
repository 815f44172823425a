"""
Jobs Module

Concurrent batch classification.
"""

from .batch import BatchClassifier, CallInput, load_call_file, parse_call_payload

__all__ = ["BatchClassifier", "CallInput", "load_call_file", "parse_call_payload"]
