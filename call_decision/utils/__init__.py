"""Text helpers and retry logic."""
