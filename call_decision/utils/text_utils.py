"""
Text processing utilities for transcript analysis.
"""

import re
import unicodedata
from typing import List


EMAIL_PATTERN = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")

# Speech-to-text often spells out emails ("juan arroba gmail punto com")
_SPOKEN_AT = re.compile(r"\s+arroba\s+", re.IGNORECASE)
_SPOKEN_DOT = re.compile(r"\s+punto\s+(?=(?:com|es|net|org|eu)\b)", re.IGNORECASE)


def clean_text(text: str) -> str:
    """
    Clean and normalize text.

    - Normalize line endings
    - Collapse whitespace
    - Trim leading/trailing whitespace

    Args:
        text: Text to clean

    Returns:
        Cleaned text
    """
    if not text:
        return ""

    text = text.replace("\r\n", "\n").replace("\r", "\n")
    return " ".join(text.split()).strip()


def fold(text: str) -> str:
    """
    Lower-case text and strip diacritics so patterns can be written once.

    Example:
        fold("Cesión de Pólizas") -> "cesion de polizas"
    """
    if not text:
        return ""
    decomposed = unicodedata.normalize("NFKD", text)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return stripped.lower()


def truncate_text(text: str, max_length: int, suffix: str = "...") -> str:
    """
    Truncate text to maximum length, adding suffix if truncated.

    Example:
        truncate_text("This is a long sentence", 10)
        -> "This is..."
    """
    if len(text) <= max_length:
        return text

    return text[: max_length - len(suffix)] + suffix


def extract_emails(text: str) -> List[str]:
    """
    Extract email addresses from text, in order of appearance.

    Spoken forms ("arroba", "punto com") are rewritten before matching.

    Args:
        text: Text containing email addresses

    Returns:
        List of email addresses found (duplicates removed, first order kept)

    Example:
        extract_emails("mi correo es ana arroba gmail punto com")
        -> ["ana@gmail.com"]
    """
    if not text:
        return []

    normalized = _SPOKEN_AT.sub("@", text)
    normalized = _SPOKEN_DOT.sub(".", normalized)

    emails = []
    for email in EMAIL_PATTERN.findall(normalized):
        email = email.lower()
        if email not in emails:
            emails.append(email)
    return emails


def strip_separators(value: str) -> str:
    """Remove spaces, dashes and dots from identifiers read aloud."""
    return re.sub(r"[\s.\-]", "", value)
