from __future__ import annotations

import re

SECRET_PATTERNS = (
    (re.compile(r"(sk-[A-Za-z0-9_\-]{6,})"), "sk-***"),
    (re.compile(r"(Bearer\s+)[A-Za-z0-9._\-]{6,}"), r"\1***"),
)


def redact_secrets(text: str) -> str:
    """Redact API keys and bearer tokens from a string."""

    for pattern, replacement in SECRET_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def sanitize_text(text: str, max_length: int) -> str:
    """Trim and clamp user-provided text to a safe length."""

    cleaned = text.strip()
    if len(cleaned) > max_length:
        cleaned = cleaned[:max_length]
    return cleaned


def first_line_title(text: str, max_length: int = 100, fallback: str = "New Chat") -> str:
    """Derive a conversation title from the first line of a message."""

    first_line = text.split("\n", 1)[0].strip()
    if not first_line:
        return fallback
    return first_line[:max_length]
