import re
from typing import List

_BLANK_LINE = re.compile(r"\n\s*\n")


def paragraphs(text: str) -> List[str]:
    """Non-empty, stripped paragraphs separated by blank lines."""
    return [p.strip() for p in _BLANK_LINE.split(text or "") if p.strip()]


def chunk_text(content: str, max_chars: int) -> List[str]:
    """Greedily pack whole paragraphs into chunks of at most ``max_chars``.

    Paragraphs are joined with a blank line. A paragraph longer than the
    budget is never split; it becomes a chunk of its own.
    """
    if max_chars <= 0:
        raise ValueError("max_chars must be positive")
    chunks: List[str] = []
    current: List[str] = []
    size = 0
    for para in paragraphs(content):
        added = len(para) + (2 if current else 0)
        if current and size + added > max_chars:
            chunks.append("\n\n".join(current))
            current, size = [], 0
            added = len(para)
        current.append(para)
        size += added
    if current:
        chunks.append("\n\n".join(current))
    return chunks
